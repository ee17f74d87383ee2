import base64
import binascii
import logging
from io import BytesIO

from PIL import Image

logger = logging.getLogger(__name__)

MAX_BYTES = 700_000
MAX_SIDE = 1400
TARGET_SIDE = 1200
JPEG_QUALITY = 75


def decode_base64_image(image_base64: str) -> bytes:
    """Decode a plain or data-URL base64 image."""
    if not image_base64:
        raise ValueError("image_base64 is required")
    data = image_base64.split(",", 1)[1] if "," in image_base64 else image_base64
    try:
        raw = base64.b64decode("".join(data.split()), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("image_base64 is not valid base64")
    if not raw:
        raise ValueError("image_base64 is empty")
    return raw


def shrink_image(img_bytes: bytes) -> bytes:
    """Re-encode large photos as a smaller JPEG.

    Phone photos are often several MB; the vision endpoints reject or slow
    down on those. Images that are small enough, or that Pillow cannot
    open, are returned unchanged.
    """
    try:
        with Image.open(BytesIO(img_bytes)) as img:
            w, h = img.size
            if len(img_bytes) <= MAX_BYTES and max(w, h) <= MAX_SIDE:
                return img_bytes
            img = img.convert("RGB")
            if max(w, h) > TARGET_SIDE:
                scale = TARGET_SIDE / float(max(w, h))
                img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)
            out = BytesIO()
            img.save(out, format="JPEG", quality=JPEG_QUALITY, optimize=True)
            shrunk = out.getvalue()
            logger.info("Re-encoded image %d -> %d bytes (%dx%d)", len(img_bytes), len(shrunk), img.size[0], img.size[1])
            return shrunk
    except Exception as e:
        logger.warning("Could not re-encode image, using original: %s", e)
        return img_bytes
