import logging
import time
from typing import Optional

from supabase import Client

from fasalsetu import config

logger = logging.getLogger(__name__)


def upload_image(client: Client, user_id: str, image_bytes: bytes, folder: str = "crop-images") -> Optional[str]:
    """Upload a JPEG to the crop image bucket and return its public URL.

    Returns None when the upload fails so callers can carry on without an
    image link.
    """
    bucket = config.get_storage_bucket()
    path = f"{folder}/{user_id}/{int(time.time() * 1000)}.jpg"
    try:
        store = client.storage.from_(bucket)
        store.upload(path, image_bytes, {"content-type": "image/jpeg", "upsert": "false"})
        return store.get_public_url(path)
    except Exception as e:
        logger.warning("Image upload to %s/%s failed: %s", bucket, path, e)
        return None
