"""FasalSetu: crop advisory, disease detection, weather and soil service for Indian farmers."""

__version__ = "0.1.0"
