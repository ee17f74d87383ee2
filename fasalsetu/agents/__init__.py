from fasalsetu.agents.crop_advisory import CropAdvisoryAI, CropAdvisoryResponse, FarmerContext

__all__ = ["CropAdvisoryAI", "CropAdvisoryResponse", "FarmerContext"]
