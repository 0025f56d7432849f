"""Models package for the price-list ingestion system."""
from backend.models.schema import (
    Base, UploadStatus, PriceListUpload, Nomenclature, Price, UploadRowError
)

__all__ = ['Base', 'UploadStatus', 'PriceListUpload', 'Nomenclature', 'Price', 'UploadRowError']
