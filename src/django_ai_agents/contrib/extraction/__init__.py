from .base import ExtractionMode, ExtractionResult, Extractor

__all__ = ["ExtractionMode", "ExtractionResult", "Extractor"]
