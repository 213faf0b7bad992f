from .base import BaseStorageQuerySet, Metric, StorageProvider
from .inmemory import InMemoryProvider

__all__ = [
    "StorageProvider",
    "BaseStorageQuerySet",
    "InMemoryProvider",
    "Metric",
]
