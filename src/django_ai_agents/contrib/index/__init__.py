from .base import (
    IndexRegistry,
    VectorIndex,
    registry,
)
from .chunking import (
    ChunkTransformer,
    WordChunkTransformer,
)
from .embedding import (
    EmbeddingReport,
    EmbeddingTransformer,
    ProviderEmbeddingTransformer,
)
from .schema import (
    Chunk,
    Document,
    EmbeddedChunk,
    SearchResult,
)
from .storage import (
    InMemoryProvider,
    Metric,
    StorageProvider,
)

__all__ = [
    "Chunk",
    "ChunkTransformer",
    "Document",
    "EmbeddedChunk",
    "EmbeddingReport",
    "EmbeddingTransformer",
    "InMemoryProvider",
    "IndexRegistry",
    "Metric",
    "ProviderEmbeddingTransformer",
    "SearchResult",
    "StorageProvider",
    "VectorIndex",
    "WordChunkTransformer",
    "registry",
]
