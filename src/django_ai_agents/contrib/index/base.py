import asyncio
import logging
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Sequence

from django.core.exceptions import ImproperlyConfigured
from django.utils.text import slugify

from django_ai_agents.exceptions import DimensionMismatchError

if TYPE_CHECKING:
    from .embedding import EmbeddingReport, EmbeddingTransformer
    from .schema import Document, SearchResult
    from .storage.base import StorageProvider


logger = logging.getLogger(__name__)


class VectorIndex:
    """An embedding transformer paired with a storage provider.

    Configure by subclassing:

        class DocsIndex(VectorIndex):
            embedding_transformer = ProviderEmbeddingTransformer(embedding_service)
            storage_provider = InMemoryProvider()

    or by passing the same attributes to the constructor.
    """

    embedding_transformer: ClassVar["EmbeddingTransformer"]
    storage_provider: ClassVar["StorageProvider"]
    metadata: ClassVar[dict[str, Any] | None] = None

    def __init__(
        self,
        *,
        embedding_transformer: "EmbeddingTransformer | None" = None,
        storage_provider: "StorageProvider | None" = None,
        name: str | None = None,
    ):
        if embedding_transformer is not None:
            self.embedding_transformer = embedding_transformer
        if storage_provider is not None:
            self.storage_provider = storage_provider
        self.name = name

        for attr in ("embedding_transformer", "storage_provider"):
            if getattr(self, attr, None) is None:
                raise ImproperlyConfigured(
                    f"{self.__class__.__name__} requires a {attr}"
                )

        transformer_dimensions = self.embedding_transformer.dimensions
        storage_dimensions = self.storage_provider.dimensions
        if (
            transformer_dimensions is not None
            and storage_dimensions is not None
            and transformer_dimensions != storage_dimensions
        ):
            raise DimensionMismatchError(
                f"{self.embedding_transformer.transformer_id} produces vectors of "
                f"dimension {transformer_dimensions} but the storage provider "
                f"expects {storage_dimensions}"
            )

        # Set the storage provider index name from the index ID
        if not self.storage_provider.index_name:
            self.storage_provider.index_name = f"{self.index_id}_index"

    @property
    def index_id(self):
        return slugify(self.name or self.__class__.__name__)

    @property
    def exact(self) -> bool:
        return self.storage_provider.exact

    @property
    def min_corpus_size(self) -> int:
        return self.storage_provider.min_corpus_size

    async def update(self, documents: Iterable["Document"]) -> "EmbeddingReport":
        """
        Chunk, embed and store documents.

        Chunks that were embedded are stored even if other batches failed; the
        returned report lists what failed.
        """
        logger.info("Embedding documents")
        report = await self.embedding_transformer.embed_documents(documents)

        if report.embedded:
            logger.info(f"Storing {len(report.embedded)} chunks in {self.index_id}")
            self.storage_provider.add(report.embedded)
        else:
            logger.warning("No embedded chunks produced by the pipeline")

        if not report.ok:
            logger.warning(
                f"Index {self.index_id} updated with errors: "
                f"{len(report.failed_batches)} failed batches, "
                f"{len(report.empty_documents)} empty documents"
            )
        return report

    def top_n(
        self, query_vector: Sequence[float], n: int, **filters: Any
    ) -> list["SearchResult"]:
        """Return up to `n` stored items, most similar first.

        Fewer than `n` results are returned when the index holds fewer items.
        Keyword arguments filter on exact metadata values.
        """
        if n < 1:
            raise ValueError("n must be at least 1")
        self.storage_provider.check_query(query_vector)
        queryset = self.storage_provider.objects.filter(
            embedding=list(query_vector), **filters
        )
        return list(queryset[:n])

    def top_n_ids(
        self, query_vector: Sequence[float], n: int, **filters: Any
    ) -> list[tuple[float, str]]:
        return [
            (result.score, result.id)
            for result in self.top_n(query_vector, n, **filters)
        ]

    async def search(self, query: str, n: int = 5, **filters: Any) -> list["SearchResult"]:
        """Embed a query string and return the `n` most similar items."""
        if not query or not query.strip():
            raise ValueError("Search query cannot be empty")

        query_vector = await self.embedding_transformer.embed_string(query)
        return await asyncio.to_thread(self.top_n, query_vector, n, **filters)

    def delete(self, item_ids: Iterable[str]):
        self.storage_provider.delete(list(item_ids))

    def clear(self):
        self.storage_provider.clear()

    def __len__(self) -> int:
        return len(self.storage_provider)


class IndexRegistry:
    def __init__(self):
        self._indexes: dict[str, type[VectorIndex]] = {}

    def register(self, slug: str | None = None):
        """Decorator to register an index."""

        def decorator(cls: type[VectorIndex]) -> type[VectorIndex]:
            index_slug = slug or cls.__name__
            self._indexes[index_slug] = cls
            return cls

        return decorator

    def get(self, slug: str) -> type[VectorIndex]:
        if slug not in self._indexes:
            raise KeyError(f"Index '{slug}' not found")
        return self._indexes[slug]

    def list(self) -> dict[str, type[VectorIndex]]:
        return self._indexes.copy()


registry = IndexRegistry()
