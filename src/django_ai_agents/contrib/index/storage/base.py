from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Generic, Iterable, Iterator, Sequence, TypeVar

from django.core.exceptions import ImproperlyConfigured
from queryish import Queryish, VirtualModel

from django_ai_agents.exceptions import DimensionMismatchError

from ..schema import EmbeddedChunk, SearchResult

StorageProviderType = TypeVar("StorageProviderType", bound="StorageProvider")


class Metric(str, Enum):
    """Similarity metrics. Scores are always "higher is better"."""

    COSINE = "cosine"
    DOT = "dot"
    EUCLIDEAN = "euclidean"


class BaseStorageQuerySet(Queryish, Generic[StorageProviderType]):
    """Base Queryish QuerySet. Subclasses are generated dynamically by Queryish.

    Results are `SearchResult`s ordered best first. The query vector is passed as an
    `embedding` filter; every other filter is an equality match on item metadata.
    """

    # Defaults to None even though this isn't a valid type as Queryish
    # uses 'hasattr' to check if it can copy a Meta attribute from the Virtual Model
    storage_provider: StorageProviderType = None  # type: ignore
    model: type["BaseStorageDocument"]

    def split_filters(self) -> tuple[Sequence[float], dict[str, Any]]:
        filter_map = {filter[0]: filter[1] for filter in self.filters}
        embedding = filter_map.pop("embedding", None)
        if embedding is None:
            raise ValueError("embedding filter is required")
        if self.ordering:
            raise NotImplementedError("Ordering is not supported for querying")
        return embedding, filter_map

    def run_query(self) -> Iterator[SearchResult]:
        """Execute the query and return the results."""
        raise NotImplementedError


class BaseStorageDocument(VirtualModel):
    """Base virtual model for items in storage backends. Subclasses are generated dynamically by StorageProviders."""

    base_query_class = BaseStorageQuerySet
    pk_field_name = "id"

    id: str
    document_id: str
    content: str
    metadata: dict[str, Any]

    class Meta:
        fields = ["id", "document_id", "content", "metadata"]
        storage_provider: "StorageProvider"

    def __str__(self):
        return self.id


def matches_metadata(item: EmbeddedChunk, filters: dict[str, Any]) -> bool:
    return all(item.metadata.get(key) == value for key, value in filters.items())


class StorageProvider(ABC):
    """Base class for vector storage backends.

    Every provider holds vectors of a single dimension. The dimension is either
    configured up front or fixed by the first item added; anything else is rejected
    with DimensionMismatchError.

    Writers must publish changes atomically: a concurrent query sees the index either
    before or after a write, never part of one.
    """

    base_queryset_cls: ClassVar[type[BaseStorageQuerySet]]
    #: Exhaustive providers always return the true nearest neighbours.
    exact: ClassVar[bool] = True
    #: Number of items required before the provider can answer queries.
    min_corpus_size: int = 0

    def __init__(
        self,
        *,
        index_name: str | None = None,
        dimensions: int | None = None,
        metric: Metric | str = Metric.COSINE,
        **kwargs,
    ):
        if dimensions is not None and dimensions < 1:
            raise ImproperlyConfigured("Dimensions must be greater than 0")
        try:
            self.metric = Metric(metric)
        except ValueError as e:
            raise ImproperlyConfigured(f"Unknown similarity metric: {metric}") from e
        self.index_name = index_name
        self.dimensions = dimensions

    @property
    def document_cls(self):
        """Build a document class for this storage provider."""
        meta = type(
            "Meta",
            (BaseStorageDocument.Meta,),
            {
                "storage_provider": self,
            },
        )

        # Determine document class name
        document_class_name = f"{self.__class__.__name__}Document"
        if self.__class__.__name__.endswith("Provider"):
            document_class_name = self.__class__.__name__.replace(
                "Provider", "Document"
            )

        return type(
            document_class_name,
            (BaseStorageDocument,),
            {"Meta": meta, "base_query_class": self.base_queryset_cls},
        )

    def check_dimensions(self, vectors: Iterable[Sequence[float]]):
        """Validate vectors against the provider's dimension, fixing it on first use."""
        expected = self.dimensions
        for vector in vectors:
            if expected is None:
                expected = len(vector)
            elif len(vector) != expected:
                raise DimensionMismatchError(
                    f"Vector of dimension {len(vector)} does not match index "
                    f"dimension {expected}",
                    index=self.index_name,
                )
        self.dimensions = expected

    def check_query(self, vector: Sequence[float]):
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise DimensionMismatchError(
                f"Query vector of dimension {len(vector)} does not match index "
                f"dimension {self.dimensions}",
                index=self.index_name,
            )

    @abstractmethod
    def add(self, items: Iterable["EmbeddedChunk"]):
        """Store items in the vector database, replacing items with the same id."""
        pass

    @abstractmethod
    def delete(self, item_ids: Iterable[str]):
        """Delete items by their ids."""
        pass

    @abstractmethod
    def clear(self):
        """Clear the vector database."""
        ...

    @abstractmethod
    def __len__(self) -> int: ...

    @property
    def objects(self):
        return self.document_cls().objects

    @property
    def Document(self):
        return self.document_cls
