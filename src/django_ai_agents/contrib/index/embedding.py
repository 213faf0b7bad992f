import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

from django_ai_agents.conf import get_setting
from django_ai_agents.exceptions import (
    DimensionMismatchError,
    EmbeddingError,
    EmptyDocumentError,
    MalformedResponseError,
    ProviderError,
)
from django_ai_agents.llm import Provider
from django_ai_agents.llm.retry import call_with_retry

from .chunking import ChunkTransformer, WordChunkTransformer, chunk_document
from .schema import Chunk, Document, EmbeddedChunk

logger = logging.getLogger(__name__)


@dataclass
class BatchFailure:
    chunk_ids: list[str]
    error: Exception


@dataclass
class EmbeddingReport:
    """Outcome of embedding a set of documents.

    Chunks from failed batches are listed in `failed_batches`, never dropped silently.
    """

    embedded: list[EmbeddedChunk] = field(default_factory=list)
    failed_batches: list[BatchFailure] = field(default_factory=list)
    empty_documents: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_batches and not self.empty_documents

    def raise_for_errors(self):
        if self.ok:
            return
        if not self.failed_batches:
            raise EmptyDocumentError(
                f"Documents produced no chunks: {', '.join(self.empty_documents)}",
                report=self,
            )
        failed = sum(len(failure.chunk_ids) for failure in self.failed_batches)
        raise EmbeddingError(
            f"{len(self.embedded)} chunks embedded, {failed} chunks failed, "
            f"{len(self.empty_documents)} empty documents",
            report=self,
        )


class EmbeddingTransformer(ABC):
    """Base class for embedding transformers which turn Documents into EmbeddedChunks."""

    @property
    def transformer_id(self) -> str:
        """Get unique identifier for this transformer."""
        return self.__class__.__name__

    @property
    def dimensions(self) -> int | None:
        return None

    @abstractmethod
    async def embed_string(self, text: str) -> list[float]:
        """Embed a single string, e.g. a search query."""

    @abstractmethod
    async def embed_documents(
        self, documents: Iterable["Document"], *, batch_size: int | None = None
    ) -> EmbeddingReport:
        """Chunk and embed documents."""


class ProviderEmbeddingTransformer(EmbeddingTransformer):
    """Embedding transformer that chunks documents and embeds them through a Provider."""

    def __init__(
        self,
        provider: Provider,
        *,
        chunk_transformer: ChunkTransformer | None = None,
        batch_size: int | None = None,
    ):
        self.provider = provider
        self.chunk_transformer = chunk_transformer or WordChunkTransformer()
        self.batch_size = batch_size or get_setting("EMBEDDING_BATCH_SIZE")

    @property
    def transformer_id(self) -> str:
        return f"provider_{self.provider.provider_id}"

    @property
    def dimensions(self) -> int | None:
        return self.provider.embedding_dimensions

    def chunk(self, documents: Iterable[Document]) -> tuple[list[Chunk], list[str]]:
        """Split documents into chunks, also returning the ids of empty documents."""
        chunks = []
        empty = []
        for document in documents:
            document_chunks = chunk_document(document, self.chunk_transformer)
            if not document_chunks:
                logger.warning(f"Document {document.id} produced no chunks")
                empty.append(document.id)
            chunks.extend(document_chunks)
        return chunks, empty

    async def embed_string(self, text: str) -> list[float]:
        vectors = await call_with_retry(self.provider.embed, [text], call_site="embed")
        self._check_vectors(vectors, expected_count=1)
        return vectors[0]

    async def embed_documents(
        self, documents: Iterable[Document], *, batch_size: int | None = None
    ) -> EmbeddingReport:
        """Embed documents in provider sized batches.

        A batch that fails with a provider error is recorded and the remaining
        batches still run. Contract violations (wrong vector count or dimension)
        stop the run with an EmbeddingError carrying the partial report.
        """
        batch_size = batch_size or self.batch_size
        chunks, empty = self.chunk(documents)
        report = EmbeddingReport(empty_documents=empty)

        for i in range(0, len(chunks), batch_size):
            batch = chunks[i : i + batch_size]
            texts = [chunk.content for chunk in batch]
            logger.debug(f"Embedding batch of {len(batch)} chunks starting at {i}")
            try:
                vectors = await call_with_retry(
                    self.provider.embed, texts, call_site="embed"
                )
                self._check_vectors(vectors, expected_count=len(batch))
            except (MalformedResponseError, DimensionMismatchError) as e:
                raise EmbeddingError(
                    f"Embedding provider broke its contract: {e}", report=report
                ) from e
            except ProviderError as e:
                logger.warning(f"Embedding batch starting at chunk {batch[0].id} failed: {e}")
                report.failed_batches.append(
                    BatchFailure(chunk_ids=[chunk.id for chunk in batch], error=e)
                )
                continue

            report.embedded.extend(
                chunk.add_embedding(vector)
                for chunk, vector in zip(batch, vectors, strict=True)
            )

        return report

    def _check_vectors(self, vectors: list[list[float]], *, expected_count: int):
        if len(vectors) != expected_count:
            raise MalformedResponseError(
                f"Provider returned {len(vectors)} vectors for {expected_count} inputs"
            )
        expected_dimensions = self.dimensions or (len(vectors[0]) if vectors else None)
        for vector in vectors:
            if len(vector) != expected_dimensions:
                raise DimensionMismatchError(
                    f"Provider returned a vector of dimension {len(vector)}, "
                    f"expected {expected_dimensions}"
                )
