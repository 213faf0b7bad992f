"""
Schema definitions for vector indexing.

This module contains the core data structures used throughout the indexing system:

    Document -> Chunk -> EmbeddedChunk -> SearchResult

Documents come from loaders, chunks are the unit that gets embedded, embedded chunks are
what storage providers hold, and search results pair a stored item with its score.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Document:
    """
    Represents a document to be indexed.
    """

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """
    A contiguous, word-aligned slice of a Document.

    Chunk ids are derived from the document id and the chunk's position so the same
    document always produces the same ids.
    """

    id: str
    document_id: str
    sequence: int
    content: str
    metadata: dict[str, Any]

    @staticmethod
    def make_id(document_id: str, sequence: int) -> str:
        return f"{document_id}:{sequence}"

    def add_embedding(self, embedding: list[float]) -> "EmbeddedChunk":
        """Create a new EmbeddedChunk with the given embedding."""
        return EmbeddedChunk(
            id=self.id,
            document_id=self.document_id,
            sequence=self.sequence,
            content=self.content,
            metadata=self.metadata,
            vector=tuple(float(value) for value in embedding),
        )


@dataclass(frozen=True)
class EmbeddedChunk(Chunk):
    """
    A chunk with its vector embedding. This is what gets stored in a vector index.
    """

    vector: tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def as_document(self) -> Document:
        """The chunk as a context document, tagged with its source document."""
        return Document(
            id=self.id,
            content=self.content,
            metadata={**self.metadata, "document_id": self.document_id},
        )


@dataclass(frozen=True)
class SearchResult:
    score: float
    id: str
    item: EmbeddedChunk
