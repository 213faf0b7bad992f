from typing import Protocol

from django_ai_agents.conf import get_setting

from .schema import Chunk, Document


class ChunkTransformer(Protocol):
    """Base class for chunking transformers which break a string into a list of strings."""

    def transform(self, text: "str") -> list["str"]:
        """Transform a string into chunks."""
        ...


class WordChunkTransformer(ChunkTransformer):
    """Greedy word-boundary chunker.

    Words are accumulated until the next one would push the chunk past `chunk_size`
    characters. Words are never split: a single word longer than the budget ends up
    alone in its own chunk.
    """

    def __init__(self, chunk_size: int | None = None):
        if chunk_size is None:
            chunk_size = get_setting("CHUNK_SIZE")
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.chunk_size = chunk_size

    def transform(self, text: str) -> list[str]:
        chunks = []
        current: list[str] = []
        length = 0

        for word in text.split():
            candidate_length = length + 1 + len(word) if current else len(word)
            if current and candidate_length > self.chunk_size:
                chunks.append(" ".join(current))
                current = [word]
                length = len(word)
            else:
                current.append(word)
                length = candidate_length

        if current:
            chunks.append(" ".join(current))

        return chunks


def chunk_document(document: Document, transformer: ChunkTransformer) -> list[Chunk]:
    return [
        Chunk(
            id=Chunk.make_id(document.id, sequence),
            document_id=document.id,
            sequence=sequence,
            content=content,
            metadata=dict(document.metadata),
        )
        for sequence, content in enumerate(transformer.transform(document.content))
    ]
