import threading
from dataclasses import dataclass

import numpy as np

from ..schema import EmbeddedChunk, SearchResult
from .base import BaseStorageQuerySet, StorageProvider, matches_metadata
from .metrics import score


@dataclass(frozen=True)
class Snapshot:
    """An immutable view of the provider's contents."""

    items: dict[str, EmbeddedChunk]
    ids: tuple[str, ...]
    matrix: np.ndarray | None

    @classmethod
    def build(cls, items: dict[str, EmbeddedChunk]) -> "Snapshot":
        ids = tuple(items)
        matrix = (
            np.array([items[item_id].vector for item_id in ids], dtype=float)
            if ids
            else None
        )
        return cls(items=items, ids=ids, matrix=matrix)


class InMemoryQuerySet(BaseStorageQuerySet["InMemoryProvider"]):
    def run_query(self):
        embedding, filter_map = self.split_filters()
        snapshot = self.storage_provider.snapshot

        if snapshot.matrix is None:
            return

        positions = np.arange(len(snapshot.ids))
        if filter_map:
            positions = np.array(
                [
                    position
                    for position, item_id in enumerate(snapshot.ids)
                    if matches_metadata(snapshot.items[item_id], filter_map)
                ],
                dtype=int,
            )
            if not len(positions):
                return

        query = np.asarray(embedding, dtype=float)
        scores = score(snapshot.matrix[positions], query, self.storage_provider.metric)
        order = np.argsort(-scores, kind="stable")

        offset = self.offset or 0
        limit = self.limit if self.limit is not None else len(order)
        for rank in order[offset : offset + limit]:
            item_id = snapshot.ids[positions[rank]]
            yield SearchResult(
                score=float(scores[rank]), id=item_id, item=snapshot.items[item_id]
            )


class InMemoryProvider(StorageProvider):
    """Exact, exhaustive in-memory storage.

    Suitable for small corpora and testing. Writes build a new snapshot and swap it in,
    so queries never observe a half applied write.
    """

    base_queryset_cls = InMemoryQuerySet
    exact = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._write_lock = threading.Lock()
        self.snapshot = Snapshot.build({})

    @property
    def documents(self) -> dict[str, EmbeddedChunk]:
        return self.snapshot.items

    def add(self, items: list["EmbeddedChunk"]):
        """Store items in memory."""
        items = list(items)
        with self._write_lock:
            self.check_dimensions(item.vector for item in items)
            updated = dict(self.snapshot.items)
            for item in items:
                updated[item.id] = item
            self.snapshot = Snapshot.build(updated)

    def delete(self, item_ids: list[str]):
        """Delete items by their ids."""
        with self._write_lock:
            updated = dict(self.snapshot.items)
            for item_id in item_ids:
                updated.pop(item_id, None)
            self.snapshot = Snapshot.build(updated)

    def clear(self):
        """Clear the vector database."""
        with self._write_lock:
            self.snapshot = Snapshot.build({})

    def __len__(self) -> int:
        return len(self.snapshot.ids)
