import logging
import threading
from dataclasses import dataclass
from typing import Any

import faiss
import numpy as np
from django.core.exceptions import ImproperlyConfigured

from django_ai_agents.conf import get_setting
from django_ai_agents.exceptions import IndexPreconditionError

from ..schema import EmbeddedChunk, SearchResult
from .base import BaseStorageQuerySet, Metric, StorageProvider, matches_metadata

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaissSnapshot:
    items: dict[str, EmbeddedChunk]
    ids: tuple[str, ...]
    # None while the corpus is smaller than the provider's minimum size
    index: Any
    # IndexIVFFlat does not own its quantizer, so it is kept alive here
    quantizer: Any


class FaissQuerySet(BaseStorageQuerySet["FaissProvider"]):
    overfetch_multiplier: int = 3

    def run_query(self):
        embedding, filter_map = self.split_filters()
        storage_provider = self.storage_provider
        snapshot = storage_provider.snapshot

        if snapshot.index is None:
            raise IndexPreconditionError(
                f"Approximate index needs at least {storage_provider.min_corpus_size} "
                f"items before it can be queried, it has {len(snapshot.ids)}",
                index=storage_provider.index_name,
            )

        offset = self.offset or 0
        wanted = offset + (self.limit if self.limit is not None else len(snapshot.ids))
        total = len(snapshot.ids)
        fetch = min(total, wanted * self.overfetch_multiplier if filter_map else wanted)
        if fetch < 1:
            return

        query = storage_provider.prepare(np.asarray([embedding], dtype="float32"))
        nprobe = storage_provider.nprobe

        while True:
            params = faiss.SearchParametersIVF(nprobe=nprobe)
            distances, labels = snapshot.index.search(query, fetch, params=params)
            results = []
            for distance, label in zip(distances[0], labels[0], strict=True):
                if label < 0:
                    continue
                item = snapshot.items[snapshot.ids[label]]
                if filter_map and not matches_metadata(item, filter_map):
                    continue
                results.append(
                    SearchResult(
                        score=storage_provider.to_score(float(distance)),
                        id=item.id,
                        item=item,
                    )
                )
            if len(results) >= wanted or (
                fetch >= total and nprobe >= storage_provider.nlist
            ):
                break
            # Short of results: search every cell for every item
            fetch = total
            nprobe = storage_provider.nlist

        yield from results[offset:wanted]


class FaissProvider(StorageProvider):
    """Approximate storage backed by a FAISS inverted file (IVF) index.

    IVF indexes are trained by clustering the stored vectors into `nlist` cells, so the
    corpus must hold at least `nlist` items before queries are possible. Querying a
    smaller corpus raises IndexPreconditionError. Results may omit true neighbours
    that live in cells outside the `nprobe` searched cells.
    """

    base_queryset_cls = FaissQuerySet
    exact = False

    def __init__(
        self,
        *,
        dimensions: int,
        nlist: int | None = None,
        nprobe: int | None = None,
        **kwargs,
    ):
        super().__init__(dimensions=dimensions, **kwargs)
        self.nlist = nlist if nlist is not None else get_setting("FAISS_NLIST")
        if self.nlist < 1:
            raise ImproperlyConfigured("nlist must be at least 1")
        self.nprobe = nprobe or max(1, self.nlist // 4)
        if self.nprobe > self.nlist:
            raise ImproperlyConfigured("nprobe cannot exceed nlist")
        self.min_corpus_size = self.nlist

        self._write_lock = threading.Lock()
        self.snapshot = FaissSnapshot(items={}, ids=(), index=None, quantizer=None)

    @property
    def faiss_metric(self):
        if self.metric is Metric.EUCLIDEAN:
            return faiss.METRIC_L2
        return faiss.METRIC_INNER_PRODUCT

    def prepare(self, matrix: np.ndarray) -> np.ndarray:
        matrix = np.ascontiguousarray(matrix, dtype="float32")
        if self.metric is Metric.COSINE:
            faiss.normalize_L2(matrix)
        return matrix

    def to_score(self, distance: float) -> float:
        # FAISS reports squared L2 distances
        if self.metric is Metric.EUCLIDEAN:
            return -float(np.sqrt(max(distance, 0.0)))
        return distance

    def _build(self, items: dict[str, EmbeddedChunk]) -> FaissSnapshot:
        ids = tuple(items)
        if len(ids) < self.min_corpus_size:
            return FaissSnapshot(items=items, ids=ids, index=None, quantizer=None)

        matrix = self.prepare(np.array([items[item_id].vector for item_id in ids]))
        if self.faiss_metric == faiss.METRIC_L2:
            quantizer = faiss.IndexFlatL2(self.dimensions)
        else:
            quantizer = faiss.IndexFlatIP(self.dimensions)
        index = faiss.IndexIVFFlat(quantizer, self.dimensions, self.nlist, self.faiss_metric)
        index.train(matrix)
        index.add(matrix)
        logger.debug(f"Trained IVF index with {len(ids)} vectors in {self.nlist} cells")
        return FaissSnapshot(items=items, ids=ids, index=index, quantizer=quantizer)

    def add(self, items: list["EmbeddedChunk"]):
        items = list(items)
        with self._write_lock:
            self.check_dimensions(item.vector for item in items)
            updated = dict(self.snapshot.items)
            for item in items:
                updated[item.id] = item
            self.snapshot = self._build(updated)

    def delete(self, item_ids: list[str]):
        with self._write_lock:
            updated = dict(self.snapshot.items)
            for item_id in item_ids:
                updated.pop(item_id, None)
            self.snapshot = self._build(updated)

    def clear(self):
        with self._write_lock:
            self.snapshot = self._build({})

    def __len__(self) -> int:
        return len(self.snapshot.ids)
