import numpy as np

from .base import Metric


def score(matrix: np.ndarray, query: np.ndarray, metric: Metric) -> np.ndarray:
    """Score every row of `matrix` against `query`. Higher is more similar.

    Euclidean scores are negated distances. Zero vectors have cosine similarity 0.
    """
    if metric is Metric.DOT:
        return matrix @ query
    if metric is Metric.EUCLIDEAN:
        return -np.linalg.norm(matrix - query, axis=1)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
