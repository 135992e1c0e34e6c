from dataclasses import dataclass
from typing import Dict, Sequence

import numpy as np

from config import CLASSIFICATION_CONFIG
from spacetime.exceptions import ClassificationError, ConfigurationError


@dataclass(frozen=True)
class Classification:
    """Natural-breaks classes of cluster sizes.

    ``breaks`` has ``n_classes + 1`` ordered values from the minimum to the
    maximum size. Class ``c`` (1-based) covers ``[breaks[c-1], breaks[c])``,
    the top class being closed at the maximum.
    """
    breaks: np.ndarray
    categories: np.ndarray
    n_classes: int

    def assign(self, values) -> np.ndarray:
        """Category of arbitrary values, clipped to the outer classes"""
        return assign_categories(self.breaks, values)

    def class_counts(self) -> Dict[int, int]:
        return {c: int(np.sum(self.categories == c)) for c in range(1, self.n_classes + 1)}


def assign_categories(breaks: np.ndarray, values) -> np.ndarray:
    """1-based class of each value given k+1 breaks"""
    values = np.asarray(values, dtype=float)
    n_classes = len(breaks) - 1
    return np.clip(np.searchsorted(breaks[:-1], values, side="right"), 1, n_classes).astype(np.int64)


def fisher_jenks_breaks(values: Sequence[float], n_classes: int) -> np.ndarray:
    """Fisher's exact natural breaks minimizing within-class squared deviation.

    Works on the distinct values weighted by their frequency, so equal values
    always land in the same class.
    """
    values = np.asarray(values, dtype=float)
    unique, weights = np.unique(values, return_counts=True)
    m = len(unique)

    weights = weights.astype(float)
    cum_w = np.concatenate([[0.0], np.cumsum(weights)])
    cum_x = np.concatenate([[0.0], np.cumsum(weights * unique)])
    cum_x2 = np.concatenate([[0.0], np.cumsum(weights * unique ** 2)])

    def deviation(first, last):
        # squared deviation of the class holding unique[first..last]
        w = cum_w[last + 1] - cum_w[first]
        s = cum_x[last + 1] - cum_x[first]
        s2 = cum_x2[last + 1] - cum_x2[first]
        return s2 - s * s / w

    cost = np.full((n_classes, m), np.inf)
    first_of_class = np.zeros((n_classes, m), dtype=np.int64)
    cost[0] = deviation(np.zeros(m, dtype=np.int64), np.arange(m))

    for c in range(1, n_classes):
        for last in range(c, m):
            first = np.arange(c, last + 1)
            total = cost[c - 1, first - 1] + deviation(first, last)
            best = int(np.argmin(total))
            cost[c, last] = total[best]
            first_of_class[c, last] = first[best]

    lower_bounds = []
    last = m - 1
    for c in range(n_classes - 1, 0, -1):
        first = first_of_class[c, last]
        lower_bounds.append(unique[first])
        last = first - 1
    lower_bounds.reverse()

    return np.array([unique[0]] + lower_bounds + [unique[-1]], dtype=float)


def classify(cluster_sizes: Sequence[int], k: int = None) -> Classification:
    """Assign every cluster size to one of k natural-breaks classes"""
    if k is None:
        k = CLASSIFICATION_CONFIG["n_classes"]
    if not isinstance(k, (int, np.integer)) or isinstance(k, bool) or k < 1:
        raise ConfigurationError(f"Number of classes must be a positive integer, got {k!r}")

    sizes = np.asarray(list(cluster_sizes), dtype=float)
    if sizes.size == 0:
        raise ClassificationError("No cluster sizes to classify")
    if not np.isfinite(sizes).all():
        raise ClassificationError("Cluster sizes must be finite")

    n_distinct = len(np.unique(sizes))
    if n_distinct < k:
        raise ClassificationError(
            f"Cannot form {k} classes from {n_distinct} distinct cluster size(s) "
            f"{np.unique(sizes).astype(int).tolist()}"
        )

    breaks = fisher_jenks_breaks(sizes, k)
    return Classification(breaks=breaks, categories=assign_categories(breaks, sizes), n_classes=k)
