import logging
from typing import Any, Iterable, Iterator, Set

import numpy as np
from scipy.spatial.distance import cdist
from sklearn.neighbors import KDTree

from config import ANALYSIS_CONFIG
from .events import Event, EventStore, validate_thresholds

logger = logging.getLogger(__name__)

# KD-tree radius is widened slightly, exact filtering happens afterwards
SEARCH_RADIUS_SLACK = 1e-9


def planar_distances(origins: np.ndarray, others: np.ndarray) -> np.ndarray:
    """Euclidean distance matrix between two coordinate arrays.

    Every distance in the package goes through this function so that the
    neighbor relation and the band aggregation agree on boundary values.
    """
    origins = np.atleast_2d(np.asarray(origins, dtype=float))
    others = np.atleast_2d(np.asarray(others, dtype=float))
    return cdist(origins, others, metric="euclidean")


def is_near(distance, lag, spatial_threshold: float, temporal_threshold: float):
    """Neighbor relation: both thresholds are inclusive"""
    return (distance <= spatial_threshold) & (np.abs(lag) <= temporal_threshold)


def neighbors(origin: Event, pool: EventStore, spatial_threshold: float,
              temporal_threshold: Any) -> Set[int]:
    """Ids of pool events within the spatial threshold and the temporal window of origin.

    The origin itself is returned when it is a member of the pool; callers
    exclude it where needed.
    """
    spatial, temporal = validate_thresholds(spatial_threshold, temporal_threshold)

    lags = pool.days - origin.day
    window = np.abs(lags) <= temporal
    if not window.any():
        return set()

    candidates = np.flatnonzero(window)
    distances = planar_distances([[origin.x, origin.y]], pool.coords[candidates])[0]
    near = candidates[distances <= spatial]
    return set(pool.ids[near].tolist())


class SpatioTemporalIndex:
    """KD-tree backed neighbor lookup over an immutable event store.

    Results are positional indices into the store and match :func:`neighbors`
    exactly; the tree only narrows the candidate set.
    """

    def __init__(self, store: EventStore, spatial_threshold: float, temporal_threshold: Any,
                 leaf_size: int = None):
        self.store = store
        self.spatial_threshold, self.temporal_threshold = validate_thresholds(
            spatial_threshold, temporal_threshold
        )
        self.search_radius = self.spatial_threshold * (1 + SEARCH_RADIUS_SLACK) + SEARCH_RADIUS_SLACK
        self.tree = KDTree(store.coords, leaf_size=leaf_size or ANALYSIS_CONFIG["leaf_size"])
        logger.debug(f"Built KD-tree over {len(store)} events "
                     f"({self.spatial_threshold:g} m / {self.temporal_threshold:g} days)")

    def query(self, positions: Iterable[int]) -> Iterator[np.ndarray]:
        """Yield the neighbor positions of each origin position (origin included)"""
        positions = np.asarray(list(positions) if not isinstance(positions, np.ndarray) else positions,
                               dtype=np.int64)
        if positions.size == 0:
            return

        coords = self.store.coords
        days = self.store.days
        candidate_lists = self.tree.query_radius(coords[positions], r=self.search_radius)

        for origin, candidates in zip(positions, candidate_lists):
            candidates = np.asarray(candidates, dtype=np.int64)
            distances = planar_distances(coords[origin], coords[candidates])[0]
            lags = days[candidates] - days[origin]
            yield candidates[is_near(distances, lags, self.spatial_threshold, self.temporal_threshold)]

    def neighbor_ids(self, event_id: int) -> Set[int]:
        """Neighbor ids of one event, the event itself excluded"""
        origin = self.store.position(event_id)
        found = next(self.query([origin]))
        return set(self.store.ids[found[found != origin]].tolist())
