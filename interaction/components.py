import logging
from typing import Any, List, Optional, Set

import numpy as np

from spacetime.events import EventStore
from spacetime.neighbors import SpatioTemporalIndex

logger = logging.getLogger(__name__)


def build_cluster_labels(points: EventStore, spatial_threshold: float, temporal_threshold: Any,
                         index: Optional[SpatioTemporalIndex] = None) -> np.ndarray:
    """Cluster number of every event, positionally aligned with the store.

    Each cluster starts from the first unassigned event and grows its frontier
    by neighbor queries against the full store until no new event is found.
    Because the neighbor relation is symmetric, a frontier can never reach an
    event that an earlier cluster already claimed.
    """
    if index is None:
        index = SpatioTemporalIndex(points, spatial_threshold, temporal_threshold)

    n = len(points)
    labels = np.full(n, -1, dtype=np.int64)
    cluster_id = 0

    for seed in range(n):
        if labels[seed] >= 0:
            continue

        labels[seed] = cluster_id
        frontier = np.array([seed], dtype=np.int64)
        while frontier.size:
            found = np.unique(np.concatenate(list(index.query(frontier))))
            frontier = found[labels[found] != cluster_id]
            labels[frontier] = cluster_id

        cluster_id += 1

    logger.debug(f"Partitioned {n} events into {cluster_id} clusters")
    return labels


def group_labels(points: EventStore, labels: np.ndarray) -> List[Set[int]]:
    """Turn positional cluster labels into sets of event ids, ordered by cluster number"""
    order = np.argsort(labels, kind="stable")
    boundaries = np.flatnonzero(np.diff(labels[order])) + 1
    return [set(points.ids[chunk].tolist()) for chunk in np.split(order, boundaries)]


def build_clusters(points: EventStore, spatial_threshold: float, temporal_threshold: Any) -> List[Set[int]]:
    """Partition events into maximal clusters of the near-repeat adjacency relation"""
    labels = build_cluster_labels(points, spatial_threshold, temporal_threshold)
    clusters = group_labels(points, labels)

    sizes = [len(c) for c in clusters]
    logger.info(
        f"Found {len(clusters)} clusters ({sum(1 for s in sizes if s > 1)} with links, "
        f"largest has {max(sizes)} events)"
    )
    return clusters
