import logging
from typing import Any, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import LineString

from spacetime.events import EventStore
from spacetime.neighbors import SpatioTemporalIndex

logger = logging.getLogger(__name__)

LINE_COLUMNS = ["cluster_id", "node_count", "source_id", "target_id", "length"]


def empty_lines(crs: Optional[Any] = None) -> gpd.GeoDataFrame:
    """Line layer with the standard columns and no rows"""
    return gpd.GeoDataFrame(pd.DataFrame(columns=LINE_COLUMNS), geometry=gpd.GeoSeries([]), crs=crs)


def synthesize(cluster: EventStore, spatial_threshold: float, temporal_threshold: Any,
               cluster_id: int = 0, crs: Optional[Any] = None) -> gpd.GeoDataFrame:
    """Interaction lines between directly-near events of one cluster.

    Lines join each event to its neighbors inside the cluster. Zero-length
    lines (coincident events) are dropped and each unordered coordinate pair
    appears once. Every line carries the cluster's event count.
    """
    node_count = len(cluster)
    if node_count < 2:
        return empty_lines(crs)

    index = SpatioTemporalIndex(cluster, spatial_threshold, temporal_threshold)
    coords = cluster.coords
    seen = set()
    rows = []
    coincident = 0

    for origin, found in zip(range(node_count), index.query(np.arange(node_count))):
        start = (float(coords[origin, 0]), float(coords[origin, 1]))
        for other in found:
            if other == origin:
                continue
            end = (float(coords[other, 0]), float(coords[other, 1]))
            if start == end:
                coincident += 1
                continue

            key = (start, end) if start < end else (end, start)
            if key in seen:
                continue
            seen.add(key)

            rows.append({
                "cluster_id": cluster_id,
                "node_count": node_count,
                "source_id": int(cluster.ids[origin]),
                "target_id": int(cluster.ids[other]),
                "length": float(np.hypot(end[0] - start[0], end[1] - start[1])),
                "geometry": LineString([start, end])
            })

    if coincident:
        # every coincident pair is seen from both ends
        logger.warning(f"Cluster {cluster_id}: dropped {coincident // 2} zero-length links between coincident events")

    if not rows:
        return empty_lines(crs)
    return gpd.GeoDataFrame(rows, geometry="geometry", crs=crs)
