import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from config import CLASSIFICATION_CONFIG, FILE_PATTERNS, INGESTION_CONFIG, PROCESSED_DATA_DIR
from spacetime.events import EventStore, validate_thresholds
from spacetime.exceptions import ConfigurationError
from .classification import Classification, classify
from .components import build_clusters
from .lines import empty_lines, synthesize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionConfig:
    """Thresholds of the interaction graph, inclusive on both dimensions"""
    spatial_threshold: float
    temporal_threshold: float
    n_classes: int = CLASSIFICATION_CONFIG["n_classes"]

    def __post_init__(self):
        spatial, temporal = validate_thresholds(self.spatial_threshold, self.temporal_threshold)
        object.__setattr__(self, "spatial_threshold", spatial)
        object.__setattr__(self, "temporal_threshold", temporal)
        if not isinstance(self.n_classes, (int, np.integer)) or isinstance(self.n_classes, bool) \
                or self.n_classes < 1:
            raise ConfigurationError(f"Number of classes must be a positive integer, got {self.n_classes!r}")

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "InteractionConfig":
        known = {"spatial_threshold", "temporal_threshold", "n_classes"}
        unknown = set(params) - known
        if unknown:
            raise ConfigurationError(f"Unknown interaction parameter(s): {', '.join(sorted(unknown))}")
        missing = {"spatial_threshold", "temporal_threshold"} - set(params)
        if missing:
            raise ConfigurationError(f"Missing interaction parameter(s): {', '.join(sorted(missing))}")
        return cls(**params)


@dataclass
class InteractionResult:
    clusters: List[Set[int]]
    assignments: pd.DataFrame
    lines: gpd.GeoDataFrame
    classification: Classification
    config: InteractionConfig
    metadata: Dict[str, Any] = field(default_factory=dict)

    def cluster_summary(self) -> pd.DataFrame:
        """One row per linked cluster with its size, line count and category"""
        if self.lines.empty:
            return pd.DataFrame(columns=["cluster_id", "node_count", "n_lines", "category"])
        summary = self.lines.groupby("cluster_id").agg(
            node_count=("node_count", "first"),
            n_lines=("geometry", "size"),
            category=("category", "first")
        ).reset_index()
        return summary.sort_values("node_count", ascending=False).reset_index(drop=True)

    def filter_categories(self, min_category: int = None) -> gpd.GeoDataFrame:
        """Lines of the larger clusters only, e.g. dropping category 1 for display"""
        if min_category is None:
            min_category = CLASSIFICATION_CONFIG["min_display_category"]
        return self.lines[self.lines["category"] >= min_category].copy()


class InteractionAnalyzer:
    def __init__(self, crs: Optional[Any] = None):
        self.crs = crs if crs is not None else INGESTION_CONFIG["projected_crs"]
        self.results = {}

    def build_clusters(self, points: EventStore, config: InteractionConfig) -> List[Set[int]]:
        """Disjoint clusters of events linked through near-repeat adjacency"""
        return build_clusters(points, config.spatial_threshold, config.temporal_threshold)

    def synthesize_lines(self, points: EventStore, clusters: List[Set[int]],
                         config: InteractionConfig) -> gpd.GeoDataFrame:
        """Interaction lines of every cluster with at least two events"""
        layers = []
        for cluster_id, members in enumerate(clusters):
            if len(members) < 2:
                continue
            layer = synthesize(
                points.subset(members),
                config.spatial_threshold,
                config.temporal_threshold,
                cluster_id=cluster_id,
                crs=self.crs
            )
            if len(layer):
                layers.append(layer)

        if not layers:
            return empty_lines(self.crs)
        lines = pd.concat(layers, ignore_index=True)
        return gpd.GeoDataFrame(lines, geometry="geometry", crs=self.crs)

    def classify_lines(self, lines: gpd.GeoDataFrame, n_classes: int) -> Tuple[gpd.GeoDataFrame, Classification]:
        """Natural-breaks classes over the sizes of clusters that produced lines"""
        sizes = lines.groupby("cluster_id")["node_count"].first()
        classification = classify(sizes.to_numpy(), k=n_classes)

        lines = lines.copy()
        lines["category"] = classification.assign(lines["node_count"].to_numpy(dtype=float))
        return lines, classification

    def run(self, points: EventStore, config: InteractionConfig, name: str = "default") -> InteractionResult:
        """Clusters, interaction lines and size classes for one parameter set"""
        logger.info(
            f"Interaction graph '{name}': {len(points)} events, "
            f"{config.spatial_threshold:g} m / {config.temporal_threshold:g} days"
        )
        start = datetime.now()

        clusters = self.build_clusters(points, config)
        sizes = [len(c) for c in clusters]

        lines = self.synthesize_lines(points, clusters, config)
        logger.info(f"Synthesized {len(lines)} interaction lines")

        lines, classification = self.classify_lines(lines, config.n_classes)
        logger.info(f"Cluster size breaks: {classification.breaks.tolist()}")

        assignments = pd.DataFrame({
            "id": np.concatenate([sorted(c) for c in clusters]).astype(np.int64),
            "cluster_id": np.repeat(np.arange(len(clusters)), sizes),
            "node_count": np.repeat(sizes, sizes)
        })

        result = InteractionResult(
            clusters=clusters,
            assignments=assignments,
            lines=lines,
            classification=classification,
            config=config,
            metadata={
                "name": name,
                "n_events": len(points),
                "n_clusters": len(clusters),
                "duration_seconds": (datetime.now() - start).total_seconds()
            }
        )
        self.results[name] = result
        return result

    def export_lines(self, result: InteractionResult, filename: str = None, output_dir=None) -> str:
        """Export the interaction line layer to GeoJSON"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = FILE_PATTERNS["interaction_lines"].format(
                profile=result.metadata.get("name", "default"), timestamp=timestamp
            )

        output_dir = Path(output_dir or PROCESSED_DATA_DIR)
        output_dir.mkdir(parents=True, exist_ok=True)
        filepath = output_dir / filename
        result.lines.to_file(filepath, driver="GeoJSON")

        logger.info(f"Interaction lines exported to {filepath}")
        return str(filepath)
