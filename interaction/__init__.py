"""
Spatio-temporal interaction lines between near-repeat events.

- components.py: connected clusters of the near-repeat adjacency relation
- lines.py: deduplicated interaction lines inside a cluster
- classification.py: Fisher-Jenks natural breaks over cluster sizes
- analysis.py: InteractionAnalyzer tying the steps together

Usage:
    from interaction import InteractionAnalyzer, InteractionConfig
    result = InteractionAnalyzer().run(store, InteractionConfig(150.0, 7))
"""

from .analysis import InteractionAnalyzer, InteractionConfig, InteractionResult
from .classification import Classification, classify, fisher_jenks_breaks
from .components import build_cluster_labels, build_clusters
from .lines import synthesize

__all__ = [
    "InteractionAnalyzer",
    "InteractionConfig",
    "InteractionResult",
    "Classification",
    "classify",
    "fisher_jenks_breaks",
    "build_cluster_labels",
    "build_clusters",
    "synthesize"
]
