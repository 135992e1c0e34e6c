"""
Shared building blocks for spatio-temporal crime event analysis.

- events.py: Event record and the validated, read-only EventStore
- neighbors.py: spatial-temporal neighbor query and KD-tree index
- exceptions.py: error taxonomy shared by the analysis packages
"""

from .events import Event, EventStore, to_day_number, to_day_numbers, validate_thresholds
from .exceptions import NearRepeatError, InputError, ConfigurationError, ClassificationError
from .neighbors import neighbors, planar_distances, is_near, SpatioTemporalIndex

__all__ = [
    "Event",
    "EventStore",
    "to_day_number",
    "to_day_numbers",
    "validate_thresholds",
    "NearRepeatError",
    "InputError",
    "ConfigurationError",
    "ClassificationError",
    "neighbors",
    "planar_distances",
    "is_near",
    "SpatioTemporalIndex"
]
