import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from config import ANALYSIS_CONFIG
from spacetime.events import EventStore
from spacetime.exceptions import ConfigurationError
from spacetime.neighbors import planar_distances

logger = logging.getLogger(__name__)


class BandSequence:
    """Ordered band edges starting at 0.

    Band ``k`` covers ``[edges[k], edges[k+1])``; the last band is open-ended,
    so every non-negative value falls in exactly one band.
    """

    def __init__(self, edges: Sequence[float], unit: str = ""):
        try:
            edges = np.asarray(edges, dtype=float).ravel()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Band edges must be numeric: {e}") from e

        if edges.size == 0:
            raise ConfigurationError("Band sequence needs at least one edge")
        if not np.isfinite(edges).all():
            raise ConfigurationError("Band edges must be finite")
        if edges[0] != 0:
            raise ConfigurationError(f"Band edges must start at 0, got {edges[0]}")
        if edges.size > 1 and not np.all(np.diff(edges) > 0):
            raise ConfigurationError(f"Band edges must be strictly increasing: {edges.tolist()}")

        self.edges = edges
        self.edges.setflags(write=False)
        self.unit = unit

    @classmethod
    def from_interval(cls, interval: float, bands: int, unit: str = "") -> "BandSequence":
        """``bands`` equal-width bands of size ``interval``, the last one open-ended"""
        if not isinstance(bands, (int, np.integer)) or isinstance(bands, bool) or bands < 1:
            raise ConfigurationError(f"Number of bands must be a positive integer, got {bands!r}")
        try:
            width = float(interval)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Band interval must be numeric, got {interval!r}") from e
        if not np.isfinite(width) or width <= 0:
            raise ConfigurationError(f"Band interval must be positive, got {interval!r}")
        return cls(np.arange(bands) * width, unit=unit)

    def __len__(self) -> int:
        return len(self.edges)

    def __eq__(self, other) -> bool:
        return isinstance(other, BandSequence) and np.array_equal(self.edges, other.edges)

    def __repr__(self) -> str:
        return f"BandSequence({self.edges.tolist()}, unit={self.unit!r})"

    def locate(self, values: Union[float, np.ndarray]) -> np.ndarray:
        """Band index of each value (lower edge inclusive, upper edge exclusive)"""
        return np.searchsorted(self.edges, values, side="right") - 1

    def labels(self) -> List[str]:
        def fmt(value):
            return f"{value:g}"

        labels = []
        for k, lower in enumerate(self.edges):
            if k + 1 < len(self.edges):
                labels.append(f"[{fmt(lower)}, {fmt(self.edges[k + 1])})")
            else:
                labels.append(f"[{fmt(lower)}, inf)")
        return labels


def as_band_sequence(bands: Union[BandSequence, Sequence[float]], unit: str = "") -> BandSequence:
    if isinstance(bands, BandSequence):
        return bands
    return BandSequence(bands, unit=unit)


class PairBandCounter:
    """Counts unordered event pairs per (spatial band, temporal band).

    Pairs are enumerated in row blocks of the upper triangle of the distance
    matrix so that memory stays bounded. Spatial band codes only depend on the
    locations and are cached between calls when the pair count allows it,
    which makes repeated counting with permuted dates cheap.
    """

    def __init__(self, coords: np.ndarray, spatial_bands: BandSequence, temporal_bands: BandSequence,
                 block_elements: Optional[int] = None, max_cached_pairs: Optional[int] = None):
        self.coords = np.asarray(coords, dtype=float)
        self.spatial_bands = spatial_bands
        self.temporal_bands = temporal_bands
        self.n = len(self.coords)
        self.n_pairs = self.n * (self.n - 1) // 2
        self.shape = (len(spatial_bands), len(temporal_bands))

        block_elements = block_elements or ANALYSIS_CONFIG["block_elements"]
        self.block_rows = max(1, block_elements // max(self.n, 1))
        self.blocks = [
            (start, min(start + self.block_rows, self.n - 1))
            for start in range(0, max(self.n - 1, 0), self.block_rows)
        ]

        if max_cached_pairs is None:
            max_cached_pairs = ANALYSIS_CONFIG["max_cached_pairs"]
        self._spatial_cache = None
        if self.n_pairs <= max_cached_pairs:
            self._spatial_cache = [self._spatial_codes(start, stop) for start, stop in self.blocks]
        else:
            logger.info(f"{self.n_pairs} pairs exceed the cache limit, spatial bands are recomputed per count")

    def _upper_mask(self, start: int, stop: int) -> np.ndarray:
        rows = np.arange(start, stop)[:, None]
        cols = np.arange(start, self.n)[None, :]
        return cols > rows

    def _spatial_codes(self, start: int, stop: int) -> np.ndarray:
        distances = planar_distances(self.coords[start:stop], self.coords[start:])
        codes = self.spatial_bands.locate(distances[self._upper_mask(start, stop)])
        return codes.astype(np.int32)

    def count(self, days: np.ndarray) -> np.ndarray:
        """Observed matrix for the given per-event day numbers"""
        days = np.asarray(days, dtype=np.int64)
        if len(days) != self.n:
            raise ValueError(f"Expected {self.n} dates, got {len(days)}")

        n_spatial, n_temporal = self.shape
        counts = np.zeros(n_spatial * n_temporal, dtype=np.int64)

        for k, (start, stop) in enumerate(self.blocks):
            mask = self._upper_mask(start, stop)
            if self._spatial_cache is not None:
                spatial_codes = self._spatial_cache[k]
            else:
                spatial_codes = self._spatial_codes(start, stop)

            lags = np.abs(days[start:stop, None] - days[None, start:])[mask]
            temporal_codes = self.temporal_bands.locate(lags)
            counts += np.bincount(spatial_codes * n_temporal + temporal_codes,
                                  minlength=n_spatial * n_temporal)

        return counts.reshape(self.shape)


def observed_frame(matrix: np.ndarray, spatial_bands: BandSequence, temporal_bands: BandSequence,
                   name: str = "count") -> pd.DataFrame:
    """Label a band matrix with its band intervals"""
    frame = pd.DataFrame(
        matrix,
        index=pd.Index(spatial_bands.labels(), name="distance"),
        columns=pd.Index(temporal_bands.labels(), name="time_lag")
    )
    frame.attrs["value"] = name
    return frame


def aggregate(points: EventStore, spatial_edges: Union[BandSequence, Sequence[float]],
              temporal_edges: Union[BandSequence, Sequence[float]]) -> pd.DataFrame:
    """Observed matrix of unordered pairs per distance band and time-lag band"""
    spatial_bands = as_band_sequence(spatial_edges, unit="m")
    temporal_bands = as_band_sequence(temporal_edges, unit="days")

    counter = PairBandCounter(points.coords, spatial_bands, temporal_bands)
    matrix = counter.count(points.days)
    logger.debug(f"Aggregated {counter.n_pairs} pairs into a {matrix.shape} band matrix")
    return observed_frame(matrix, spatial_bands, temporal_bands)
