import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from config import ANALYSIS_CONFIG, CLASSIFICATION_CONFIG, FILE_PATTERNS, PROCESSED_DATA_DIR
from spacetime.events import EventStore
from spacetime.exceptions import ConfigurationError
from .bands import BandSequence, PairBandCounter, as_band_sequence, observed_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnoxConfig:
    """Parameters of one near-repeat test run"""
    spatial_interval: float
    spatial_bands: int
    temporal_interval: float
    temporal_bands: int
    iterations: int = 99
    seed: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.iterations, (int, np.integer)) or isinstance(self.iterations, bool) \
                or self.iterations <= 0:
            raise ConfigurationError(f"Iterations must be a positive integer, got {self.iterations!r}")
        if self.seed is not None and (not isinstance(self.seed, (int, np.integer)) or self.seed < 0):
            raise ConfigurationError(f"Seed must be a non-negative integer, got {self.seed!r}")
        # builds and validates both band sequences
        self.spatial_sequence()
        self.temporal_sequence()
        object.__setattr__(self, "spatial_interval", float(self.spatial_interval))
        object.__setattr__(self, "temporal_interval", float(self.temporal_interval))

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "KnoxConfig":
        known = {"spatial_interval", "spatial_bands", "temporal_interval", "temporal_bands", "iterations", "seed"}
        unknown = set(params) - known
        if unknown:
            raise ConfigurationError(f"Unknown Knox parameter(s): {', '.join(sorted(unknown))}")
        missing = {"spatial_interval", "spatial_bands", "temporal_interval", "temporal_bands"} - set(params)
        if missing:
            raise ConfigurationError(f"Missing Knox parameter(s): {', '.join(sorted(missing))}")
        return cls(**params)

    def spatial_sequence(self) -> BandSequence:
        return BandSequence.from_interval(self.spatial_interval, self.spatial_bands, unit="m")

    def temporal_sequence(self) -> BandSequence:
        return BandSequence.from_interval(self.temporal_interval, self.temporal_bands, unit="days")


@dataclass
class KnoxResult:
    """Observed band matrix, null distribution and per-cell p-values"""
    observed: np.ndarray
    null_counts: np.ndarray  # shape (iterations, spatial bands, temporal bands)
    p_values: np.ndarray
    spatial_bands: BandSequence
    temporal_bands: BandSequence
    iterations: int
    seed: Optional[int]
    entropy: int
    n_events: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def null_mean(self) -> np.ndarray:
        return self.null_counts.mean(axis=0)

    @property
    def null_median(self) -> np.ndarray:
        return np.median(self.null_counts, axis=0)

    @property
    def knox_ratios(self) -> np.ndarray:
        """Observed count over the median of the simulated counts (NaN where the median is 0)"""
        median = self.null_median
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(median > 0, self.observed / np.where(median > 0, median, 1), np.nan)

    def observed_frame(self) -> pd.DataFrame:
        return observed_frame(self.observed, self.spatial_bands, self.temporal_bands, name="observed")

    def p_value_frame(self) -> pd.DataFrame:
        return observed_frame(self.p_values, self.spatial_bands, self.temporal_bands, name="p_value")

    def significant_cells(self, alpha: float = None) -> np.ndarray:
        """Boolean matrix of cells with p-value below alpha"""
        if alpha is None:
            alpha = CLASSIFICATION_CONFIG["significance_level"]
        return self.p_values < alpha

    def to_frame(self) -> pd.DataFrame:
        """Long-format table, one row per band cell"""
        spatial_labels = self.spatial_bands.labels()
        temporal_labels = self.temporal_bands.labels()
        null_mean = self.null_mean
        ratios = self.knox_ratios

        rows = []
        for i, distance in enumerate(spatial_labels):
            for j, lag in enumerate(temporal_labels):
                rows.append({
                    "distance": distance,
                    "time_lag": lag,
                    "distance_lower": float(self.spatial_bands.edges[i]),
                    "lag_lower": float(self.temporal_bands.edges[j]),
                    "observed": int(self.observed[i, j]),
                    "null_mean": float(null_mean[i, j]),
                    "knox_ratio": float(ratios[i, j]),
                    "p_value": float(self.p_values[i, j])
                })
        return pd.DataFrame(rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_events": self.n_events,
            "iterations": self.iterations,
            "seed": self.seed,
            "entropy": str(self.entropy),
            "spatial_edges": self.spatial_bands.edges.tolist(),
            "temporal_edges": self.temporal_bands.edges.tolist(),
            "spatial_labels": self.spatial_bands.labels(),
            "temporal_labels": self.temporal_bands.labels(),
            "observed": self.observed.tolist(),
            "null_mean": self.null_mean.tolist(),
            "p_values": self.p_values.tolist(),
            "metadata": self.metadata
        }


def _simulate_iteration(counter: PairBandCounter, days: np.ndarray,
                        seed_sequence: np.random.SeedSequence) -> np.ndarray:
    """One draw of the null distribution: same locations, permuted dates"""
    rng = np.random.default_rng(seed_sequence)
    return counter.count(rng.permutation(days))


def knox_test(points: EventStore, spatial_edges: Union[BandSequence, Sequence[float]],
              temporal_edges: Union[BandSequence, Sequence[float]], iterations: int,
              seed: Optional[int] = None, n_jobs: Optional[int] = None) -> KnoxResult:
    """Monte Carlo near-repeat test over distance and time-lag bands.

    Dates are permuted over the fixed locations ``iterations`` times and each
    cell's p-value is the share of simulated counts at least as large as the
    observed one. Every iteration draws from its own stream spawned from the
    master seed, so results do not depend on ``n_jobs``.
    """
    if not isinstance(iterations, (int, np.integer)) or isinstance(iterations, bool) or iterations <= 0:
        raise ConfigurationError(f"Iterations must be a positive integer, got {iterations!r}")
    spatial_bands = as_band_sequence(spatial_edges, unit="m")
    temporal_bands = as_band_sequence(temporal_edges, unit="days")
    if n_jobs is None:
        n_jobs = ANALYSIS_CONFIG["n_jobs"]

    counter = PairBandCounter(points.coords, spatial_bands, temporal_bands)
    observed = counter.count(points.days)
    logger.info(f"Observed {counter.n_pairs} pairs over {observed.shape[0]}x{observed.shape[1]} bands")

    master = np.random.SeedSequence(seed)
    streams = master.spawn(iterations)
    days = np.asarray(points.days)

    if n_jobs == 1:
        simulated = []
        report_every = max(1, iterations // 10)
        for k, stream in enumerate(streams, start=1):
            simulated.append(_simulate_iteration(counter, days, stream))
            if k % report_every == 0 or k == iterations:
                logger.debug(f"Monte Carlo iteration {k}/{iterations}")
    else:
        logger.info(f"Running {iterations} Monte Carlo iterations with n_jobs={n_jobs}")
        simulated = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_simulate_iteration)(counter, days, stream) for stream in streams
        )

    null_counts = np.stack(simulated)
    p_values = (null_counts >= observed[None, :, :]).sum(axis=0) / iterations

    return KnoxResult(
        observed=observed,
        null_counts=null_counts,
        p_values=p_values,
        spatial_bands=spatial_bands,
        temporal_bands=temporal_bands,
        iterations=iterations,
        seed=seed,
        entropy=master.entropy,
        n_events=len(points)
    )


class NearRepeatAnalyzer:
    def __init__(self, n_jobs: Optional[int] = None):
        self.n_jobs = n_jobs if n_jobs is not None else ANALYSIS_CONFIG["n_jobs"]
        self.results = {}

    def run(self, points: EventStore, config: KnoxConfig, name: str = "default") -> KnoxResult:
        """Run the near-repeat test for one parameter set"""
        logger.info(
            f"Knox test '{name}': {len(points)} events, "
            f"{config.spatial_bands} x {config.spatial_interval:g} m bands, "
            f"{config.temporal_bands} x {config.temporal_interval:g} day bands, "
            f"{config.iterations} iterations"
        )
        start = datetime.now()
        result = knox_test(
            points,
            config.spatial_sequence(),
            config.temporal_sequence(),
            iterations=config.iterations,
            seed=config.seed,
            n_jobs=self.n_jobs
        )
        result.metadata.update({
            "name": name,
            "date_range": {k: v.isoformat() for k, v in points.date_range().items()},
            "duration_seconds": (datetime.now() - start).total_seconds()
        })

        n_significant = int(result.significant_cells().sum())
        logger.info(f"Knox test '{name}' finished: {n_significant} significant cells "
                    f"of {result.p_values.size}")
        self.results[name] = result
        return result

    def summarize(self, result: KnoxResult, alpha: float = None) -> List[Dict[str, Any]]:
        """Significant cells sorted by Knox ratio"""
        table = result.to_frame()
        significant = table[result.significant_cells(alpha).ravel()]
        return significant.sort_values("knox_ratio", ascending=False).to_dict(orient="records")

    def export_results(self, result: KnoxResult, filename: str = None, output_dir=None) -> str:
        """Export a Knox result to JSON"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = FILE_PATTERNS["knox_results"].format(
                profile=result.metadata.get("name", "default"), timestamp=timestamp
            )

        output_dir = Path(output_dir or PROCESSED_DATA_DIR)
        output_dir.mkdir(parents=True, exist_ok=True)
        filepath = output_dir / filename
        with open(filepath, "w") as f:
            json.dump(result.to_dict(), f, indent=2)

        logger.info(f"Knox results exported to {filepath}")
        return str(filepath)
