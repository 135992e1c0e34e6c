"""
Near-repeat (Knox) analysis with Monte Carlo significance.

- bands.py: band sequences and the distance/time-lag pair aggregator
- knox.py: permutation test, result object and the NearRepeatAnalyzer

Usage:
    from near_repeat import NearRepeatAnalyzer, KnoxConfig
    result = NearRepeatAnalyzer().run(store, KnoxConfig.from_dict(params))
"""

from .bands import BandSequence, PairBandCounter, aggregate, observed_frame
from .knox import KnoxConfig, KnoxResult, NearRepeatAnalyzer, knox_test

__all__ = [
    "BandSequence",
    "PairBandCounter",
    "aggregate",
    "observed_frame",
    "KnoxConfig",
    "KnoxResult",
    "NearRepeatAnalyzer",
    "knox_test"
]
