import unittest
import json
import tempfile
import numpy as np
import pandas as pd
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from config import ANALYSIS_PROFILES
from spacetime.events import EventStore
from spacetime.exceptions import ConfigurationError
from near_repeat.bands import BandSequence, PairBandCounter, aggregate
from near_repeat.knox import KnoxConfig, KnoxResult, NearRepeatAnalyzer, knox_test


def random_store(n=30, seed=0):
    rng = np.random.default_rng(seed)
    return EventStore(pd.DataFrame({
        "id": np.arange(n),
        "x": rng.uniform(0, 1000, n),
        "y": rng.uniform(0, 1000, n),
        "date": pd.Timestamp("2024-01-01") + pd.to_timedelta(rng.integers(0, 60, n), unit="D")
    }))


def edge_store():
    """Four events spaced exactly at the band edges"""
    return EventStore.from_records([
        (0, 0.0, 0.0, "2024-01-01"),
        (1, 100.0, 0.0, "2024-01-01"),
        (2, 200.0, 0.0, "2024-01-08"),
        (3, 300.0, 0.0, "2024-01-08"),
    ])


class TestBandSequence(unittest.TestCase):
    def test_from_interval(self):
        """Test equal-width bands with an open-ended last band"""
        bands = BandSequence.from_interval(100, 3, unit="m")
        self.assertEqual(bands.edges.tolist(), [0.0, 100.0, 200.0])
        self.assertEqual(len(bands), 3)
        self.assertEqual(bands.labels(), ["[0, 100)", "[100, 200)", "[200, inf)"])

    def test_locate_boundaries(self):
        """Test lower edges are inclusive and upper edges exclusive"""
        bands = BandSequence([0, 100, 200])
        located = bands.locate(np.array([0.0, 99.999, 100.0, 199.0, 200.0, 1e9]))
        self.assertEqual(located.tolist(), [0, 0, 1, 1, 2, 2])

    def test_invalid_edges(self):
        """Test malformed band sequences are rejected"""
        for edges in ([], [10, 20], [0, 5, 5], [0, -1], [0, np.inf]):
            with self.assertRaises(ConfigurationError):
                BandSequence(edges)
        with self.assertRaises(ConfigurationError):
            BandSequence.from_interval(0, 3)
        with self.assertRaises(ConfigurationError):
            BandSequence.from_interval(100, 0)

    def test_equality(self):
        """Test band sequences compare by their edges"""
        self.assertEqual(BandSequence.from_interval(7, 2), BandSequence([0, 7]))
        self.assertNotEqual(BandSequence([0, 7]), BandSequence([0, 14]))


class TestAggregation(unittest.TestCase):
    def test_hand_computed_matrix(self):
        """Test pairs lying on band edges land in the band starting at that edge"""
        observed = aggregate(edge_store(), [0, 200], [0, 7])

        # distances 100/200/300 and lags 0/7 of the six pairs
        self.assertEqual(observed.values.tolist(), [[2, 1], [0, 3]])
        self.assertEqual(observed.index.name, "distance")
        self.assertEqual(observed.columns.name, "time_lag")
        self.assertEqual(list(observed.index), ["[0, 200)", "[200, inf)"])

    def test_matrix_total(self):
        """Test every unordered pair is counted exactly once"""
        store = random_store(n=45)
        observed = aggregate(store, [0, 100, 250, 500], [0, 3, 10])
        self.assertEqual(int(observed.values.sum()), 45 * 44 // 2)

    def test_single_event(self):
        """Test a single event gives an all-zero matrix"""
        store = EventStore.from_records([(1, 0.0, 0.0, "2024-01-01")])
        observed = aggregate(store, [0, 100], [0, 7])
        self.assertEqual(int(observed.values.sum()), 0)

    def test_block_size_independence(self):
        """Test row blocking and spatial caching do not change the counts"""
        store = random_store(n=37, seed=5)
        spatial = BandSequence([0, 150, 400])
        temporal = BandSequence([0, 5, 20])

        reference = PairBandCounter(store.coords, spatial, temporal).count(store.days)
        blocked = PairBandCounter(store.coords, spatial, temporal, block_elements=50, max_cached_pairs=0)

        self.assertGreater(len(blocked.blocks), 1)
        np.testing.assert_array_equal(blocked.count(store.days), reference)

    def test_count_length_mismatch(self):
        """Test counting with a wrong number of dates"""
        store = random_store(n=5)
        counter = PairBandCounter(store.coords, BandSequence([0, 100]), BandSequence([0, 7]))
        with self.assertRaises(ValueError):
            counter.count(store.days[:3])


class TestKnoxTest(unittest.TestCase):
    def setUp(self):
        self.store = random_store(n=30, seed=11)
        self.spatial = BandSequence.from_interval(200, 3, unit="m")
        self.temporal = BandSequence.from_interval(7, 3, unit="days")

    def test_same_seed_is_idempotent(self):
        """Test identical seeds give identical null distributions"""
        first = knox_test(self.store, self.spatial, self.temporal, iterations=19, seed=7)
        second = knox_test(self.store, self.spatial, self.temporal, iterations=19, seed=7)
        np.testing.assert_array_equal(first.null_counts, second.null_counts)
        np.testing.assert_array_equal(first.p_values, second.p_values)

    def test_worker_count_independence(self):
        """Test parallel iterations reproduce the sequential result"""
        sequential = knox_test(self.store, self.spatial, self.temporal, iterations=12, seed=3, n_jobs=1)
        parallel = knox_test(self.store, self.spatial, self.temporal, iterations=12, seed=3, n_jobs=2)
        np.testing.assert_array_equal(sequential.null_counts, parallel.null_counts)

    def test_p_value_formula(self):
        """Test p-values are the share of simulated counts at least as large as observed"""
        result = knox_test(self.store, self.spatial, self.temporal, iterations=25, seed=1)
        expected = (result.null_counts >= result.observed).mean(axis=0)
        np.testing.assert_allclose(result.p_values, expected)
        self.assertEqual(result.null_counts.shape, (25, 3, 3))
        self.assertTrue(((result.p_values >= 0) & (result.p_values <= 1)).all())

    def test_locations_stay_fixed(self):
        """Test permutations keep the pairwise distances, only dates move"""
        result = knox_test(self.store, self.spatial, self.temporal, iterations=10, seed=2)
        spatial_totals = result.null_counts.sum(axis=2)
        for totals in spatial_totals:
            np.testing.assert_array_equal(totals, result.observed.sum(axis=1))

    def test_two_events_single_iteration(self):
        """Test the p-value boundary with one simulated draw on two events"""
        store = EventStore.from_records([(1, 0.0, 0.0, "2024-01-01"), (2, 50.0, 0.0, "2024-01-03")])
        result = knox_test(store, [0, 100], [0, 7], iterations=1, seed=99)
        again = knox_test(store, [0, 100], [0, 7], iterations=1, seed=99)

        # swapping two dates never changes their lag
        np.testing.assert_array_equal(result.p_values, np.ones((2, 2)))
        np.testing.assert_array_equal(result.p_values, again.p_values)
        self.assertEqual(result.observed.tolist(), [[1, 0], [0, 0]])

    def test_detects_near_repeats(self):
        """Test same-day pairs at the same place are significant"""
        records = []
        for k in range(20):
            day = pd.Timestamp("2024-01-01") + pd.Timedelta(days=10 * k)
            records.append((2 * k, 1000.0 * k, 0.0, day))
            records.append((2 * k + 1, 1000.0 * k + 1.0, 0.0, day))
        store = EventStore.from_records(records)

        result = knox_test(store, [0, 50], [0, 1], iterations=99, seed=42)
        self.assertEqual(result.observed[0, 0], 20)
        self.assertTrue(result.significant_cells(0.05)[0, 0])
        self.assertLess(result.null_mean[0, 0], result.observed[0, 0])

    def test_invalid_iterations(self):
        """Test non-positive iteration counts are rejected"""
        with self.assertRaises(ConfigurationError):
            knox_test(self.store, self.spatial, self.temporal, iterations=0)
        with self.assertRaises(ConfigurationError):
            knox_test(self.store, self.spatial, self.temporal, iterations=-5)

    def test_unseeded_run_records_entropy(self):
        """Test unseeded runs remain reproducible through the recorded entropy"""
        result = knox_test(self.store, self.spatial, self.temporal, iterations=5)
        replay = knox_test(self.store, self.spatial, self.temporal, iterations=5, seed=result.entropy)
        self.assertIsNone(result.seed)
        np.testing.assert_array_equal(result.null_counts, replay.null_counts)


class TestKnoxConfig(unittest.TestCase):
    def test_from_profile(self):
        """Test configs built from the analysis profiles"""
        for name, profile in ANALYSIS_PROFILES.items():
            config = KnoxConfig.from_dict(profile["knox"])
            self.assertEqual(len(config.spatial_sequence()), profile["knox"]["spatial_bands"])
            self.assertEqual(len(config.temporal_sequence()), profile["knox"]["temporal_bands"])

    def test_invalid_parameters(self):
        """Test invalid parameter sets are rejected"""
        with self.assertRaises(ConfigurationError):
            KnoxConfig(100.0, 5, 7, 5, iterations=0)
        with self.assertRaises(ConfigurationError):
            KnoxConfig(-100.0, 5, 7, 5)
        with self.assertRaises(ConfigurationError):
            KnoxConfig(100.0, 5, 7, 0)
        with self.assertRaises(ConfigurationError):
            KnoxConfig.from_dict({"spatial_interval": 100.0, "spatial_bands": 5})
        with self.assertRaises(ConfigurationError):
            KnoxConfig.from_dict(dict(ANALYSIS_PROFILES["street_robbery"]["knox"], radius=3))

    def test_non_numeric_intervals(self):
        """Test non-numeric band intervals raise configuration errors"""
        params = dict(ANALYSIS_PROFILES["street_robbery"]["knox"])
        for value in ["far", None, [100]]:
            with self.assertRaises(ConfigurationError):
                KnoxConfig.from_dict(dict(params, spatial_interval=value))
        with self.assertRaises(ConfigurationError):
            BandSequence.from_interval("weekly", 3)

        config = KnoxConfig.from_dict(dict(params, spatial_interval="100"))
        self.assertEqual(config.spatial_interval, 100.0)
        self.assertEqual(config.spatial_sequence().edges.tolist(), [0.0, 100.0, 200.0, 300.0, 400.0])

    def test_configs_are_immutable(self):
        """Test configs cannot be changed between runs"""
        config = KnoxConfig(100.0, 5, 7, 5)
        with self.assertRaises(AttributeError):
            config.iterations = 10


class TestNearRepeatAnalyzer(unittest.TestCase):
    def setUp(self):
        self.analyzer = NearRepeatAnalyzer(n_jobs=1)
        self.store = random_store(n=25, seed=4)
        self.config = KnoxConfig(150.0, 3, 7, 3, iterations=9, seed=5)

    def test_run(self):
        """Test a full analyzer run"""
        result = self.analyzer.run(self.store, self.config, name="test")

        self.assertIsInstance(result, KnoxResult)
        self.assertIn("test", self.analyzer.results)
        self.assertEqual(result.metadata["name"], "test")
        self.assertEqual(result.n_events, 25)
        self.assertEqual(int(result.observed.sum()), 25 * 24 // 2)

    def test_result_tables(self):
        """Test labelled and long-format result tables"""
        result = self.analyzer.run(self.store, self.config)

        table = result.to_frame()
        self.assertEqual(len(table), 9)
        for column in ["distance", "time_lag", "observed", "null_mean", "knox_ratio", "p_value"]:
            self.assertIn(column, table.columns)
        self.assertEqual(result.p_value_frame().shape, (3, 3))
        self.assertEqual(result.observed_frame().loc["[0, 150)", "[0, 7)"], result.observed[0, 0])

        for cell in self.analyzer.summarize(result, alpha=1.01):
            self.assertIn("knox_ratio", cell)

    def test_export_results(self):
        """Test JSON export of a Knox result"""
        result = self.analyzer.run(self.store, self.config, name="export")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = self.analyzer.export_results(result, output_dir=tmpdir)
            self.assertTrue(os.path.exists(path))
            self.assertIn("knox_export_", os.path.basename(path))

            with open(path) as f:
                exported = json.load(f)

        self.assertEqual(exported["iterations"], 9)
        self.assertEqual(exported["seed"], 5)
        self.assertEqual(exported["observed"], result.observed.tolist())
        self.assertEqual(exported["spatial_labels"], ["[0, 150)", "[150, 300)", "[300, inf)"])


if __name__ == "__main__":
    # Run tests
    unittest.main(verbosity=2)
