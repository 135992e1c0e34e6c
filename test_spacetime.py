import unittest
from datetime import date, timedelta
import numpy as np
import pandas as pd
import sys
import os

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from spacetime.events import Event, EventStore, to_day_number, validate_thresholds
from spacetime.exceptions import NearRepeatError, InputError, ConfigurationError, ClassificationError
from spacetime.neighbors import neighbors, is_near, SpatioTemporalIndex


def random_store(n=40, extent=500.0, days=30, seed=0):
    rng = np.random.default_rng(seed)
    start = pd.Timestamp("2024-01-01")
    return EventStore(pd.DataFrame({
        "id": np.arange(100, 100 + n),
        "x": rng.uniform(0, extent, n),
        "y": rng.uniform(0, extent, n),
        "date": start + pd.to_timedelta(rng.integers(0, days, n), unit="D")
    }))


class TestEventStore(unittest.TestCase):
    def setUp(self):
        self.store = EventStore.from_records([
            (3, 0.0, 0.0, "2024-01-01 08:00"),
            (1, 10.0, 0.0, "2024-01-02 23:30"),
            (2, 1000.0, 0.0, "2024-01-05 00:00"),
        ])

    def test_store_initialization(self):
        """Test positional arrays follow input order"""
        self.assertEqual(len(self.store), 3)
        self.assertEqual(self.store.ids.tolist(), [3, 1, 2])
        self.assertEqual(self.store.coords.shape, (3, 2))
        self.assertEqual((self.store.days - self.store.days[0]).tolist(), [0, 1, 4])

    def test_arrays_are_read_only(self):
        """Test the store cannot be mutated through its arrays"""
        with self.assertRaises(ValueError):
            self.store.coords[0, 0] = 5.0
        with self.assertRaises(ValueError):
            self.store.days[0] = 0

    def test_event_lookup(self):
        """Test lookup of single events by id"""
        event = self.store.event(1)
        self.assertIsInstance(event, Event)
        self.assertEqual(event.x, 10.0)
        self.assertEqual(event.date, date(2024, 1, 2))
        self.assertIn(2, self.store)
        self.assertNotIn(99, self.store)
        with self.assertRaises(InputError):
            self.store.position(99)

    def test_subset_keeps_store_order(self):
        """Test subsets are returned in store order"""
        subset = self.store.subset({2, 3})
        self.assertEqual(subset.ids.tolist(), [3, 2])
        self.assertEqual(subset.coords[1].tolist(), [1000.0, 0.0])

    def test_from_events_and_dicts(self):
        """Test alternative constructors"""
        store = EventStore.from_events(list(self.store))
        self.assertEqual(store.ids.tolist(), self.store.ids.tolist())
        self.assertEqual(store.days.tolist(), self.store.days.tolist())

        store = EventStore.from_records([{"id": 7, "x": 1.0, "y": 2.0, "date": date(2024, 3, 1)}])
        self.assertEqual(store.event(7).day, to_day_number("2024-03-01"))

    def test_to_frame_and_date_range(self):
        """Test export back to a DataFrame"""
        frame = self.store.to_frame()
        self.assertEqual(list(frame.columns), ["id", "x", "y", "date"])
        self.assertEqual(frame["date"].iloc[1], pd.Timestamp("2024-01-02"))
        self.assertEqual(self.store.date_range(), {"start": date(2024, 1, 1), "end": date(2024, 1, 5)})

    def test_empty_input(self):
        """Test empty event sets are rejected"""
        with self.assertRaises(InputError):
            EventStore.from_records([])
        with self.assertRaises(InputError):
            EventStore(pd.DataFrame(columns=["id", "x", "y", "date"]))

    def test_duplicate_ids(self):
        """Test duplicate ids are rejected"""
        with self.assertRaises(InputError):
            EventStore.from_records([(1, 0.0, 0.0, "2024-01-01"), (1, 5.0, 5.0, "2024-01-02")])

    def test_non_finite_coordinates(self):
        """Test missing and infinite coordinates are rejected"""
        with self.assertRaises(InputError):
            EventStore.from_records([(1, np.nan, 0.0, "2024-01-01")])
        with self.assertRaises(InputError):
            EventStore.from_records([(1, 0.0, np.inf, "2024-01-01")])

    def test_invalid_dates(self):
        """Test missing or unparseable dates are rejected"""
        with self.assertRaises(InputError):
            EventStore.from_records([(1, 0.0, 0.0, None)])
        with self.assertRaises(InputError):
            EventStore.from_records([(1, 0.0, 0.0, "not a date")])

    def test_missing_columns(self):
        """Test event tables without the required columns are rejected"""
        with self.assertRaises(InputError):
            EventStore(pd.DataFrame({"id": [1], "x": [0.0], "y": [0.0]}))

    def test_error_taxonomy(self):
        """Test all analysis errors share one base class"""
        for error in (InputError, ConfigurationError, ClassificationError):
            self.assertTrue(issubclass(error, NearRepeatError))
        self.assertTrue(issubclass(NearRepeatError, ValueError))


class TestNeighbors(unittest.TestCase):
    def setUp(self):
        self.pool = EventStore.from_records([
            (0, 0.0, 0.0, "2024-01-01"),
            (1, 150.0, 0.0, "2024-01-08"),
            (2, 150.5, 0.0, "2024-01-01"),
            (3, 0.0, 0.0, "2024-01-09"),
            (4, 0.0, 90.0, "2023-12-25"),
        ])
        self.origin = self.pool.event(0)

    def test_thresholds_are_inclusive(self):
        """Test events exactly at the spatial and temporal threshold are neighbors"""
        found = neighbors(self.origin, self.pool, 150.0, 7)
        self.assertEqual(found, {0, 1, 4})

    def test_timedelta_threshold(self):
        """Test temporal thresholds given as timedelta"""
        found = neighbors(self.origin, self.pool, 150.0, timedelta(days=7))
        self.assertEqual(found, {0, 1, 4})

    def test_no_neighbors_in_window(self):
        """Test an empty result when no event is inside the temporal window"""
        origin = Event(id=99, x=0.0, y=0.0, date=date(2025, 1, 1))
        self.assertEqual(neighbors(origin, self.pool, 1000.0, 7), set())

    def test_index_matches_direct_query(self):
        """Test KD-tree lookups agree with the brute force relation"""
        store = random_store()
        index = SpatioTemporalIndex(store, 100.0, 5)
        for event in store:
            expected = neighbors(event, store, 100.0, 5) - {event.id}
            self.assertEqual(index.neighbor_ids(event.id), expected)

    def test_neighbor_symmetry(self):
        """Test the neighbor relation is symmetric"""
        store = random_store(n=60, seed=3)
        index = SpatioTemporalIndex(store, 80.0, 4)
        found = {event_id: index.neighbor_ids(event_id) for event_id in store.ids.tolist()}
        for a, linked in found.items():
            for b in linked:
                self.assertIn(a, found[b])

    def test_index_boundary(self):
        """Test the KD-tree prefilter keeps events exactly at the threshold"""
        index = SpatioTemporalIndex(self.pool, 150.0, 7)
        self.assertEqual(index.neighbor_ids(0), {1, 4})

    def test_is_near(self):
        """Test the vectorized neighbor predicate"""
        result = is_near(np.array([10.0, 10.0, 20.0]), np.array([-3, 4, 0]), 10.0, 3)
        self.assertEqual(result.tolist(), [True, False, False])

    def test_invalid_thresholds(self):
        """Test negative and non-numeric thresholds are rejected"""
        with self.assertRaises(ConfigurationError):
            validate_thresholds(-1.0, 7)
        with self.assertRaises(ConfigurationError):
            validate_thresholds(100.0, -1)
        with self.assertRaises(ConfigurationError):
            validate_thresholds("far", 7)
        self.assertEqual(validate_thresholds(100, timedelta(days=2)), (100.0, 2.0))


if __name__ == "__main__":
    # Run tests
    unittest.main(verbosity=2)
