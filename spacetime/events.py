from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, Iterator, Sequence, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, InputError

EVENT_COLUMNS = ["id", "x", "y", "date"]
NS_PER_DAY = 86_400_000_000_000


@dataclass(frozen=True)
class Event:
    """A single geocoded incident with day-granularity date"""
    id: int
    x: float
    y: float
    date: date

    @property
    def day(self) -> int:
        return to_day_number(self.date)


def to_day_number(value: Any) -> int:
    """Convert a single date-like value to whole days since 1970-01-01"""
    timestamp = pd.Timestamp(value)
    if pd.isna(timestamp):
        raise InputError(f"Invalid event date: {value!r}")
    if timestamp.tzinfo is not None:
        timestamp = timestamp.tz_localize(None)
    return int(timestamp.normalize().value // NS_PER_DAY)


def to_day_numbers(values: Iterable[Any]) -> np.ndarray:
    """Convert a sequence of date-like values to integer day numbers"""
    series = values if isinstance(values, pd.Series) else pd.Series(list(values))
    parsed = pd.to_datetime(series, errors="coerce")
    if parsed.isna().any():
        bad = series[parsed.isna()].head(3).tolist()
        raise InputError(f"{int(parsed.isna().sum())} event dates could not be parsed, e.g. {bad}")
    if parsed.dt.tz is not None:
        parsed = parsed.dt.tz_localize(None)
    return parsed.dt.normalize().to_numpy().astype("datetime64[D]").astype(np.int64)


def as_days(value: Union[int, float, timedelta, pd.Timedelta]) -> float:
    """Temporal thresholds may be given as a number of days or as a timedelta"""
    if isinstance(value, (timedelta, pd.Timedelta)):
        return pd.Timedelta(value) / pd.Timedelta(days=1)
    return float(value)


def validate_thresholds(spatial_threshold: float, temporal_threshold: Any):
    """Return (meters, days) or raise ConfigurationError"""
    try:
        spatial = float(spatial_threshold)
        temporal = as_days(temporal_threshold)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Thresholds must be numeric: {e}") from e

    if not np.isfinite(spatial) or spatial < 0:
        raise ConfigurationError(f"Spatial threshold must be a non-negative number, got {spatial_threshold!r}")
    if not np.isfinite(temporal) or temporal < 0:
        raise ConfigurationError(f"Temporal threshold must be a non-negative number of days, got {temporal_threshold!r}")
    return spatial, temporal


def validate_events(df: pd.DataFrame) -> pd.DataFrame:
    """Check the event table shape and return a normalized copy"""
    if df is None or len(df) == 0:
        raise InputError("Event set is empty")

    missing = [col for col in EVENT_COLUMNS if col not in df.columns]
    if missing:
        raise InputError(f"Event table is missing required column(s): {', '.join(missing)}")

    frame = df[EVENT_COLUMNS].copy().reset_index(drop=True)

    ids = pd.to_numeric(frame["id"], errors="coerce")
    if ids.isna().any() or not np.all(np.mod(ids, 1) == 0):
        raise InputError("Event ids must be integers")
    frame["id"] = ids.astype(np.int64)

    duplicated = frame["id"][frame["id"].duplicated()]
    if not duplicated.empty:
        raise InputError(f"Duplicate event ids: {sorted(duplicated.unique().tolist())[:10]}")

    for col in ["x", "y"]:
        values = pd.to_numeric(frame[col], errors="coerce").astype(float)
        if not np.isfinite(values.to_numpy()).all():
            raise InputError(f"Column '{col}' contains missing or non-finite coordinates")
        frame[col] = values

    frame["date"] = pd.to_datetime(frame["date"], errors="coerce")
    if frame["date"].isna().any():
        raise InputError(f"{int(frame['date'].isna().sum())} events have missing or invalid dates")
    if frame["date"].dt.tz is not None:
        frame["date"] = frame["date"].dt.tz_localize(None)
    frame["date"] = frame["date"].dt.normalize()

    return frame


class EventStore:
    """Ordered, validated and read-only collection of events.

    Arrays are exposed positionally: ``ids[k]``, ``coords[k]`` and ``days[k]``
    all describe the k-th event in input order.
    """

    def __init__(self, events: pd.DataFrame):
        frame = validate_events(events)
        self._init_arrays(
            frame["id"].to_numpy(dtype=np.int64),
            frame[["x", "y"]].to_numpy(dtype=float),
            to_day_numbers(frame["date"]),
        )

    def _init_arrays(self, ids: np.ndarray, coords: np.ndarray, days: np.ndarray):
        self.ids = np.array(ids, dtype=np.int64)
        self.coords = np.array(coords, dtype=float).reshape(-1, 2)
        self.days = np.array(days, dtype=np.int64)
        for array in (self.ids, self.coords, self.days):
            array.setflags(write=False)
        self._positions = {int(event_id): k for k, event_id in enumerate(self.ids)}

    @classmethod
    def from_events(cls, events: Iterable[Event]) -> "EventStore":
        """Build a store from Event records"""
        return cls(pd.DataFrame(
            [{"id": e.id, "x": e.x, "y": e.y, "date": e.date} for e in events],
            columns=EVENT_COLUMNS
        ))

    @classmethod
    def from_records(cls, records: Sequence[Union[Dict[str, Any], Sequence[Any]]]) -> "EventStore":
        """Build a store from dicts or (id, x, y, date) tuples"""
        return cls(pd.DataFrame(list(records), columns=None if records and isinstance(records[0], dict) else EVENT_COLUMNS))

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self) -> Iterator[Event]:
        for k in range(len(self)):
            yield self.event_at(k)

    def __contains__(self, event_id: int) -> bool:
        return int(event_id) in self._positions

    def event_at(self, position: int) -> Event:
        day = np.datetime64(int(self.days[position]), "D")
        return Event(
            id=int(self.ids[position]),
            x=float(self.coords[position, 0]),
            y=float(self.coords[position, 1]),
            date=pd.Timestamp(day).date()
        )

    def event(self, event_id: int) -> Event:
        return self.event_at(self.position(event_id))

    def position(self, event_id: int) -> int:
        try:
            return self._positions[int(event_id)]
        except KeyError:
            raise InputError(f"Unknown event id: {event_id}") from None

    def positions(self, event_ids: Iterable[int]) -> np.ndarray:
        return np.array([self.position(i) for i in event_ids], dtype=np.int64)

    def take(self, positions: Sequence[int]) -> "EventStore":
        """Sub-store of the given positions, in the given order"""
        positions = np.asarray(positions, dtype=np.int64)
        if positions.size == 0:
            raise InputError("Cannot build an empty event store")
        store = EventStore.__new__(EventStore)
        store._init_arrays(self.ids[positions], self.coords[positions], self.days[positions])
        return store

    def subset(self, event_ids: Iterable[int]) -> "EventStore":
        """Sub-store of the given ids, kept in store order"""
        return self.take(np.sort(self.positions(event_ids)))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "id": self.ids,
            "x": self.coords[:, 0],
            "y": self.coords[:, 1],
            "date": self.days.astype("datetime64[D]").astype("datetime64[ns]")
        })

    def date_range(self) -> Dict[str, date]:
        first, last = self.days.min(), self.days.max()
        return {
            "start": pd.Timestamp(np.datetime64(int(first), "D")).date(),
            "end": pd.Timestamp(np.datetime64(int(last), "D")).date()
        }

    def __repr__(self) -> str:
        return f"EventStore(n_events={len(self)})"

