"""
Sample sources.
Matched delay observations come in as plain iterables of DelaySample (or
mappings), as pandas DataFrames, or from the ``records`` table of a SQLite
database. All of them end up as one normalized DataFrame for the build passes.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Optional, Sequence, Union

import numpy as np
import pandas as pd
import pytz

from ..models.keys import EventType, TimeSlot
from ..models.prediction import DelaySample

logger = logging.getLogger(__name__)

SAMPLE_COLUMNS = [
    "route_id", "route_variant_id", "stop_index", "event_type",
    "delay", "timestamp", "trip_id", "trip_start_date"
]


def time_slot_table() -> np.ndarray:
    """Time slot token for every (weekday, hour) of the week, as a 7x24 array"""
    table = np.empty((7, 24), dtype=object)
    for weekday in range(7):
        for hour in range(24):
            # hours after midnight belong to the previous day's night
            day = (weekday - 1) % 7 if hour < 4 else weekday
            table[weekday, hour] = next(slot.token for slot in TimeSlot if slot.matches(day, hour))
    return table


_TIME_SLOTS = time_slot_table()


def _local_naive(timestamp: Any, tz: pytz.BaseTzInfo) -> datetime:
    if isinstance(timestamp, (int, float)):
        timestamp = datetime.fromtimestamp(timestamp, tz)
    elif isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(tz).replace(tzinfo=None)
    return timestamp


def _carries_offset(value: Any) -> bool:
    if isinstance(value, datetime):
        return value.tzinfo is not None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).tzinfo is not None
        except ValueError:
            return False
    return False


def local_timestamps(values: pd.Series, timezone: str = "Europe/Berlin") -> pd.Series:
    """Naive local timestamps from naive, aware or mixed-offset values.

    Values with a UTC offset are converted to ``timezone``; naive values are
    already local time.
    """
    if isinstance(values.dtype, pd.DatetimeTZDtype):
        return values.dt.tz_convert(timezone).dt.tz_localize(None)
    if pd.api.types.is_datetime64_dtype(values.dtype):
        return values

    aware = values.map(_carries_offset).astype(bool)
    if not aware.any():
        return pd.to_datetime(values)

    # offsets differ across DST changes, so go through UTC
    result = pd.Series(pd.NaT, index=values.index, dtype="datetime64[ns]")
    result.loc[aware] = pd.to_datetime(values[aware], utc=True).dt.tz_convert(timezone).dt.tz_localize(None)
    if not aware.all():
        result.loc[~aware] = pd.to_datetime(values[~aware])
    return result


def samples_to_frame(samples: Iterable[Union[DelaySample, Dict[str, Any]]],
                     timezone: str = "Europe/Berlin") -> pd.DataFrame:
    """Collect samples into a raw frame with one row per observation"""
    tz = pytz.timezone(timezone)
    rows = []
    for sample in samples:
        if not isinstance(sample, DelaySample):
            sample = DelaySample.from_record(sample)
        rows.append((
            sample.route_id,
            sample.route_variant_id,
            sample.stop_index,
            sample.event_type.token,
            sample.delay,
            _local_naive(sample.timestamp, tz),
            sample.trip_id,
            sample.trip_start_date,
        ))
    return pd.DataFrame(rows, columns=SAMPLE_COLUMNS)


def normalize_frame(frame: pd.DataFrame, timezone: str = "Europe/Berlin",
                    max_abs_delay: Optional[float] = None) -> pd.DataFrame:
    """Bring a sample frame into the shape the build passes expect.

    Identifiers become strings, timestamps naive local time, missing trip
    start dates are taken from the timestamp, and a ``time_slot`` column is
    added. Rows outside the valid delay domain are dropped.
    """
    missing = [c for c in SAMPLE_COLUMNS[:6] if c not in frame.columns]
    if missing:
        raise ValueError(f"Sample frame is missing columns {missing}")

    df = frame.copy()
    for column in ("trip_id", "trip_start_date"):
        if column not in df.columns:
            df[column] = None

    df["route_id"] = df["route_id"].astype(str)
    df["route_variant_id"] = df["route_variant_id"].astype(str)
    df["stop_index"] = df["stop_index"].astype(np.int64)
    df["event_type"] = df["event_type"].map(lambda e: EventType.parse(e).token)
    df["delay"] = pd.to_numeric(df["delay"], errors="coerce").astype(np.float64)

    timestamps = local_timestamps(df["timestamp"], timezone)
    df["timestamp"] = timestamps

    start_dates = pd.to_datetime(df["trip_start_date"]).dt.date
    df["trip_start_date"] = start_dates.where(start_dates.notna(), timestamps.dt.date).astype(str)
    df["trip_id"] = df["trip_id"].where(df["trip_id"].notna(), None)

    before = len(df)
    df = df[np.isfinite(df["delay"])]
    if max_abs_delay is not None:
        df = df[df["delay"].abs() <= max_abs_delay]
    if len(df) < before:
        logger.info(f"Dropped {before - len(df)} of {before} samples outside the valid delay domain")

    df = df.assign(time_slot=_TIME_SLOTS[df["timestamp"].dt.weekday.to_numpy(),
                                         df["timestamp"].dt.hour.to_numpy()])
    return df.reset_index(drop=True)


def load_samples(source: Union[pd.DataFrame, Iterable, "SqliteSampleSource"],
                 timezone: str = "Europe/Berlin",
                 max_abs_delay: Optional[float] = None) -> pd.DataFrame:
    """Normalized frame from any supported sample source"""
    if isinstance(source, SqliteSampleSource):
        frame = source.to_frame()
    elif isinstance(source, pd.DataFrame):
        frame = source
    else:
        frame = samples_to_frame(source, timezone)
    return normalize_frame(frame, timezone, max_abs_delay)


class SqliteSampleSource:
    """Matched delay observations stored in the ``records`` table of a SQLite database"""

    TABLE = "records"

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    def initialize(self):
        """Create the records table if it does not exist yet"""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    route_id TEXT NOT NULL,
                    route_variant_id TEXT NOT NULL,
                    trip_id TEXT,
                    trip_start_date TEXT,
                    stop_index INTEGER NOT NULL,
                    event_type TEXT NOT NULL,
                    delay REAL NOT NULL,
                    timestamp TEXT NOT NULL
                )
            ''')
            conn.execute(f'''
                CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_route
                ON {self.TABLE}(route_id, route_variant_id)
            ''')

    def insert(self, samples: Iterable[DelaySample]) -> int:
        rows = [
            (s.route_id, s.route_variant_id, s.trip_id,
             s.trip_start_date.isoformat() if s.trip_start_date else None,
             s.stop_index, s.event_type.token, s.delay, s.timestamp.isoformat())
            for s in samples
        ]
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.executemany(f'''
                INSERT INTO {self.TABLE}
                (route_id, route_variant_id, trip_id, trip_start_date, stop_index, event_type, delay, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', rows)
        logger.debug(f"Inserted {len(rows)} samples into {self.db_path}")
        return len(rows)

    def to_frame(self, route_ids: Optional[Sequence[str]] = None) -> pd.DataFrame:
        query = f"SELECT {', '.join(SAMPLE_COLUMNS)} FROM {self.TABLE}"
        params: Sequence[str] = ()
        if route_ids:
            query += f" WHERE route_id IN ({', '.join('?' * len(route_ids))})"
            params = list(route_ids)
        with sqlite3.connect(str(self.db_path)) as conn:
            frame = pd.read_sql_query(query, conn, params=params)
        logger.info(f"Read {len(frame)} samples from {self.db_path}")
        return frame

    def __iter__(self) -> Iterator[DelaySample]:
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.row_factory = sqlite3.Row
            for row in conn.execute(f"SELECT {', '.join(SAMPLE_COLUMNS)} FROM {self.TABLE} ORDER BY id"):
                yield DelaySample.from_record(dict(row))
