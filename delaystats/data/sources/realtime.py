"""
Live delay lookup for predictions without a known initial delay.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol, Tuple, Union

logger = logging.getLogger(__name__)


class RecentDelaySource(Protocol):
    def recent_delay(self, route_id: str, trip_id: str, before_stop_index: int,
                     at: datetime) -> Optional[Tuple[int, float]]:
        """(stop index, departure delay) of the latest departure of the trip
        before ``before_stop_index`` recorded up to ``at``, or None"""
        ...


class SqliteRealtimeSource:
    """Recent departure delays from the ``realtime`` table of a SQLite database"""

    TABLE = "realtime"

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    def initialize(self):
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    route_id TEXT NOT NULL,
                    trip_id TEXT NOT NULL,
                    trip_start_date TEXT NOT NULL,
                    stop_index INTEGER NOT NULL,
                    delay_departure REAL,
                    time_of_recording TEXT NOT NULL
                )
            ''')
            conn.execute(f'''
                CREATE INDEX IF NOT EXISTS idx_{self.TABLE}_trip
                ON {self.TABLE}(route_id, trip_id, trip_start_date)
            ''')

    def record(self, route_id: str, trip_id: str, stop_index: int, delay_departure: Optional[float],
               time_of_recording: datetime, trip_start_date: Optional[str] = None):
        start_date = trip_start_date or time_of_recording.date().isoformat()
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(f'''
                INSERT INTO {self.TABLE}
                (route_id, trip_id, trip_start_date, stop_index, delay_departure, time_of_recording)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (str(route_id), str(trip_id), start_date, int(stop_index), delay_departure,
                  time_of_recording.isoformat()))

    def recent_delay(self, route_id: str, trip_id: str, before_stop_index: int,
                     at: datetime) -> Optional[Tuple[int, float]]:
        with sqlite3.connect(str(self.db_path)) as conn:
            row = conn.execute(f'''
                SELECT stop_index, delay_departure FROM {self.TABLE}
                WHERE route_id = ? AND trip_id = ? AND trip_start_date = ?
                  AND stop_index < ? AND delay_departure IS NOT NULL
                  AND time_of_recording <= ?
                ORDER BY time_of_recording DESC, stop_index DESC
                LIMIT 1
            ''', (str(route_id), str(trip_id), at.date().isoformat(), int(before_stop_index),
                  at.isoformat())).fetchone()

        if row is None:
            logger.debug(f"No recent delay for trip {trip_id} of route {route_id} before stop {before_stop_index}")
            return None
        return int(row[0]), float(row[1])
