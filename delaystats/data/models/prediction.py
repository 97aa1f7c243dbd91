"""
Sample, query and result data models.
Immutable records exchanged with the sample source and the prediction front end.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

import pytz

from .curve import Curve, CurveSet
from .keys import EventType, PrecisionType


@dataclass(frozen=True)
class DelaySample:
    """One matched delay observation of a vehicle at a stop"""
    route_id: str
    route_variant_id: str
    stop_index: int
    event_type: EventType
    delay: float  # seconds, positive means late
    timestamp: datetime

    # Identity of the vehicle journey, needed to pair observations at two stops
    trip_id: Optional[str] = None
    trip_start_date: Optional[date] = None

    @property
    def journey(self):
        return (self.trip_id, self.trip_start_date)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "DelaySample":
        """Create DelaySample from a plain mapping (database row, JSON object)"""
        timestamp = record["timestamp"]
        if isinstance(timestamp, (int, float)):
            timestamp = datetime.fromtimestamp(timestamp, pytz.utc)
        elif isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        start_date = record.get("trip_start_date")
        if isinstance(start_date, str):
            start_date = date.fromisoformat(start_date)
        elif isinstance(start_date, datetime):
            start_date = start_date.date()

        trip_id = record.get("trip_id")
        return cls(
            route_id=str(record["route_id"]),
            route_variant_id=str(record["route_variant_id"]),
            stop_index=int(record["stop_index"]),
            event_type=EventType.parse(record["event_type"]),
            delay=float(record["delay"]),
            timestamp=timestamp,
            trip_id=str(trip_id) if trip_id is not None else None,
            trip_start_date=start_date
        )


@dataclass(frozen=True)
class PredictionQuery:
    route_id: str
    trip_id: str
    stop_id: str
    event_type: EventType
    date_time: datetime

    start_stop_id: Optional[str] = None
    initial_delay: Optional[float] = None
    use_realtime: bool = False  # look up a recent delay when no start stop is given


@dataclass(frozen=True)
class PredictionResult:
    """Either a single curve or a whole curve set, and where it came from"""
    precision: PrecisionType
    curve: Optional[Curve] = None
    curve_set: Optional[CurveSet] = None

    # Resolved context, for diagnostics
    route_variant_id: Optional[str] = None
    start_stop_index: Optional[int] = None
    end_stop_index: Optional[int] = None
    initial_delay_bucket: Optional[float] = None
    category: Optional[Any] = None

    @property
    def is_curve_set(self) -> bool:
        return self.curve_set is not None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "precision": self.precision.value,
            "route_variant_id": self.route_variant_id,
            "start_stop_index": self.start_stop_index,
            "end_stop_index": self.end_stop_index,
        }
        if self.curve is not None:
            result["curve"] = _curve_to_dict(self.curve)
            if self.initial_delay_bucket is not None:
                result["initial_delay_bucket"] = self.initial_delay_bucket
        if self.curve_set is not None:
            result["curve_set"] = [
                {"initial_delay": key, "curve": _curve_to_dict(curve)}
                for key, curve in self.curve_set.items()
            ]
        return result


def _curve_to_dict(curve: Curve) -> Dict[str, Any]:
    return {
        "points": [[x, y] for x, y in curve.points()],
        "sample_size": curve.sample_size,
        "median": curve.median(),
    }
