"""
Classification keys of the statistics tree.
Closed enumerations (event types, time slots, route sections, route types) and
the composite keys built from them, together with their canonical string forms.
"""

from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional, Union
from urllib.parse import quote, unquote

import pytz

from ...tree.shape import KeyFormat


class EventType(Enum):
    ARRIVAL = "arrival"
    DEPARTURE = "departure"

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Union[str, "EventType"]) -> "EventType":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class TimeSlot(Enum):
    """
    Recurring weekday/hour-band categories.
    Any datetime maps to exactly one time slot. Hour bands are half open
    (min_hour including, max_hour excluding); night bands wrap around midnight.
    """

    WEEKDAY_MORNING = (1, "weekday-morning", 0, 4, 4, 6)
    WEEKDAY_MORNING_RUSH = (2, "weekday-morning-rush", 0, 4, 6, 8)
    WEEKDAY_LATE_MORNING = (3, "weekday-late-morning", 0, 4, 8, 12)
    WEEKDAY_NOON_RUSH = (4, "weekday-noon-rush", 0, 4, 12, 14)
    WEEKDAY_AFTERNOON = (5, "weekday-afternoon", 0, 4, 14, 16)
    WEEKDAY_AFTERNOON_RUSH = (6, "weekday-afternoon-rush", 0, 4, 16, 18)
    WEEKDAY_EVENING = (7, "weekday-evening", 0, 4, 18, 20)
    SATURDAY_DAY = (8, "saturday-day", 5, 5, 4, 20)
    SUNDAY_DAY = (9, "sunday-day", 6, 6, 4, 20)
    NIGHT_BEFORE_WEEKDAY = (10, "night-before-weekday", 6, 3, 20, 4)
    NIGHT_BEFORE_WEEKEND_DAY = (11, "night-before-weekend-day", 4, 5, 20, 4)

    def __init__(self, slot_id: int, token: str, min_weekday: int, max_weekday: int,
                 min_hour: int, max_hour: int):
        self.slot_id = slot_id
        self.token = token
        self.min_weekday = min_weekday
        self.max_weekday = max_weekday
        self.min_hour = min_hour
        self.max_hour = max_hour

    def matches(self, weekday: int, hour: int) -> bool:
        if self.min_weekday <= self.max_weekday:
            day = self.min_weekday <= weekday <= self.max_weekday
        else:
            day = weekday >= self.min_weekday or weekday <= self.max_weekday

        if self.min_hour <= self.max_hour:
            in_band = self.min_hour <= hour < self.max_hour
        else:
            in_band = hour >= self.min_hour or hour < self.max_hour

        return day and in_band

    @classmethod
    def from_datetime(cls, dt: datetime, tz: Optional[Union[str, pytz.BaseTzInfo]] = None) -> "TimeSlot":
        """Find the time slot of a datetime.

        Aware datetimes are converted to ``tz`` first; naive ones are taken
        as local time. Hours after midnight belong to the previous day's night.
        """
        if tz is not None and dt.tzinfo is not None:
            if isinstance(tz, str):
                tz = pytz.timezone(tz)
            dt = dt.astimezone(tz)

        weekday = dt.weekday()
        if dt.hour < 4:
            weekday = (weekday - 1) % 7

        for slot in cls:
            if slot.matches(weekday, dt.hour):
                return slot
        # unreachable as long as the slot table covers the whole week
        raise ValueError(f"No time slot matches {dt}")

    @classmethod
    def from_token(cls, token: str) -> "TimeSlot":
        for slot in cls:
            if slot.token == token:
                return slot
        raise ValueError(f"Unknown time slot '{token}'")


class RouteSection(Enum):
    """Coarse position of a stop within its route variant"""
    BEGINNING = "beginning"
    MIDDLE = "middle"
    END = "end"

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def for_stop(cls, stop_index: int, stop_count: int) -> "RouteSection":
        """Classify a stop position.

        Beginning and end sections are a third of the variant for variants
        shorter than 15 stops, and 5 stops for longer ones.
        """
        if stop_count <= 0 or not 0 <= stop_index < stop_count:
            raise ValueError(f"Stop index {stop_index} outside of a variant with {stop_count} stops")

        section_size = min(5, stop_count // 3)
        if stop_index < section_size:
            return cls.BEGINNING
        if stop_count - stop_index <= section_size:
            return cls.END
        return cls.MIDDLE


class RouteType(Enum):
    TRAMWAY = "tramway"
    SUBWAY = "subway"
    RAIL = "rail"
    BUS = "bus"
    FERRY = "ferry"

    @property
    def token(self) -> str:
        return self.value

    @classmethod
    def from_gtfs(cls, code: Union[int, str]) -> "RouteType":
        """Map a (basic or extended) GTFS route_type code"""
        if isinstance(code, str) and not code.strip().isdigit():
            return cls(code.strip().lower())
        code = int(code)
        basic = {0: cls.TRAMWAY, 1: cls.SUBWAY, 2: cls.RAIL, 3: cls.BUS, 4: cls.FERRY,
                 5: cls.TRAMWAY, 6: cls.RAIL, 7: cls.RAIL, 11: cls.BUS, 12: cls.SUBWAY}
        if code in basic:
            return basic[code]
        extended = [(100, 200, cls.RAIL), (200, 300, cls.BUS), (400, 500, cls.SUBWAY),
                    (700, 900, cls.BUS), (900, 1000, cls.TRAMWAY), (1000, 1300, cls.FERRY)]
        for low, high, route_type in extended:
            if low <= code < high:
                return route_type
        raise ValueError(f"Unsupported GTFS route type {code}")


class PrecisionType(Enum):
    """How precisely the data behind a prediction matches the query"""
    SPECIFIC = "specific"  # route variant, stop pair and initial delay
    SEMI_SPECIFIC = "semi_specific"  # route variant and stop, no initial delay
    GENERAL = "general"  # route type, route section and time slot only


class CurveSetKey(NamedTuple):
    start_stop_index: int
    end_stop_index: int
    time_slot: TimeSlot
    event_type: EventType


class DefaultCurveKey(NamedTuple):
    route_type: RouteType
    route_section: RouteSection
    time_slot: TimeSlot
    event_type: EventType


def _quoted_id(prefix: str) -> KeyFormat:
    return KeyFormat(
        prefix + r"(?P<id>.+)",
        to_token=lambda key: prefix + quote(str(key), safe=""),
        from_match=lambda m: unquote(m["id"]),
        to_data=str,
        from_data=str
    )


ROUTE_ID = _quoted_id("route_")
ROUTE_VARIANT_ID = _quoted_id("variant_")

STOP_INDEX = KeyFormat(
    r"stop_(?P<index>\d+)",
    to_token=lambda key: f"stop_{int(key)}",
    from_match=lambda m: int(m["index"]),
    to_data=int,
    from_data=int
)

INITIAL_DELAY = KeyFormat(
    r"delay_(?P<delay>[-+0-9.eE]+)",
    to_token=lambda key: f"delay_{float(key)!r}",
    from_match=lambda m: float(m["delay"]),
    to_data=float,
    from_data=float
)

CURVE_SET_KEY = KeyFormat(
    r"from_(?P<start>\d+)_to_(?P<end>\d+)\.(?P<slot>[a-z-]+)\.(?P<event>[a-z]+)",
    to_token=lambda key: (f"from_{key.start_stop_index}_to_{key.end_stop_index}"
                          f".{key.time_slot.token}.{key.event_type.token}"),
    from_match=lambda m: CurveSetKey(int(m["start"]), int(m["end"]),
                                     TimeSlot.from_token(m["slot"]), EventType(m["event"])),
    to_data=lambda key: [key.start_stop_index, key.end_stop_index,
                         key.time_slot.token, key.event_type.token],
    from_data=lambda data: CurveSetKey(int(data[0]), int(data[1]),
                                       TimeSlot.from_token(data[2]), EventType(data[3]))
)

DEFAULT_CURVE_KEY = KeyFormat(
    r"(?P<type>[a-z]+)\.(?P<section>[a-z]+)\.(?P<slot>[a-z-]+)\.(?P<event>[a-z]+)",
    to_token=lambda key: (f"{key.route_type.token}.{key.route_section.token}"
                          f".{key.time_slot.token}.{key.event_type.token}"),
    from_match=lambda m: DefaultCurveKey(RouteType(m["type"]), RouteSection(m["section"]),
                                         TimeSlot.from_token(m["slot"]), EventType(m["event"])),
    to_data=lambda key: [key.route_type.token, key.route_section.token,
                         key.time_slot.token, key.event_type.token],
    from_data=lambda data: DefaultCurveKey(RouteType(data[0]), RouteSection(data[1]),
                                           TimeSlot.from_token(data[2]), EventType(data[3]))
)
