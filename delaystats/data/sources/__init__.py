"""
Data sources module.
Exports the sample sources, the schedule metadata and the live delay lookup.
"""

from .samples import (
    SAMPLE_COLUMNS, SqliteSampleSource, samples_to_frame, normalize_frame, load_samples
)
from .schedule import ScheduleMetadata, StaticSchedule
from .realtime import RecentDelaySource, SqliteRealtimeSource

__all__ = [
    "SAMPLE_COLUMNS",
    "SqliteSampleSource",
    "samples_to_frame",
    "normalize_frame",
    "load_samples",
    "ScheduleMetadata",
    "StaticSchedule",
    "RecentDelaySource",
    "SqliteRealtimeSource"
]
