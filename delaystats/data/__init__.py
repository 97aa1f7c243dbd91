"""
Data layer module.
Exports the statistics models and the sources they are built from.
"""

from .models import (
    EventType, TimeSlot, RouteSection, RouteType, PrecisionType,
    CurveSetKey, DefaultCurveKey, Curve, CurveSet,
    EventPair, RouteVariantData, RouteData, DefaultCurves, DelayStatistics,
    DelaySample, PredictionQuery, PredictionResult
)
from .sources import (
    SqliteSampleSource, StaticSchedule, SqliteRealtimeSource, load_samples
)

__all__ = [
    # Models
    "EventType",
    "TimeSlot",
    "RouteSection",
    "RouteType",
    "PrecisionType",
    "CurveSetKey",
    "DefaultCurveKey",
    "Curve",
    "CurveSet",
    "EventPair",
    "RouteVariantData",
    "RouteData",
    "DefaultCurves",
    "DelayStatistics",
    "DelaySample",
    "PredictionQuery",
    "PredictionResult",

    # Sources
    "SqliteSampleSource",
    "StaticSchedule",
    "SqliteRealtimeSource",
    "load_samples"
]
