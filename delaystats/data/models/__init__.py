"""
Data models module.
Exports the statistics tree node types, their keys and the query records.
"""

from .keys import (
    EventType, TimeSlot, RouteSection, RouteType, PrecisionType,
    CurveSetKey, DefaultCurveKey
)
from .curve import Curve, CurveSet
from .statistics import (
    EventPair, RouteVariantData, RouteData, DefaultCurves, DelayStatistics, NODE_TYPES
)
from .prediction import DelaySample, PredictionQuery, PredictionResult

__all__ = [
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
    "NODE_TYPES",
    "DelaySample",
    "PredictionQuery",
    "PredictionResult"
]
