"""
Analysis module.
Turns delay observations into curves, curve sets and whole statistics trees.
"""

from .curve_builder import CurveBuilder
from .curve_sets import build_curve_set, initial_delay_markers
from .specific_curves import SpecificCurveBuilder
from .default_curves import DefaultCurveBuilder
from .statistics_builder import StatisticsBuilder, ALL_ROUTES

__all__ = [
    "CurveBuilder",
    "build_curve_set",
    "initial_delay_markers",
    "SpecificCurveBuilder",
    "DefaultCurveBuilder",
    "StatisticsBuilder",
    "ALL_ROUTES"
]
