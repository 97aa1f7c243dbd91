"""
Build interface of the statistics engine.
Runs the specific and default passes over a sample source and merges their
results into a (new or existing) statistics tree by key.
"""

import logging
from typing import Iterable, Optional, Union

import pandas as pd

from ..core.config import ApplicationConfig
from ..data.models.statistics import DelayStatistics
from ..data.sources.samples import load_samples
from ..data.sources.schedule import ScheduleMetadata
from .curve_builder import CurveBuilder
from .default_curves import DefaultCurveBuilder
from .specific_curves import SpecificCurveBuilder

logger = logging.getLogger(__name__)

ALL_ROUTES = "all"

RouteSelection = Union[str, Iterable[str], None]


class StatisticsBuilder:
    def __init__(self, config: Optional[ApplicationConfig] = None,
                 schedule: Optional[ScheduleMetadata] = None):
        self.config = config or ApplicationConfig()
        self.schedule = schedule
        self.curve_builder = CurveBuilder(self.config)

    def prepare(self, samples) -> pd.DataFrame:
        """Normalized sample frame from any supported source"""
        return load_samples(samples, self.config.timezone, self.config.max_abs_delay_seconds)

    def build_specific(self, samples, route_ids: RouteSelection = ALL_ROUTES,
                       into: Optional[DelayStatistics] = None) -> DelayStatistics:
        """Per-route curves for the selected routes.

        With ``into``, the selected routes of that tree are replaced wholesale,
        including routes that no longer have enough data.
        """
        selection = _selection(route_ids)
        frame = self.prepare(samples)
        specific = SpecificCurveBuilder(self.config, self.schedule, self.curve_builder)
        routes = specific.build(frame, selection)
        result = DelayStatistics(specific=routes)
        logger.info(f"Specific pass produced curves for {len(routes)} routes")
        if into is None:
            return result
        return into.merge(result, route_ids=selection)

    def build_default(self, samples, route_ids: RouteSelection = ALL_ROUTES,
                      into: Optional[DelayStatistics] = None) -> DelayStatistics:
        """Default curves pooled over the selected routes"""
        if self.schedule is None:
            raise ValueError("Building default curves needs schedule metadata")
        frame = self.prepare(samples)
        default = DefaultCurveBuilder(self.config, self.schedule)
        result = DelayStatistics(general=default.build(frame, _selection(route_ids)))
        if into is None:
            return result
        return into.merge(result)

    def build_all(self, samples, route_ids: RouteSelection = ALL_ROUTES,
                  into: Optional[DelayStatistics] = None) -> DelayStatistics:
        frame = self.prepare(samples)
        statistics = self.build_specific(frame, route_ids, into)
        return self.build_default(frame, route_ids, statistics)


def _selection(route_ids: RouteSelection) -> Optional[list]:
    if route_ids is None or (isinstance(route_ids, str) and route_ids == ALL_ROUTES):
        return None
    if isinstance(route_ids, str):
        return [route_ids]
    return [str(r) for r in route_ids]
