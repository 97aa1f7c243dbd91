"""
Default curve build pass.
Pools the delays of all routes into coarse categories (route type, route
section, time slot, event type) that serve as fallback for sparse data.
"""

import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from ..core.config import ApplicationConfig
from ..core.errors import InsufficientSamples, RouteNotFound
from ..data.models.keys import DefaultCurveKey, EventType, RouteSection, RouteType, TimeSlot
from ..data.models.statistics import DefaultCurves
from ..data.sources.schedule import ScheduleMetadata
from .curve_builder import CurveBuilder

logger = logging.getLogger(__name__)


class DefaultCurveBuilder:
    """Builds the DefaultCurves aggregate from a normalized sample frame"""

    def __init__(self, config: ApplicationConfig, schedule: ScheduleMetadata,
                 builder: Optional[CurveBuilder] = None):
        self.config = config
        self.schedule = schedule
        self.builder = builder or CurveBuilder(config, min_samples=config.default_min_samples)

    def variant_table(self, samples: pd.DataFrame) -> pd.DataFrame:
        """Route type and stop count of every variant present in the samples"""
        rows = []
        for route_id, variant_id in samples[["route_id", "route_variant_id"]].drop_duplicates().itertuples(index=False):
            try:
                route_type = self.schedule.route_type(route_id)
                stop_count = len(self.schedule.variant_stop_ids(route_id, variant_id))
            except RouteNotFound:
                logger.warning(f"Variant {variant_id} of route {route_id} is not in the schedule, "
                               f"its samples are left out of the default curves")
                continue
            rows.append((route_id, variant_id, route_type.token, stop_count))
        return pd.DataFrame(rows, columns=["route_id", "route_variant_id", "route_type", "stop_count"])

    def build(self, samples: pd.DataFrame, route_ids: Optional[Iterable[str]] = None) -> DefaultCurves:
        if route_ids is not None:
            samples = samples[samples["route_id"].isin({str(r) for r in route_ids})]

        table = self.variant_table(samples)
        df = samples.merge(table, on=["route_id", "route_variant_id"], how="inner")
        df = df[(df["stop_index"] >= 0) & (df["stop_index"] < df["stop_count"])]
        df = df.assign(route_section=self._sections(df["stop_index"].to_numpy(), df["stop_count"].to_numpy()))

        default_curves = DefaultCurves()
        columns = ["route_type", "route_section", "time_slot", "event_type"]
        for (route_type, section, slot, event), group in df.groupby(columns, sort=True):
            key = DefaultCurveKey(RouteType(route_type), RouteSection(section),
                                  TimeSlot.from_token(slot), EventType.parse(event))
            try:
                curve = self.builder.build(group["delay"].to_numpy(), key=key)
            except InsufficientSamples as e:
                logger.debug(f"Skipping default curve {key}: {e}")
                continue
            default_curves.all_default_curves[key] = curve

        logger.info(f"Built {len(default_curves)} default curves from {len(df)} samples")
        return default_curves

    @staticmethod
    def _sections(stop_index: np.ndarray, stop_count: np.ndarray) -> np.ndarray:
        if len(stop_index) == 0:
            return np.array([], dtype=object)
        return np.array([RouteSection.for_stop(int(i), int(n)).token for i, n in zip(stop_index, stop_count)],
                        dtype=object)
