"""
Specific curve build pass.
Per route variant: one unconditional curve per stop and event type, and one
curve set per stop pair, time slot and end event type built from delays
observed on the same vehicle journeys.
"""

import gc
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, Optional

import pandas as pd
import psutil

from ..core.config import ApplicationConfig
from ..core.errors import InsufficientSamples, RouteNotFound
from ..data.models.curve import CurveSet
from ..data.models.keys import CurveSetKey, EventType, TimeSlot
from ..data.models.statistics import EventPair, RouteData, RouteVariantData
from ..data.sources.schedule import ScheduleMetadata
from .curve_builder import CurveBuilder
from .curve_sets import build_curve_set

logger = logging.getLogger(__name__)

JOURNEY = ["trip_id", "trip_start_date"]


class SpecificCurveBuilder:
    """Builds RouteData subtrees from a normalized sample frame"""

    def __init__(self, config: ApplicationConfig, schedule: Optional[ScheduleMetadata] = None,
                 builder: Optional[CurveBuilder] = None):
        self.config = config
        self.schedule = schedule
        self.builder = builder or CurveBuilder(config)

    def build(self, samples: pd.DataFrame, route_ids: Optional[Iterable[str]] = None) -> Dict[str, RouteData]:
        """Build all selected routes; routes without any usable partition are left out"""
        if route_ids is not None:
            selected = {str(r) for r in route_ids}
            samples = samples[samples["route_id"].isin(selected)]

        groups = [(route_id, frame) for route_id, frame in samples.groupby("route_id", sort=True)]
        logger.info(f"Building specific curves for {len(groups)} routes from {len(samples)} samples "
                    f"with {self.config.max_workers} workers")

        routes: Dict[str, RouteData] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {executor.submit(self.build_route, route_id, frame): route_id for route_id, frame in groups}
            # single aggregation point, workers never touch the result tree
            for done, future in enumerate(as_completed(futures), start=1):
                route_id = futures[future]
                route_data = future.result()
                if route_data is not None:
                    routes[route_id] = route_data
                memory_mb = psutil.Process().memory_info().rss / (1024 * 1024)
                if memory_mb > self.config.max_memory_mb * 0.8:  # 80% threshold
                    logger.warning(f"Memory usage {memory_mb:.0f} MB close to the limit of "
                                   f"{self.config.max_memory_mb} MB, collecting garbage")
                    gc.collect()
                if done % 50 == 0 or done == len(futures):
                    logger.info(f"Finished {done}/{len(futures)} routes, memory usage {memory_mb:.0f} MB")

        return routes

    def build_route(self, route_id: str, frame: pd.DataFrame) -> Optional[RouteData]:
        route_data = RouteData(route_id=route_id)
        for variant_id, variant_frame in frame.groupby("route_variant_id", sort=True):
            variant_data = self.build_variant(route_id, str(variant_id), variant_frame)
            if not variant_data.is_empty():
                route_data.variants[variant_data.route_variant_id] = variant_data

        if not route_data.variants:
            logger.debug(f"No specific curves for route {route_id}")
            return None
        logger.debug(f"Route {route_id}: {len(route_data.variants)} variants")
        return route_data

    def build_variant(self, route_id: str, variant_id: str, frame: pd.DataFrame) -> RouteVariantData:
        variant_data = RouteVariantData(route_variant_id=variant_id, stop_ids=self._stop_ids(route_id, variant_id))
        variant_data.general_delay = self.build_general_delay(route_id, variant_id, frame)
        variant_data.curve_sets = self.build_curve_sets(route_id, variant_id, frame)
        return variant_data

    def build_general_delay(self, route_id: str, variant_id: str, frame: pd.DataFrame) -> EventPair:
        event_pair = EventPair()
        for (stop_index, event), group in frame.groupby(["stop_index", "event_type"], sort=True):
            key = (route_id, variant_id, int(stop_index), event)
            try:
                curve = self.builder.build(group["delay"].to_numpy(), key=key)
            except InsufficientSamples as e:
                logger.debug(f"Skipping {key}: {e}")
                continue
            event_pair[EventType.parse(event)][int(stop_index)] = curve
        return event_pair

    def build_curve_sets(self, route_id: str, variant_id: str, frame: pd.DataFrame) -> Dict[CurveSetKey, CurveSet]:
        journeys = frame.dropna(subset=["trip_id"])
        if journeys.empty:
            return {}
        journeys = journeys.drop_duplicates(subset=JOURNEY + ["stop_index", "event_type"], keep="last")

        starts = journeys[journeys["event_type"] == EventType.DEPARTURE.token]
        starts = starts[JOURNEY + ["stop_index", "delay", "time_slot"]].rename(
            columns={"stop_index": "start_stop_index", "delay": "initial_delay"})
        ends = journeys[JOURNEY + ["stop_index", "event_type", "delay"]].rename(
            columns={"stop_index": "end_stop_index", "delay": "end_delay"})

        pairs = starts.merge(ends, on=JOURNEY)
        pairs = pairs[pairs["start_stop_index"] < pairs["end_stop_index"]]

        curve_sets = {}
        columns = ["start_stop_index", "end_stop_index", "time_slot", "event_type"]
        for (start, end, slot, event), group in pairs.groupby(columns, sort=True):
            key = CurveSetKey(int(start), int(end), TimeSlot.from_token(slot), EventType.parse(event))
            if len(group) < self.config.min_samples:
                logger.debug(f"Skipping {route_id}/{variant_id} {key}: only {len(group)} journeys")
                continue
            curve_set = build_curve_set(group["initial_delay"].to_numpy(), group["end_delay"].to_numpy(),
                                        self.builder, key=key, rounding=self.config.delay_rounding_seconds)
            if curve_set is not None:
                curve_sets[key] = curve_set
        return curve_sets

    def _stop_ids(self, route_id: str, variant_id: str):
        if self.schedule is None:
            return ()
        try:
            return self.schedule.variant_stop_ids(route_id, variant_id)
        except RouteNotFound:
            logger.warning(f"Variant {variant_id} of route {route_id} is not in the schedule")
            return ()
