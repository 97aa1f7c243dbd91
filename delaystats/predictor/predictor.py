"""
Delay prediction from a statistics tree.
Finds the most specific trustworthy curve (or curve set) for a query, loading
route subtrees on demand, and falls back to the default curves when the
specific data is missing or too sparse.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple

from ..core.config import ApplicationConfig
from ..core.errors import MalformedTree, NoDataAvailable, SerializationError
from ..data.models.keys import (
    CurveSetKey, DefaultCurveKey, EventType, PrecisionType, RouteSection, TimeSlot
)
from ..data.models.prediction import PredictionQuery, PredictionResult
from ..data.models.statistics import DefaultCurves, DelayStatistics, RouteData, RouteVariantData
from ..data.sources.realtime import RecentDelaySource
from ..data.sources.schedule import ScheduleMetadata
from ..tree.codec import TreeCodec

logger = logging.getLogger(__name__)


class Predictor:
    """Answers delay queries against an in-memory or persisted statistics tree.

    Either pass a ``statistics`` tree, or let the predictor load from
    ``data_dir`` (defaults to ``config.data_dir``) route by route.
    """

    def __init__(self, schedule: ScheduleMetadata,
                 config: Optional[ApplicationConfig] = None,
                 statistics: Optional[DelayStatistics] = None,
                 codec: Optional[TreeCodec] = None,
                 data_dir: Optional[Path] = None,
                 recent_delay_source: Optional[RecentDelaySource] = None):
        self.config = config or ApplicationConfig()
        self.schedule = schedule
        self.codec = codec or TreeCodec(self.config.serde_format, strict=self.config.strict_loading)
        self.data_dir = Path(data_dir) if data_dir is not None else Path(self.config.data_dir)
        self.recent_delay_source = recent_delay_source

        self._fixed_statistics = statistics
        self._statistics = statistics
        self._routes: Dict[str, Optional[RouteData]] = {}
        self._default_curves: Optional[DefaultCurves] = None
        self._lock = threading.Lock()

    # ---------------------------------------------------------------- loading

    def reload(self):
        """Forget everything loaded so far; the next queries read the files again"""
        with self._lock:
            self._statistics = self._fixed_statistics
            self._routes.clear()
            self._default_curves = None
        logger.info(f"Predictor caches cleared, statistics will be reloaded from {self.data_dir}")

    def _load_inline_root(self) -> Optional[DelayStatistics]:
        # a root saved with DelayStatistics in the leaf set is one single file
        if self._statistics is None and not self.data_dir.is_dir() \
                and self.codec.file_path(self.data_dir).is_file():
            logger.info(f"Loading whole statistics tree from {self.codec.file_path(self.data_dir)}")
            try:
                self._statistics = self.codec.load(self.data_dir, DelayStatistics, self.config.leaf_set)
            except (MalformedTree, SerializationError) as e:
                logger.warning(f"Skipping unreadable statistics tree: {e}")
                self._statistics = DelayStatistics()
        return self._statistics

    def route_data(self, route_id: str) -> Optional[RouteData]:
        with self._lock:
            statistics = self._load_inline_root()
            if statistics is not None:
                return statistics.specific.get(route_id)
            if route_id in self._routes:
                return self._routes[route_id]

            path = self.codec.entry_path(self.data_dir, DelayStatistics, "specific", route_id)
            try:
                route_data = self.codec.load_optional(path, RouteData, self.config.leaf_set)
            except (MalformedTree, SerializationError) as e:
                logger.warning(f"Skipping unreadable statistics of route {route_id}: {e}")
                route_data = None
            self._routes[route_id] = route_data
            return route_data

    def default_curves(self) -> DefaultCurves:
        with self._lock:
            statistics = self._load_inline_root()
            if statistics is not None:
                return statistics.general
            if self._default_curves is None:
                path = self.codec.entry_path(self.data_dir, DelayStatistics, "general")
                try:
                    loaded = self.codec.load_optional(path, DefaultCurves, self.config.leaf_set)
                except (MalformedTree, SerializationError) as e:
                    logger.warning(f"Skipping unreadable default curves: {e}")
                    loaded = None
                self._default_curves = loaded if loaded is not None else DefaultCurves()
            return self._default_curves

    def _variant(self, route_id: str, variant_id: str) -> Optional[RouteVariantData]:
        route_data = self.route_data(route_id)
        if route_data is None:
            return None
        return route_data.variants.get(variant_id)

    # -------------------------------------------------------------- prediction

    def predict(self, query: PredictionQuery) -> PredictionResult:
        """Most specific confident answer for ``query``.

        Raises RouteNotFound or StopNotOnRoute for identifiers unknown to the
        schedule and NoDataAvailable when not even a default curve exists.
        """
        event_type = EventType.parse(query.event_type)
        route_type = self.schedule.route_type(query.route_id)

        start_index = None
        if query.start_stop_id is not None:
            variant_id, start_index = self.schedule.resolve(query.route_id, query.trip_id, query.start_stop_id)
            _, end_index = self.schedule.resolve(query.route_id, query.trip_id, query.stop_id,
                                                 after_index=start_index)
        else:
            variant_id, end_index = self.schedule.resolve(query.route_id, query.trip_id, query.stop_id)

        stop_count = len(self.schedule.variant_stop_ids(query.route_id, variant_id))
        time_slot = TimeSlot.from_datetime(query.date_time, self.config.timezone)
        default_key = DefaultCurveKey(route_type, RouteSection.for_stop(end_index, stop_count),
                                      time_slot, event_type)

        initial_delay = query.initial_delay
        if query.use_realtime and start_index is None:
            start_index, initial_delay = self._recent_delay(query, end_index)
        elif query.use_realtime and initial_delay is None:
            found_index, found_delay = self._recent_delay(query, start_index + 1)
            if found_index == start_index:
                initial_delay = found_delay

        context = dict(route_variant_id=variant_id, start_stop_index=start_index, end_stop_index=end_index)
        variant = self._variant(query.route_id, variant_id)

        if variant is not None and start_index is not None:
            curve_set = variant.curve_sets.get(CurveSetKey(start_index, end_index, time_slot, event_type))
            if curve_set is not None and len(curve_set) > 0:
                if initial_delay is not None:
                    bucket, curve = curve_set.nearest(initial_delay)
                    if curve.sample_size >= self.config.min_samples:
                        return PredictionResult(PrecisionType.SPECIFIC, curve=curve,
                                                initial_delay_bucket=bucket, **context)
                elif curve_set.sample_size >= self.config.min_samples:
                    return PredictionResult(PrecisionType.SPECIFIC, curve_set=curve_set, **context)
        elif variant is not None:
            curve = variant.general_delay[event_type].get(end_index)
            if curve is not None and curve.sample_size >= self.config.min_samples:
                return PredictionResult(PrecisionType.SEMI_SPECIFIC, curve=curve, **context)

        logger.debug(f"No confident specific data for route {query.route_id} variant {variant_id} "
                     f"stops {start_index}->{end_index}, falling back to {default_key}")
        curve = self.default_curves().get(default_key)
        if curve is None:
            raise NoDataAvailable(default_key)
        return PredictionResult(PrecisionType.GENERAL, curve=curve, category=default_key, **context)

    def _recent_delay(self, query: PredictionQuery, before_index: int) -> Tuple[Optional[int], Optional[float]]:
        if self.recent_delay_source is None:
            logger.debug("Realtime lookup requested but no recent delay source configured")
            return None, None
        found = self.recent_delay_source.recent_delay(query.route_id, query.trip_id, before_index, query.date_time)
        if found is None:
            return None, None
        return found
