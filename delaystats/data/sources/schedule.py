"""
Schedule metadata.
The statistics core only needs a small read-only view of the static schedule:
which variant a trip runs, the stop sequence of each variant and the type of
each route.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Protocol, Tuple, Union

from ...core.errors import RouteNotFound, StopNotOnRoute
from ..models.keys import RouteType

logger = logging.getLogger(__name__)


class ScheduleMetadata(Protocol):
    def route_ids(self) -> List[str]:
        ...

    def route_type(self, route_id: str) -> RouteType:
        ...

    def variant_stop_ids(self, route_id: str, route_variant_id: str) -> Tuple[str, ...]:
        ...

    def resolve(self, route_id: str, trip_id: str, stop_id: str, after_index: int = -1) -> Tuple[str, int]:
        ...


class StaticSchedule:
    """In-memory schedule metadata.

    ``routes`` maps route ids to a dict with ``route_type`` (GTFS code or
    name), ``variants`` (variant id -> ordered stop ids) and ``trips``
    (trip id -> variant id).
    """

    def __init__(self, routes: Mapping[str, Mapping]):
        self._route_types: Dict[str, RouteType] = {}
        self._variants: Dict[str, Dict[str, Tuple[str, ...]]] = {}
        self._trips: Dict[str, Dict[str, str]] = {}

        for route_id, route in routes.items():
            route_id = str(route_id)
            self._route_types[route_id] = RouteType.from_gtfs(route.get("route_type", 3))
            self._variants[route_id] = {
                str(variant_id): tuple(str(s) for s in stop_ids)
                for variant_id, stop_ids in route.get("variants", {}).items()
            }
            self._trips[route_id] = {
                str(trip_id): str(variant_id)
                for trip_id, variant_id in route.get("trips", {}).items()
            }

        logger.debug(f"Schedule with {len(self._route_types)} routes loaded")

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "StaticSchedule":
        with open(path, 'r') as f:
            return cls(json.load(f))

    def to_dict(self) -> Dict[str, Dict]:
        return {
            route_id: {
                "route_type": self._route_types[route_id].value,
                "variants": {v: list(stops) for v, stops in self._variants[route_id].items()},
                "trips": dict(self._trips[route_id]),
            }
            for route_id in self._route_types
        }

    def route_ids(self) -> List[str]:
        return sorted(self._route_types)

    def route_type(self, route_id: str) -> RouteType:
        try:
            return self._route_types[str(route_id)]
        except KeyError:
            raise RouteNotFound(route_id)

    def route_variants(self, route_id: str) -> Dict[str, Tuple[str, ...]]:
        try:
            return dict(self._variants[str(route_id)])
        except KeyError:
            raise RouteNotFound(route_id)

    def variant_stop_ids(self, route_id: str, route_variant_id: str) -> Tuple[str, ...]:
        variants = self.route_variants(route_id)
        try:
            return variants[str(route_variant_id)]
        except KeyError:
            raise RouteNotFound(f"{route_id}/{route_variant_id}")

    def trip_variant(self, route_id: str, trip_id: str) -> str:
        trips = self._trips.get(str(route_id))
        if trips is None:
            raise RouteNotFound(route_id)
        try:
            return trips[str(trip_id)]
        except KeyError:
            raise RouteNotFound(route_id, trip_id)

    def resolve(self, route_id: str, trip_id: str, stop_id: str, after_index: int = -1) -> Tuple[str, int]:
        """Variant of the trip and position of ``stop_id`` in it.

        For variants serving a stop more than once, the first position after
        ``after_index`` is taken.
        """
        variant_id = self.trip_variant(route_id, trip_id)
        stop_ids = self._variants[str(route_id)].get(variant_id, ())
        for index in range(after_index + 1, len(stop_ids)):
            if stop_ids[index] == str(stop_id):
                return variant_id, index
        raise StopNotOnRoute(stop_id, route_id, trip_id)

