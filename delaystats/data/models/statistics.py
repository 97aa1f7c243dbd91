"""
Statistics tree data models.
The hierarchical entity set: root -> route -> route variant -> curve sets and
per-stop curves, plus the default curves aggregate.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from ...tree.shape import Child, Children, TreeNode
from .curve import Curve, CurveSet
from .keys import (
    CURVE_SET_KEY, DEFAULT_CURVE_KEY, ROUTE_ID, ROUTE_VARIANT_ID, STOP_INDEX,
    CurveSetKey, DefaultCurveKey, EventType
)


@dataclass
class EventPair(TreeNode):
    """Unconditional per-stop delay curves, one mapping per event type"""
    arrival: Dict[int, Curve] = field(default_factory=dict)
    departure: Dict[int, Curve] = field(default_factory=dict)

    NAME = "EventPair"
    CHILDREN = (
        Children("arrival", Curve, STOP_INDEX, entry="arrival"),
        Children("departure", Curve, STOP_INDEX, entry="departure"),
    )

    def __getitem__(self, event_type: EventType) -> Dict[int, Curve]:
        if event_type == EventType.ARRIVAL:
            return self.arrival
        return self.departure

    def __len__(self) -> int:
        return len(self.arrival) + len(self.departure)


@dataclass
class RouteVariantData(TreeNode):
    route_variant_id: str
    stop_ids: Tuple[str, ...] = ()
    curve_sets: Dict[CurveSetKey, CurveSet] = field(default_factory=dict)
    general_delay: EventPair = field(default_factory=EventPair)

    NAME = "RouteVariantData"
    FIELDS = ("route_variant_id", "stop_ids")
    CHILDREN = (
        Child("general_delay", EventPair, entry="general_delay"),
        Children("curve_sets", CurveSet, CURVE_SET_KEY, entry="curve_sets"),
    )

    def __post_init__(self):
        self.route_variant_id = str(self.route_variant_id)
        self.stop_ids = tuple(str(s) for s in self.stop_ids)

    def field_data(self):
        return {"route_variant_id": self.route_variant_id, "stop_ids": list(self.stop_ids)}

    def is_empty(self) -> bool:
        return not self.curve_sets and not len(self.general_delay)


@dataclass
class RouteData(TreeNode):
    route_id: str
    variants: Dict[str, RouteVariantData] = field(default_factory=dict)

    NAME = "RouteData"
    FIELDS = ("route_id",)
    CHILDREN = (Children("variants", RouteVariantData, ROUTE_VARIANT_ID),)

    def __post_init__(self):
        self.route_id = str(self.route_id)


@dataclass
class DefaultCurves(TreeNode):
    """Coarse fallback curves independent of specific routes and stops"""
    all_default_curves: Dict[DefaultCurveKey, Curve] = field(default_factory=dict)

    NAME = "DefaultCurves"
    CHILDREN = (Children("all_default_curves", Curve, DEFAULT_CURVE_KEY),)

    def get(self, key: DefaultCurveKey) -> Optional[Curve]:
        return self.all_default_curves.get(key)

    def __len__(self) -> int:
        return len(self.all_default_curves)


@dataclass
class DelayStatistics(TreeNode):
    """Root of the statistics tree"""
    specific: Dict[str, RouteData] = field(default_factory=dict)
    general: DefaultCurves = field(default_factory=DefaultCurves)

    NAME = "DelayStatistics"
    CHILDREN = (
        Child("general", DefaultCurves, entry="general"),
        Children("specific", RouteData, ROUTE_ID, entry="specific"),
    )

    def merge(self, other: "DelayStatistics", route_ids: Optional[Iterable[str]] = None) -> "DelayStatistics":
        """Replace entries by key with those of ``other``.

        Routes present in ``other`` (or listed in ``route_ids``, which also
        drops routes that were rebuilt without data) replace the existing
        ones wholesale; default curves are replaced key by key.
        """
        for route_id in (route_ids or ()):
            if route_id not in other.specific:
                self.specific.pop(route_id, None)
        self.specific.update(other.specific)
        self.general.all_default_curves.update(other.general.all_default_curves)
        return self


NODE_TYPES = {
    node_type.NAME: node_type
    for node_type in (Curve, CurveSet, EventPair, RouteVariantData, RouteData, DefaultCurves, DelayStatistics)
}
