"""
Error taxonomy for the statistics core.
Every error carries enough context (key path, node type, identifiers) to be
diagnosed without inspecting internals.
"""

from typing import Any, Optional


class DelayStatsError(Exception):
    """Base class for all errors raised by delaystats"""
    pass


class InsufficientSamples(DelayStatsError):
    """A grouping key had fewer observations than the confidence floor"""

    def __init__(self, count: int, required: int, key: Any = None):
        self.count = count
        self.required = required
        self.key = key
        where = f" for {key}" if key is not None else ""
        super().__init__(f"Only {count} usable samples{where}, need at least {required}")


class MalformedTree(DelayStatsError):
    """Persisted data does not parse as its expected node shape"""

    def __init__(self, message: str, path: Any = None, node_type: Optional[str] = None):
        self.path = path
        self.node_type = node_type
        details = []
        if node_type:
            details.append(f"node {node_type}")
        if path is not None:
            details.append(f"at {path}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")


class SerializationError(DelayStatsError):
    """A curve or container failed to encode or decode under the active codec"""

    def __init__(self, message: str, path: Any = None, node_type: Optional[str] = None):
        self.path = path
        self.node_type = node_type
        suffix = f" ({node_type} at {path})" if path is not None else ""
        super().__init__(f"{message}{suffix}")


class RouteNotFound(DelayStatsError):
    def __init__(self, route_id: str, trip_id: Optional[str] = None):
        self.route_id = route_id
        self.trip_id = trip_id
        if trip_id is None:
            super().__init__(f"Route {route_id} not found in schedule")
        else:
            super().__init__(f"Trip {trip_id} of route {route_id} not found in schedule")


class StopNotOnRoute(DelayStatsError):
    def __init__(self, stop_id: str, route_id: str, trip_id: Optional[str] = None):
        self.stop_id = stop_id
        self.route_id = route_id
        self.trip_id = trip_id
        super().__init__(f"Stop {stop_id} is not served by trip {trip_id} of route {route_id}")


class NoDataAvailable(DelayStatsError):
    """Neither a specific nor a default curve exists for a resolved category"""

    def __init__(self, category: Any):
        self.category = category
        super().__init__(f"No delay statistics available for {category}")
