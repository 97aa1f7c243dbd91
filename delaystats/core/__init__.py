"""
Core module.
Exports the application configuration and the error taxonomy.
"""

from .config import ApplicationConfig
from .errors import (
    DelayStatsError, InsufficientSamples, MalformedTree, SerializationError,
    RouteNotFound, StopNotOnRoute, NoDataAvailable
)

__all__ = [
    "ApplicationConfig",
    "DelayStatsError",
    "InsufficientSamples",
    "MalformedTree",
    "SerializationError",
    "RouteNotFound",
    "StopNotOnRoute",
    "NoDataAvailable"
]
