"""
HTTP front end module.
"""

from .web_server import PredictionServer

__all__ = ["PredictionServer"]
