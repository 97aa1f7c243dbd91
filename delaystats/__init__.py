"""
Delay statistics engine.
Builds, persists and queries empirical delay distributions of transit vehicles.
"""

__version__ = "0.3.0"
