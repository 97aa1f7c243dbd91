"""
Conditional curve set construction.
Given pairs of (delay at an earlier stop, delay at a later stop) observed on the
same vehicle journeys, build one curve of the later delay per initial delay
bucket. Buckets are placed by recursively subdividing the observed initial
delay range.
"""

import logging
from typing import List, Optional

import numpy as np

from ..core.errors import InsufficientSamples
from ..data.models.curve import Curve, CurveSet
from .curve_builder import CurveBuilder, triangular_weights

logger = logging.getLogger(__name__)

MIN_MARKER_DISTANCE = 20.0  # seconds
MIN_MARKER_SAMPLES = 20
MIN_CURVE_SPAN = 13.0  # seconds; narrower bucket curves are not informative
MIN_BUCKET_SAMPLES = 2


def initial_delay_markers(initial_delays: np.ndarray,
                          min_distance: float = MIN_MARKER_DISTANCE,
                          min_samples: int = MIN_MARKER_SAMPLES) -> List[float]:
    """Bucket boundaries between the smallest and largest initial delay.

    ``initial_delays`` must be sorted. Neighbouring markers are at least
    ``min_distance`` seconds and ``min_samples`` observations apart. The
    returned list starts with the minimum and ends with the maximum.
    """
    if len(initial_delays) == 0:
        return []
    lower = float(initial_delays[0])
    upper = float(initial_delays[-1])
    inner: List[float] = []
    _subdivide(initial_delays, lower, upper, min_distance, min_samples, inner)
    if upper > lower:
        return [lower] + inner + [upper]
    return [lower]


def _subdivide(values: np.ndarray, lower: float, upper: float,
               min_distance: float, min_samples: int, markers: List[float]) -> None:
    # smallest and largest position for a new marker, by delay distance
    min_by_delay = lower + min_distance
    max_by_delay = upper - min_distance

    # ... and by observation count
    first = int(np.searchsorted(values, lower, side="left"))
    last = int(np.searchsorted(values, upper, side="right"))
    if last - first < 2 * min_samples:
        return
    min_by_count = float(values[first + min_samples])
    max_by_count = float(values[last - 1 - min_samples])

    min_x = max(min_by_delay, min_by_count)
    max_x = min(max_by_delay, max_by_count)
    if min_x > max_x:
        return

    mid = (min_x + max_x) / 2.0
    _subdivide(values, lower, mid, min_distance, min_samples, markers)
    markers.append(mid)
    _subdivide(values, mid, upper, min_distance, min_samples, markers)


def build_curve_set(initial_delays, end_delays, builder: CurveBuilder,
                    key=None, rounding: float = 0) -> Optional[CurveSet]:
    """Build the curve set for paired delays, or None if no bucket qualifies.

    Each bucket curve is built from the end delays of all pairs whose initial
    delay lies between the neighbouring markers, weighted by closeness to the
    bucket's marker.
    """
    initial = np.asarray(initial_delays, dtype=np.float64)
    end = np.asarray(end_delays, dtype=np.float64)
    if initial.shape != end.shape:
        raise ValueError("Initial and end delays must be paired")

    valid = np.isfinite(initial) & np.isfinite(end)
    initial, end = initial[valid], end[valid]
    if rounding:
        initial = np.trunc(initial / rounding) * rounding
        end = np.trunc(end / rounding) * rounding

    order = np.lexsort((end, initial))
    initial, end = initial[order], end[order]

    markers = initial_delay_markers(initial)
    if len(markers) < 2:
        logger.debug(f"Not enough spread in initial delays for {key}")
        return None

    bounds = [markers[0]] + markers + [markers[-1]]
    curve_set = CurveSet()
    for lower, mid, upper in zip(bounds, bounds[1:], bounds[2:]):
        first = int(np.searchsorted(initial, lower, side="left"))
        last = int(np.searchsorted(initial, upper, side="right"))
        if last - first < MIN_BUCKET_SAMPLES:
            continue

        weights = triangular_weights(initial[first:last], lower, mid, upper)
        try:
            curve = builder.build(end[first:last], weights=weights, key=key, min_samples=MIN_BUCKET_SAMPLES)
        except InsufficientSamples as e:
            logger.debug(f"Skipping bucket {mid} of {key}: {e}")
            continue

        if _span(curve) < MIN_CURVE_SPAN:
            continue
        curve_set.add_curve(mid, curve)

    if len(curve_set) == 0:
        return None
    return curve_set


def _span(curve: Curve) -> float:
    return curve.max_delay - curve.min_delay
