"""
Curve construction from raw delay observations.
Empirical CDF of a multiset of delays, compressed to a bounded number of
control points.
"""

from typing import Iterable, Optional, Tuple

import numpy as np

from ..core.config import ApplicationConfig
from ..core.errors import InsufficientSamples
from ..data.models.curve import Curve


def triangular_weights(values: np.ndarray, lower: float, focus: float, upper: float) -> np.ndarray:
    """Weight 1 at ``focus``, falling linearly to 0 at ``lower`` and ``upper``"""
    values = np.asarray(values, dtype=np.float64)
    weights = np.ones(len(values), dtype=np.float64)
    below = values < focus
    above = values > focus
    if focus > lower:
        weights[below] = (values[below] - lower) / (focus - lower)
    else:
        weights[below] = 0.0
    if upper > focus:
        weights[above] = 1.0 - (values[above] - focus) / (upper - focus)
    else:
        weights[above] = 0.0
    return np.clip(weights, 0.0, 1.0)


def empirical_cdf(values: np.ndarray, weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Control points of the (weighted) step CDF at each distinct delay.

    ``values`` must be sorted. The first point is pinned to 0 and the last
    to 1 so the piecewise linear curve spans the observed range.
    """
    xs, first_index = np.unique(values, return_index=True)
    cumulative = np.cumsum(weights)
    total = cumulative[-1]
    # cumulative weight up to and including the last occurrence of each value
    last_index = np.append(first_index[1:], len(values)) - 1
    ys = cumulative[last_index] / total
    ys[0] = 0.0
    ys[-1] = 1.0
    return xs, ys


def simplify(xs: np.ndarray, ys: np.ndarray, max_points: int, tolerance: float = 0.0) -> Tuple[np.ndarray, np.ndarray]:
    """Greedy error-driven knot selection.

    Starts from the end points and repeatedly inserts the point with the
    largest vertical error against the current interpolation, until the
    point budget is used up or every point is within ``tolerance``.
    """
    n = len(xs)
    if n <= 2 or n <= max_points and tolerance <= 0:
        return xs, ys

    selected = np.zeros(n, dtype=bool)
    selected[0] = selected[-1] = True
    count = 2
    while count < max(2, max_points):
        approximation = np.interp(xs, xs[selected], ys[selected])
        errors = np.abs(approximation - ys)
        errors[selected] = -1.0
        worst = int(np.argmax(errors))
        if errors[worst] <= tolerance:
            break
        selected[worst] = True
        count += 1

    return xs[selected], ys[selected]


def enforce_monotonic(xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Make a point sequence a valid CDF: strictly increasing delays,
    non-decreasing probabilities within [0, 1], ending at exactly 1."""
    keep = np.concatenate(([True], np.diff(xs) > 0))
    xs, ys = xs[keep], ys[keep]
    ys = np.maximum.accumulate(np.clip(ys, 0.0, 1.0))
    ys[-1] = 1.0
    return xs, ys


class CurveBuilder:
    """Turns multisets of delay observations into compressed curves"""

    def __init__(self, config: Optional[ApplicationConfig] = None,
                 min_samples: Optional[int] = None,
                 max_points: Optional[int] = None,
                 tolerance: Optional[float] = None):
        config = config or ApplicationConfig()
        self.min_samples = config.min_samples if min_samples is None else min_samples
        self.max_points = config.max_curve_points if max_points is None else max_points
        self.tolerance = config.curve_tolerance if tolerance is None else tolerance

    def build(self, delays: Iterable[float], weights: Optional[Iterable[float]] = None,
              key=None, min_samples: Optional[int] = None) -> Curve:
        """Build the curve of ``delays``.

        Optional per-observation ``weights`` turn it into a weighted CDF;
        observations with zero weight do not count towards the sample size.
        Raises InsufficientSamples below the confidence floor or when fewer
        than two distinct delays remain.
        """
        floor = self.min_samples if min_samples is None else min_samples
        values = np.asarray(delays if isinstance(delays, np.ndarray) else list(delays), dtype=np.float64)
        if weights is None:
            weights = np.ones(len(values), dtype=np.float64)
        else:
            weights = np.asarray(weights if isinstance(weights, np.ndarray) else list(weights), dtype=np.float64)
            if weights.shape != values.shape:
                raise ValueError("delays and weights must have the same length")

        keep = np.isfinite(values) & (weights > 0)
        values, weights = values[keep], weights[keep]
        # stable ordering keeps the result independent of the input order
        order = np.lexsort((weights, values))
        values, weights = values[order], weights[order]

        if len(values) < max(floor, 1):
            raise InsufficientSamples(len(values), floor, key)

        xs, ys = empirical_cdf(values, weights)
        if len(xs) < 2:
            raise InsufficientSamples(len(xs), 2, key)

        xs, ys = simplify(xs, ys, self.max_points, self.tolerance)
        xs, ys = enforce_monotonic(xs, ys)
        return Curve(xs, ys, sample_size=len(values))

    def average(self, curves) -> Curve:
        """Averaged curve, compressed to the same point budget"""
        curve = Curve.average(list(curves))
        xs, ys = simplify(curve.delays, curve.probabilities, self.max_points, self.tolerance)
        xs, ys = enforce_monotonic(np.array(xs), np.array(ys))
        return Curve(xs, ys, sample_size=curve.sample_size)
