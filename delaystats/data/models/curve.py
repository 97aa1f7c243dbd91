"""
Curve and CurveSet data models.
Immutable compressed cumulative distribution functions of delays, and
families of them indexed by an initial delay.
"""

import math
from bisect import bisect_left, insort
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ...tree.shape import Children, TreeNode
from .keys import INITIAL_DELAY


class Curve(TreeNode):
    """
    Piecewise linear cumulative distribution of delays (in seconds).

    Control points are strictly increasing in delay and non-decreasing in
    probability, the first probability is >= 0 and the last one is exactly 1.
    """
    __slots__ = ("_delays", "_probabilities", "sample_size")

    NAME = "Curve"
    FIELDS = ("delays", "probabilities", "sample_size")

    def __init__(self, delays: Sequence[float], probabilities: Sequence[float], sample_size: int = 0):
        x = np.array(delays, dtype=np.float64)
        y = np.array(probabilities, dtype=np.float64)

        if x.ndim != 1 or y.ndim != 1 or len(x) != len(y):
            raise ValueError("Curve needs two one-dimensional sequences of equal length")
        if len(x) < 2:
            raise ValueError(f"Curve needs at least 2 control points, got {len(x)}")
        if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
            raise ValueError("Curve control points must be finite")
        if not np.all(np.diff(x) > 0):
            raise ValueError("Curve delays must be strictly increasing")
        if not np.all(np.diff(y) >= 0):
            raise ValueError("Curve probabilities must be non-decreasing")
        if y[0] < 0:
            raise ValueError(f"First probability {y[0]} is negative")
        if abs(y[-1] - 1.0) > 1e-9:
            raise ValueError(f"Last probability must be 1, got {y[-1]}")
        y[-1] = 1.0

        x.setflags(write=False)
        y.setflags(write=False)
        self._delays = x
        self._probabilities = y
        self.sample_size = int(sample_size)

    @property
    def delays(self) -> np.ndarray:
        return self._delays

    @property
    def probabilities(self) -> np.ndarray:
        return self._probabilities

    @property
    def min_delay(self) -> float:
        return float(self._delays[0])

    @property
    def max_delay(self) -> float:
        return float(self._delays[-1])

    def points(self) -> List[Tuple[float, float]]:
        return list(zip(self._delays.tolist(), self._probabilities.tolist()))

    def y_at_x(self, delay: float) -> float:
        """Probability that the delay is at most ``delay``"""
        return float(np.interp(delay, self._delays, self._probabilities, left=0.0, right=1.0))

    def x_at_y(self, probability: float) -> float:
        """Smallest delay at which the cumulative probability reaches ``probability``"""
        p = min(1.0, max(0.0, float(probability)))
        y = self._probabilities
        i = int(np.searchsorted(y, p, side="left"))
        if i == 0:
            return float(self._delays[0])
        if i >= len(y):
            return float(self._delays[-1])
        x0, x1 = self._delays[i - 1], self._delays[i]
        y0, y1 = y[i - 1], y[i]
        return float(x0 + (p - y0) / (y1 - y0) * (x1 - x0))

    def median(self) -> float:
        return self.x_at_y(0.5)

    @classmethod
    def average(cls, curves: Sequence["Curve"]) -> "Curve":
        """Point-wise mean of several curves over the union of their control points"""
        if not curves:
            raise ValueError("Cannot average an empty list of curves")
        xs = np.unique(np.concatenate([c.delays for c in curves]))
        ys = np.mean([np.interp(xs, c.delays, c.probabilities, left=0.0, right=1.0) for c in curves], axis=0)
        return cls(xs, np.maximum.accumulate(ys), sum(c.sample_size for c in curves))

    def field_data(self) -> Dict[str, object]:
        return {
            "delays": self._delays.tolist(),
            "probabilities": self._probabilities.tolist(),
            "sample_size": self.sample_size
        }

    def __len__(self) -> int:
        return len(self._delays)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Curve):
            return NotImplemented
        return (self.sample_size == other.sample_size
                and np.array_equal(self._delays, other._delays)
                and np.array_equal(self._probabilities, other._probabilities))

    __hash__ = None

    def __repr__(self) -> str:
        return (f"Curve({len(self)} points, {self.min_delay:.0f}s..{self.max_delay:.0f}s, "
                f"n={self.sample_size})")


class CurveSet(TreeNode):
    """
    Conditional delay curves at a later stop, indexed by the delay measured
    at an earlier stop. Keys are kept ordered for nearest-neighbour lookups.
    """

    NAME = "CurveSet"
    CHILDREN = (Children("curves", Curve, INITIAL_DELAY),)

    def __init__(self, curves: Optional[Mapping[float, Curve]] = None):
        self._curves: Dict[float, Curve] = {}
        self._keys: List[float] = []
        for initial_delay, curve in (curves or {}).items():
            self.add_curve(initial_delay, curve)

    def add_curve(self, initial_delay: float, curve: Curve) -> None:
        key = float(initial_delay)
        if key not in self._curves:
            insort(self._keys, key)
        self._curves[key] = curve

    @property
    def curves(self) -> Dict[float, Curve]:
        return {key: self._curves[key] for key in self._keys}

    def keys(self) -> List[float]:
        return list(self._keys)

    def items(self) -> Iterator[Tuple[float, Curve]]:
        for key in self._keys:
            yield key, self._curves[key]

    def nearest(self, initial_delay: float) -> Tuple[float, Curve]:
        """Bucket whose key is closest to ``initial_delay``; ties go to the lower key"""
        if math.isnan(initial_delay):
            raise ValueError("Initial delay must not be NaN")
        if not self._keys:
            raise KeyError("CurveSet is empty")
        i = bisect_left(self._keys, initial_delay)
        if i == 0:
            key = self._keys[0]
        elif i == len(self._keys):
            key = self._keys[-1]
        else:
            lower, upper = self._keys[i - 1], self._keys[i]
            key = upper if upper - initial_delay < initial_delay - lower else lower
        return key, self._curves[key]

    @property
    def sample_size(self) -> int:
        """Average number of samples per curve"""
        if not self._curves:
            return 0
        return sum(c.sample_size for c in self._curves.values()) // len(self._curves)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterable[float]:
        return iter(list(self._keys))

    def __eq__(self, other) -> bool:
        if not isinstance(other, CurveSet):
            return NotImplemented
        return self._keys == other._keys and self._curves == other._curves

    __hash__ = None

    def __repr__(self) -> str:
        return f"CurveSet({len(self)} curves at {self._keys})"
