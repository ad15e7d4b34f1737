"""
Local interpolation of parameter term structures.

Provides:
- LinearInterpolator: piecewise linear between nodes
- StepInterpolator: previous-value hold

Each node only affects the intervals adjacent to it and both methods are
flat outside the node range, so appending a later node leaves the curve
unchanged up to the previous last node.
"""

from abc import ABC, abstractmethod
from typing import Optional
import numpy as np


class Interpolator(ABC):
    """Base class for node-based parameter interpolation."""

    def __init__(self):
        self.times: Optional[np.ndarray] = None
        self.values: Optional[np.ndarray] = None

    def fit(self, times: np.ndarray, values: np.ndarray) -> None:
        """
        Store the nodes, sorted by time.

        Args:
            times: Node expiries in years (distinct)
            values: Parameter value at each node
        """
        times = np.asarray(times, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)
        if times.shape != values.shape:
            raise ValueError(f"Got {len(times)} node times but {len(values)} values")
        if times.size == 0:
            raise ValueError("At least one node is required")

        order = np.argsort(times, kind="stable")
        if np.any(np.diff(times[order]) == 0):
            raise ValueError("Node times must be distinct")
        self.times = times[order]
        self.values = values[order]

    def _check_fitted(self) -> None:
        if self.times is None:
            raise RuntimeError("Interpolator has no nodes; call fit() first")

    def _left_node(self, t: float) -> int:
        """Index of the last node at or before t."""
        return int(np.searchsorted(self.times, t, side="right")) - 1

    @abstractmethod
    def interpolate(self, t: float) -> float:
        """Value at expiry t."""

    def __call__(self, t: float) -> float:
        return self.interpolate(t)


class LinearInterpolator(Interpolator):
    """Piecewise linear, flat before the first and after the last node."""

    def interpolate(self, t: float) -> float:
        self._check_fitted()
        if t <= self.times[0]:
            return float(self.values[0])
        if t >= self.times[-1]:
            return float(self.values[-1])

        i = self._left_node(t)
        w = (t - self.times[i]) / (self.times[i + 1] - self.times[i])
        return float(self.values[i] + w * (self.values[i + 1] - self.values[i]))


class StepInterpolator(Interpolator):
    """
    Previous-value hold.

    Between two nodes the earlier node's value applies; the first node's
    value also covers everything before it.
    """

    def interpolate(self, t: float) -> float:
        self._check_fitted()
        return float(self.values[max(self._left_node(t), 0)])


LOCAL_METHODS = ("linear", "step")

_ALIASES = {
    "linear": LinearInterpolator,
    "lin": LinearInterpolator,
    "step": StepInterpolator,
    "previous": StepInterpolator,
    "step_upper": StepInterpolator,
}

_NON_LOCAL = ("cubic_spline", "cubic", "spline", "pchip")


def create_interpolator(method: str) -> Interpolator:
    """
    Build an interpolator by name.

    Args:
        method: "linear" or "step" (a few aliases are accepted)

    Returns:
        Unfitted Interpolator

    Raises:
        ValueError: for spline methods (not local) and unknown names
    """
    key = method.lower().strip().replace("-", "_").replace(" ", "_")
    if key in _NON_LOCAL:
        raise ValueError(f"Interpolation method {method!r} is not local; use one of {LOCAL_METHODS}")
    if key not in _ALIASES:
        raise ValueError(f"Unknown interpolation method: {method!r}")
    return _ALIASES[key]()


__all__ = [
    "Interpolator",
    "LinearInterpolator",
    "StepInterpolator",
    "LOCAL_METHODS",
    "create_interpolator",
]
