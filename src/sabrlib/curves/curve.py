"""
Parameter term structures.

A ParameterCurve maps a time to expiry onto the value of one model
parameter. Used both for parameters supplied to the calibration (fixed
beta, rho or shift) and for the calibrated output.
"""

from abc import ABC, abstractmethod
from typing import Sequence
import numpy as np

from .interpolation import create_interpolator


class ParameterCurve(ABC):
    """Value of a model parameter as a function of time to expiry."""

    @abstractmethod
    def value(self, t: float) -> float:
        """Parameter value at year fraction t."""
        pass

    def __call__(self, t: float) -> float:
        return self.value(t)


class ConstantCurve(ParameterCurve):
    """Curve with the same value at every expiry."""

    def __init__(self, constant: float, name: str = ""):
        self.constant = float(constant)
        self.name = name

    def value(self, t: float) -> float:
        return self.constant

    def __repr__(self) -> str:
        return f"ConstantCurve({self.constant!r})"


class InterpolatedCurve(ParameterCurve):
    """
    Curve through node values with local interpolation.

    Attributes:
        times: Node expiries
        values: Node values
        method: Interpolation method name ("linear" or "step")
    """

    def __init__(
        self,
        times: Sequence[float],
        values: Sequence[float],
        method: str = "linear",
        name: str = ""
    ):
        self.method = method
        self.name = name
        self._interpolator = create_interpolator(method)
        self._interpolator.fit(np.asarray(times), np.asarray(values))

    @property
    def times(self) -> np.ndarray:
        return self._interpolator.times

    @property
    def values(self) -> np.ndarray:
        return self._interpolator.values

    def value(self, t: float) -> float:
        return self._interpolator.interpolate(t)

    def __repr__(self) -> str:
        return f"InterpolatedCurve(name={self.name!r}, method={self.method!r}, n={len(self.times)})"


def as_curve(value, name: str = "") -> ParameterCurve:
    """Wrap a float into a ConstantCurve; curves are returned unchanged."""
    if isinstance(value, ParameterCurve):
        return value
    return ConstantCurve(float(value), name=name)


__all__ = ["ParameterCurve", "ConstantCurve", "InterpolatedCurve", "as_curve"]
