"""
Curves package - parameter term structures.

Provides:
- ParameterCurve: Parameter value as a function of expiry
- ConstantCurve / InterpolatedCurve: flat and node-based curves
- Local interpolators with flat extrapolation
"""

from .curve import ParameterCurve, ConstantCurve, InterpolatedCurve, as_curve
from .interpolation import (
    Interpolator,
    LinearInterpolator,
    StepInterpolator,
    LOCAL_METHODS,
    create_interpolator,
)

__all__ = [
    "ParameterCurve",
    "ConstantCurve",
    "InterpolatedCurve",
    "as_curve",
    "Interpolator",
    "LinearInterpolator",
    "StepInterpolator",
    "LOCAL_METHODS",
    "create_interpolator",
]
