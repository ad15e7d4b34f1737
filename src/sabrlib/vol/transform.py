"""
Unconstrained parameterisation of the SABR parameters.

The optimizer works on real-valued y; the SABR parameters are recovered
through smooth bijections onto their admissible ranges:

- alpha, nu: single-sided onto (0, inf), x = log(1 + exp(y))
- beta: double-sided onto [0, 1], x = mid + half * tanh(y)
- rho: double-sided onto (-RHO_LIMIT, RHO_LIMIT)

Fixed parameters are excluded from y.
"""

from typing import Dict, Optional, Sequence, Tuple
import numpy as np

from .sabr import PARAMETER_NAMES, RHO_LIMIT, SabrParameters


# Above this exponent log1p(exp(y)) is y to machine precision
EXP_CAP = 50.0
# tanh saturates at +-1 for |y| beyond this
TANH_CAP = 25.0


def _single_to_optimizer(x: float) -> float:
    if x <= 0.0:
        return -EXP_CAP
    if x > EXP_CAP:
        return x
    return float(np.log(np.expm1(x)))


def _single_to_model(y: float) -> float:
    if y > EXP_CAP:
        return y
    return float(np.log1p(np.exp(y)))


def _single_derivative(y: float) -> float:
    if y > EXP_CAP:
        return 1.0
    return float(1.0 / (1.0 + np.exp(-y)))


def _double_to_optimizer(x: float, lower: float, upper: float) -> float:
    mid = 0.5 * (upper + lower)
    half = 0.5 * (upper - lower)
    u = (x - mid) / half
    if u >= 1.0:
        return TANH_CAP
    if u <= -1.0:
        return -TANH_CAP
    return float(np.arctanh(u))


def _double_to_model(y: float, lower: float, upper: float) -> float:
    mid = 0.5 * (upper + lower)
    half = 0.5 * (upper - lower)
    return float(mid + half * np.tanh(y))


def _double_derivative(y: float, lower: float, upper: float) -> float:
    half = 0.5 * (upper - lower)
    return float(half / np.cosh(y) ** 2)


class ParameterTransform:
    """
    Bijection between SABR parameters and the optimizer space.

    Example:
        >>> t = ParameterTransform()
        >>> y = t.to_optimizer_space(params, fixed={"beta"})
        >>> t.to_model_space(y, {"beta"}, {"beta": 0.5}, shift=params.shift)
    """

    bounds: Dict[str, Tuple[float, float]] = {
        "beta": (0.0, 1.0),
        "rho": (-RHO_LIMIT, RHO_LIMIT),
    }

    def free_parameters(self, fixed: Optional[Sequence[str]] = None) -> Tuple[str, ...]:
        """Names of the free parameters, in canonical order."""
        fixed = set(fixed or ())
        unknown = fixed - set(PARAMETER_NAMES)
        if unknown:
            raise ValueError(f"Unknown SABR parameters: {sorted(unknown)}")
        return tuple(name for name in PARAMETER_NAMES if name not in fixed)

    def to_optimizer_space(
        self,
        params: SabrParameters,
        fixed: Optional[Sequence[str]] = None
    ) -> np.ndarray:
        """Map the free parameters of params into the optimizer space."""
        values = params.to_dict()
        return np.array([
            self._forward(name, values[name]) for name in self.free_parameters(fixed)
        ])

    def to_model_space(
        self,
        y: np.ndarray,
        fixed: Optional[Sequence[str]] = None,
        fixed_values: Optional[Dict[str, float]] = None,
        shift: float = 0.0
    ) -> SabrParameters:
        """
        Rebuild SabrParameters from optimizer coordinates.

        Args:
            y: Optimizer coordinates of the free parameters
            fixed: Names of fixed parameters
            fixed_values: Values of the fixed parameters
            shift: Shift carried by the result
        """
        free = self.free_parameters(fixed)
        if len(y) != len(free):
            raise ValueError(f"Expected {len(free)} optimizer coordinates, got {len(y)}")
        fixed_values = fixed_values or {}

        values = {}
        for name in PARAMETER_NAMES:
            if name in free:
                values[name] = self._inverse(name, float(y[free.index(name)]))
            elif name in fixed_values:
                values[name] = float(fixed_values[name])
            else:
                raise ValueError(f"No value supplied for fixed parameter {name}")

        # tanh can round onto the closed bound; keep a free rho inside the open interval
        if "rho" in free:
            values["rho"] = float(np.clip(values["rho"], -RHO_LIMIT, RHO_LIMIT))
        return SabrParameters(shift=shift, **values)

    def model_derivative(
        self,
        y: np.ndarray,
        fixed: Optional[Sequence[str]] = None
    ) -> np.ndarray:
        """dp/dy for each free parameter (the transform is diagonal)."""
        free = self.free_parameters(fixed)
        return np.array([self._derivative(name, float(v)) for name, v in zip(free, y)])

    def _forward(self, name: str, x: float) -> float:
        if name in self.bounds:
            return _double_to_optimizer(x, *self.bounds[name])
        return _single_to_optimizer(x)

    def _inverse(self, name: str, y: float) -> float:
        if name in self.bounds:
            return _double_to_model(y, *self.bounds[name])
        return _single_to_model(y)

    def _derivative(self, name: str, y: float) -> float:
        if name in self.bounds:
            return _double_derivative(y, *self.bounds[name])
        return _single_derivative(y)


__all__ = ["ParameterTransform", "EXP_CAP", "TANH_CAP"]
