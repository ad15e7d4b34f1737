"""
SABR stochastic volatility model.

Implements the SABR smile for rates volatility:
- Hagan et al. implied Black volatility approximation
- Shifted SABR for negative rates
- A smile model interface so another 4-parameter model can be plugged
  into the calibration without touching the bootstrapper

References:
- Hagan, P.S. et al. (2002). "Managing Smile Risk." Wilmott Magazine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, Sequence
import numpy as np


PARAMETER_NAMES = ("alpha", "beta", "rho", "nu")

# Practical bound on |rho| keeping the Hagan formula well conditioned
RHO_LIMIT = 0.999


@dataclass(frozen=True)
class SabrParameters:
    """
    SABR model parameters for a single expiry.

    Attributes:
        alpha: Initial volatility level (alpha >= 0)
        beta: CEV exponent (0 = normal, 1 = lognormal)
        rho: Correlation between forward and vol (-1 < rho < 1)
        nu: Volatility of volatility (nu >= 0)
        shift: Shift for negative rates (default 0)
    """
    alpha: float
    beta: float
    rho: float
    nu: float
    shift: float = 0.0

    def __post_init__(self):
        """Validate parameters."""
        if self.alpha < 0:
            raise ValueError(f"alpha must be non-negative, got {self.alpha}")
        if not 0 <= self.beta <= 1:
            raise ValueError(f"beta must be in [0, 1], got {self.beta}")
        if not -1 < self.rho < 1:
            raise ValueError(f"rho must be in (-1, 1), got {self.rho}")
        if self.nu < 0:
            raise ValueError(f"nu must be non-negative, got {self.nu}")

    @classmethod
    def unchecked(
        cls,
        alpha: float,
        beta: float,
        rho: float,
        nu: float,
        shift: float = 0.0
    ) -> "SabrParameters":
        """
        Build without validation.

        Used for finite-difference bumps and effective parameters, which may
        sit marginally outside the admissible box.
        """
        instance = object.__new__(cls)
        for name, value in zip(PARAMETER_NAMES + ("shift",), (alpha, beta, rho, nu, shift)):
            object.__setattr__(instance, name, float(value))
        return instance

    def with_parameter(self, name: str, value: float) -> "SabrParameters":
        """Return a copy with one parameter replaced."""
        if name not in PARAMETER_NAMES and name != "shift":
            raise ValueError(f"Unknown SABR parameter: {name}")
        return replace(self, **{name: float(value)})

    def as_array(self) -> np.ndarray:
        """(alpha, beta, rho, nu) as an array; the shift is excluded."""
        return np.array([self.alpha, self.beta, self.rho, self.nu])

    @classmethod
    def from_array(cls, values: Sequence[float], shift: float = 0.0) -> "SabrParameters":
        """Create from an (alpha, beta, rho, nu) sequence."""
        alpha, beta, rho, nu = (float(v) for v in values)
        return cls(alpha=alpha, beta=beta, rho=rho, nu=nu, shift=shift)

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "alpha": self.alpha,
            "beta": self.beta,
            "rho": self.rho,
            "nu": self.nu,
            "shift": self.shift
        }

    @classmethod
    def from_dict(cls, d: Dict[str, float]) -> "SabrParameters":
        """Create from dictionary."""
        return cls(
            alpha=d["alpha"],
            beta=d["beta"],
            rho=d["rho"],
            nu=d["nu"],
            shift=d.get("shift", 0.0)
        )


def hagan_black_vol(
    F: float,
    K: float,
    T: float,
    alpha: float,
    beta: float,
    rho: float,
    nu: float,
    shift: float = 0.0
) -> float:
    """
    Hagan et al. approximation for SABR Black implied volatility.

    Args:
        F: Forward rate
        K: Strike
        T: Time to expiry (years)
        alpha: SABR alpha (instantaneous vol)
        beta: CEV exponent
        rho: Correlation
        nu: Vol of vol
        shift: Shift for negative rates

    Returns:
        Shifted Black implied volatility
    """
    F_s = F + shift
    K_s = K + shift

    if F_s <= 0 or K_s <= 0:
        raise ValueError(f"Shifted forward ({F_s}) and strike ({K_s}) must be positive")

    if abs(F_s - K_s) < 1e-10:
        return _hagan_atm_vol(F_s, T, alpha, beta, rho, nu)

    one_minus_beta = 1 - beta
    log_fk = np.log(F_s / K_s)
    fk_mid = (F_s * K_s) ** (one_minus_beta / 2)

    denom = fk_mid * (1 + one_minus_beta**2 / 24 * log_fk**2
                      + one_minus_beta**4 / 1920 * log_fk**4)

    z = nu / alpha * fk_mid * log_fk

    if abs(z) < 1e-10:
        z_over_x = 1.0
    else:
        sqrt_term = np.sqrt(1 - 2 * rho * z + z**2)
        z_over_x = z / np.log((sqrt_term + z - rho) / (1 - rho))

    term1 = one_minus_beta**2 * alpha**2 / (24 * fk_mid**2)
    term2 = rho * beta * nu * alpha / (4 * fk_mid)
    term3 = (2 - 3 * rho**2) * nu**2 / 24

    time_adj = 1 + (term1 + term2 + term3) * T

    return float(alpha / denom * z_over_x * time_adj)


def _hagan_atm_vol(
    F: float,
    T: float,
    alpha: float,
    beta: float,
    rho: float,
    nu: float
) -> float:
    """ATM Black vol from Hagan formula (F already shifted)."""
    F_beta = F ** (1 - beta)

    term1 = (1 - beta)**2 * alpha**2 / (24 * F**(2 - 2*beta))
    term2 = rho * beta * nu * alpha / (4 * F_beta)
    term3 = (2 - 3 * rho**2) * nu**2 / 24

    return float(alpha / F_beta * (1 + (term1 + term2 + term3) * T))


# Below this |z| the z / x(z) factor and its derivatives use the series expansion
Z_SERIES_LIMIT = 1e-4


def hagan_black_vol_gradient(
    F: float,
    K: float,
    T: float,
    alpha: float,
    beta: float,
    rho: float,
    nu: float,
    shift: float = 0.0
) -> np.ndarray:
    """
    Closed-form partials of the Hagan Black volatility.

    Differentiates the same expansion as hagan_black_vol, including its
    ATM branch, so the result is consistent with that function.

    Args:
        F: Forward rate
        K: Strike
        T: Time to expiry (years)
        alpha, beta, rho, nu: SABR parameters
        shift: Shift for negative rates

    Returns:
        Array (d/d alpha, d/d beta, d/d rho, d/d nu)
    """
    F_s = F + shift
    K_s = K + shift

    if F_s <= 0 or K_s <= 0:
        raise ValueError(f"Shifted forward ({F_s}) and strike ({K_s}) must be positive")

    b = 1 - beta
    if abs(F_s - K_s) < 1e-10:
        log_fk = 0.0
        log_p = 2 * np.log(F_s)
    else:
        log_fk = np.log(F_s / K_s)
        log_p = np.log(F_s * K_s)

    # m = (F K)^((1 - beta) / 2) and dm/dbeta = -m ln(F K) / 2
    m = np.exp(b / 2 * log_p)
    dm_dbeta = -0.5 * m * log_p

    series = 1 + b**2 / 24 * log_fk**2 + b**4 / 1920 * log_fk**4
    dseries_dbeta = -(b / 12 * log_fk**2 + b**3 / 480 * log_fk**4)
    denom = m * series
    ddenom_dbeta = dm_dbeta * series + m * dseries_dbeta

    z = nu * m * log_fk / alpha
    dz_dalpha = -z / alpha
    dz_dbeta = nu * log_fk * dm_dbeta / alpha
    dz_dnu = m * log_fk / alpha

    if abs(z) < Z_SERIES_LIMIT:
        z_over_x = 1 - rho * z / 2 + (2 - 3 * rho**2) * z**2 / 12
        dzx_dz = -rho / 2 + (2 - 3 * rho**2) * z / 6
        dzx_drho = -z / 2 - rho * z**2 / 2
    else:
        sqrt_term = np.sqrt(1 - 2 * rho * z + z**2)
        x = np.log((sqrt_term + z - rho) / (1 - rho))
        dx_drho = (-z / sqrt_term - 1) / (sqrt_term + z - rho) + 1 / (1 - rho)
        z_over_x = z / x
        dzx_dz = (x - z / sqrt_term) / x**2
        dzx_drho = -z / x**2 * dx_drho

    term1 = b**2 * alpha**2 / (24 * m**2)
    term2 = rho * beta * nu * alpha / (4 * m)
    term3 = (2 - 3 * rho**2) * nu**2 / 24
    time_adj = 1 + (term1 + term2 + term3) * T

    dtime_dalpha = T * (b**2 * alpha / (12 * m**2) + rho * beta * nu / (4 * m))
    dtime_dbeta = T * (
        -b * alpha**2 / (12 * m**2) + term1 * log_p
        + rho * nu * alpha / (4 * m) + term2 * log_p / 2
    )
    dtime_drho = T * (beta * nu * alpha / (4 * m) - rho * nu**2 / 4)
    dtime_dnu = T * (rho * beta * alpha / (4 * m) + (2 - 3 * rho**2) * nu / 12)

    scale = alpha / denom
    vol = scale * z_over_x * time_adj

    d_alpha = (
        z_over_x * time_adj / denom
        + scale * dzx_dz * dz_dalpha * time_adj
        + scale * z_over_x * dtime_dalpha
    )
    d_beta = (
        scale * (dzx_dz * dz_dbeta * time_adj + z_over_x * dtime_dbeta)
        - vol * ddenom_dbeta / denom
    )
    d_rho = scale * (dzx_drho * time_adj + z_over_x * dtime_drho)
    d_nu = scale * (dzx_dz * dz_dnu * time_adj + z_over_x * dtime_dnu)

    return np.array([d_alpha, d_beta, d_rho, d_nu], dtype=np.float64)


class SmileModel(ABC):
    """
    Interface of a 4-parameter smile model used by the calibration.

    Implementations return shifted Black volatilities; the shift is carried
    by the SabrParameters instance.
    """

    #: Relative bump used by the default finite-difference Jacobian
    bump: float = 1e-6

    @abstractmethod
    def volatility(
        self,
        forward: float,
        strike: float,
        expiry: float,
        params: SabrParameters
    ) -> float:
        """Shifted Black volatility at one strike."""
        pass

    def volatilities(
        self,
        forward: float,
        strikes: np.ndarray,
        expiry: float,
        params: SabrParameters
    ) -> np.ndarray:
        """Shifted Black volatilities across strikes."""
        return np.array([self.volatility(forward, K, expiry, params) for K in strikes])

    def volatility_jacobian(
        self,
        forward: float,
        strikes: np.ndarray,
        expiry: float,
        params: SabrParameters
    ) -> np.ndarray:
        """
        Derivatives of the volatilities w.r.t. (alpha, beta, rho, nu).

        Central differences with a relative bump; returns shape (n, 4).
        """
        base = params.as_array()
        jac = np.zeros((len(strikes), len(PARAMETER_NAMES)))
        for j, name in enumerate(PARAMETER_NAMES):
            h = self.bump * max(abs(base[j]), 1e-2)
            up = _bumped(params, name, base[j] + h)
            down = _bumped(params, name, base[j] - h)
            jac[:, j] = (
                self.volatilities(forward, strikes, expiry, up)
                - self.volatilities(forward, strikes, expiry, down)
            ) / (2 * h)
        return jac


def _bumped(params: SabrParameters, name: str, value: float) -> SabrParameters:
    values = params.to_dict()
    values[name] = value
    return SabrParameters.unchecked(**values)


class HaganSabrModel(SmileModel):
    """SABR smile using the Hagan et al. (2002) lognormal expansion."""

    def volatility(
        self,
        forward: float,
        strike: float,
        expiry: float,
        params: SabrParameters
    ) -> float:
        return hagan_black_vol(
            forward, strike, expiry,
            params.alpha, params.beta, params.rho, params.nu, params.shift
        )

    def volatility_jacobian(
        self,
        forward: float,
        strikes: np.ndarray,
        expiry: float,
        params: SabrParameters
    ) -> np.ndarray:
        """Closed-form derivatives w.r.t. (alpha, beta, rho, nu); shape (n, 4)."""
        return np.array([
            hagan_black_vol_gradient(
                forward, K, expiry,
                params.alpha, params.beta, params.rho, params.nu, params.shift
            )
            for K in strikes
        ]).reshape(len(strikes), len(PARAMETER_NAMES))


__all__ = [
    "PARAMETER_NAMES",
    "RHO_LIMIT",
    "SabrParameters",
    "SmileModel",
    "HaganSabrModel",
    "hagan_black_vol",
    "hagan_black_vol_gradient",
]
