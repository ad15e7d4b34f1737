"""
Base option pricing formulas.

Implements the Black'76 / shifted Black formula pair used by the smile
calibration, together with the analytic derivatives needed to chain
sensitivities through quote conversions:
- Black'76 and shifted Black call prices
- Black vega
- Implied Black volatility from a price
- Hagan's approximate normal <-> Black volatility conversion

All prices are undiscounted unless a discount factor is supplied.

Reference:
- Hagan, P.S. "Volatility conversion calculator." Technical report, Bloomberg.
"""

from typing import Tuple
import numpy as np
from scipy.optimize import brentq, newton
from scipy.stats import norm


# Standard normal CDF and PDF
N = norm.cdf
n = norm.pdf

# Relative moneyness below which the ATM branch of the conversion is used
ATM_LIMIT = 1.0e-3

_VOL_LOWER = 1.0e-8
_VOL_UPPER = 5.0


def black76_call(
    F: float,
    K: float,
    T: float,
    sigma_b: float,
    df: float = 1.0
) -> float:
    """
    Black'76 model call option price.

    Assumes forward follows geometric Brownian motion:
    dF = sigma_b * F * dW

    Args:
        F: Forward rate
        K: Strike
        T: Time to expiry
        sigma_b: Black (lognormal) volatility
        df: Discount factor

    Returns:
        Call option price
    """
    if T <= 0:
        return max(F - K, 0) * df

    if F <= 0 or K <= 0:
        raise ValueError("Forward and strike must be positive for Black model")

    if sigma_b <= 0:
        return max(F - K, 0) * df

    sqrt_t = np.sqrt(T)
    d1 = (np.log(F / K) + 0.5 * sigma_b**2 * T) / (sigma_b * sqrt_t)
    d2 = d1 - sigma_b * sqrt_t

    return float(df * (F * N(d1) - K * N(d2)))


def shifted_black_call(
    F: float,
    K: float,
    T: float,
    sigma_b: float,
    shift: float,
    df: float = 1.0
) -> float:
    """
    Shifted Black'76 model call option price.

    Allows pricing when forward can be negative:
    d(F + shift) = sigma_b * (F + shift) * dW

    Args:
        F: Forward rate (can be negative)
        K: Strike (can be negative)
        T: Time to expiry
        sigma_b: Black volatility
        shift: Shift parameter
        df: Discount factor

    Returns:
        Call option price
    """
    F_shifted = F + shift
    K_shifted = K + shift

    if F_shifted <= 0 or K_shifted <= 0:
        raise ValueError(f"Shifted forward ({F_shifted}) and strike ({K_shifted}) must be positive")

    return black76_call(F_shifted, K_shifted, T, sigma_b, df)


def black76_vega(
    F: float,
    K: float,
    T: float,
    sigma_b: float,
    df: float = 1.0
) -> float:
    """
    Sensitivity of the Black'76 price to the Black volatility.

    Identical for calls and puts.
    """
    if T <= 0 or sigma_b <= 0 or F <= 0 or K <= 0:
        return 0.0

    sqrt_t = np.sqrt(T)
    d1 = (np.log(F / K) + 0.5 * sigma_b**2 * T) / (sigma_b * sqrt_t)

    return float(df * F * sqrt_t * n(d1))


def implied_vol_black(
    price: float,
    F: float,
    K: float,
    T: float,
    df: float = 1.0,
    xtol: float = 1e-15
) -> float:
    """
    Compute implied Black volatility from a call price.

    Brent root search on the price function. The price must lie strictly
    between the intrinsic value and the forward (the no-arbitrage bounds).

    Args:
        price: Call option price
        F: Forward rate (already shifted if applicable)
        K: Strike (already shifted if applicable)
        T: Time to expiry
        df: Discount factor
        xtol: Absolute tolerance on the volatility

    Returns:
        Implied Black volatility
    """
    if T <= 0:
        raise ValueError("Cannot compute implied vol for expired option")

    if F <= 0 or K <= 0:
        raise ValueError("Forward and strike must be positive")

    intrinsic = max(F - K, 0.0) * df
    if not intrinsic < price < F * df:
        raise ValueError(
            f"Price {price} outside no-arbitrage bounds ({intrinsic}, {F * df})"
        )

    def objective(sigma):
        return black76_call(F, K, T, sigma, df) - price

    upper = _VOL_UPPER
    while objective(upper) < 0:
        upper *= 2.0
        if upper > 1.0e3:
            raise ValueError(f"No implied volatility below {upper} for price {price}")

    if objective(_VOL_LOWER) >= 0:
        return _VOL_LOWER

    return float(brentq(objective, _VOL_LOWER, upper, xtol=xtol, maxiter=200))


def black_to_normal_approx(
    F: float,
    K: float,
    T: float,
    sigma_b: float
) -> Tuple[float, float]:
    """
    Hagan's explicit Black -> normal volatility approximation.

    Args:
        F: Forward (shifted, positive)
        K: Strike (shifted, positive)
        T: Time to expiry
        sigma_b: Black volatility

    Returns:
        (sigma_n, d sigma_n / d sigma_b)
    """
    if F <= 0 or K <= 0:
        raise ValueError("Forward and strike must be positive")

    log_fk = np.log(F / K)
    s2t = sigma_b**2 * T

    if abs((F - K) / K) < ATM_LIMIT:
        factor1 = np.sqrt(F * K) * (1.0 + log_fk**2 / 24.0)
        a = 1.0 / 24.0
    else:
        factor1 = (F - K) / log_fk
        a = (1.0 - log_fk**2 / 120.0) / 24.0

    denom = 1.0 + a * s2t + s2t**2 / 5670.0
    sigma_n = sigma_b * factor1 / denom

    ddenom = (a + 2.0 * s2t / 5670.0) * 2.0 * sigma_b * T
    dsigma_n = factor1 * (denom - sigma_b * ddenom) / denom**2

    return float(sigma_n), float(dsigma_n)


def normal_to_black_guess(
    F: float,
    K: float,
    T: float,
    sigma_n: float
) -> float:
    """
    Explicit normal -> Black approximation.

    Not accurate enough on its own; used to seed the root search in
    implied_vol_black_from_normal.
    """
    if F <= 0 or K <= 0:
        raise ValueError("Forward and strike must be positive")

    log_fk = np.log(F / K)
    s2t = sigma_n**2 * T

    if abs((F - K) / K) < ATM_LIMIT:
        factor1 = 1.0 / np.sqrt(F * K)
        factor2 = (1.0 + s2t / (24.0 * F * K)) / (1.0 + log_fk**2 / 24.0)
        return float(sigma_n * factor1 * factor2)

    factor1 = log_fk / (F - K)
    factor2 = 1.0 + (1.0 - log_fk**2 / 120.0) * s2t / (24.0 * F * K)
    return float(sigma_n * factor1 * factor2)


def implied_vol_black_from_normal(
    F: float,
    K: float,
    T: float,
    sigma_n: float,
    tol: float = 1e-14
) -> Tuple[float, float]:
    """
    Black volatility equivalent to a normal volatility.

    Inverts black_to_normal_approx with Newton's method seeded by
    normal_to_black_guess. The derivative is the inverse of the forward
    conversion derivative at the solution.

    Args:
        F: Forward (shifted, positive)
        K: Strike (shifted, positive)
        T: Time to expiry
        sigma_n: Normal volatility
        tol: Newton tolerance on the Black volatility

    Returns:
        (sigma_b, d sigma_b / d sigma_n)
    """
    if sigma_n <= 0:
        raise ValueError(f"Normal volatility must be positive, got {sigma_n}")

    guess = normal_to_black_guess(F, K, T, sigma_n)

    sigma_b = newton(
        lambda s: black_to_normal_approx(F, K, T, s)[0] - sigma_n,
        guess,
        fprime=lambda s: black_to_normal_approx(F, K, T, s)[1],
        tol=tol,
        maxiter=100
    )

    _, dsigma_n = black_to_normal_approx(F, K, T, sigma_b)
    if dsigma_n == 0:
        raise ValueError("Degenerate normal/Black conversion")

    return float(sigma_b), float(1.0 / dsigma_n)


__all__ = [
    "black76_call",
    "shifted_black_call",
    "black76_vega",
    "implied_vol_black",
    "black_to_normal_approx",
    "normal_to_black_guess",
    "implied_vol_black_from_normal",
]
