"""
Effective SABR parameters for overnight rates compounded in arrears.

An option on a rate accrued over [tau0, tau1] keeps accumulating
volatility after the start of the period. The dynamics are mapped onto an
equivalent SABR smile with expiry tau1 whose parameters are given by
closed-form expressions in (tau0, tau1) and the exponent q of the linear
volatility decay within the period.

The coefficients below are a pinned formula and are reproduced exactly.

Reference:
- Willems, S. (2020). "SABR smiles for RFR caplets." Risk.
"""

import numpy as np

from .sabr import SabrParameters, SmileModel

DEFAULT_Q = 1.0


def effective_sabr_before_start(
    params: SabrParameters,
    tau0: float,
    tau1: float,
    q: float = DEFAULT_Q
) -> SabrParameters:
    """Effective parameters when the accrual period has not started (tau0 > 0)."""
    alpha, beta, rho, nu = params.alpha, params.beta, params.rho, params.nu

    tau = 2 * q * tau0 + tau1
    gamma1 = tau * (2 * tau**3 + tau1**3 + q * (4 * q - 2) * tau0**3 + 6 * q * tau0**2 * tau1) / (
        (4 * q + 3) * (2 * q + 1))
    gamma2 = 3 * q * rho**2 * (tau1 - tau0)**2 * (
        3 * tau**2 - tau1**2 + 5 * q * tau0**2 + 4 * tau0 * tau1) / (
        (4 * q + 3) * (3 * q + 2)**2)
    gamma = gamma1 + gamma2

    rho_hat = rho * (3 * tau**2 + 2 * q * tau0**2 + tau1**2) / (np.sqrt(gamma) * (6 * q + 4))
    nu_hat2 = nu**2 * gamma * (2 * q + 1) / (tau**3 * tau1)
    h = nu**2 * (tau**2 + 2 * q * tau0**2 + tau1**2) / (2 * tau1 * tau * (q + 1)) - nu_hat2
    alpha_hat2 = alpha**2 / (2 * q + 1) * tau / tau1 * np.exp(0.5 * h * tau1)

    return _effective(params, alpha_hat2, beta, rho_hat, nu_hat2)


def effective_sabr_after_start(
    params: SabrParameters,
    tau0: float,
    tau1: float,
    q: float = DEFAULT_Q
) -> SabrParameters:
    """Effective parameters once the accrual period has started (tau0 <= 0)."""
    alpha, beta, rho, nu = params.alpha, params.beta, params.rho, params.nu

    zeta = 3.0 / (4 * q + 3) * (1.0 / (2 * q + 1) + rho**2 * 2 * q / (3 * q + 2)**2)
    rho_hat = 2 * rho / (np.sqrt(zeta) * (3 * q + 2))
    nu_hat2 = nu**2 * zeta * (2 * q + 1)
    alpha_hat2 = alpha**2 / (2 * q + 1) * (tau1 / (tau1 - tau0))**(2 * q) * np.exp(
        0.5 * (nu**2 / (q + 1) - nu_hat2) * tau1)

    return _effective(params, alpha_hat2, beta, rho_hat, nu_hat2)


def effective_sabr(
    params: SabrParameters,
    tau0: float,
    tau1: float,
    q: float = DEFAULT_Q
) -> SabrParameters:
    """
    Effective SABR parameters for an in-arrears period [tau0, tau1].

    Args:
        params: Underlying SABR parameters
        tau0: Time to the start of the accrual period (may be negative)
        tau1: Time to the end of the accrual period
        q: Exponent of the volatility decay inside the period

    Returns:
        Parameters of the equivalent smile with expiry tau1
    """
    if tau1 <= 0 or tau1 <= tau0:
        raise ValueError(f"Invalid accrual period [{tau0}, {tau1}]")
    if tau0 <= 0.0:
        return effective_sabr_after_start(params, tau0, tau1, q)
    return effective_sabr_before_start(params, tau0, tau1, q)


def _effective(
    params: SabrParameters,
    alpha_hat2: float,
    beta: float,
    rho_hat: float,
    nu_hat2: float
) -> SabrParameters:
    return SabrParameters.unchecked(
        alpha=np.sqrt(alpha_hat2),
        beta=beta,
        rho=rho_hat,
        nu=np.sqrt(nu_hat2),
        shift=params.shift,
    )


class InArrearsSmileModel(SmileModel):
    """
    Smile of an overnight in-arrears period.

    Evaluates the wrapped model at the effective parameters; the expiry
    passed to volatility() is the end of the accrual period.
    """

    def __init__(
        self,
        base: SmileModel,
        accrual_start: float,
        accrual_end: float,
        q: float = DEFAULT_Q
    ):
        if accrual_end <= 0 or accrual_end <= accrual_start:
            raise ValueError(f"Invalid accrual period [{accrual_start}, {accrual_end}]")
        self.base = base
        self.accrual_start = accrual_start
        self.accrual_end = accrual_end
        self.q = q

    def volatility(
        self,
        forward: float,
        strike: float,
        expiry: float,
        params: SabrParameters
    ) -> float:
        effective = effective_sabr(params, self.accrual_start, self.accrual_end, self.q)
        return self.base.volatility(forward, strike, expiry, effective)


__all__ = [
    "DEFAULT_Q",
    "effective_sabr",
    "effective_sabr_before_start",
    "effective_sabr_after_start",
    "InArrearsSmileModel",
]
