"""
SABR smile calibration for a single expiry bucket.

Fits SABR parameters to shifted Black volatilities:
- Non-linear least squares (scipy least_squares) in an unconstrained space
- Four-point multi-start, lowest chi-square wins
- Any subset of the parameters can be held fixed
- Residuals in volatility space, or in shifted Black price space
- Inverse Jacobian mapping target vols to parameters for risk
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import numpy as np
from scipy.optimize import least_squares

from ..errors import CalibrationDivergence, MalformedInput, NoCalibratableData
from ..options.base_models import black76_vega, shifted_black_call
from .sabr import PARAMETER_NAMES, HaganSabrModel, SabrParameters, SmileModel
from .transform import ParameterTransform

logger = logging.getLogger(__name__)

# Residual used when the model cannot be evaluated
PENALTY = 1e10

NU_STARTS = (0.1, 0.5)
ALPHA_HIGH_FACTOR = 2.0


@dataclass(frozen=True)
class CandidateFit:
    """Outcome of the optimizer from one start point."""
    start: SabrParameters
    parameters: Optional[SabrParameters]
    chi_square: float
    start_chi_square: float
    success: bool
    message: str
    nfev: int = 0


@dataclass(frozen=True)
class SmileFitResult:
    """
    Result of a smile fit.

    Attributes:
        parameters: Best-fit parameters
        chi_square: Sum of squared weighted residuals at the optimum
        inverse_jacobian: 4 x n sensitivities of (alpha, beta, rho, nu) to the
            target shifted vols; rows of fixed parameters are zero
        model_volatilities: Smile at the fitted parameters
        candidates: Outcome of every start point, in start order
    """
    parameters: SabrParameters
    chi_square: float
    inverse_jacobian: np.ndarray
    model_volatilities: np.ndarray
    candidates: Tuple[CandidateFit, ...]


class SmileProblem:
    """Weighted residuals of one bucket, as functions of optimizer coordinates."""

    def __init__(
        self,
        model: SmileModel,
        transform: ParameterTransform,
        forward: float,
        shift: float,
        expiry: float,
        strikes: np.ndarray,
        vols: np.ndarray,
        errors: np.ndarray,
        fixed: Dict[str, float],
        price_space: bool
    ):
        self.model = model
        self.transform = transform
        self.forward = forward
        self.shift = shift
        self.expiry = expiry
        self.strikes = strikes
        self.vols = vols
        self.errors = errors
        self.fixed = fixed
        self.price_space = price_space
        self.free = transform.free_parameters(fixed)
        self.free_index = [PARAMETER_NAMES.index(name) for name in self.free]

        if price_space:
            self.targets = np.array([
                shifted_black_call(forward, K, expiry, v, shift) for K, v in zip(strikes, vols)
            ])
            self.target_vegas = self._vegas(vols)
        else:
            self.targets = vols
            self.target_vegas = None

    @property
    def size(self) -> int:
        return len(self.targets)

    def _vegas(self, vols: np.ndarray) -> np.ndarray:
        F = self.forward + self.shift
        return np.array([
            black76_vega(F, K + self.shift, self.expiry, v) for K, v in zip(self.strikes, vols)
        ])

    def parameters(self, y: np.ndarray) -> SabrParameters:
        return self.transform.to_model_space(y, tuple(self.fixed), self.fixed, shift=self.shift)

    def model_values(self, params: SabrParameters) -> np.ndarray:
        vols = self.model.volatilities(self.forward, self.strikes, self.expiry, params)
        if not self.price_space:
            return vols
        return np.array([
            shifted_black_call(self.forward, K, self.expiry, v, self.shift)
            for K, v in zip(self.strikes, vols)
        ])

    def residuals(self, y: np.ndarray) -> np.ndarray:
        with np.errstate(all="ignore"):
            try:
                values = self.model_values(self.parameters(y))
            except (ValueError, ZeroDivisionError, OverflowError):
                return np.full(self.size, PENALTY)
            res = (values - self.targets) / self.errors
        res[~np.isfinite(res)] = PENALTY
        return res

    def weighted_jacobian(self, params: SabrParameters) -> np.ndarray:
        """d(weighted residual) / d(free model parameter), shape (n, k)."""
        with np.errstate(all="ignore"):
            jac = self.model.volatility_jacobian(
                self.forward, self.strikes, self.expiry, params
            )[:, self.free_index]
            if self.price_space:
                vols = self.model.volatilities(self.forward, self.strikes, self.expiry, params)
                jac = jac * self._vegas(vols)[:, None]
        jac = jac / self.errors[:, None]
        return np.nan_to_num(jac, nan=0.0, posinf=0.0, neginf=0.0)

    def jacobian(self, y: np.ndarray) -> np.ndarray:
        try:
            params = self.parameters(y)
        except ValueError:
            return np.zeros((self.size, len(y)))
        return self.weighted_jacobian(params) * self.transform.model_derivative(y, tuple(self.fixed))[None, :]

    def is_rank_deficient(self, params: SabrParameters) -> bool:
        return np.linalg.matrix_rank(self.weighted_jacobian(params)) < len(self.free)

    def inverse_jacobian(self, params: SabrParameters) -> np.ndarray:
        inverse = np.linalg.pinv(self.weighted_jacobian(params)) / self.errors[None, :]
        if self.price_space:
            inverse = inverse * self.target_vegas[None, :]
        full = np.zeros((len(PARAMETER_NAMES), self.size))
        full[self.free_index, :] = inverse
        return full


class SmileFitter:
    """
    Least-squares SABR smile fitter with a four-point multi-start.

    Example:
        >>> fitter = SmileFitter()
        >>> result = fitter.fit(0.03, 0.0, 1.0, strikes, vols, fixed={"beta": 0.5})
        >>> result.parameters.alpha
    """

    def __init__(
        self,
        smile_model: Optional[SmileModel] = None,
        tolerance: float = 1e-10,
        max_iterations: int = 1000,
        default_error: float = 1e-4,
        max_workers: int = 1,
        transform: Optional[ParameterTransform] = None
    ):
        """
        Initialize fitter.

        Args:
            smile_model: Smile model to fit (Hagan SABR by default)
            tolerance: ftol / xtol / gtol of the optimizer
            max_iterations: Function evaluation budget per start point
            default_error: Error weight used when none is supplied
            max_workers: Threads used for the start points (1 = sequential)
            transform: Parameter transform (default ParameterTransform())
        """
        if tolerance <= 0:
            raise MalformedInput(f"tolerance must be positive, got {tolerance}")
        if max_iterations < 1:
            raise MalformedInput(f"max_iterations must be at least 1, got {max_iterations}")
        if default_error <= 0:
            raise MalformedInput(f"default_error must be positive, got {default_error}")
        if max_workers < 1:
            raise MalformedInput(f"max_workers must be at least 1, got {max_workers}")

        self.smile_model = smile_model or HaganSabrModel()
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.default_error = default_error
        self.max_workers = max_workers
        self.transform = transform or ParameterTransform()

    def starting_points(
        self,
        forward: float,
        shift: float,
        vols: np.ndarray,
        fixed: Optional[Dict[str, float]] = None
    ) -> List[SabrParameters]:
        """
        Start points of the multi-start, in evaluation order.

        (alpha_low, nu_low), (alpha_low, nu_high), (alpha_high, nu_low),
        (alpha_high, nu_high); fixed parameters override the grid.
        """
        fixed = fixed or {}
        beta = fixed.get("beta", 0.5)
        rho = fixed.get("rho", -0.5 * beta + 0.5 * (1.0 - beta))
        alpha_low = 0.95 * float(np.min(vols)) * (forward + shift) ** (1.0 - beta)
        alphas = (alpha_low, ALPHA_HIGH_FACTOR * alpha_low)

        starts = []
        for alpha in alphas:
            for nu in NU_STARTS:
                starts.append(SabrParameters(
                    alpha=fixed.get("alpha", alpha),
                    beta=beta,
                    rho=rho,
                    nu=fixed.get("nu", nu),
                    shift=shift,
                ))
        return starts

    def fit_candidate(self, problem: SmileProblem, start: SabrParameters) -> CandidateFit:
        """Run the optimizer from one start point."""
        y0 = self.transform.to_optimizer_space(start, tuple(problem.fixed))
        start_chi_square = float(np.sum(problem.residuals(y0) ** 2))
        method = "lm" if problem.size >= len(y0) else "trf"

        try:
            result = least_squares(
                problem.residuals,
                y0,
                jac=problem.jacobian,
                method=method,
                ftol=self.tolerance,
                xtol=self.tolerance,
                gtol=self.tolerance,
                max_nfev=self.max_iterations,
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug("Start %s failed: %s", start.to_dict(), e)
            return CandidateFit(start, None, np.inf, start_chi_square, False, str(e))

        params = problem.parameters(result.x)
        chi_square = float(np.sum(result.fun ** 2))
        success = result.status > 0 and bool(np.all(np.abs(result.fun) < PENALTY))
        message = result.message
        if success and problem.is_rank_deficient(params):
            success = False
            message = "weighted model Jacobian is rank deficient at the solution"

        logger.debug(
            "Start alpha=%.6g nu=%.6g: status=%d chi2=%.6e nfev=%d success=%s",
            start.alpha, start.nu, result.status, chi_square, result.nfev, success
        )
        return CandidateFit(
            start=start,
            parameters=params,
            chi_square=chi_square if np.isfinite(chi_square) else np.inf,
            start_chi_square=start_chi_square,
            success=success,
            message=message,
            nfev=int(result.nfev),
        )

    def fit(
        self,
        forward: float,
        shift: float,
        expiry: float,
        strikes: np.ndarray,
        shifted_vols: np.ndarray,
        errors: Optional[np.ndarray] = None,
        fixed: Optional[Dict[str, float]] = None,
        price_space: bool = False,
        smile_model: Optional[SmileModel] = None
    ) -> SmileFitResult:
        """
        Fit the smile of one bucket.

        Args:
            forward: Forward rate (unshifted)
            shift: Shift of the smile
            expiry: Time to expiry in years
            strikes: Absolute strikes (unshifted)
            shifted_vols: Target shifted Black vols
            errors: Error weights in the units of the residuals
            fixed: Fixed parameter values by name
            price_space: Fit shifted Black prices instead of vols
            smile_model: Overrides the fitter's smile model for this fit

        Returns:
            SmileFitResult for the best start point
        """
        problem = self.build_problem(
            forward, shift, expiry, strikes, shifted_vols,
            errors=errors, fixed=fixed, price_space=price_space, smile_model=smile_model
        )

        starts = self.starting_points(forward, shift, problem.vols, problem.fixed)
        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(starts))) as pool:
                candidates = list(pool.map(lambda s: self.fit_candidate(problem, s), starts))
        else:
            candidates = [self.fit_candidate(problem, s) for s in starts]

        # Strict comparison keeps the earliest candidate on ties
        best = None
        for candidate in candidates:
            if candidate.success and (best is None or candidate.chi_square < best.chi_square):
                best = candidate

        if best is None:
            raise CalibrationDivergence(
                f"None of the {len(candidates)} start points converged", expiry=expiry
            )

        return SmileFitResult(
            parameters=best.parameters,
            chi_square=best.chi_square,
            inverse_jacobian=problem.inverse_jacobian(best.parameters),
            model_volatilities=problem.model.volatilities(
                forward, problem.strikes, expiry, best.parameters
            ),
            candidates=tuple(candidates),
        )

    def build_problem(
        self,
        forward: float,
        shift: float,
        expiry: float,
        strikes: np.ndarray,
        shifted_vols: np.ndarray,
        errors: Optional[np.ndarray] = None,
        fixed: Optional[Dict[str, float]] = None,
        price_space: bool = False,
        smile_model: Optional[SmileModel] = None
    ) -> SmileProblem:
        """Validate the inputs of a fit and build its least-squares problem."""
        strikes = np.asarray(strikes, dtype=np.float64)
        vols = np.asarray(shifted_vols, dtype=np.float64)

        if len(vols) == 0:
            raise NoCalibratableData(f"No quotes to calibrate at expiry {expiry:g}")
        if len(strikes) != len(vols):
            raise MalformedInput(
                f"size of strikes ({len(strikes)}) must match size of volatilities ({len(vols)})"
            )
        if not np.all(np.isfinite(vols)) or np.any(vols <= 0):
            raise MalformedInput("Target volatilities must be finite and positive")
        if forward + shift <= 0:
            raise MalformedInput(f"Shifted forward must be positive, got {forward + shift}")
        if expiry <= 0:
            raise MalformedInput(f"Time to expiry must be positive, got {expiry}")

        if errors is None:
            errors = np.full(len(vols), self.default_error)
        else:
            errors = np.asarray(errors, dtype=np.float64)
            if len(errors) != len(vols):
                raise MalformedInput(
                    f"size of errors ({len(errors)}) must match size of volatilities ({len(vols)})"
                )
            if not np.all(errors > 0):
                raise MalformedInput("Error weights must be strictly positive")

        fixed = {name: float(value) for name, value in (fixed or {}).items()}
        unknown = set(fixed) - set(PARAMETER_NAMES)
        if unknown:
            raise MalformedInput(f"Unknown SABR parameters: {sorted(unknown)}")
        problem = SmileProblem(
            smile_model or self.smile_model, self.transform, forward, shift, expiry,
            strikes, vols, errors, fixed, price_space
        )
        if not problem.free:
            raise MalformedInput("At least one SABR parameter must be free")
        return problem


__all__ = ["SmileFitter", "SmileFitResult", "SmileProblem", "CandidateFit", "PENALTY"]
