"""
Sequential bootstrap of a SABR term structure.

Buckets are calibrated one at a time in increasing expiry within each
tenor group. Strip (cap-like) price quotes cover every earlier period of
their group, so the price explained by the periods already calibrated is
subtracted before the fit; this is why the order of the buckets matters.

Example:
    >>> config = CalibrationConfig.fixed_beta(0.5)
    >>> surface = Bootstrapper(config).calibrate(buckets)
    >>> surface.parameters(2.0).alpha
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union
import numpy as np

from ..curves import ConstantCurve, InterpolatedCurve, ParameterCurve, as_curve, create_interpolator
from ..errors import (
    CalibrationDivergence,
    CalibrationError,
    MalformedInput,
    NoCalibratableData,
)
from ..options.base_models import shifted_black_call
from .calibration import SmileFitter
from .conversion import QuoteConverter
from .in_arrears import InArrearsSmileModel
from .quotes import QuoteType, RawSmileQuotes
from .sabr import PARAMETER_NAMES, HaganSabrModel, SabrParameters, SmileModel
from .sabr_surface import CalibratedVolatilitySurface, CalibrationNode
from .sensitivity import SensitivityPropagator

logger = logging.getLogger(__name__)

CurveLike = Union[ParameterCurve, float]


class FailurePolicy(Enum):
    """What to do when a bucket fails to converge."""
    ABORT = "ABORT"
    SKIP = "SKIP"


class BucketState(Enum):
    """Lifecycle of a bucket during the bootstrap."""
    PENDING = "PENDING"
    FITTING = "FITTING"
    FITTED = "FITTED"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Settings of a bootstrap run.

    Exactly one of beta_curve / rho_curve must be supplied; the other
    parameter is calibrated. alpha_curve and nu_curve optionally fix those
    parameters as well. Floats are accepted for any curve.

    Attributes:
        beta_curve: Fixed beta by expiry
        rho_curve: Fixed rho by expiry
        alpha_curve: Fixed alpha by expiry (optional)
        nu_curve: Fixed nu by expiry (optional)
        shift_curve: Shift of the calibrated smiles by expiry
        interpolation: "linear" or "step" (previous-value hold)
        tolerance: Optimizer ftol / xtol / gtol
        max_iterations: Function evaluation budget per start point
        failure_policy: ABORT or SKIP on non-convergent buckets
        default_error: Error weight for quotes without one
        max_workers: Threads used for the four start points
        smile_model: Smile model to calibrate
    """
    beta_curve: Optional[CurveLike] = None
    rho_curve: Optional[CurveLike] = None
    alpha_curve: Optional[CurveLike] = None
    nu_curve: Optional[CurveLike] = None
    shift_curve: CurveLike = field(default_factory=lambda: ConstantCurve(0.0, name="shift"))
    interpolation: str = "linear"
    tolerance: float = 1e-10
    max_iterations: int = 1000
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    default_error: float = 1e-4
    max_workers: int = 1
    smile_model: SmileModel = field(default_factory=HaganSabrModel)

    def __post_init__(self):
        for name in PARAMETER_NAMES + ("shift",):
            attr = f"{name}_curve"
            value = getattr(self, attr)
            if value is not None:
                object.__setattr__(self, attr, as_curve(value, name=name))

        if (self.beta_curve is None) == (self.rho_curve is None):
            raise MalformedInput("Exactly one of beta_curve and rho_curve must be supplied")
        if self.shift_curve is None:
            raise MalformedInput("shift_curve must be supplied")
        try:
            create_interpolator(self.interpolation)
        except ValueError as e:
            raise MalformedInput(str(e)) from e
        if isinstance(self.failure_policy, str):
            object.__setattr__(self, "failure_policy", FailurePolicy(self.failure_policy.upper()))
        if self.tolerance <= 0:
            raise MalformedInput(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise MalformedInput(f"max_iterations must be at least 1, got {self.max_iterations}")
        if self.default_error <= 0:
            raise MalformedInput(f"default_error must be positive, got {self.default_error}")
        if self.max_workers < 1:
            raise MalformedInput(f"max_workers must be at least 1, got {self.max_workers}")

    @classmethod
    def fixed_beta(cls, beta: CurveLike, shift: CurveLike = 0.0, **kwargs) -> "CalibrationConfig":
        """Beta fixed, alpha / rho / nu calibrated."""
        return cls(beta_curve=beta, shift_curve=shift, **kwargs)

    @classmethod
    def fixed_rho(cls, rho: CurveLike, shift: CurveLike = 0.0, **kwargs) -> "CalibrationConfig":
        """Rho fixed, alpha / beta / nu calibrated."""
        return cls(rho_curve=rho, shift_curve=shift, **kwargs)

    def supplied_curves(self) -> Dict[str, ParameterCurve]:
        """Curves of the fixed parameters by name."""
        curves = {}
        for name in PARAMETER_NAMES:
            curve = getattr(self, f"{name}_curve")
            if curve is not None:
                curves[name] = curve
        return curves

    def fixed_values(self, expiry: float) -> Dict[str, float]:
        """Values of the fixed parameters at an expiry."""
        return {name: curve(expiry) for name, curve in self.supplied_curves().items()}


@dataclass(frozen=True)
class BucketOutcome:
    """Either a calibrated node or the failure that prevented it."""
    index: int
    expiry: float
    tenor: Optional[float]
    state: BucketState
    node: Optional[CalibrationNode] = None
    error: Optional[CalibrationError] = None
    label: Optional[str] = None

    @property
    def fitted(self) -> bool:
        return self.node is not None


class Bootstrapper:
    """
    Calibrates buckets sequentially into a CalibratedVolatilitySurface.

    Stateless between runs; every call to calibrate() starts from scratch.
    """

    def __init__(
        self,
        config: CalibrationConfig,
        converter: Optional[QuoteConverter] = None,
        propagator: Optional[SensitivityPropagator] = None
    ):
        self.config = config
        self.converter = converter or QuoteConverter()
        self.propagator = propagator or SensitivityPropagator()
        self.fitter = SmileFitter(
            smile_model=config.smile_model,
            tolerance=config.tolerance,
            max_iterations=config.max_iterations,
            default_error=config.default_error,
            max_workers=config.max_workers,
        )

    def calibrate(self, buckets: Sequence[RawSmileQuotes]) -> CalibratedVolatilitySurface:
        """
        Calibrate all buckets.

        Args:
            buckets: Buckets in strictly increasing expiry within each tenor

        Returns:
            CalibratedVolatilitySurface with nodes, curves and outcomes
        """
        buckets = list(buckets)
        if not buckets:
            raise MalformedInput("No buckets to calibrate")
        self._check_ordering(buckets)

        states = [BucketState.PENDING] * len(buckets)
        outcomes: List[Optional[BucketOutcome]] = [None] * len(buckets)
        # Earlier periods of each tenor group with their node, if fitted
        history: Dict[Optional[float], List[Tuple[RawSmileQuotes, Optional[CalibrationNode]]]] = {}

        for i, bucket in enumerate(buckets):
            states[i] = BucketState.FITTING
            earlier = history.setdefault(bucket.tenor, [])

            try:
                node = self._calibrate_bucket(bucket, earlier)
            except NoCalibratableData as e:
                logger.warning("Skipping bucket %s: %s", bucket.describe(), e)
                states[i] = BucketState.SKIPPED
                outcomes[i] = self._outcome(i, bucket, states[i], error=e)
                earlier.append((bucket, None))
                continue
            except CalibrationDivergence as e:
                located = e.with_bucket(bucket.expiry, bucket.tenor)
                if self.config.failure_policy is FailurePolicy.ABORT:
                    states[i] = BucketState.ABORTED
                    logger.error("Calibration aborted: %s", located)
                    raise located from e
                logger.warning("Skipping bucket %s: %s", bucket.describe(), located)
                states[i] = BucketState.SKIPPED
                outcomes[i] = self._outcome(i, bucket, states[i], error=located)
                earlier.append((bucket, None))
                continue

            states[i] = BucketState.FITTED
            outcomes[i] = self._outcome(i, bucket, states[i], node=node)
            earlier.append((bucket, node))
            logger.info(
                "Calibrated bucket %s: alpha=%.6g beta=%.6g rho=%.6g nu=%.6g chi2=%.6e",
                bucket.describe(), node.parameters.alpha, node.parameters.beta,
                node.parameters.rho, node.parameters.nu, node.chi_square
            )

        nodes = sorted(
            (o.node for o in outcomes if o.node is not None),
            key=lambda n: (-np.inf if n.tenor is None else n.tenor, n.expiry)
        )
        curves = {}
        for tenor in dict.fromkeys(n.tenor for n in nodes):
            curves[tenor] = self._group_curves([n for n in nodes if n.tenor == tenor])

        chi_square = float(sum(n.chi_square for n in nodes))
        n_skipped = sum(1 for s in states if s is BucketState.SKIPPED)
        logger.info(
            "Bootstrap finished: %d fitted, %d skipped, total chi2=%.6e",
            len(nodes), n_skipped, chi_square
        )

        return CalibratedVolatilitySurface(
            nodes=tuple(nodes),
            curves=curves,
            chi_square=chi_square,
            outcomes=tuple(outcomes),
            smile_model=self.config.smile_model,
        )

    @staticmethod
    def _check_ordering(buckets: List[RawSmileQuotes]) -> None:
        last: Dict[Optional[float], float] = {}
        for bucket in buckets:
            previous = last.get(bucket.tenor)
            if previous is not None and bucket.expiry <= previous:
                raise MalformedInput(
                    f"Buckets must be in strictly increasing expiry within each tenor: "
                    f"{bucket.describe()} follows expiry {previous:g}"
                )
            last[bucket.tenor] = bucket.expiry

    @staticmethod
    def _outcome(index, bucket, state, node=None, error=None) -> BucketOutcome:
        return BucketOutcome(
            index=index,
            expiry=bucket.expiry,
            tenor=bucket.tenor,
            state=state,
            node=node,
            error=error,
            label=bucket.label,
        )

    def _smile_model(self, bucket: RawSmileQuotes) -> SmileModel:
        if bucket.in_arrears:
            return InArrearsSmileModel(self.config.smile_model, bucket.accrual_start, bucket.accrual_end)
        return self.config.smile_model

    def _group_curves(self, nodes: List[CalibrationNode]) -> Dict[str, ParameterCurve]:
        supplied = self.config.supplied_curves()
        times = [n.expiry for n in nodes]
        curves: Dict[str, ParameterCurve] = {}
        for name in PARAMETER_NAMES:
            if name in supplied:
                curves[name] = supplied[name]
            else:
                values = [getattr(n.parameters, name) for n in nodes]
                curves[name] = InterpolatedCurve(times, values, self.config.interpolation, name=name)
        curves["shift"] = self.config.shift_curve
        return curves

    def _earlier_parameters(
        self,
        earlier: List[Tuple[RawSmileQuotes, Optional[CalibrationNode]]],
        index: int
    ) -> SabrParameters:
        """Parameters of an earlier period; read off the curves if it was skipped."""
        bucket, node = earlier[index]
        if node is not None:
            return node.parameters
        fitted = [n for _, n in earlier if n is not None]
        if not fitted:
            raise CalibrationDivergence(
                f"No calibrated earlier period to price the strip up to {bucket.describe()}"
            )
        curves = self._group_curves(fitted)
        return SabrParameters(
            alpha=curves["alpha"](bucket.expiry),
            beta=curves["beta"](bucket.expiry),
            rho=curves["rho"](bucket.expiry),
            nu=curves["nu"](bucket.expiry),
            shift=curves["shift"](bucket.expiry),
        )

    def _incremental_prices(
        self,
        bucket: RawSmileQuotes,
        strikes: np.ndarray,
        earlier: List[Tuple[RawSmileQuotes, Optional[CalibrationNode]]]
    ) -> np.ndarray:
        """Price of this period implied by a strip quote."""
        explained = np.zeros(len(strikes))
        for j, (previous, _) in enumerate(earlier):
            params = self._earlier_parameters(earlier, j)
            model = self._smile_model(previous)
            for k, K in enumerate(strikes):
                if not np.isfinite(K):
                    continue
                try:
                    vol = model.volatility(previous.forward, K, previous.expiry, params)
                    price = shifted_black_call(previous.forward, K, previous.expiry, vol, params.shift)
                except ValueError:
                    price = np.nan
                explained[k] += previous.period_weight * price
        return (bucket.quotes - explained) / bucket.period_weight

    def _calibrate_bucket(
        self,
        bucket: RawSmileQuotes,
        earlier: List[Tuple[RawSmileQuotes, Optional[CalibrationNode]]]
    ) -> CalibrationNode:
        if not np.any(bucket.available()):
            raise NoCalibratableData(f"No quotes in bucket {bucket.describe()}")
        if bucket.expiry <= 0:
            raise MalformedInput(f"Cannot calibrate bucket {bucket.describe()} with zero expiry")

        shift = self.config.shift_curve(bucket.expiry)
        strikes = bucket.absolute_strikes()
        quotes = bucket.quotes
        derivative_scale = 1.0
        if bucket.cumulative:
            quotes = self._incremental_prices(bucket, strikes, earlier)
            derivative_scale = 1.0 / bucket.period_weight

        conversion = self.converter.to_shifted_black_vol(
            bucket.forward,
            shift,
            bucket.expiry,
            strikes,
            quotes,
            bucket.convention.quote_type,
            bucket.convention.shift,
        )
        valid = conversion.valid
        if not np.any(valid):
            raise MalformedInput(f"No quote in bucket {bucket.describe()} can be priced")

        model = self._smile_model(bucket)
        result = self.fitter.fit(
            bucket.forward,
            shift,
            bucket.expiry,
            strikes[valid],
            conversion.volatilities[valid],
            errors=bucket.errors[valid] if bucket.errors is not None else None,
            fixed=self.config.fixed_values(bucket.expiry),
            price_space=bucket.convention.quote_type is QuoteType.PRICE,
            smile_model=model,
        )

        smile_jacobian = np.zeros((len(PARAMETER_NAMES), bucket.size))
        smile_jacobian[:, valid] = result.inverse_jacobian
        sensitivity = self.propagator.propagate(
            smile_jacobian, conversion.derivatives * derivative_scale
        )

        residuals = np.full(bucket.size, np.nan)
        residuals[valid] = result.model_volatilities - conversion.volatilities[valid]

        return CalibrationNode(
            expiry=bucket.expiry,
            tenor=bucket.tenor,
            parameters=result.parameters,
            sensitivity=sensitivity,
            chi_square=result.chi_square,
            residuals=residuals,
            label=bucket.label,
        )


__all__ = [
    "FailurePolicy",
    "BucketState",
    "CalibrationConfig",
    "BucketOutcome",
    "Bootstrapper",
]
