"""
SabrLib: Bootstrapped SABR Volatility Term-Structure Calibration

A modular library for:
- Converting option quotes (prices, normal vols, shifted Black vols) into
  shifted Black volatilities with their derivatives
- Fitting SABR smiles per expiry bucket with a multi-start least squares
- Bootstrapping parameter term structures, including cap-like strip quotes
  and overnight in-arrears periods
- Propagating parameter sensitivities back to the raw quotes

Scope: smile calibration only; curve construction and instrument
cash flows are supplied by the caller.
"""

__version__ = "0.1.0"

# Errors
from .errors import (
    CalibrationError,
    MalformedInput,
    UnsupportedInputKind,
    NoCalibratableData,
    CalibrationDivergence,
)

# Curves
from .curves import (
    ParameterCurve,
    ConstantCurve,
    InterpolatedCurve,
    LinearInterpolator,
    StepInterpolator,
)

# Options
from .options import (
    black76_call,
    shifted_black_call,
    black76_vega,
    implied_vol_black,
    black_to_normal_approx,
    implied_vol_black_from_normal,
)

# Volatility (SABR)
from .vol import (
    SabrParameters,
    SmileModel,
    HaganSabrModel,
    InArrearsSmileModel,
    hagan_black_vol,
    effective_sabr,
    QuoteType,
    QuoteConvention,
    StrikeType,
    RawSmileQuotes,
    buckets_from_frame,
    QuoteConverter,
    ConversionResult,
    ParameterTransform,
    SmileFitter,
    SmileFitResult,
    SensitivityPropagator,
    CalibrationNode,
    CalibratedVolatilitySurface,
    FailurePolicy,
    BucketState,
    BucketOutcome,
    CalibrationConfig,
    Bootstrapper,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "CalibrationError",
    "MalformedInput",
    "UnsupportedInputKind",
    "NoCalibratableData",
    "CalibrationDivergence",
    # Curves
    "ParameterCurve",
    "ConstantCurve",
    "InterpolatedCurve",
    "LinearInterpolator",
    "StepInterpolator",
    # Options
    "black76_call",
    "shifted_black_call",
    "black76_vega",
    "implied_vol_black",
    "black_to_normal_approx",
    "implied_vol_black_from_normal",
    # Volatility (SABR)
    "SabrParameters",
    "SmileModel",
    "HaganSabrModel",
    "InArrearsSmileModel",
    "hagan_black_vol",
    "effective_sabr",
    "QuoteType",
    "QuoteConvention",
    "StrikeType",
    "RawSmileQuotes",
    "buckets_from_frame",
    "QuoteConverter",
    "ConversionResult",
    "ParameterTransform",
    "SmileFitter",
    "SmileFitResult",
    "SensitivityPropagator",
    "CalibrationNode",
    "CalibratedVolatilitySurface",
    "FailurePolicy",
    "BucketState",
    "BucketOutcome",
    "CalibrationConfig",
    "Bootstrapper",
]
