"""
Volatility module - SABR model and term-structure calibration.

Provides:
- SABR stochastic volatility model (Hagan approximation, shifted)
- Effective SABR for overnight in-arrears periods
- Quote conversion into shifted Black vols with derivatives
- Single-bucket smile fitting and sequential bootstrapping
- Sensitivities of calibrated parameters to raw quotes
"""

from .sabr import (
    PARAMETER_NAMES,
    SabrParameters,
    SmileModel,
    HaganSabrModel,
    hagan_black_vol,
)
from .in_arrears import InArrearsSmileModel, effective_sabr
from .quotes import QuoteType, QuoteConvention, StrikeType, RawSmileQuotes, buckets_from_frame
from .conversion import QuoteConverter, ConversionResult
from .transform import ParameterTransform
from .calibration import SmileFitter, SmileFitResult, CandidateFit
from .sensitivity import SensitivityPropagator
from .sabr_surface import CalibrationNode, CalibratedVolatilitySurface
from .bootstrap import (
    FailurePolicy,
    BucketState,
    BucketOutcome,
    CalibrationConfig,
    Bootstrapper,
)

__all__ = [
    "PARAMETER_NAMES",
    "SabrParameters",
    "SmileModel",
    "HaganSabrModel",
    "hagan_black_vol",
    "InArrearsSmileModel",
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
    "CandidateFit",
    "SensitivityPropagator",
    "CalibrationNode",
    "CalibratedVolatilitySurface",
    "FailurePolicy",
    "BucketState",
    "BucketOutcome",
    "CalibrationConfig",
    "Bootstrapper",
]
