"""
Calibration error taxonomy.

- MalformedInput: caller configuration mistakes (lengths, weights, ordering)
- UnsupportedInputKind: quote convention the converter cannot handle
- CalibrationDivergence: optimizer failure for a bucket (policy controlled)
- NoCalibratableData: bucket without usable quotes (always skipped)
"""

from typing import Optional


class CalibrationError(Exception):
    """Base class for all calibration failures."""

    pass


class MalformedInput(CalibrationError, ValueError):
    """Raised for inconsistent or unusable input data and configuration."""

    pass


class UnsupportedInputKind(CalibrationError, ValueError):
    """Raised when a quote type / shift combination is not supported."""

    pass


class NoCalibratableData(CalibrationError):
    """Signals a bucket with zero usable quotes."""

    pass


class CalibrationDivergence(CalibrationError):
    """
    Raised when no start point of a smile fit converges.

    Attributes:
        expiry: Time to expiry of the offending bucket, if known
        tenor: Tenor of the offending bucket, if tenor-indexed
    """

    def __init__(
        self,
        message: str,
        expiry: Optional[float] = None,
        tenor: Optional[float] = None
    ):
        super().__init__(message)
        self.expiry = expiry
        self.tenor = tenor

    def with_bucket(
        self,
        expiry: float,
        tenor: Optional[float] = None
    ) -> "CalibrationDivergence":
        """Return a copy of this error identifying the bucket."""
        where = f"expiry {expiry:g}"
        if tenor is not None:
            where += f" and tenor {tenor:g}"
        return CalibrationDivergence(f"{self.args[0]} at {where}", expiry=expiry, tenor=tenor)


__all__ = [
    "CalibrationError",
    "MalformedInput",
    "UnsupportedInputKind",
    "NoCalibratableData",
    "CalibrationDivergence",
]
