"""
Volatility quote handling.

Provides:
- QuoteType / QuoteConvention: the closed set of quote conventions
  (price, normal volatility, shifted Black volatility)
- StrikeType: strike, simple moneyness or log-moneyness strike-like values
- RawSmileQuotes: one expiry bucket of market data
- buckets_from_frame: build ordered buckets from a long-format DataFrame
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union
import numpy as np
import pandas as pd

from ..errors import MalformedInput, UnsupportedInputKind


class QuoteType(Enum):
    """Kind of raw quote."""
    PRICE = "PRICE"
    NORMAL_VOLATILITY = "NORMAL_VOLATILITY"
    BLACK_VOLATILITY = "BLACK_VOLATILITY"

    @classmethod
    def parse(cls, value: Union[str, "QuoteType"]) -> "QuoteType":
        """
        Parse a quote type, accepting desk shorthands.

        "NORMAL" and "LOGNORMAL"/"BLACK" map to the volatility types.
        """
        if isinstance(value, QuoteType):
            return value
        key = str(value).upper().strip().replace("-", "_").replace(" ", "_")
        aliases = {
            "PRICE": cls.PRICE,
            "PREMIUM": cls.PRICE,
            "NORMAL": cls.NORMAL_VOLATILITY,
            "NORMAL_VOLATILITY": cls.NORMAL_VOLATILITY,
            "BACHELIER": cls.NORMAL_VOLATILITY,
            "LOGNORMAL": cls.BLACK_VOLATILITY,
            "BLACK": cls.BLACK_VOLATILITY,
            "BLACK_VOLATILITY": cls.BLACK_VOLATILITY,
        }
        if key not in aliases:
            raise UnsupportedInputKind(f"Unsupported quote type: {value}")
        return aliases[key]


@dataclass(frozen=True)
class QuoteConvention:
    """
    Quote type together with the shift it is quoted at.

    Only Black volatilities carry a shift.
    """
    quote_type: QuoteType
    shift: float = 0.0

    def __post_init__(self):
        if not isinstance(self.quote_type, QuoteType):
            raise UnsupportedInputKind(f"Unsupported quote type: {self.quote_type!r}")
        if self.quote_type is not QuoteType.BLACK_VOLATILITY and self.shift != 0.0:
            raise UnsupportedInputKind(
                f"{self.quote_type.value} quotes cannot carry a shift (got {self.shift})"
            )

    @classmethod
    def price(cls) -> "QuoteConvention":
        return cls(QuoteType.PRICE)

    @classmethod
    def normal_volatility(cls) -> "QuoteConvention":
        return cls(QuoteType.NORMAL_VOLATILITY)

    @classmethod
    def black_volatility(cls, shift: float = 0.0) -> "QuoteConvention":
        return cls(QuoteType.BLACK_VOLATILITY, shift)


class StrikeType(Enum):
    """How the strike-like values of a bucket are expressed."""
    STRIKE = "STRIKE"
    SIMPLE_MONEYNESS = "SIMPLE_MONEYNESS"
    LOG_MONEYNESS = "LOG_MONEYNESS"

    def to_strikes(self, forward: float, values: np.ndarray) -> np.ndarray:
        """Convert strike-like values into absolute (unshifted) strikes."""
        values = np.asarray(values, dtype=np.float64)
        if self is StrikeType.STRIKE:
            return values.copy()
        if self is StrikeType.SIMPLE_MONEYNESS:
            return forward + values
        return forward * np.exp(values)


@dataclass(frozen=True)
class RawSmileQuotes:
    """
    Market data of one expiry bucket.

    Attributes:
        expiry: Time to expiry in years
        forward: Forward rate of the underlying
        strikes: Strike-like values (see strike_type)
        quotes: Quote values, NaN for missing points
        convention: Quote type and its shift
        errors: Optional per-quote error weights (strictly positive)
        tenor: Underlying tenor in years for tenor-indexed surfaces
        strike_type: Meaning of the strike-like values
        cumulative: Quotes are prices of a strip covering every earlier
            period of the same tenor and this one (cap-like)
        period_weight: Accrual times discount factor of this period
        accrual_start: Start of an overnight in-arrears accrual period
        accrual_end: End of an overnight in-arrears accrual period
        label: Free-form bucket identifier for diagnostics
    """
    expiry: float
    forward: float
    strikes: np.ndarray
    quotes: np.ndarray
    convention: QuoteConvention = QuoteConvention(QuoteType.BLACK_VOLATILITY)
    errors: Optional[np.ndarray] = None
    tenor: Optional[float] = None
    strike_type: StrikeType = StrikeType.STRIKE
    cumulative: bool = False
    period_weight: float = 1.0
    accrual_start: Optional[float] = None
    accrual_end: Optional[float] = None
    label: Optional[str] = None

    def __post_init__(self):
        strikes = np.asarray(self.strikes, dtype=np.float64)
        quotes = np.asarray(self.quotes, dtype=np.float64)
        object.__setattr__(self, "strikes", strikes)
        object.__setattr__(self, "quotes", quotes)

        if strikes.ndim != 1 or len(strikes) < 1:
            raise MalformedInput("A bucket needs at least one strike")
        if len(strikes) != len(quotes):
            raise MalformedInput(
                f"size of strikes ({len(strikes)}) must match size of quotes ({len(quotes)})"
            )
        if self.errors is not None:
            errors = np.asarray(self.errors, dtype=np.float64)
            if len(errors) != len(strikes):
                raise MalformedInput(
                    f"size of errors ({len(errors)}) must match size of strikes ({len(strikes)})"
                )
            if not np.all(errors > 0):
                raise MalformedInput("Error weights must be strictly positive")
            object.__setattr__(self, "errors", errors)
        if self.expiry < 0:
            raise MalformedInput(f"Time to expiry must be non-negative, got {self.expiry}")
        if self.period_weight <= 0:
            raise MalformedInput(f"Period weight must be positive, got {self.period_weight}")
        if self.cumulative and self.convention.quote_type is not QuoteType.PRICE:
            raise MalformedInput("Strip (cumulative) quotes must be prices")
        if (self.accrual_start is None) != (self.accrual_end is None):
            raise MalformedInput("In-arrears buckets need both accrual_start and accrual_end")
        if self.accrual_end is not None and not (0 < self.accrual_end and self.accrual_start < self.accrual_end):
            raise MalformedInput(f"Invalid accrual period [{self.accrual_start}, {self.accrual_end}]")

    @property
    def size(self) -> int:
        return len(self.quotes)

    @property
    def in_arrears(self) -> bool:
        return self.accrual_start is not None

    def absolute_strikes(self) -> np.ndarray:
        """Unshifted absolute strikes."""
        return self.strike_type.to_strikes(self.forward, self.strikes)

    def available(self) -> np.ndarray:
        """Mask of points carrying a quote."""
        return np.isfinite(self.quotes) & np.isfinite(self.strikes)

    def describe(self) -> str:
        """Short identifier used in log messages and errors."""
        if self.label:
            return self.label
        if self.tenor is None:
            return f"T={self.expiry:g}"
        return f"T={self.expiry:g}x{self.tenor:g}"


def _column(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    """Return the first column present from a candidate list."""
    for c in candidates:
        if c in df.columns:
            return c
    return None


def buckets_from_frame(
    quotes_df: pd.DataFrame,
    default_quote_type: str = "BLACK_VOLATILITY"
) -> List[RawSmileQuotes]:
    """
    Group long-format quotes into ordered RawSmileQuotes buckets.

    Required columns: expiry, forward, strike, and quote (or vol).
    Optional columns: tenor, quote_type (or vol_type), shift, error (or
    weight), strike_type, cumulative, period_weight, accrual_start,
    accrual_end, label.

    Buckets are returned ordered by tenor, then increasing expiry. Quote
    level attributes (forward, quote type, shift...) are read from the
    first row of each bucket.
    """
    df = quotes_df.copy()
    df.columns = [c.strip().lower() for c in df.columns]

    quote_col = _column(df, ["quote", "vol", "price"])
    type_col = _column(df, ["quote_type", "vol_type"])
    error_col = _column(df, ["error", "weight"])

    missing = {"expiry", "forward", "strike"} - set(df.columns)
    if missing or quote_col is None:
        raise MalformedInput(
            f"Quotes must include expiry, forward, strike and quote columns (missing {sorted(missing)})"
        )

    if "tenor" not in df.columns:
        df["tenor"] = np.nan

    buckets = []
    for (tenor, expiry), group in df.groupby(["tenor", "expiry"], sort=True, dropna=False):
        first = group.iloc[0]
        quote_type = QuoteType.parse(first[type_col] if type_col else default_quote_type)
        shift = float(first["shift"]) if "shift" in group.columns else 0.0
        if quote_type is QuoteType.BLACK_VOLATILITY:
            convention = QuoteConvention(quote_type, shift)
        else:
            convention = QuoteConvention(quote_type)

        strike_type = StrikeType(str(first["strike_type"]).upper()) if "strike_type" in group.columns \
            else StrikeType.STRIKE

        buckets.append(
            RawSmileQuotes(
                expiry=float(expiry),
                forward=float(first["forward"]),
                strikes=group["strike"].to_numpy(dtype=np.float64),
                quotes=group[quote_col].to_numpy(dtype=np.float64),
                convention=convention,
                errors=group[error_col].to_numpy(dtype=np.float64) if error_col else None,
                tenor=None if pd.isna(tenor) else float(tenor),
                strike_type=strike_type,
                cumulative=bool(first["cumulative"]) if "cumulative" in group.columns else False,
                period_weight=float(first["period_weight"]) if "period_weight" in group.columns else 1.0,
                accrual_start=float(first["accrual_start"]) if "accrual_start" in group.columns else None,
                accrual_end=float(first["accrual_end"]) if "accrual_end" in group.columns else None,
                label=str(first["label"]) if "label" in group.columns else None,
            )
        )

    return buckets


__all__ = [
    "QuoteType",
    "QuoteConvention",
    "StrikeType",
    "RawSmileQuotes",
    "buckets_from_frame",
]
