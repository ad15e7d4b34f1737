"""
Quote conversion into shifted Black volatilities.

Every quote convention is mapped onto Black volatilities at the target
shift of the calibration, together with the derivative of each converted
volatility with respect to its raw quote. The derivatives are what later
lets calibrated parameter sensitivities be expressed per raw quote.
"""

import logging
from dataclasses import dataclass
import numpy as np

from ..errors import MalformedInput, UnsupportedInputKind
from ..options.base_models import (
    black76_vega,
    implied_vol_black,
    implied_vol_black_from_normal,
    shifted_black_call,
)
from .quotes import QuoteType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionResult:
    """
    Converted quotes of one bucket.

    Attributes:
        volatilities: Shifted Black vols at the target shift (NaN if invalid)
        derivatives: d(converted vol) / d(raw quote), zero if invalid
        valid: Mask of points that could be converted
    """
    volatilities: np.ndarray
    derivatives: np.ndarray
    valid: np.ndarray

    @property
    def n_valid(self) -> int:
        return int(np.count_nonzero(self.valid))


class QuoteConverter:
    """
    Converts raw quotes of any supported convention into shifted Black vols.

    Stateless; a single instance can be shared between calibrations.
    """

    def to_shifted_black_vol(
        self,
        forward: float,
        target_shift: float,
        expiry: float,
        strikes: np.ndarray,
        quotes: np.ndarray,
        quote_type: QuoteType,
        source_shift: float = 0.0
    ) -> ConversionResult:
        """
        Convert a bucket of raw quotes.

        Args:
            forward: Forward rate (unshifted)
            target_shift: Shift of the calibrated smile
            expiry: Time to expiry in years
            strikes: Absolute strikes (unshifted)
            quotes: Raw quotes (NaN for missing points)
            quote_type: Convention of the raw quotes
            source_shift: Shift of Black volatility quotes

        Returns:
            ConversionResult with volatilities, derivatives and validity mask
        """
        strikes = np.asarray(strikes, dtype=np.float64)
        quotes = np.asarray(quotes, dtype=np.float64)

        if not isinstance(quote_type, QuoteType):
            raise UnsupportedInputKind(f"Unsupported quote type: {quote_type!r}")
        if quote_type is not QuoteType.BLACK_VOLATILITY and source_shift != 0.0:
            raise UnsupportedInputKind(
                f"{quote_type.value} quotes cannot carry a shift (got {source_shift})"
            )
        if len(strikes) != len(quotes):
            raise MalformedInput(
                f"size of strikes ({len(strikes)}) must match size of quotes ({len(quotes)})"
            )
        if forward + target_shift <= 0:
            raise MalformedInput(
                f"Shifted forward must be positive, got {forward + target_shift}"
            )
        if expiry <= 0:
            raise MalformedInput(f"Time to expiry must be positive, got {expiry}")

        vols = np.full(len(quotes), np.nan)
        derivs = np.zeros(len(quotes))
        valid = np.zeros(len(quotes), dtype=bool)

        if quote_type is QuoteType.BLACK_VOLATILITY and source_shift == target_shift:
            mask = np.isfinite(quotes) & (quotes > 0) & (strikes + target_shift > 0)
            vols[mask] = quotes[mask]
            derivs[mask] = 1.0
            valid = mask
        else:
            for i, (K, q) in enumerate(zip(strikes, quotes)):
                if not (np.isfinite(K) and np.isfinite(q)):
                    continue
                try:
                    vols[i], derivs[i] = self._convert_point(
                        forward, target_shift, expiry, K, q, quote_type, source_shift
                    )
                    valid[i] = True
                except (ValueError, RuntimeError) as e:
                    logger.debug("Cannot convert %s quote %s at strike %s: %s", quote_type.value, q, K, e)

        n_bad = int(np.count_nonzero(np.isfinite(quotes) & ~valid))
        if n_bad:
            logger.warning(
                "%d of %d quotes at expiry %g cannot be priced and were dropped",
                n_bad, len(quotes), expiry
            )

        return ConversionResult(volatilities=vols, derivatives=derivs, valid=valid)

    def _convert_point(
        self,
        forward: float,
        target_shift: float,
        expiry: float,
        strike: float,
        quote: float,
        quote_type: QuoteType,
        source_shift: float
    ):
        F_t = forward + target_shift
        K_t = strike + target_shift
        if K_t <= 0:
            raise ValueError(f"Shifted strike {K_t} must be positive")

        if quote_type is QuoteType.PRICE:
            vol = implied_vol_black(quote, F_t, K_t, expiry)
            return vol, 1.0 / black76_vega(F_t, K_t, expiry, vol)

        if quote_type is QuoteType.NORMAL_VOLATILITY:
            return implied_vol_black_from_normal(F_t, K_t, expiry, quote)

        if quote <= 0:
            raise ValueError(f"Black volatility must be positive, got {quote}")
        F_s = forward + source_shift
        K_s = strike + source_shift
        price = shifted_black_call(forward, strike, expiry, quote, source_shift)
        vol = implied_vol_black(price, F_t, K_t, expiry)
        return vol, black76_vega(F_s, K_s, expiry, quote) / black76_vega(F_t, K_t, expiry, vol)


__all__ = ["ConversionResult", "QuoteConverter"]
