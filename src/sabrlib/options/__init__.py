"""
Options module - Black formula pair.

Provides:
- Black'76 and shifted Black call prices and vega
- Implied Black volatility from prices
- Approximate normal <-> Black volatility conversion
"""

from .base_models import (
    black76_call,
    shifted_black_call,
    black76_vega,
    implied_vol_black,
    black_to_normal_approx,
    normal_to_black_guess,
    implied_vol_black_from_normal,
)

__all__ = [
    "black76_call",
    "shifted_black_call",
    "black76_vega",
    "implied_vol_black",
    "black_to_normal_approx",
    "normal_to_black_guess",
    "implied_vol_black_from_normal",
]
