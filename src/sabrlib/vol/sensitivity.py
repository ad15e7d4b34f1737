"""
Chain rule from target vols back to raw quotes.

The smile fit yields d(parameter)/d(target shifted vol); the quote
converter yields d(target shifted vol)/d(raw quote) per point. Since each
converted vol depends only on its own quote, the product is a column
scaling.
"""

import numpy as np

from ..errors import MalformedInput


class SensitivityPropagator:
    """Combines smile and conversion derivatives into raw-quote sensitivities."""

    def propagate(self, smile_jacobian: np.ndarray, quote_derivative: np.ndarray) -> np.ndarray:
        """
        Sensitivities of the parameters to the raw quotes.

        Args:
            smile_jacobian: (4, n) d(parameter) / d(shifted vol)
            quote_derivative: (n,) d(shifted vol) / d(raw quote)

        Returns:
            (4, n) d(parameter) / d(raw quote)
        """
        smile_jacobian = np.asarray(smile_jacobian, dtype=np.float64)
        quote_derivative = np.asarray(quote_derivative, dtype=np.float64)
        if smile_jacobian.ndim != 2 or smile_jacobian.shape[1] != len(quote_derivative):
            raise MalformedInput(
                f"Jacobian shape {smile_jacobian.shape} does not match "
                f"{len(quote_derivative)} quote derivatives"
            )
        return smile_jacobian * quote_derivative[None, :]


__all__ = ["SensitivityPropagator"]
