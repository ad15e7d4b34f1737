"""
Calibrated SABR term structure and helpers.

Provides the calibrated nodes (one per fitted bucket) together with the
parameter curves built through them, plus diagnostics tables for
downstream reporting.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple, TYPE_CHECKING

import numpy as np
import pandas as pd

from ..curves import ParameterCurve
from .sabr import PARAMETER_NAMES, HaganSabrModel, SabrParameters, SmileModel

if TYPE_CHECKING:
    from .bootstrap import BucketOutcome

NodeKey = Tuple[float, Optional[float]]


@dataclass(frozen=True)
class CalibrationNode:
    """
    Calibrated parameters of one bucket.

    Attributes:
        expiry: Time to expiry in years
        tenor: Underlying tenor (None for expiry-only surfaces)
        parameters: Fitted SABR parameters
        sensitivity: (4, n) d(alpha, beta, rho, nu) / d(raw quote), one column
            per raw quote of the bucket; rows of fixed parameters are zero
        chi_square: Weighted sum of squared residuals at the optimum
        residuals: Model minus target shifted vol per quote (NaN if unused)
        label: Bucket label, if any
    """
    expiry: float
    tenor: Optional[float]
    parameters: SabrParameters
    sensitivity: np.ndarray
    chi_square: float
    residuals: Optional[np.ndarray] = None
    label: Optional[str] = None

    @property
    def key(self) -> NodeKey:
        return (self.expiry, self.tenor)

    @property
    def num_quotes(self) -> int:
        if self.residuals is None:
            return self.sensitivity.shape[1]
        return int(np.count_nonzero(np.isfinite(self.residuals)))

    def diagnostics(self) -> Dict[str, float]:
        """RMSE and max absolute error of the fit in shifted vol terms."""
        if self.residuals is None or not np.any(np.isfinite(self.residuals)):
            return {"rmse": np.nan, "max_abs_error": np.nan}
        used = self.residuals[np.isfinite(self.residuals)]
        return {
            "rmse": float(np.sqrt(np.mean(used ** 2))),
            "max_abs_error": float(np.max(np.abs(used))),
        }


@dataclass(frozen=True)
class CalibratedVolatilitySurface:
    """
    SABR term structure produced by the bootstrap.

    Attributes:
        nodes: Calibrated nodes ordered by (tenor, expiry)
        curves: Parameter curves by tenor group; each maps alpha, beta, rho,
            nu and shift to a ParameterCurve
        chi_square: Sum of the node chi-squares
        outcomes: Per-bucket outcome, in input order
        smile_model: Model used to evaluate volatilities
    """
    nodes: Tuple[CalibrationNode, ...]
    curves: Mapping[Optional[float], Mapping[str, ParameterCurve]]
    chi_square: float
    outcomes: Tuple["BucketOutcome", ...] = ()
    smile_model: SmileModel = field(default_factory=HaganSabrModel)

    @property
    def tenors(self) -> Tuple[Optional[float], ...]:
        """Tenor groups with at least one node."""
        return tuple(sorted(self.curves, key=lambda t: -np.inf if t is None else t))

    def curve(self, name: str, tenor: Optional[float] = None) -> ParameterCurve:
        """Parameter curve of one tenor group."""
        if name not in PARAMETER_NAMES and name != "shift":
            raise ValueError(f"Unknown SABR parameter: {name}")
        return self._group(tenor)[name]

    def _group(self, tenor: Optional[float]) -> Mapping[str, ParameterCurve]:
        if not self.curves:
            raise ValueError("Surface has no calibrated nodes")
        if tenor in self.curves:
            return self.curves[tenor]
        if tenor is None and len(self.curves) == 1:
            return next(iter(self.curves.values()))
        raise KeyError(f"No calibrated tenor group {tenor}")

    def _group_values(self, group: Mapping[str, ParameterCurve], expiry: float) -> np.ndarray:
        return np.array([group[name](expiry) for name in PARAMETER_NAMES + ("shift",)])

    def parameters(self, expiry: float, tenor: Optional[float] = None) -> SabrParameters:
        """
        SABR parameters at an expiry (and tenor for tenor-indexed surfaces).

        Between tenor groups the parameters are interpolated linearly in
        tenor; outside the calibrated tenors they are held flat.
        """
        tenors = [t for t in self.tenors if t is not None]
        if tenor in self.curves:
            values = self._group_values(self.curves[tenor], expiry)
        elif tenor is None or not tenors:
            values = self._group_values(self._group(None), expiry)
        elif tenor <= tenors[0]:
            values = self._group_values(self.curves[tenors[0]], expiry)
        elif tenor >= tenors[-1]:
            values = self._group_values(self.curves[tenors[-1]], expiry)
        else:
            idx = int(np.searchsorted(tenors, tenor)) - 1
            t0, t1 = tenors[idx], tenors[idx + 1]
            w = (tenor - t0) / (t1 - t0)
            v0 = self._group_values(self.curves[t0], expiry)
            v1 = self._group_values(self.curves[t1], expiry)
            values = v0 + w * (v1 - v0)

        alpha, beta, rho, nu, shift = values
        return SabrParameters(alpha=alpha, beta=beta, rho=rho, nu=nu, shift=shift)

    def volatility(
        self,
        forward: float,
        strike: float,
        expiry: float,
        tenor: Optional[float] = None
    ) -> float:
        """Shifted Black volatility from the interpolated parameters."""
        return self.smile_model.volatility(forward, strike, expiry, self.parameters(expiry, tenor))

    def sensitivities(self) -> Dict[NodeKey, np.ndarray]:
        """Raw-quote sensitivities keyed by (expiry, tenor)."""
        return {node.key: node.sensitivity for node in self.nodes}

    def to_frame(self) -> pd.DataFrame:
        """Calibrated node parameters as a DataFrame."""
        rows = []
        for node in self.nodes:
            rows.append({
                "expiry": node.expiry,
                "tenor": node.tenor,
                **node.parameters.to_dict(),
                "chi_square": node.chi_square,
                "label": node.label,
            })
        columns = ["expiry", "tenor", "alpha", "beta", "rho", "nu", "shift", "chi_square", "label"]
        return pd.DataFrame(rows, columns=columns)

    def diagnostics_table(self) -> pd.DataFrame:
        """
        One row per input bucket with its state and fit quality.

        Skipped buckets carry the reason in the message column.
        """
        rows = []
        for outcome in self.outcomes:
            row = {
                "expiry": outcome.expiry,
                "tenor": outcome.tenor,
                "label": outcome.label,
                "state": outcome.state.value,
                "chi_square": np.nan,
                "num_quotes": 0,
                "rmse": np.nan,
                "max_abs_error": np.nan,
                "message": str(outcome.error) if outcome.error is not None else "",
            }
            if outcome.node is not None:
                row["chi_square"] = outcome.node.chi_square
                row["num_quotes"] = outcome.node.num_quotes
                row.update(outcome.node.diagnostics())
            rows.append(row)
        columns = [
            "expiry", "tenor", "label", "state", "chi_square",
            "num_quotes", "rmse", "max_abs_error", "message",
        ]
        return pd.DataFrame(rows, columns=columns)


__all__ = ["CalibrationNode", "CalibratedVolatilitySurface", "NodeKey"]
