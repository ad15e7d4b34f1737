"""
Tests for the overnight in-arrears effective SABR parameters.
"""

import pytest
import numpy as np

from sabrlib.vol.sabr import SabrParameters, HaganSabrModel
from sabrlib.vol.in_arrears import (
    InArrearsSmileModel,
    effective_sabr,
    effective_sabr_before_start,
    effective_sabr_after_start,
)


class TestEffectiveSabr:
    """Tests for the effective parameter formulas."""

    @pytest.fixture
    def params(self):
        return SabrParameters(alpha=0.05, beta=0.5, rho=-0.3, nu=0.4, shift=0.01)

    def test_branches_agree_at_period_start(self, params):
        """Before-start formula at tau0 = 0 equals the after-start formula."""
        before = effective_sabr_before_start(params, 0.0, 1.0)
        after = effective_sabr_after_start(params, 0.0, 1.0)

        np.testing.assert_allclose(before.as_array(), after.as_array(), rtol=1e-12)

    def test_variance_averaging_after_start(self):
        """Without vol of vol, a linear decay over the period gives alpha / sqrt(3)."""
        params = SabrParameters(alpha=0.05, beta=0.5, rho=0.0, nu=0.0)

        eff = effective_sabr(params, 0.0, 0.25)

        np.testing.assert_allclose(eff.alpha, 0.05 / np.sqrt(3.0), rtol=1e-12)
        assert eff.nu == 0.0
        assert eff.rho == 0.0

    def test_variance_averaging_before_start(self):
        """Without vol of vol, total variance is tau0 + (tau1 - tau0) / 3."""
        params = SabrParameters(alpha=0.05, beta=0.5, rho=0.0, nu=0.0)
        tau0, tau1 = 1.0, 1.25

        eff = effective_sabr(params, tau0, tau1)

        expected = 0.05 * np.sqrt((tau0 + (tau1 - tau0) / 3.0) / tau1)
        np.testing.assert_allclose(eff.alpha, expected, rtol=1e-12)

    def test_long_before_start_approaches_base(self, params):
        """A short period far in the future barely changes the parameters."""
        eff = effective_sabr(params, 10.0, 10.001)

        np.testing.assert_allclose(eff.alpha, params.alpha, rtol=1e-3)
        np.testing.assert_allclose(eff.rho, params.rho, rtol=1e-3)
        np.testing.assert_allclose(eff.nu, params.nu, rtol=1e-3)

    def test_beta_and_shift_preserved(self, params):
        """Beta and shift are not adjusted."""
        eff = effective_sabr(params, 0.5, 0.75)
        assert eff.beta == params.beta
        assert eff.shift == params.shift

    def test_effective_rho_inside_bounds(self, params):
        """Adjusted correlation stays admissible."""
        for tau0 in [-0.1, 0.0, 0.2, 1.0]:
            eff = effective_sabr(params, tau0, 1.25)
            assert -1 < eff.rho < 1

    @pytest.mark.parametrize("tau0, tau1", [(1.0, 1.0), (1.0, 0.5), (-0.5, 0.0)])
    def test_invalid_period(self, params, tau0, tau1):
        """Empty or expired periods are rejected."""
        with pytest.raises(ValueError):
            effective_sabr(params, tau0, tau1)


class TestInArrearsSmileModel:
    """Tests for the in-arrears smile model."""

    def test_volatility_at_effective_parameters(self):
        """Smile is the base smile at the effective parameters."""
        base = HaganSabrModel()
        model = InArrearsSmileModel(base, 0.75, 1.0)
        params = SabrParameters(alpha=0.05, beta=0.5, rho=-0.3, nu=0.4)

        vol = model.volatility(0.03, 0.035, 1.0, params)
        expected = base.volatility(0.03, 0.035, 1.0, effective_sabr(params, 0.75, 1.0))

        assert vol == expected

    def test_in_arrears_vol_below_forward_looking(self):
        """Averaging over the period lowers the ATM volatility."""
        base = HaganSabrModel()
        model = InArrearsSmileModel(base, 0.75, 1.0)
        params = SabrParameters(alpha=0.05, beta=0.5, rho=0.0, nu=0.2)

        assert model.volatility(0.03, 0.03, 1.0, params) < base.volatility(0.03, 0.03, 1.0, params)

    def test_invalid_period(self):
        """Model construction validates the period."""
        with pytest.raises(ValueError):
            InArrearsSmileModel(HaganSabrModel(), 1.0, 0.5)
