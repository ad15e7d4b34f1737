"""
Tests for the sequential SABR term-structure bootstrap.
"""

import logging

import pytest
import numpy as np
import pandas as pd

from sabrlib.curves import ConstantCurve
from sabrlib.errors import CalibrationDivergence, MalformedInput, NoCalibratableData
from sabrlib.options.base_models import black_to_normal_approx, shifted_black_call
from sabrlib.vol.bootstrap import (
    Bootstrapper,
    BucketState,
    CalibrationConfig,
    FailurePolicy,
)
from sabrlib.vol.calibration import SmileFitter
from sabrlib.vol.in_arrears import InArrearsSmileModel
from sabrlib.vol.quotes import QuoteConvention, RawSmileQuotes, buckets_from_frame
from sabrlib.vol.sabr import HaganSabrModel, SabrParameters


F = 0.03
STRIKES = np.array([0.015, 0.02, 0.025, 0.03, 0.035, 0.04, 0.05])
MODEL = HaganSabrModel()

TERM_STRUCTURE = {
    0.5: SabrParameters(alpha=0.045, beta=0.5, rho=-0.2, nu=0.5),
    1.0: SabrParameters(alpha=0.05, beta=0.5, rho=-0.25, nu=0.45),
    2.0: SabrParameters(alpha=0.055, beta=0.5, rho=-0.3, nu=0.4),
}


def _vol_bucket(expiry, params, tenor=None, forward=F, strikes=STRIKES, **kwargs):
    vols = MODEL.volatilities(forward, strikes, expiry, params)
    return RawSmileQuotes(
        expiry=expiry, forward=forward, strikes=strikes, quotes=vols, tenor=tenor, **kwargs
    )


def _contradictory_bucket(expiry):
    return RawSmileQuotes(
        expiry=expiry, forward=F,
        strikes=[0.03, 0.03, 0.03], quotes=[0.2, 0.3, 0.4],
    )


class TestCalibrationConfig:
    """Tests for CalibrationConfig validation."""

    def test_requires_exactly_one_of_beta_rho(self):
        with pytest.raises(MalformedInput):
            CalibrationConfig()
        with pytest.raises(MalformedInput):
            CalibrationConfig(beta_curve=0.5, rho_curve=0.0)

    def test_fixed_beta_factory(self):
        """Floats are wrapped into constant curves."""
        config = CalibrationConfig.fixed_beta(0.5, shift=0.01)

        assert isinstance(config.beta_curve, ConstantCurve)
        assert config.rho_curve is None
        assert config.shift_curve(3.0) == 0.01
        assert config.fixed_values(1.0) == {"beta": 0.5}

    def test_fixed_rho_with_nu(self):
        config = CalibrationConfig.fixed_rho(-0.2, nu_curve=0.4)
        assert config.fixed_values(2.0) == {"rho": -0.2, "nu": 0.4}

    def test_defaults(self):
        config = CalibrationConfig.fixed_beta(0.5)
        assert config.tolerance == 1e-10
        assert config.max_iterations == 1000
        assert config.failure_policy is FailurePolicy.ABORT
        assert config.default_error == 1e-4
        assert config.interpolation == "linear"
        assert config.shift_curve(1.0) == 0.0

    def test_spline_rejected(self):
        with pytest.raises(MalformedInput):
            CalibrationConfig.fixed_beta(0.5, interpolation="cubic_spline")

    def test_policy_from_string(self):
        config = CalibrationConfig.fixed_beta(0.5, failure_policy="skip")
        assert config.failure_policy is FailurePolicy.SKIP

    def test_invalid_tolerance(self):
        with pytest.raises(MalformedInput):
            CalibrationConfig.fixed_beta(0.5, tolerance=-1.0)


class TestBootstrapper:
    """Tests for Bootstrapper on volatility quotes."""

    @pytest.fixture
    def buckets(self):
        return [_vol_bucket(T, p) for T, p in TERM_STRUCTURE.items()]

    @pytest.fixture
    def surface(self, buckets):
        return Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

    def test_round_trip(self, surface):
        """Each node recovers the parameters that generated its smile."""
        assert len(surface.nodes) == 3
        for node in surface.nodes:
            truth = TERM_STRUCTURE[node.expiry]
            np.testing.assert_allclose(node.parameters.alpha, truth.alpha, rtol=1e-4)
            np.testing.assert_allclose(node.parameters.rho, truth.rho, atol=1e-4)
            np.testing.assert_allclose(node.parameters.nu, truth.nu, rtol=1e-4)
            assert node.parameters.beta == 0.5

    def test_surface_reproduces_quotes(self, surface):
        """Surface volatilities at node expiries reproduce the quotes."""
        for T, params in TERM_STRUCTURE.items():
            expected = MODEL.volatilities(F, STRIKES, T, params)
            actual = [surface.volatility(F, K, T) for K in STRIKES]
            np.testing.assert_allclose(actual, expected, atol=1e-6)

    def test_total_chi_square(self, surface):
        assert surface.chi_square == pytest.approx(sum(n.chi_square for n in surface.nodes))

    def test_linear_between_nodes(self, surface):
        """Linear interpolation in expiry between nodes."""
        a = surface.nodes[0].parameters.alpha
        b = surface.nodes[1].parameters.alpha
        assert surface.parameters(0.75).alpha == pytest.approx(0.5 * (a + b))

    def test_flat_extrapolation(self, surface):
        """Flat before the first and after the last node."""
        first, last = surface.nodes[0].parameters, surface.nodes[-1].parameters
        np.testing.assert_allclose(surface.parameters(0.1).as_array(), first.as_array())
        np.testing.assert_allclose(surface.parameters(10.0).as_array(), last.as_array())

    def test_step_interpolation(self, buckets):
        """Step interpolation holds the earlier node."""
        config = CalibrationConfig.fixed_beta(0.5, interpolation="step")
        surface = Bootstrapper(config).calibrate(buckets)

        assert surface.parameters(0.75).alpha == surface.nodes[0].parameters.alpha
        assert surface.parameters(1.5).nu == surface.nodes[1].parameters.nu

    def test_fixed_curve_passed_through(self, surface):
        """Fixed parameters use the supplied curve."""
        assert isinstance(surface.curve("beta"), ConstantCurve)
        assert surface.curve("shift")(1.0) == 0.0

    def test_sensitivities(self, surface, buckets):
        """Same-shift Black quotes give the fitter's inverse Jacobian."""
        sensitivities = surface.sensitivities()
        assert set(sensitivities) == {(T, None) for T in TERM_STRUCTURE}

        bucket = buckets[1]
        fit = SmileFitter().fit(F, 0.0, bucket.expiry, STRIKES, bucket.quotes, fixed={"beta": 0.5})
        node_sensitivity = sensitivities[(1.0, None)]

        assert node_sensitivity.shape == (4, len(STRIKES))
        np.testing.assert_array_equal(node_sensitivity[1], 0.0)
        np.testing.assert_allclose(node_sensitivity, fit.inverse_jacobian, rtol=1e-8, atol=1e-12)

    def test_to_frame(self, surface):
        frame = surface.to_frame()
        assert isinstance(frame, pd.DataFrame)
        assert list(frame["expiry"]) == [0.5, 1.0, 2.0]
        assert {"alpha", "beta", "rho", "nu", "shift", "chi_square"} <= set(frame.columns)

    def test_diagnostics_table(self, surface):
        table = surface.diagnostics_table()
        assert list(table["state"]) == ["FITTED"] * 3
        assert list(table["num_quotes"]) == [len(STRIKES)] * 3
        assert np.all(table["max_abs_error"] < 1e-6)

    def test_outcomes(self, surface):
        assert [o.state for o in surface.outcomes] == [BucketState.FITTED] * 3
        assert all(o.fitted for o in surface.outcomes)

    def test_ordering_enforced(self, buckets):
        """Buckets out of expiry order are rejected."""
        with pytest.raises(MalformedInput):
            Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets[::-1])

    def test_duplicate_expiry_rejected(self, buckets):
        with pytest.raises(MalformedInput):
            Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate([buckets[0], buckets[0]])

    def test_no_buckets(self):
        with pytest.raises(MalformedInput):
            Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate([])


class TestTenorGroups:
    """Tests for tenor-indexed surfaces."""

    @pytest.fixture
    def surface(self):
        short = SabrParameters(alpha=0.04, beta=0.5, rho=-0.1, nu=0.5)
        long = SabrParameters(alpha=0.06, beta=0.5, rho=-0.3, nu=0.3)
        buckets = [
            _vol_bucket(1.0, short, tenor=2.0),
            _vol_bucket(1.0, long, tenor=10.0),
            _vol_bucket(2.0, short, tenor=2.0),
            _vol_bucket(2.0, long, tenor=10.0),
        ]
        return Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

    def test_interleaved_tenors_accepted(self, surface):
        """Ordering is per tenor group; nodes come back sorted by tenor then expiry."""
        assert [n.key for n in surface.nodes] == [(1.0, 2.0), (2.0, 2.0), (1.0, 10.0), (2.0, 10.0)]
        assert surface.tenors == (2.0, 10.0)

    def test_interpolation_across_tenors(self, surface):
        short = surface.parameters(1.0, 2.0).alpha
        long = surface.parameters(1.0, 10.0).alpha
        assert surface.parameters(1.0, 6.0).alpha == pytest.approx(0.5 * (short + long))
        assert surface.parameters(1.0, 1.0).alpha == short
        assert surface.parameters(1.0, 30.0).alpha == long

    def test_tenor_required(self, surface):
        with pytest.raises(KeyError):
            surface.parameters(1.0)


class TestFailurePolicy:
    """Tests for skip / abort handling."""

    @pytest.fixture
    def buckets(self):
        return [
            _vol_bucket(1.0, TERM_STRUCTURE[1.0]),
            _contradictory_bucket(2.0),
            _vol_bucket(3.0, TERM_STRUCTURE[2.0]),
        ]

    def test_abort_names_bucket(self, buckets):
        """ABORT raises a divergence identifying the bucket."""
        with pytest.raises(CalibrationDivergence) as exc_info:
            Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

        assert exc_info.value.expiry == 2.0
        assert "expiry 2" in str(exc_info.value)

    def test_skip_omits_bucket(self, buckets, caplog):
        """SKIP drops the non-convergent bucket and continues."""
        config = CalibrationConfig.fixed_beta(0.5, failure_policy=FailurePolicy.SKIP)
        with caplog.at_level(logging.WARNING, logger="sabrlib.vol.bootstrap"):
            surface = Bootstrapper(config).calibrate(buckets)

        assert [n.expiry for n in surface.nodes] == [1.0, 3.0]
        assert surface.outcomes[1].state is BucketState.SKIPPED
        assert isinstance(surface.outcomes[1].error, CalibrationDivergence)
        assert list(surface.diagnostics_table()["state"]) == ["FITTED", "SKIPPED", "FITTED"]
        skipped = [r for r in caplog.records if r.msg == "Skipping bucket %s: %s"]
        assert len(skipped) == 1
        assert skipped[0].args[0] == "T=2"
        assert "Skipping bucket T=2" in skipped[0].getMessage()

    def test_empty_bucket_always_skipped(self):
        """A bucket without quotes is skipped even under ABORT."""
        buckets = [
            _vol_bucket(1.0, TERM_STRUCTURE[1.0]),
            RawSmileQuotes(expiry=2.0, forward=F, strikes=STRIKES, quotes=np.full(len(STRIKES), np.nan)),
        ]
        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

        assert len(surface.nodes) == 1
        assert surface.outcomes[1].state is BucketState.SKIPPED
        assert isinstance(surface.outcomes[1].error, NoCalibratableData)

    def test_all_non_priceable_raises(self):
        """Finite quotes that cannot be priced are malformed input."""
        bucket = RawSmileQuotes(
            expiry=1.0, forward=F, strikes=[0.02, 0.03], quotes=[0.05, 0.06],
            convention=QuoteConvention.price(),
        )
        with pytest.raises(MalformedInput):
            Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate([bucket])


class TestStripBootstrap:
    """Tests for cap-like strip price quotes."""

    STRIKES = np.array([0.02, 0.025, 0.03, 0.035, 0.04, 0.045])
    WEIGHTS = (0.25 * 0.99, 0.25 * 0.98)
    FORWARDS = (0.03, 0.032)
    EXPIRIES = (0.5, 1.0)
    TRUTH = (
        SabrParameters(alpha=0.05, beta=0.5, rho=-0.2, nu=0.5),
        SabrParameters(alpha=0.055, beta=0.5, rho=-0.25, nu=0.45),
    )

    def _period_prices(self, i):
        F_i, T_i, p_i = self.FORWARDS[i], self.EXPIRIES[i], self.TRUTH[i]
        return np.array([
            shifted_black_call(F_i, K, T_i, MODEL.volatility(F_i, K, T_i, p_i), 0.0)
            for K in self.STRIKES
        ])

    def _buckets(self, bump=None):
        strip = np.zeros(len(self.STRIKES))
        buckets = []
        for i in range(2):
            strip = strip + self.WEIGHTS[i] * self._period_prices(i)
            quotes = strip.copy()
            if bump is not None and i == 1:
                quotes[bump[0]] += bump[1]
            buckets.append(RawSmileQuotes(
                expiry=self.EXPIRIES[i],
                forward=self.FORWARDS[i],
                strikes=self.STRIKES,
                quotes=quotes,
                convention=QuoteConvention.price(),
                tenor=0.25,
                cumulative=True,
                period_weight=self.WEIGHTS[i],
            ))
        return buckets

    def test_strip_round_trip(self):
        """Subtracting earlier periods recovers each period's smile."""
        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(self._buckets())

        assert len(surface.nodes) == 2
        for node, truth, F_i in zip(surface.nodes, self.TRUTH, self.FORWARDS):
            np.testing.assert_allclose(node.parameters.alpha, truth.alpha, rtol=1e-4)
            expected = MODEL.volatilities(F_i, self.STRIKES, node.expiry, truth)
            actual = MODEL.volatilities(F_i, self.STRIKES, node.expiry, node.parameters)
            np.testing.assert_allclose(actual, expected, atol=1e-6)

    def test_ordering_is_load_bearing(self):
        """Without the earlier period the later smile comes out wrong."""
        second_alone = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(self._buckets()[1:])

        alpha = second_alone.nodes[0].parameters.alpha
        assert abs(alpha - self.TRUTH[1].alpha) > 1e-2

    def test_strip_sensitivity(self):
        """Raw strip quote sensitivity includes the period weight."""
        config = CalibrationConfig.fixed_beta(0.5)
        j, h = 2, 1e-6

        base = Bootstrapper(config).calibrate(self._buckets())
        bumped = Bootstrapper(config).calibrate(self._buckets(bump=(j, h)))

        fd = (bumped.nodes[1].parameters.as_array() - base.nodes[1].parameters.as_array()) / h
        column = base.nodes[1].sensitivity[:, j]
        np.testing.assert_allclose(fd, column, rtol=5e-2, atol=1e-3 * np.max(np.abs(column)))


class TestOtherQuoteKinds:
    """Tests for normal vol and in-arrears buckets."""

    def test_normal_vol_bucket(self):
        params = TERM_STRUCTURE[1.0]
        black = MODEL.volatilities(F, STRIKES, 1.0, params)
        normal = np.array([black_to_normal_approx(F, K, 1.0, v)[0] for K, v in zip(STRIKES, black)])
        bucket = RawSmileQuotes(
            expiry=1.0, forward=F, strikes=STRIKES, quotes=normal,
            convention=QuoteConvention.normal_volatility(),
        )

        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate([bucket])

        actual = [surface.volatility(F, K, 1.0) for K in STRIKES]
        np.testing.assert_allclose(actual, black, atol=1e-6)
        assert np.all(np.abs(surface.nodes[0].sensitivity[0]) > 0)

    def test_in_arrears_bucket(self):
        """In-arrears quotes are fitted through the effective parameters."""
        truth = SabrParameters(alpha=0.05, beta=0.5, rho=-0.25, nu=0.45)
        in_arrears = InArrearsSmileModel(MODEL, 0.75, 1.0)
        vols = in_arrears.volatilities(F, STRIKES, 1.0, truth)
        bucket = RawSmileQuotes(
            expiry=1.0, forward=F, strikes=STRIKES, quotes=vols,
            accrual_start=0.75, accrual_end=1.0,
        )

        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate([bucket])

        fitted = surface.nodes[0].parameters
        np.testing.assert_allclose(in_arrears.volatilities(F, STRIKES, 1.0, fitted), vols, atol=1e-6)
        np.testing.assert_allclose(fitted.alpha, truth.alpha, rtol=1e-3)

    def test_shifted_target(self):
        """Black quotes at one shift are calibrated at the configured shift."""
        params = SabrParameters(alpha=0.05, beta=0.5, rho=-0.2, nu=0.4, shift=0.01)
        bucket = _vol_bucket(1.0, params, convention=QuoteConvention.black_volatility(0.01))

        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5, shift=0.02)).calibrate([bucket])

        node = surface.nodes[0]
        assert node.parameters.shift == 0.02
        assert surface.parameters(1.0).shift == 0.02
        for K, v in zip(STRIKES, bucket.quotes):
            np.testing.assert_allclose(
                shifted_black_call(F, K, 1.0, surface.volatility(F, K, 1.0), 0.02),
                shifted_black_call(F, K, 1.0, v, 0.01),
                atol=1e-4,
            )

    def test_from_frame(self):
        """DataFrame quotes feed straight into the bootstrap."""
        rows = []
        for T, params in TERM_STRUCTURE.items():
            for K, v in zip(STRIKES, MODEL.volatilities(F, STRIKES, T, params)):
                rows.append({"expiry": T, "forward": F, "strike": K, "quote": v})
        buckets = buckets_from_frame(pd.DataFrame(rows))

        surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

        assert [n.expiry for n in surface.nodes] == [0.5, 1.0, 2.0]
