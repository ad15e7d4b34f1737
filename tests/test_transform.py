"""
Tests for the unconstrained SABR parameterisation.
"""

import pytest
import numpy as np

from sabrlib.vol.sabr import RHO_LIMIT, SabrParameters
from sabrlib.vol.transform import EXP_CAP, TANH_CAP, ParameterTransform


class TestParameterTransform:
    """Tests for ParameterTransform."""

    @pytest.fixture
    def transform(self):
        return ParameterTransform()

    @pytest.mark.parametrize("params", [
        SabrParameters(alpha=0.05, beta=0.5, rho=-0.3, nu=0.4),
        SabrParameters(alpha=1e-3, beta=0.01, rho=0.95, nu=2.5, shift=0.02),
        SabrParameters(alpha=60.0, beta=0.99, rho=-0.9, nu=0.01),
    ])
    def test_round_trip_all_free(self, transform, params):
        """Model -> optimizer -> model is the identity."""
        y = transform.to_optimizer_space(params)
        again = transform.to_model_space(y, shift=params.shift)

        np.testing.assert_allclose(again.as_array(), params.as_array(), rtol=1e-10, atol=1e-14)
        assert again.shift == params.shift

    @pytest.mark.parametrize("fixed", [("beta",), ("rho",), ("alpha", "nu"), ("beta", "nu")])
    def test_round_trip_with_fixed(self, transform, fixed):
        """Fixed parameters are excluded from y and restored from fixed_values."""
        params = SabrParameters(alpha=0.05, beta=0.5, rho=-0.3, nu=0.4)
        fixed_values = {name: getattr(params, name) for name in fixed}

        y = transform.to_optimizer_space(params, fixed)
        assert len(y) == 4 - len(fixed)

        again = transform.to_model_space(y, fixed, fixed_values)
        np.testing.assert_allclose(again.as_array(), params.as_array(), rtol=1e-10)

    def test_boundary_values(self, transform):
        """Boundary values map to the saturation caps."""
        params = SabrParameters(alpha=0.0, beta=1.0, rho=0.0, nu=0.0)
        y = transform.to_optimizer_space(params)

        assert y[0] == -EXP_CAP
        assert y[1] == TANH_CAP
        assert y[3] == -EXP_CAP

        params = SabrParameters(alpha=0.05, beta=0.0, rho=RHO_LIMIT, nu=0.3)
        y = transform.to_optimizer_space(params)
        assert y[1] == -TANH_CAP
        assert y[2] == TANH_CAP

    def test_large_values_linear(self, transform):
        """Above the exponent cap the single-sided map is linear."""
        params = SabrParameters(alpha=75.0, beta=0.5, rho=0.0, nu=0.3)
        y = transform.to_optimizer_space(params)
        assert y[0] == 75.0

    @pytest.mark.parametrize("y", [
        np.array([300.0, -300.0, 300.0, -300.0]),
        np.array([-300.0, 300.0, -300.0, 300.0]),
        np.array([0.0, 0.0, 0.0, 0.0]),
    ])
    def test_model_space_always_admissible(self, transform, y):
        """Any optimizer point maps inside the admissible box."""
        params = transform.to_model_space(y)
        assert params.alpha >= 0
        assert 0 <= params.beta <= 1
        assert -RHO_LIMIT <= params.rho <= RHO_LIMIT
        assert params.nu >= 0

    def test_model_derivative(self, transform):
        """dp/dy against central differences."""
        y = np.array([-2.5, 0.3, -0.4, -1.0])
        h = 1e-6

        deriv = transform.model_derivative(y)
        for j in range(4):
            up, down = y.copy(), y.copy()
            up[j] += h
            down[j] -= h
            fd = (transform.to_model_space(up).as_array()[j]
                  - transform.to_model_space(down).as_array()[j]) / (2 * h)
            np.testing.assert_allclose(deriv[j], fd, rtol=1e-6)

    def test_missing_fixed_value(self, transform):
        """A fixed parameter without a value is an error."""
        with pytest.raises(ValueError):
            transform.to_model_space(np.zeros(3), ("beta",), {})

    def test_unknown_fixed_parameter(self, transform):
        with pytest.raises(ValueError):
            transform.free_parameters(("sigma",))

    def test_fixed_rho_passed_through(self, transform):
        """A fixed rho outside the optimizer box is kept as supplied."""
        params = transform.to_model_space(np.zeros(3), ("rho",), {"rho": 0.9995})
        assert params.rho == 0.9995
