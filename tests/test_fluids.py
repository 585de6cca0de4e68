import numpy as np
import pytest

from adjflow import CoreyFluid, FluidModel, c
from adjflow.errors import ValidationError


@pytest.mark.parametrize(
    "fluid",
    [
        CoreyFluid(),
        CoreyFluid(water_exponent=3.0, oil_exponent=2.0, oil_viscosity=10.0 * c.CENTIPOISE),
        CoreyFluid(residual_water_saturation=0.1, residual_oil_saturation=0.15),
    ],
)
def test_fractional_flow_is_monotone_between_zero_and_one(fluid):
    assert isinstance(fluid, FluidModel)
    s = np.linspace(0.0, 1.0, 201)
    f = fluid.fractional_flow(s)
    assert f[0] == 0.0
    assert f[-1] == 1.0
    assert np.all(np.diff(f) >= 0.0)
    assert np.all(fluid.fractional_flow_derivative(s) >= 0.0)


@pytest.mark.parametrize(
    "fluid",
    [CoreyFluid(), CoreyFluid(water_exponent=3.0, oil_exponent=4.0), CoreyFluid(water_exponent=1.0)],
)
def test_derivatives_match_finite_differences(fluid):
    s = np.linspace(0.05, 0.95, 19)
    eps = 1e-6
    np.testing.assert_allclose(
        fluid.fractional_flow_derivative(s),
        (fluid.fractional_flow(s + eps) - fluid.fractional_flow(s - eps)) / (2 * eps),
        rtol=1e-6,
        atol=1e-8,
    )
    np.testing.assert_allclose(
        fluid.fractional_flow_second_derivative(s),
        (fluid.fractional_flow_derivative(s + eps) - fluid.fractional_flow_derivative(s - eps))
        / (2 * eps),
        rtol=1e-5,
        atol=1e-6,
    )
    np.testing.assert_allclose(
        fluid.total_mobility_derivative(s),
        (fluid.total_mobility(s + eps) - fluid.total_mobility(s - eps)) / (2 * eps),
        rtol=1e-6,
        atol=1e-6,
    )


def test_curves_are_flat_outside_mobile_range():
    fluid = CoreyFluid(residual_water_saturation=0.2, residual_oil_saturation=0.2)
    s = np.array([0.0, 0.1, 0.9, 1.0])
    np.testing.assert_array_equal(fluid.fractional_flow(s), [0.0, 0.0, 1.0, 1.0])
    np.testing.assert_array_equal(fluid.fractional_flow_derivative(s), 0.0)
    np.testing.assert_array_equal(fluid.total_mobility_derivative(s), 0.0)


def test_total_mobility_end_points():
    fluid = CoreyFluid()
    assert fluid.total_mobility(0.0) == pytest.approx(1.0 / fluid.oil_viscosity)
    assert fluid.total_mobility(1.0) == pytest.approx(1.0 / fluid.water_viscosity)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"water_exponent": 1.5},
        {"residual_water_saturation": 0.6, "residual_oil_saturation": 0.4},
        {"water_viscosity": 0.0},
    ],
)
def test_invalid_parameters_are_rejected(kwargs):
    with pytest.raises(ValueError):
        CoreyFluid(**kwargs)


def test_validation_error_is_a_value_error():
    with pytest.raises(ValidationError):
        CoreyFluid(oil_exponent=1.2)
