import numpy as np
import pytest

from adjflow import (
    Permeability,
    build_cartesian_grid,
    c,
    compute_well_index,
    compute_well_index_sensitivity,
    compute_wellbore_constant,
)
from adjflow.errors import SkinFactorError, ValidationError, WellRadiusError


@pytest.fixture
def cube_grid():
    # 10 m x 10 m x 5 m cells
    return build_cartesian_grid((3, 3, 2), physical_size=(30.0, 30.0, 10.0))


def _expected_well_index(d1, d2, length, k1, k2, wc, radius, skin=0.0):
    re = (
        2.0
        * wc
        * np.sqrt(d1**2 * np.sqrt(k2 / k1) + d2**2 * np.sqrt(k1 / k2))
        / ((k2 / k1) ** 0.25 + (k1 / k2) ** 0.25)
    )
    return 2.0 * np.pi * length * np.sqrt(k1 * k2) / (np.log(re / radius) + skin)


def test_square_ratio_uses_table_head():
    constant = compute_wellbore_constant(np.array([10.0]), np.array([10.0]), "mimetic")
    assert constant[0] == 0.292


def test_two_point_discretizations_use_peaceman_constant():
    d = np.array([10.0, 20.0])
    for kind in ("tpfa", "quasi_tpfa"):
        np.testing.assert_array_equal(compute_wellbore_constant(d, d[::-1], kind), 0.14)


@pytest.mark.parametrize(
    "d1, d2, expected",
    [
        (20.0, 10.0, 0.278),
        (10.0, 60.0, 0.244 + (0.231 - 0.244) / 3.0),
        (25.0, 10.0, 0.262),  # 2.5 rounds up to 3
        (1000.0, 10.0, 0.210),
    ],
)
def test_wellbore_constant_interpolation(d1, d2, expected):
    constant = compute_wellbore_constant(np.array([d1]), np.array([d2]), "raviart_thomas")
    assert constant[0] == pytest.approx(expected, rel=1e-12)


def test_unknown_discretization_is_rejected():
    with pytest.raises(ValidationError):
        compute_wellbore_constant(np.array([1.0]), np.array([1.0]), "mpfa")


def test_vertical_well_index_in_isotropic_cell(cube_grid):
    k = 100.0 * c.MILLIDARCY
    permeability = np.full(cube_grid.num_cells, k)
    well_index, derivative = compute_well_index(
        cube_grid, permeability, radius=0.1, direction="z", cells=[4]
    )
    expected = _expected_well_index(10.0, 10.0, 5.0, k, k, 0.14, 0.1)
    assert well_index[0] == pytest.approx(expected, rel=1e-12)
    assert derivative[0] == pytest.approx(expected / k, rel=1e-12)


def test_horizontal_well_uses_transverse_dimensions(cube_grid):
    n = cube_grid.num_cells
    kxx, kyy, kzz = 300.0 * c.MILLIDARCY, 200.0 * c.MILLIDARCY, 20.0 * c.MILLIDARCY
    permeability = Permeability(np.column_stack([np.full(n, kxx), np.full(n, kyy), np.full(n, kzz)]))
    well_index, derivative = compute_well_index(
        cube_grid, permeability, radius=0.1, direction="x", cells=[0, 1, 2]
    )
    expected = _expected_well_index(10.0, 5.0, 10.0, kyy, kzz, 0.14, 0.1)
    np.testing.assert_allclose(well_index, expected, rtol=1e-12)
    np.testing.assert_allclose(derivative, well_index / np.sqrt(kyy * kzz), rtol=1e-12)


def test_full_tensor_uses_principal_diagonal(cube_grid):
    n = cube_grid.num_cells
    diagonal = np.column_stack([np.full(n, 1e-13), np.full(n, 2e-13), np.full(n, 3e-13)])
    tensor = np.column_stack(
        [diagonal[:, 0], np.full(n, 1e-15), np.zeros(n), diagonal[:, 1], np.zeros(n), diagonal[:, 2]]
    )
    from_tensor, _ = compute_well_index(cube_grid, tensor, 0.1, "y", [3])
    from_diagonal, _ = compute_well_index(cube_grid, diagonal, 0.1, "y", [3])
    np.testing.assert_allclose(from_tensor, from_diagonal, rtol=1e-14)


def test_supplied_permeability_thickness_has_no_permeability_derivative(cube_grid):
    permeability = np.full(cube_grid.num_cells, 1e-13)
    well_index, derivative = compute_well_index(
        cube_grid,
        permeability,
        0.1,
        "z",
        [0, 9],
        permeability_thickness=[2e-12, -1.0],
    )
    assert derivative[0] == 0.0
    assert derivative[1] == pytest.approx(well_index[1] / 1e-13)
    assert well_index[0] == pytest.approx(
        2.0 * np.pi * 2e-12 / np.log(0.14 * np.sqrt(200.0) / 0.1)
    )


def test_well_index_is_non_negative(cube_grid):
    rng = np.random.default_rng(7)
    permeability = rng.uniform(1e-15, 1e-12, size=(cube_grid.num_cells, 3))
    well_index, _ = compute_well_index(
        cube_grid, permeability, 0.05, "zyxzyxzyxzyxzyxzyx", np.arange(cube_grid.num_cells)
    )
    assert np.all(well_index >= 0.0)


def test_large_radius_raises_well_radius_error(cube_grid):
    permeability = np.full(cube_grid.num_cells, 1e-13)
    with pytest.raises(WellRadiusError):
        compute_well_index(cube_grid, permeability, radius=5.0, direction="z", cells=[0])


def test_large_negative_skin_raises_skin_factor_error(cube_grid):
    permeability = np.full(cube_grid.num_cells, 1e-13)
    with pytest.raises(SkinFactorError):
        compute_well_index(cube_grid, permeability, 0.1, "z", [0], skin=-10.0)


def test_mismatched_lengths_are_rejected(cube_grid):
    permeability = np.full(cube_grid.num_cells, 1e-13)
    with pytest.raises(ValidationError):
        compute_well_index(cube_grid, permeability, [0.1, 0.1, 0.1], "z", [0, 1])
    with pytest.raises(ValidationError):
        compute_well_index(cube_grid, permeability, 0.1, "zz", [0, 1, 2])
    with pytest.raises(ValidationError):
        compute_well_index(cube_grid, permeability, 0.1, "w", [0])


def test_sensitivity_matches_forward_formula(cube_grid):
    base = np.full(cube_grid.num_cells, 1e-13)
    perturbed = base.copy()
    perturbed[4] *= 1.5
    sensitivity = compute_well_index_sensitivity(cube_grid, perturbed, 0.1, "z", [4, 5])
    forward, _ = compute_well_index(cube_grid, perturbed, 0.1, "z", [4, 5])
    unperturbed, _ = compute_well_index(cube_grid, base, 0.1, "z", [4, 5])
    np.testing.assert_array_equal(sensitivity, forward)
    assert sensitivity[0] == pytest.approx(1.5 * unperturbed[0])
    assert sensitivity[1] == pytest.approx(unperturbed[1])
