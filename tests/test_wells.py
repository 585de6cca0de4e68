import warnings

import numpy as np
import pytest

from adjflow import (
    Config,
    ControlMode,
    DiscretizationKind,
    Wells,
    add_well,
    c,
    compute_well_index,
    per_perforation,
    per_perforation_directions,
)
from adjflow.errors import ValidationError


def test_rate_well_takes_sign_and_defaults(grid, rock):
    wells = add_well(None, grid, rock, [6, 7], control="rate", target=1e-4)
    well = wells[0]
    assert well.name == "W1"
    assert well.control is ControlMode.RATE
    assert well.sign == 1
    assert well.composition == (1.0, 0.0)
    assert well.injected_water_fraction == 1.0
    assert well.reference_depth == grid.minimum_depth
    np.testing.assert_allclose(well.depth_offsets, 5.0)
    expected, derivative = compute_well_index(grid, rock.permeability, 0.1, "z", [6, 7])
    np.testing.assert_allclose(well.well_index, expected)
    np.testing.assert_allclose(well.well_index_derivative, derivative)


def test_supplied_well_indices_are_kept(grid, rock):
    wells = add_well(
        None, grid, rock, [1, 2], well_index=[5e-12, -1.0], target=100 * c.BAR
    )
    well = wells[0]
    computed, _ = compute_well_index(grid, rock.permeability, 0.1, "z", [2])
    assert well.well_index[0] == 5e-12
    assert well.well_index[1] == pytest.approx(computed[0])
    np.testing.assert_array_equal(well.computed, [False, True])
    assert well.well_index_derivative[0] == 0.0


def test_supplied_index_with_mimetic_discretization_warns(grid, rock):
    with pytest.warns(UserWarning, match="supplied well indices"):
        add_well(None, grid, rock, [1], well_index=1e-12, discretization="mimetic")


def test_mixed_indices_with_mimetic_discretization_warns(grid, rock):
    with pytest.warns(UserWarning, match="combines supplied and computed"):
        add_well(None, grid, rock, [1, 2], well_index=[1e-12, -1.0], discretization="mimetic")


def test_supplied_index_with_two_point_discretization_is_silent(grid, rock):
    with warnings.catch_warnings():
        warnings.simplefilter("error", UserWarning)
        add_well(None, grid, rock, [1, 2], well_index=[1e-12, -1.0], discretization="tpfa")


def test_discretization_defaults_to_the_configured_one(grid, rock):
    config = Config(discretization="mimetic")
    with pytest.warns(UserWarning, match="supplied well indices"):
        wells = add_well(None, grid, rock, [1], well_index=1e-12, config=config)
    assert wells[0].discretization is DiscretizationKind.MIMETIC

    with warnings.catch_warnings():
        warnings.simplefilter("error", UserWarning)
        wells = add_well(
            None, grid, rock, [1], well_index=1e-12, discretization="tpfa", config=config
        )
    assert wells[0].discretization is DiscretizationKind.TPFA
    assert add_well(None, grid, rock, [1])[0].discretization is DiscretizationKind.TPFA


def test_zero_well_index_is_rejected_when_the_well_is_built(grid, rock):
    with pytest.raises(ValidationError, match="non-positive"):
        add_well(None, grid, rock, [1, 2], well_index=[0.0, -1.0])


def test_per_perforation_values_broadcast_or_match(grid):
    np.testing.assert_array_equal(per_perforation(0.1, 3, "radius"), [0.1, 0.1, 0.1])
    np.testing.assert_array_equal(per_perforation([0.2], 2, "skin"), [0.2, 0.2])
    with pytest.raises(ValidationError, match="radius"):
        per_perforation([0.1, 0.2], 3, "radius")
    assert [d.value for d in per_perforation_directions("xz", 2)] == ["x", "z"]
    assert len(per_perforation_directions("y", 4)) == 4


def test_sign_disagreeing_with_rate_warns_and_follows_rate(grid, rock):
    with pytest.warns(UserWarning, match="disagrees"):
        wells = add_well(
            None, grid, rock, [3], control="rate", target=-1e-4, sign=1
        )
    assert wells[0].sign == -1


def test_zero_rate_without_sign_is_rejected(grid, rock):
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [3], control="rate", target=0.0)
    wells = add_well(None, grid, rock, [3], control="rate", target=0.0, sign=-1)
    assert wells[0].sign == -1


@pytest.mark.parametrize("sign", [0, 2, -3])
def test_invalid_sign_is_rejected(grid, rock, sign):
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [3], sign=sign)


def test_invalid_input_is_rejected(grid, rock):
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [1, 2], radius=[0.1, 0.1, 0.1])
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [1], control="pressure")
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [grid.num_cells])
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [1], discretization="mpfa")
    with pytest.raises(ValidationError):
        add_well(None, grid, rock, [1], composition=(0.5, 0.2))


def test_duplicate_names_are_rejected(grid, rock):
    wells = add_well(None, grid, rock, [1], name="A")
    with pytest.raises(ValidationError):
        add_well(wells, grid, rock, [2], name="A")


def test_collection_numbers_perforations_in_well_order(grid, rock):
    wells = add_well(None, grid, rock, [5, 6], control="rate", target=1e-4, name="I")
    wells = add_well(wells, grid, rock, [20], control="bhp", target=1e7, name="P", sign=-1)
    np.testing.assert_array_equal(wells.perforation_cells, [5, 6, 20])
    np.testing.assert_array_equal(wells.perforation_owners, [0, 0, 1])
    assert wells.names == ["I", "P"]
    assert wells.has_pressure_control
    assert wells["P"].target == 1e7

    updated = wells.with_targets([2e-4, 2e7])
    np.testing.assert_array_equal(updated.targets, [2e-4, 2e7])
    np.testing.assert_array_equal(wells.targets, [1e-4, 1e7])


def test_well_indices_follow_permeability_changes(grid, rock):
    wells = add_well(None, grid, rock, [1, 2], well_index=[3e-12, -1.0])
    refreshed = wells.with_permeability(grid, rock.permeability.values * 2.0)
    assert refreshed[0].well_index[0] == 3e-12
    assert refreshed[0].well_index[1] == pytest.approx(2.0 * wells[0].well_index[1])


def test_sensitivity_permeability_is_stored(grid, rock):
    perturbed = rock.permeability.values * 1.1
    wells = add_well(None, grid, rock, [4], sensitivity_permeability=perturbed)
    assert wells[0].well_index_sensitivity[0] == pytest.approx(1.1 * wells[0].well_index[0])


def test_empty_collection():
    wells = Wells()
    assert len(wells) == 0
    assert wells.perforation_cells.size == 0
    assert not wells.has_pressure_control
