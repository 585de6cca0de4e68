import numpy as np
import pytest

from adjflow import build_cartesian_grid
from adjflow.errors import ValidationError


@pytest.fixture
def box():
    return build_cartesian_grid((4, 3, 2), physical_size=(40.0, 30.0, 10.0))


def test_counts_and_volumes(box):
    assert box.num_cells == 24
    # (nx-1)·ny·nz + nx·(ny-1)·nz + nx·ny·(nz-1)
    assert box.num_faces == 3 * 3 * 2 + 4 * 2 * 2 + 4 * 3 * 1
    np.testing.assert_allclose(box.volumes, 10.0 * 10.0 * 5.0)
    assert box.volumes.sum() == pytest.approx(40.0 * 30.0 * 10.0)


def test_neighbours_follow_x_fastest_numbering(box):
    assert box.cell_index(1, 2, 1) == 1 + 4 * (2 + 3 * 1)
    x_faces = box.neighbors[box.face_axis == 0]
    np.testing.assert_array_equal(x_faces[:, 1] - x_faces[:, 0], 1)
    y_faces = box.neighbors[box.face_axis == 1]
    np.testing.assert_array_equal(y_faces[:, 1] - y_faces[:, 0], 4)
    z_faces = box.neighbors[box.face_axis == 2]
    np.testing.assert_array_equal(z_faces[:, 1] - z_faces[:, 0], 12)


def test_half_transmissibility_factors(box):
    factors = box.half_transmissibility_factors
    # area / half length: x faces 10·5 / 5, y faces 10·5 / 5, z faces 10·10 / 2.5
    np.testing.assert_allclose(factors[box.face_axis == 0], 10.0)
    np.testing.assert_allclose(factors[box.face_axis == 1], 10.0)
    np.testing.assert_allclose(factors[box.face_axis == 2], 40.0)


def test_depths_increase_downwards(box):
    np.testing.assert_allclose(box.depths([0, 12]), [2.5, 7.5])
    assert box.minimum_depth == 0.0


def test_invalid_positions_are_rejected(box):
    with pytest.raises(ValidationError):
        box.cell_index(4, 0, 0)
    with pytest.raises(ValidationError):
        build_cartesian_grid((2, 2))
