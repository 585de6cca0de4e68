"""Shared fixtures: a small homogeneous five-spot style model."""

import numpy as np
import pytest

from adjflow import (
    Config,
    CoreyFluid,
    RockProperties,
    Schedule,
    Time,
    add_well,
    build_cartesian_grid,
    c,
)

INJECTION_RATE = 0.2 * (100.0 * 100.0 * 10.0 * 0.2) / Time(days=365)
"""0.2 pore volumes per year, in m³/s."""


@pytest.fixture
def grid():
    return build_cartesian_grid((5, 5, 1), physical_size=(100.0, 100.0, 10.0))


@pytest.fixture
def rock(grid):
    return RockProperties(
        porosity=np.full(grid.num_cells, 0.2),
        permeability=np.full(grid.num_cells, 100.0 * c.MILLIDARCY),
    )


@pytest.fixture
def fluid():
    return CoreyFluid()


@pytest.fixture
def config():
    return Config(nonlinear_tolerance=1e-10)


@pytest.fixture
def rate_wells(grid, rock):
    """Rate injector in the first cell, rate producer in the last."""
    wells = add_well(
        None, grid, rock, [0], control="rate", target=INJECTION_RATE, name="I1"
    )
    return add_well(
        wells,
        grid,
        rock,
        [grid.num_cells - 1],
        control="rate",
        target=-INJECTION_RATE,
        name="P1",
    )


@pytest.fixture
def mixed_wells(grid, rock):
    """Rate injector in the centre, pressure-controlled producers in two corners."""
    wells = add_well(
        None, grid, rock, [12], control="rate", target=INJECTION_RATE, name="I1"
    )
    wells = add_well(
        wells, grid, rock, [0], control="bhp", target=100.0 * c.BAR, name="P1", sign=-1
    )
    return add_well(
        wells, grid, rock, [24], control="bhp", target=98.0 * c.BAR, name="P2", sign=-1
    )


@pytest.fixture
def schedule():
    return Schedule.uniform(Time(days=60), 2)
