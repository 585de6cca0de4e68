import logging

import numpy as np
import pytest

from adjflow import (
    Config,
    ReservoirState,
    Schedule,
    Time,
    TransportContext,
    run_schedule,
    upstream_weights,
)
from adjflow.errors import ConvergenceError, SimulationError


def test_run_records_every_step(grid, rock, fluid, rate_wells, schedule, config):
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    assert len(trajectory) == 2
    assert [step.index for step in trajectory] == [1, 2]
    assert trajectory.total_time == pytest.approx(schedule.total_time)
    assert trajectory.steps[1].start_time == pytest.approx(trajectory.steps[0].end_time)
    np.testing.assert_array_equal(trajectory.initial_state.saturation, 0.0)
    np.testing.assert_array_equal(
        trajectory.steps[1].start_saturation, trajectory.steps[0].state.saturation
    )
    assert trajectory.final_state is trajectory.steps[-1].state


def test_water_is_conserved_over_the_run(grid, rock, fluid, rate_wells, schedule, config):
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    pore_volumes = rock.pore_volumes(grid.volumes)
    net_inflow = 0.0
    num_substeps = 0
    for step in trajectory:
        context = TransportContext.from_state(grid, rock, fluid, step.wells, step.state)
        for time_step, saturation in step.report.substeps:
            _, weights = upstream_weights(context, saturation)
            net_inflow += time_step * np.sum(weights * context.perforation_flux)
            num_substeps += 1
    stored = np.sum(trajectory.final_state.saturation * pore_volumes)
    assert stored == pytest.approx(
        net_inflow, abs=config.nonlinear_tolerance * pore_volumes.sum() * num_substeps
    )
    assert net_inflow <= rate_wells[0].target * schedule.total_time * (1.0 + 1e-12)
    assert trajectory.final_state.saturation[0] > trajectory.final_state.saturation[-1]


def test_schedule_controls_are_applied(grid, rock, fluid, rate_wells, config):
    schedule = Schedule(
        time_steps=[Time(days=10), Time(days=10)],
        controls=[None, (2e-5, -2e-5)],
    )
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    np.testing.assert_allclose(
        trajectory.steps[0].state.perforation_flux, rate_wells.targets, rtol=1e-8
    )
    np.testing.assert_allclose(trajectory.steps[1].state.perforation_flux, [2e-5, -2e-5], rtol=1e-8)
    np.testing.assert_array_equal(trajectory.steps[1].wells.targets, [2e-5, -2e-5])


def test_initial_state_is_not_modified(grid, rock, fluid, rate_wells, schedule, config):
    initial = ReservoirState.initialize(grid.num_cells, grid.num_faces, rate_wells, saturation=0.1)
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, initial, config)
    np.testing.assert_array_equal(initial.saturation, 0.1)
    np.testing.assert_array_equal(trajectory.initial_state.saturation, 0.1)


def test_failed_step_is_reported_with_its_index(grid, rock, fluid, rate_wells, schedule, caplog):
    config = Config(
        max_newton_iterations=1,
        line_search_trials=1,
        residual_reduction=1e-12,
        max_refinements=0,
    )
    with caplog.at_level(logging.ERROR, logger="adjflow.simulate"):
        with pytest.raises(SimulationError, match="Step 1") as exc_info:
            run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    assert isinstance(exc_info.value.__cause__, ConvergenceError)
    assert "Step 1 failed" in caplog.text
