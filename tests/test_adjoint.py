import attrs
import numpy as np
import pytest

from adjflow import (
    Config,
    PressureSystem,
    ReservoirState,
    RockProperties,
    Schedule,
    StepPartials,
    Time,
    TransportContext,
    adjoint_pressure_step,
    c,
    control_gradient,
    npv,
    permeability_gradient,
    run_adjoint,
    run_schedule,
)
from adjflow.errors import ValidationError

from conftest import INJECTION_RATE


CONTROLS = (INJECTION_RATE, 100.0 * c.BAR, 98.0 * c.BAR)


@pytest.fixture
def controlled_schedule():
    return Schedule(time_steps=[Time(days=30)] * 2, controls=[CONTROLS] * 2)


def test_pressure_adjoint_gives_sensitivity_of_rate_functional(
    grid, rock, fluid, mixed_wells, controlled_schedule, config
):
    trajectory = run_schedule(grid, rock, fluid, mixed_wells, controlled_schedule, config=config)
    step = trajectory.steps[0]
    context = TransportContext.from_state(grid, rock, fluid, step.wells, step.state)
    weights = np.array([0.5, -2.0, 1.0])
    partials = attrs.evolve(
        StepPartials.zeros(
            grid.num_faces, grid.num_cells, mixed_wells.num_perforations, len(mixed_wells)
        ),
        well_flux=weights,
    )
    multipliers = [np.zeros(grid.num_cells)] * step.report.num_substeps
    adjoint = adjoint_pressure_step(step, context, multipliers, partials)
    gradient = control_gradient([adjoint])[0]

    def functional(targets):
        system = PressureSystem.assemble(
            grid, rock, fluid, step.wells.with_targets(targets), step.start_saturation, config
        )
        _, solution = system.solve()
        return weights @ solution.well_flux

    base = np.array(CONTROLS)
    numerical = []
    for j in range(len(base)):
        h = 1e-3 * base[j]
        up, down = base.copy(), base.copy()
        up[j] += h
        down[j] -= h
        numerical.append((functional(up) - functional(down)) / (2 * h))
    np.testing.assert_allclose(gradient, numerical, rtol=1e-6)

    unpacked = step.pressure_system.unpack(adjoint.dual)
    np.testing.assert_allclose(adjoint.well_flux, -unpacked.well_flux)
    np.testing.assert_allclose(adjoint.pressure, -unpacked.pressure)
    sensitivity = step.pressure_system.saturation_sensitivity(step.raw_solution, adjoint.dual)
    np.testing.assert_allclose(adjoint.carry, -sensitivity)


FLOOD_CONTROLS = (5.0 * INJECTION_RATE, 100.0 * c.BAR, 98.0 * c.BAR)


@pytest.fixture
def flooded_rock(grid):
    """Log-normal permeability around 100 mD."""
    multipliers = np.random.default_rng(7).lognormal(0.0, 0.5, grid.num_cells)
    return RockProperties(
        porosity=np.full(grid.num_cells, 0.2),
        permeability=100.0 * c.MILLIDARCY * multipliers,
    )


@pytest.fixture
def flooded_wells(grid, flooded_rock, mixed_wells):
    return mixed_wells.with_permeability(grid, flooded_rock.permeability)


@pytest.fixture
def flooded_state(grid, flooded_wells):
    """Mobile water everywhere, so producers see water from the first step."""
    return ReservoirState.initialize(
        grid.num_cells, grid.num_faces, flooded_wells, saturation=0.3
    )


def _flood_objective(grid, rock, fluid, wells, schedule, initial_state, config):
    trajectory = run_schedule(
        grid, rock, fluid, wells, schedule, initial_state=initial_state.copy(), config=config
    )
    return npv(grid, wells, trajectory, fluid).value


def _control_gradients(grid, rock, fluid, wells, schedule, initial_state, config):
    trajectory = run_schedule(
        grid, rock, fluid, wells, schedule, initial_state=initial_state.copy(), config=config
    )
    objective = npv(grid, wells, trajectory, fluid, compute_partials=True)
    states = run_adjoint(grid, rock, fluid, trajectory, objective, config)
    gradient = control_gradient(states, objective)

    numerical = np.empty_like(gradient)
    for n in range(len(schedule)):
        for j, target in enumerate(FLOOD_CONTROLS):
            h = 1e-4 * abs(target)
            values = []
            for delta in (h, -h):
                targets = list(FLOOD_CONTROLS)
                targets[j] += delta
                perturbed = schedule.with_controls(n, targets)
                values.append(
                    _flood_objective(grid, rock, fluid, wells, perturbed, initial_state, config)
                )
            numerical[n, j] = (values[0] - values[1]) / (2 * h)
    return trajectory, gradient, numerical


def _assert_columns_close(gradient, numerical):
    # Rate and pressure controls have different units, compare per column
    for j in range(gradient.shape[1]):
        scale = np.abs(numerical[:, j]).max()
        assert scale > 0.0
        np.testing.assert_allclose(gradient[:, j], numerical[:, j], rtol=1e-3, atol=1e-3 * scale)


def test_control_gradient_matches_finite_differences(
    grid, flooded_rock, fluid, flooded_wells, flooded_state, config
):
    schedule = Schedule(time_steps=[Time(days=60)] * 3, controls=[FLOOD_CONTROLS] * 3)
    trajectory, gradient, numerical = _control_gradients(
        grid, flooded_rock, fluid, flooded_wells, schedule, flooded_state, config
    )
    assert gradient.shape == (3, 3)
    producer_cells = flooded_wells.perforation_cells[1:]
    assert np.all(fluid.fractional_flow(trajectory.steps[0].state.saturation[producer_cells]) > 0.01)
    _assert_columns_close(gradient, numerical)
    # Only the pressure drop between the producers matters to a rate-driven flood
    np.testing.assert_allclose(gradient[:, 1], -gradient[:, 2], rtol=1e-5)


def test_control_gradient_matches_finite_differences_with_refinement(
    grid, flooded_rock, fluid, flooded_wells, flooded_state
):
    config = Config(nonlinear_tolerance=1e-10, max_newton_iterations=3)
    schedule = Schedule(time_steps=[Time(days=400)], controls=[FLOOD_CONTROLS])
    trajectory, gradient, numerical = _control_gradients(
        grid, flooded_rock, fluid, flooded_wells, schedule, flooded_state, config
    )
    report = trajectory.steps[0].report
    assert report.refinements > 0
    assert report.num_substeps > 1
    _assert_columns_close(gradient, numerical)


def test_permeability_gradient_matches_finite_differences(
    grid, flooded_rock, fluid, flooded_wells, flooded_state, config
):
    schedule = Schedule(time_steps=[Time(days=60)] * 3, controls=[FLOOD_CONTROLS] * 3)
    trajectory = run_schedule(
        grid,
        flooded_rock,
        fluid,
        flooded_wells,
        schedule,
        initial_state=flooded_state.copy(),
        config=config,
    )
    objective = npv(grid, flooded_wells, trajectory, fluid, compute_partials=True)
    states = run_adjoint(grid, flooded_rock, fluid, trajectory, objective, config)
    gradient = permeability_gradient(trajectory, states)
    assert gradient.shape == (grid.num_cells,)

    k = flooded_rock.permeability.scalar()
    cells = [0, 6, 12, 17, 24]
    numerical = []
    for i in cells:
        h = 1e-4 * k[i]
        values = []
        for delta in (h, -h):
            perturbed = k.copy()
            perturbed[i] += delta
            perturbed_rock = flooded_rock.with_permeability(perturbed)
            wells = flooded_wells.with_permeability(grid, perturbed_rock.permeability)
            values.append(
                _flood_objective(
                    grid, perturbed_rock, fluid, wells, schedule, flooded_state, config
                )
            )
        numerical.append((values[0] - values[1]) / (2 * h))
    numerical = np.array(numerical)
    assert np.abs(numerical).max() > 0.0
    np.testing.assert_allclose(
        gradient[cells], numerical, rtol=1e-3, atol=1e-3 * np.abs(numerical).max()
    )


def test_adjoint_states_are_chronological(grid, rock, fluid, rate_wells, schedule, config):
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    objective = npv(grid, rate_wells, trajectory, fluid, compute_partials=True)
    states = run_adjoint(grid, rock, fluid, trajectory, objective, config)
    assert len(states) == len(trajectory)
    for step, state in zip(trajectory, states):
        assert len(state.transport) == step.report.num_substeps
        np.testing.assert_array_equal(state.saturation, state.transport[-1])
        assert state.dual.shape == (step.pressure_system.size,)


def test_run_adjoint_requires_partials(grid, rock, fluid, rate_wells, schedule, config):
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    objective = npv(grid, rate_wells, trajectory, fluid)
    with pytest.raises(ValidationError):
        run_adjoint(grid, rock, fluid, trajectory, objective, config)


def test_permeability_gradient_rejects_mismatched_states(grid, rock, fluid, rate_wells, schedule, config):
    trajectory = run_schedule(grid, rock, fluid, rate_wells, schedule, config=config)
    with pytest.raises(ValidationError):
        permeability_gradient(trajectory, [])
