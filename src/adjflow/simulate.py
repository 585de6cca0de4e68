"""Sequential forward run: pressure solve followed by implicit transport, step by step."""

import logging
import typing

from adjflow.config import Config
from adjflow.diffusivity.implicit import advance_saturation
from adjflow.diffusivity.pressure import forward_pressure_step
from adjflow.diffusivity.transport import TransportContext
from adjflow.errors import PhysicalInconsistencyError, SimulationError, SolverError
from adjflow.fluids import FluidModel
from adjflow.grids import CartesianGrid
from adjflow.models import RockProperties
from adjflow.states import ReservoirState, StepRecord, Trajectory
from adjflow.timing import Schedule
from adjflow.wells import Wells

logger = logging.getLogger(__name__)

__all__ = ["run_schedule"]


def log_progress(
    step: int,
    step_size: float,
    time_elapsed: float,
    total_time: float,
    is_last_step: bool = False,
    interval: int = 1,
) -> None:
    """Logs the simulation progress at specified intervals."""
    if step <= 1 or step % interval == 0 or is_last_step:
        percent_complete = (time_elapsed / total_time) * 100.0
        logger.info(
            f"Time Step {step} with Δt = {step_size:.4e}s - "
            f"({percent_complete:.2f}%) - "
            f"Elapsed Time: {time_elapsed:.4e}s / {total_time:.4e}s"
        )


def run_schedule(
    grid: CartesianGrid,
    rock: RockProperties,
    fluid: FluidModel,
    wells: Wells,
    schedule: Schedule,
    initial_state: typing.Optional[ReservoirState] = None,
    config: typing.Optional[Config] = None,
) -> Trajectory:
    """
    Run the forward problem over a schedule and record the trajectory.

    Each outer step solves the pressure system at the saturation of the
    previous step, then advances the saturation implicitly with the
    resulting fluxes. Steps are never retried once the transport solver
    gives up.

    :param grid: Grid of the model.
    :param rock: Rock properties.
    :param fluid: Fluid model.
    :param wells: Wells of the model.
    :param schedule: Outer steps and well controls.
    :param initial_state: Initial state. Defaults to zero water saturation.
    :param config: Simulation configuration.
    :return: The recorded trajectory.
    :raises SimulationError: If an outer step fails. The message names the step.
    """
    config = config or Config()
    if initial_state is None:
        initial_state = ReservoirState.initialize(
            num_cells=grid.num_cells, num_faces=grid.num_faces, wells=wells
        )
    state = initial_state.copy()
    total_time = schedule.total_time
    logger.info(
        f"Starting run: {len(schedule)} steps over {total_time:.4e}s, "
        f"{grid.num_cells} cells, {len(wells)} wells"
    )

    steps: typing.List[StepRecord] = []
    elapsed = 0.0
    for index, (time_step, targets) in enumerate(schedule, start=1):
        step_wells = wells if targets is None else wells.with_targets(targets)
        start_saturation = state.saturation.copy()
        try:
            system, raw = forward_pressure_step(
                grid=grid,
                rock=rock,
                fluid=fluid,
                wells=step_wells,
                state=state,
                config=config,
            )
            context = TransportContext.from_state(
                grid=grid, rock=rock, fluid=fluid, wells=step_wells, state=state
            )
            report = advance_saturation(
                state=state, context=context, total_time=time_step, config=config
            )
        except (SimulationError, PhysicalInconsistencyError, SolverError) as exc:
            logger.error(f"Step {index} failed at time {elapsed:.4e}s: {exc}")
            raise SimulationError(
                f"Step {index} (t = {elapsed:.4e}s, Δt = {time_step:.4e}s) failed: {exc}"
            ) from exc

        steps.append(
            StepRecord(
                index=index,
                start_time=elapsed,
                time_step=time_step,
                wells=step_wells,
                pressure_system=system,
                raw_solution=raw,
                start_saturation=start_saturation,
                state=state.copy(),
                report=report,
            )
        )
        elapsed += time_step
        log_progress(
            step=index,
            step_size=time_step,
            time_elapsed=elapsed,
            total_time=total_time,
            is_last_step=index == len(schedule),
            interval=config.log_interval,
        )
        if report.refinements:
            logger.info(
                f"Step {index} needed {report.refinements} refinements "
                f"({report.num_substeps} sub-steps)"
            )

    return Trajectory(initial_state=initial_state.copy(), steps=steps)
