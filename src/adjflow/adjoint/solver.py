"""
Discrete adjoint of the sequential pressure/transport run.

With the Lagrangian

    L = J - Σ_n Σ_k λ_kⁿ·R_kⁿ - Σ_n yⁿ·(Aⁿ zⁿ - bⁿ)

the multipliers of step `n` follow, in reverse order, from

    J_mᵀ λ_m = ∂J/∂sⁿ + λ_1ⁿ⁺¹ - Kⁿ⁺¹,    J_kᵀ λ_k = λ_{k+1}
    Aⁿᵀ yⁿ = ∂J/∂zⁿ - Σ_k (∂R_k/∂z)ᵀ λ_k

where `R_k` are the transport residuals of the accepted sub-steps,
`J_k` their Jacobians, and `Kⁿ = (∂(Aⁿ zⁿ)/∂s)ᵀ yⁿ` the saturation
sensitivity of the pressure operator assembled at `sⁿ⁻¹`.
"""

import logging
import typing

import numpy as np

from adjflow.adjoint.objectives import ObjectiveAccumulator, StepPartials
from adjflow.config import Config
from adjflow.diffusivity.base import solve_with_config
from adjflow.diffusivity.transport import (
    TransportContext,
    transport_jacobian,
    upstream_weights,
)
from adjflow.errors import ValidationError
from adjflow.fluids import FluidModel
from adjflow.grids import CartesianGrid
from adjflow.models import RockProperties
from adjflow.states import AdjointState, StepRecord, Trajectory
from adjflow.types import OneDimensionalArray

logger = logging.getLogger(__name__)

__all__ = ["adjoint_transport_step", "adjoint_pressure_step", "run_adjoint"]


def adjoint_transport_step(
    step: StepRecord,
    context: TransportContext,
    saturation_partial: OneDimensionalArray,
    carry: OneDimensionalArray,
    config: typing.Optional[Config] = None,
) -> typing.List[OneDimensionalArray]:
    """
    Multipliers of the transport equations of every accepted sub-step of `step`.

    :param step: Forward step record.
    :param context: Transport context of the step.
    :param saturation_partial: Objective partial with respect to the saturation after the step.
    :param carry: Saturation sensitivity passed back from the following step (zero for the last one).
    :param config: Linear solver settings.
    :return: Multipliers ordered first to last sub-step.
    """
    config = config or Config()
    report = step.report
    multipliers: typing.List[OneDimensionalArray] = []
    rhs = np.asarray(saturation_partial, dtype=np.float64) + carry
    for time_step, saturation in zip(
        reversed(report.time_steps), reversed(report.saturations)
    ):
        jacobian = transport_jacobian(context, saturation, time_step)
        multiplier = solve_with_config(jacobian.transpose().tocsr(), rhs, config)
        multipliers.append(multiplier)
        rhs = multiplier
    multipliers.reverse()
    return multipliers


def adjoint_pressure_step(
    step: StepRecord,
    context: TransportContext,
    multipliers: typing.Sequence[OneDimensionalArray],
    partials: StepPartials,
) -> AdjointState:
    """
    Solve the transposed pressure system of `step`.

    The right-hand side combines the objective partials with the transpose of
    the upstream transport operator applied to the transport multipliers. The
    system is the same object the forward step solved with.

    :param step: Forward step record.
    :param context: Transport context of the step.
    :param multipliers: Transport multipliers of the step, first to last sub-step.
    :param partials: Objective partials of the step.
    :return: The adjoint state of the step.
    """
    system = step.pressure_system
    report = step.report
    pv = context.pore_volumes
    left, right = context.neighbors[:, 0], context.neighbors[:, 1]
    cells = context.perforation_cells

    flux_rhs = np.array(partials.flux, dtype=np.float64)
    # Raw unknowns hold negated rates and pressures
    well_flux_rhs = -np.asarray(partials.well_flux, dtype=np.float64)
    for time_step, saturation, multiplier in zip(
        report.time_steps, report.saturations, multipliers
    ):
        face_weights, perforation_weights = upstream_weights(context, saturation)
        scaled = multiplier / pv
        flux_rhs -= time_step * face_weights * (scaled[left] - scaled[right])
        well_flux_rhs -= time_step * perforation_weights * scaled[cells]

    rhs = system.pack(
        flux=flux_rhs,
        pressure=-np.asarray(partials.pressure, dtype=np.float64),
        well_flux=well_flux_rhs,
        well=-np.asarray(partials.well_pressure, dtype=np.float64),
    )
    dual = system.apply_transpose(rhs)
    unpacked = system.unpack(dual)
    carry = multipliers[0] - system.saturation_sensitivity(step.raw_solution, dual)
    return AdjointState(
        pressure=-unpacked.pressure,
        flux=unpacked.flux,
        saturation=multipliers[-1],
        well_flux=-unpacked.well_flux,
        well_pressure=unpacked.bottom_hole_pressure,
        transport=tuple(multipliers),
        carry=carry,
        dual=dual,
    )


def run_adjoint(
    grid: CartesianGrid,
    rock: RockProperties,
    fluid: FluidModel,
    trajectory: Trajectory,
    objective: ObjectiveAccumulator,
    config: typing.Optional[Config] = None,
) -> typing.List[AdjointState]:
    """
    Run the adjoint backwards over a recorded forward run.

    :param grid: Grid of the model.
    :param rock: Rock properties.
    :param fluid: Fluid model.
    :param trajectory: Completed forward run.
    :param objective: Objective evaluated with `compute_partials=True`.
    :param config: Linear solver settings.
    :return: Adjoint states in chronological order.
    :raises ValidationError: If the objective has no partials for every step.
    """
    config = config or Config()
    if len(objective.partials) != len(trajectory):
        raise ValidationError(
            f"Objective holds partials for {len(objective.partials)} steps, "
            f"trajectory has {len(trajectory)}."
        )

    states: typing.List[AdjointState] = []
    carry = np.zeros(grid.num_cells)
    for step, partials in zip(reversed(trajectory.steps), reversed(objective.partials)):
        context = TransportContext.from_state(
            grid=grid, rock=rock, fluid=fluid, wells=step.wells, state=step.state
        )
        multipliers = adjoint_transport_step(
            step=step,
            context=context,
            saturation_partial=partials.saturation,
            carry=carry,
            config=config,
        )
        state = adjoint_pressure_step(
            step=step, context=context, multipliers=multipliers, partials=partials
        )
        carry = state.carry
        states.append(state)
        logger.debug(
            f"Adjoint step {step.index}: |λ|∞ = {np.abs(state.saturation).max(initial=0.0):.4e}, "
            f"|y|∞ = {np.abs(state.dual).max(initial=0.0):.4e}"
        )
    states.reverse()
    logger.info(f"Adjoint run finished over {len(states)} steps")
    return states
