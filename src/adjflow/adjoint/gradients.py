"""Reduction of adjoint states into objective gradients."""

import logging
import typing

import numpy as np

from adjflow.adjoint.objectives import ObjectiveAccumulator
from adjflow.errors import ValidationError
from adjflow.states import AdjointState, Trajectory
from adjflow.types import OneDimensionalArray, TwoDimensionalArray

logger = logging.getLogger(__name__)

__all__ = ["control_gradient", "permeability_gradient"]


def control_gradient(
    adjoint_states: typing.Sequence[AdjointState],
    objective: typing.Optional[ObjectiveAccumulator] = None,
) -> TwoDimensionalArray:
    """
    Gradient of the objective with respect to the well controls of every step.

    The control enters only the right-hand side of its well equation, so the
    gradient is the multiplier of that equation plus any explicit partial.

    :param adjoint_states: Adjoint states in chronological order.
    :param objective: Objective with partials, for explicit control dependence.
    :return: Array of shape (num_steps, num_wells).
    """
    gradient = np.array([-state.well_pressure for state in adjoint_states], dtype=np.float64)
    if objective is not None and objective.partials:
        gradient += np.array([p.controls for p in objective.partials], dtype=np.float64)
    return gradient


def permeability_gradient(
    trajectory: Trajectory, adjoint_states: typing.Sequence[AdjointState]
) -> OneDimensionalArray:
    """
    Gradient of the objective with respect to an isotropic permeability field.

    Permeability enters the face transmissibilities and the computed well
    indices of every pressure system. Supplied well indices do not depend on it.

    :param trajectory: Forward run.
    :param adjoint_states: Adjoint states in chronological order.
    :return: One value per cell (per m²).
    :raises ValidationError: If the run used an anisotropic permeability field.
    """
    if len(adjoint_states) != len(trajectory):
        raise ValidationError(
            f"Got {len(adjoint_states)} adjoint states for {len(trajectory)} steps."
        )
    gradient: typing.Optional[np.ndarray] = None
    for step, state in zip(trajectory, adjoint_states):
        if state.dual is None:
            raise ValidationError(f"Adjoint state of step {step.index} has no raw dual.")
        contribution = -step.pressure_system.permeability_sensitivity(
            step.raw_solution, state.dual
        )
        gradient = contribution if gradient is None else gradient + contribution
    if gradient is None:
        return np.zeros(trajectory.initial_state.saturation.shape[0])
    return gradient
