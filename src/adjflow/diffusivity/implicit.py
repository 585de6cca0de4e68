"""Implicit saturation update with Newton-Raphson, line search and time step bisection."""

import logging
import typing

import attrs
import numpy as np

from adjflow.config import Config
from adjflow.diffusivity.base import solve_with_config
from adjflow.diffusivity.transport import (
    TransportContext,
    transport_jacobian,
    transport_residual,
)
from adjflow.errors import (
    ConvergenceError,
    NonFiniteSaturationError,
    PreconditionerError,
    SaturationBoundsError,
    SolverError,
    ValidationError,
)
from adjflow.fluids import FluidModel
from adjflow.states import ReservoirState
from adjflow.types import OneDimensionalArray

logger = logging.getLogger(__name__)

__all__ = ["TransportReport", "LineSearchResult", "line_search", "advance_saturation"]


@attrs.frozen(slots=True)
class TransportReport:
    """Accepted sub-steps of one saturation advance."""

    time_steps: typing.Tuple[float, ...]
    """Length of each accepted sub-step (s)."""
    saturations: typing.Tuple[OneDimensionalArray, ...]
    """Saturation at the end of each accepted sub-step."""
    newton_iterations: typing.Tuple[int, ...]
    """Newton iterations spent on each accepted sub-step."""
    refinements: int
    """Number of sub-step halvings."""
    final_residual_norm: float
    """Residual infinity-norm of the last accepted sub-step."""

    @property
    def num_substeps(self) -> int:
        return len(self.time_steps)

    @property
    def substeps(self) -> typing.List[typing.Tuple[float, OneDimensionalArray]]:
        """Accepted sub-steps as (dt, saturation) pairs."""
        return list(zip(self.time_steps, self.saturations))


@attrs.frozen(slots=True)
class LineSearchResult:
    saturation: OneDimensionalArray
    residual: OneDimensionalArray
    residual_norm: float
    step_fraction: float
    success: bool


def line_search(
    saturation: OneDimensionalArray,
    increment: OneDimensionalArray,
    target: float,
    residual_func: typing.Callable[[OneDimensionalArray], OneDimensionalArray],
    max_trials: int,
) -> LineSearchResult:
    """
    Backtracking line search over the clipped saturation.

    Tries `clip(s + 2^e·ds, 0, 1)` for `e = 0, -1, -2, ...` until the residual
    infinity-norm drops below `target`.

    :param saturation: Current iterate.
    :param increment: Newton increment.
    :param target: Residual norm a trial must beat.
    :param residual_func: Residual as a function of saturation.
    :param max_trials: Number of trials before giving up.
    :return: The last trial and whether it was accepted.
    """
    exponent = 0
    candidate = saturation
    residual = np.full_like(saturation, np.inf)
    norm = np.inf
    for _ in range(max_trials):
        candidate = np.clip(saturation + np.ldexp(increment, exponent), 0.0, 1.0)
        residual = residual_func(candidate)
        norm = float(np.linalg.norm(residual, np.inf))
        if norm < target:
            return LineSearchResult(
                saturation=candidate,
                residual=residual,
                residual_norm=norm,
                step_fraction=float(2.0**exponent),
                success=True,
            )
        exponent -= 1
    return LineSearchResult(
        saturation=candidate,
        residual=residual,
        residual_norm=norm,
        step_fraction=float(2.0 ** (exponent + 1)),
        success=False,
    )


def _newton_solve(
    context: TransportContext,
    start: OneDimensionalArray,
    time_step: float,
    config: Config,
) -> typing.Tuple[OneDimensionalArray, float, int, bool]:
    """Newton-Raphson for one sub-step. Returns (saturation, residual norm, iterations, converged)."""

    def residual_func(s: OneDimensionalArray) -> OneDimensionalArray:
        return transport_residual(context, s, start, time_step)

    saturation = start.copy()
    residual = residual_func(saturation)
    norm = float(np.linalg.norm(residual, np.inf))
    if not np.isfinite(norm):
        logger.error(f"Non-finite initial transport residual for dt = {time_step:.4e} s")
        return saturation, norm, 0, False

    iteration = 0
    while norm >= config.nonlinear_tolerance:
        if iteration >= config.max_newton_iterations:
            return saturation, norm, iteration, False
        jacobian = transport_jacobian(context, saturation, time_step)
        try:
            increment = -solve_with_config(jacobian, residual, config)
        except (SolverError, PreconditionerError) as exc:
            logger.warning(f"Linear solve failed at Newton iteration {iteration}: {exc}")
            return saturation, norm, iteration + 1, False

        result = line_search(
            saturation,
            increment,
            target=config.residual_reduction * norm,
            residual_func=residual_func,
            max_trials=config.line_search_trials,
        )
        iteration += 1
        logger.debug(
            f"Newton iteration {iteration}: residual norm {norm:.4e} -> {result.residual_norm:.4e}, "
            f"step fraction {result.step_fraction:.3g}"
        )
        if not result.success:
            return saturation, norm, iteration, False
        saturation, residual, norm = result.saturation, result.residual, result.residual_norm
    return saturation, norm, iteration, True


def _check_saturation(saturation: OneDimensionalArray, tolerance: float) -> None:
    if not np.all(np.isfinite(saturation)):
        raise NonFiniteSaturationError("Transport solve produced non-finite saturations.")
    minimum, maximum = float(saturation.min()), float(saturation.max())
    if minimum <= -tolerance or maximum >= 1.0 + tolerance:
        raise SaturationBoundsError(
            f"Saturation left [0, 1]: min = {minimum:.3e}, max = {maximum:.3e}."
        )


def advance_saturation(
    state: ReservoirState,
    context: TransportContext,
    total_time: float,
    fluid: typing.Optional[FluidModel] = None,
    config: typing.Optional[Config] = None,
) -> TransportReport:
    """
    Advance the saturation of `state` across `[0, total_time]` with implicit sub-steps.

    The first sub-step spans the whole interval. A sub-step whose Newton
    iteration (or line search) fails is halved and retried from the same
    start. Accepted sub-steps keep their length for the rest of the interval.

    :param state: State whose saturation is updated in place.
    :param context: Fluxes, pore volumes and well data of the step.
    :param total_time: Length of the interval (s).
    :param fluid: Fluid model overriding the one of `context`.
    :param config: Solver budgets and tolerances.
    :return: Report of the accepted sub-steps.
    :raises ConvergenceError: If more than `config.max_refinements` halvings are
        needed. The saturation of `state` is restored before raising.
    :raises NonFiniteSaturationError: If the result is not finite.
    :raises SaturationBoundsError: If the result leaves [0, 1].
    """
    config = config or Config()
    if fluid is not None:
        context = attrs.evolve(context, fluid=fluid)
    if not total_time > 0.0:
        raise ValidationError(f"Time step must be positive, got {total_time}.")
    if state.saturation.shape[0] != context.num_cells:
        raise ValidationError(
            f"State has {state.saturation.shape[0]} cells, context has {context.num_cells}."
        )

    initial = state.saturation.copy()
    saturation = initial.copy()
    time = 0.0
    time_step = total_time
    refinements = 0
    time_steps: typing.List[float] = []
    saturations: typing.List[OneDimensionalArray] = []
    iterations: typing.List[int] = []
    norm = 0.0

    while time < total_time:
        time_step = min(time_step, total_time - time)
        candidate, norm, count, converged = _newton_solve(
            context, saturation, time_step, config
        )
        if not converged:
            refinements += 1
            if refinements > config.max_refinements:
                state.saturation[:] = initial
                logger.error(
                    f"Transport did not converge after {config.max_refinements} time step "
                    f"refinements (last residual norm {norm:.4e})"
                )
                raise ConvergenceError(
                    f"Transport solve failed to converge: more than {config.max_refinements} "
                    f"refinements of a {total_time:.4e} s step."
                )
            time_step /= 2.0
            logger.warning(
                f"Refining transport time step to {time_step:.4e} s "
                f"(refinement {refinements}, residual norm {norm:.4e})"
            )
            continue

        time_steps.append(time_step)
        saturations.append(candidate.copy())
        iterations.append(count)
        saturation = candidate
        # Guard against round-off leaving a vanishing remainder
        time = total_time if total_time - (time + time_step) <= 1e-12 * total_time else time + time_step
        logger.debug(
            f"Accepted transport sub-step {time_step:.4e} s after {count} Newton iterations "
            f"({time / total_time:.1%} of the step)"
        )

    _check_saturation(saturation, config.saturation_tolerance)
    state.saturation[:] = saturation
    return TransportReport(
        time_steps=tuple(time_steps),
        saturations=tuple(saturations),
        newton_iterations=tuple(iterations),
        refinements=refinements,
        final_residual_norm=norm,
    )
