import typing

import attrs

from adjflow.types import DiscretizationKind, Preconditioner, Solver

__all__ = ["Config"]


def _to_solvers(value: typing.Any) -> typing.Union[Solver, typing.Tuple[Solver, ...]]:
    if isinstance(value, (str, bytes)) or callable(value):
        return value
    return tuple(value)


@attrs.frozen
class Config:
    """Simulation run configuration and solver budgets."""

    nonlinear_tolerance: float = attrs.field(
        default=1e-6,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1e-2)),
    )
    """
    Absolute tolerance on the transport residual infinity-norm.

    A sub-step is accepted once `‖s - s0 + dt/pv·(out - in) - q‖∞ < nonlinear_tolerance`.
    """
    line_search_trials: int = attrs.field(default=20, validator=attrs.validators.ge(1))
    """Maximum number of step halvings tried by the line search of one Newton iteration."""
    max_newton_iterations: int = attrs.field(
        default=25,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(500)
        ),
    )
    """Maximum number of Newton-Raphson iterations per transport sub-step."""
    max_refinements: int = attrs.field(
        default=12,
        validator=attrs.validators.and_(attrs.validators.ge(0), attrs.validators.le(52)),
    )
    """
    Maximum time step refinement power.

    The smallest sub-step the transport solver will try is `T / 2**max_refinements`.
    Beyond that the outer step fails.
    """
    residual_reduction: float = attrs.field(
        default=0.99,
        validator=attrs.validators.and_(attrs.validators.gt(0), attrs.validators.le(1)),
    )
    """Factor the residual infinity-norm must drop by for a line-search trial to be accepted."""
    saturation_tolerance: float = attrs.field(
        default=1e-12, validator=attrs.validators.ge(0)
    )
    """Slack allowed on the [0, 1] saturation bounds when checking accepted states."""
    discretization: DiscretizationKind = attrs.field(
        default=DiscretizationKind.TPFA, converter=DiscretizationKind.parse
    )
    """Pressure discretization family the well indices are derived for."""
    linear_solver: typing.Union[Solver, typing.Tuple[Solver, ...]] = attrs.field(
        default="direct", converter=_to_solvers
    )
    """
    Linear solver(s) used for pressure and Newton systems.

    The mixed pressure system is a saddle point problem, so the direct solver
    is the safe default. Iterative solvers are tried in order when a sequence is given.
    """
    preconditioner: Preconditioner = "ilu"
    """Preconditioner used with iterative linear solvers."""
    max_linear_iterations: int = attrs.field(
        default=500, validator=attrs.validators.ge(1)
    )
    """Iteration cap for each iterative linear solver."""
    fallback_to_direct: bool = True
    """Whether to fall back to a direct solve when all iterative solvers fail."""
    log_interval: int = attrs.field(default=1, validator=attrs.validators.ge(1))
    """Interval (in outer steps) at which to log simulation progress."""
