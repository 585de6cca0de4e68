"""Sparse linear solves shared by the pressure, transport and adjoint systems."""

import logging
import typing

import numpy as np
import pyamg  # type: ignore[import-untyped]
from scipy.sparse import csr_matrix, diags  # type: ignore[import-untyped]
from scipy.sparse.linalg import (  # type: ignore[import-untyped]
    LinearOperator,
    bicgstab,
    gmres,
    lgmres,
    spilu,
    spsolve,
    tfqmr,
)

from adjflow._precision import get_floating_point_info
from adjflow.config import Config
from adjflow.errors import PreconditionerError, SolverError, ValidationError
from adjflow.types import Preconditioner, Solver

logger = logging.getLogger(__name__)

__all__ = [
    "build_amg_preconditioner",
    "build_diagonal_preconditioner",
    "build_ilu_preconditioner",
    "solve_linear_system",
    "solve_with_config",
]


def build_amg_preconditioner(A_csr: csr_matrix, cycle: str = "V", **kwargs: typing.Any) -> LinearOperator:
    """
    Smoothed-aggregation multigrid preconditioner.

    Suited to the transport Jacobians, which are M-matrices. The mixed pressure
    system is indefinite and should use ILU or a direct solve instead.

    :param A_csr: Matrix to precondition.
    :param cycle: Multigrid cycle ('V', 'W' or 'F').
    :param kwargs: Passed to `pyamg.smoothed_aggregation_solver`.
    """
    hierarchy = pyamg.smoothed_aggregation_solver(A_csr, **kwargs)
    return hierarchy.aspreconditioner(cycle=cycle)


def build_diagonal_preconditioner(A_csr: csr_matrix) -> LinearOperator:
    """
    Jacobi preconditioner.

    Zero diagonal entries, such as those of the pressure block of a saddle point
    system, are replaced by one.
    """
    diagonal = A_csr.diagonal()
    scale = float(np.max(np.abs(diagonal), initial=0.0))
    threshold = max(1e-30, 100 * get_floating_point_info().eps * scale)
    diagonal = np.where(np.abs(diagonal) < threshold, 1.0, diagonal)
    inverse = diags(1.0 / diagonal, format="csr")
    return LinearOperator(shape=A_csr.shape, matvec=inverse.dot)  # type: ignore[arg-type]


def build_ilu_preconditioner(A_csr: csr_matrix, **kwargs: typing.Any) -> LinearOperator:
    """
    Incomplete LU preconditioner.

    :param A_csr: Matrix to precondition.
    :param kwargs: Passed to `scipy.sparse.linalg.spilu`.
    """
    # spilu works on CSC
    A_csc = A_csr.tocsc()
    kwargs.setdefault("drop_tol", 1e-4)
    kwargs.setdefault("fill_factor", 10)
    factor = spilu(A_csc, **kwargs)
    return LinearOperator(shape=A_csc.shape, matvec=factor.solve)  # type: ignore[arg-type]


def _spsolve(A, b, x0, *, rtol, atol, maxiter, M, callback):
    return spsolve(A.tocsc(), b), 0


def _bicgstab(A, b, x0, *, rtol, atol, maxiter, M, callback):
    return bicgstab(A, b, x0=x0, rtol=rtol, atol=atol, maxiter=maxiter, M=M, callback=callback)


def _gmres(A, b, x0, *, rtol, atol, maxiter, M, callback):
    return gmres(A, b, x0=x0, rtol=rtol, atol=atol, maxiter=maxiter, M=M)


def _lgmres(
    A, b, x0, *, rtol, atol, maxiter, M, callback, inner_m: int = 50, outer_k: int = 5
):
    """
    LGMRES with `inner_m` inner iterations per restart and `outer_k` carried vectors.
    """
    return lgmres(
        A,
        b,
        x0=x0,
        M=M,
        rtol=rtol,
        atol=atol,
        maxiter=maxiter,
        callback=callback,
        inner_m=inner_m,
        outer_k=outer_k,
    )


def _tfqmr(A, b, x0, *, rtol, atol, maxiter, M, callback):
    return tfqmr(A, b, x0=x0, rtol=rtol, atol=atol, maxiter=maxiter, M=M, callback=callback)


_SOLVER_FUNCS: typing.Dict[str, typing.Callable[..., typing.Tuple[np.ndarray, int]]] = {
    "direct": _spsolve,
    "bicgstab": _bicgstab,
    "gmres": _gmres,
    "lgmres": _lgmres,
    "tfqmr": _tfqmr,
}

_PRECONDITIONER_FACTORIES: typing.Dict[str, typing.Callable[[csr_matrix], LinearOperator]] = {
    "ilu": build_ilu_preconditioner,
    "amg": build_amg_preconditioner,
    "diagonal": build_diagonal_preconditioner,
}


def _get_preconditioner(
    A_csr: csr_matrix, preconditioner: Preconditioner
) -> typing.Optional[LinearOperator]:
    """
    Build a preconditioner from its name.

    :raises ValidationError: If the preconditioner type is unknown.
    """
    if preconditioner is None:
        return None
    if preconditioner not in _PRECONDITIONER_FACTORIES:
        raise ValidationError(
            f"Unknown preconditioner type: {preconditioner!r}. "
            f"Available preconditioners: {list(_PRECONDITIONER_FACTORIES.keys())}"
        )
    return _PRECONDITIONER_FACTORIES[preconditioner](A_csr)


def _get_solver_funcs(
    solver: typing.Union[Solver, typing.Iterable[Solver]],
) -> typing.List[typing.Callable[..., typing.Tuple[np.ndarray, int]]]:
    """
    Resolve solver names or callables into solver functions.

    :raises ValidationError: If any solver type is unknown.
    """
    if isinstance(solver, str) or callable(solver):
        solver = [solver]
    solver_funcs = []
    for s in solver:
        if isinstance(s, str) and s in _SOLVER_FUNCS:
            solver_funcs.append(_SOLVER_FUNCS[s])
        elif callable(s):
            solver_funcs.append(s)
        else:
            raise ValidationError(
                f"Unknown solver type: {s!r}. Available solvers: {list(_SOLVER_FUNCS.keys())}"
            )
    return solver_funcs


def solve_linear_system(
    A_csr: csr_matrix,
    b: np.ndarray,
    max_iterations: int = 500,
    rtol: typing.Optional[float] = None,
    atol: typing.Optional[float] = None,
    solver: typing.Union[Solver, typing.Iterable[Solver]] = "direct",
    preconditioner: Preconditioner = "ilu",
    fallback_to_direct: bool = True,
) -> np.ndarray:
    """
    Solves the linear system A·x = b, trying each solver in turn.

    :param A_csr: Coefficient matrix in CSR format.
    :param b: Right-hand side vector.
    :param max_iterations: Maximum number of iterations for each iterative solver.
    :param rtol: Relative tolerance for convergence (optional).
    :param atol: Absolute tolerance for convergence (optional).
    :param solver: Solver or sequence of solvers to use ("direct", "bicgstab", "gmres",
        "lgmres", "tfqmr"), or custom callable(s) following the `scipy.sparse.linalg`
        signature. Solvers are tried in order until one converges.
    :param preconditioner: Type of preconditioner for iterative solvers ("ilu", "amg",
        "diagonal"), or None.
    :param fallback_to_direct: Whether to fall back to a direct solve if all
        iterative solvers fail.
    :return: The solution vector.
    :raises SolverError: If no solver produced a finite solution.
    :raises PreconditionerError: If the preconditioner cannot be built.
    """
    solver_funcs = _get_solver_funcs(solver)
    is_direct = solver_funcs == [_spsolve]
    M = None
    if not is_direct:
        try:
            M = _get_preconditioner(A_csr, preconditioner)
        except ValidationError:
            raise
        except Exception as exc:
            raise PreconditionerError(f"Error building preconditioner: {exc}") from exc

    b_norm = float(np.linalg.norm(b))
    rtol = rtol if rtol is not None else 1e-10
    atol = atol if atol is not None else float(max(1e-300, 1e-12 * b_norm))

    for solver_func in solver_funcs:
        try:
            x, info = solver_func(
                A_csr,
                b,
                None,
                M=M,
                rtol=rtol,
                atol=atol,
                maxiter=max_iterations,
                callback=None,
            )
        except (RuntimeError, ValueError, ArithmeticError) as exc:
            logger.warning(f"Solver {solver_func.__name__!r} raised: {exc}")
            continue
        if info == 0 and np.all(np.isfinite(x)):
            return np.ascontiguousarray(x)
        logger.warning(
            f"Solver {solver_func.__name__!r} failed to converge within "
            f"{max_iterations} iterations. Info: {info}"
        )

    if not fallback_to_direct or _spsolve in solver_funcs:
        raise SolverError(
            f"All solvers failed to solve the system within {max_iterations} iterations."
        )

    logger.info("Falling back to direct solver (spsolve).")
    try:
        x = spsolve(A_csr.tocsc(), b)
    except (RuntimeError, ValueError, ArithmeticError) as exc:
        logger.error(f"Direct solver failed: {exc}")
        raise SolverError(
            "All iterative solvers and the direct solver failed to solve the system."
        ) from exc
    if not np.all(np.isfinite(x)):
        raise SolverError("Direct solver returned a non-finite solution.")
    return np.ascontiguousarray(x)


def solve_with_config(A_csr: csr_matrix, b: np.ndarray, config: Config) -> np.ndarray:
    """Solve A·x = b with the linear solver settings of `config`."""
    return solve_linear_system(
        A_csr,
        b,
        max_iterations=config.max_linear_iterations,
        solver=config.linear_solver,
        preconditioner=config.preconditioner,
        fallback_to_direct=config.fallback_to_direct,
    )
