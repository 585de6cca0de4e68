from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np
import numpy.typing  # noqa: F401


__all__ = ["get_dtype", "with_precision", "get_floating_point_info"]

_adjflow_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_adjflow_dtype", default=np.float64
)


def get_dtype() -> np.typing.DTypeLike:
    """
    Floating point type new states are allocated with.

    Adjoint gradients are differences of large, nearly cancelling terms, so
    this is float64 unless overridden with `with_precision`.
    """
    return _adjflow_dtype.get()


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Allocate states with `dtype` inside the block.

    Example:
    ```python
    with with_precision(np.float32):
        state = ReservoirState.initialize(grid.num_cells, grid.num_faces, wells)
    ```
    """
    token = _adjflow_dtype.set(dtype)
    try:
        yield
    finally:
        _adjflow_dtype.reset(token)


def get_floating_point_info() -> np.finfo:
    """Machine limits of the current floating point type."""
    return np.finfo(get_dtype())  # type: ignore
