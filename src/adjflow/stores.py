"""Flat binary persistence of per-cell fields."""

import functools
import logging
from os import PathLike
from pathlib import Path
import typing

import numpy as np
from typing_extensions import ParamSpec

from adjflow.errors import StorageError, ValidationError
from adjflow.types import OneDimensionalArray

__all__ = ["save_permeability", "load_permeability"]

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = typing.TypeVar("R")

_FIELD_DTYPE = np.dtype("<f8")
"""Little-endian float64, one value per cell, no header."""


def _raise_storage_error(func: typing.Callable[P, R]) -> typing.Callable[P, R]:
    """Re-raise I/O failures as `StorageError`."""

    @functools.wraps(func)
    def _wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except OSError as exc:
            raise StorageError(f"{func.__name__} failed: {exc}") from exc

    return _wrapper


@_raise_storage_error
def save_permeability(filepath: typing.Union[str, PathLike], values: typing.Any) -> Path:
    """
    Persist a permeability field as a flat array of float64 values.

    Only one value per cell is stored, so the field must be isotropic
    (a single column). The file carries no header; the reader must know the cell count.

    :param filepath: Destination file.
    :param values: Permeability of each cell (m²).
    :return: The path written to.
    """
    array = np.asarray(values, dtype=_FIELD_DTYPE)
    if array.ndim == 2 and array.shape[1] == 1:
        array = array[:, 0]
    if array.ndim != 1:
        raise ValidationError(
            f"Only one value per cell can be persisted, got shape {array.shape}."
        )
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.ascontiguousarray(array).tofile(path)
    logger.debug(f"Wrote {array.size} permeability values to {path}")
    return path


@_raise_storage_error
def load_permeability(
    filepath: typing.Union[str, PathLike], num_cells: int
) -> OneDimensionalArray:
    """
    Load a permeability field written by `save_permeability`.

    :param filepath: Source file.
    :param num_cells: Number of cells of the grid the field belongs to.
    :return: Permeability of each cell (m²).
    :raises StorageError: If the file does not hold exactly `num_cells` values.
    """
    path = Path(filepath)
    size = path.stat().st_size
    if size != num_cells * _FIELD_DTYPE.itemsize:
        raise StorageError(
            f"{path} holds {size} bytes, expected {num_cells} float64 values "
            f"({num_cells * _FIELD_DTYPE.itemsize} bytes)."
        )
    values = np.fromfile(path, dtype=_FIELD_DTYPE, count=num_cells)
    logger.debug(f"Read {values.size} permeability values from {path}")
    return values.astype(np.float64)
