"""Peaceman well index with anisotropic correction."""

import logging
import typing

import numba
import numpy as np
from scipy.interpolate import interp1d

from adjflow.constants import c
from adjflow.errors import SkinFactorError, ValidationError, WellRadiusError
from adjflow.grids import CartesianGrid
from adjflow.models import Permeability
from adjflow.types import (
    TWO_POINT_DISCRETIZATIONS,
    DiscretizationKind,
    OneDimensionalArray,
    Orientation,
)

logger = logging.getLogger(__name__)

__all__ = [
    "WELLBORE_CONSTANT_TABLE",
    "compute_wellbore_constant",
    "compute_equivalent_radius",
    "compute_peaceman_well_index",
    "select_transverse_properties",
    "per_perforation",
    "per_perforation_directions",
    "compute_well_index",
    "compute_well_index_sensitivity",
]


WELLBORE_CONSTANT_TABLE = np.array(
    [
        [1.0, 0.292],
        [2.0, 0.278],
        [3.0, 0.262],
        [4.0, 0.252],
        [5.0, 0.244],
        [8.0, 0.231],
        [9.0, 0.229],
        [16.0, 0.220],
        [17.0, 0.219],
        [32.0, 0.213],
        [33.0, 0.213],
        [64.0, 0.210],
        [65.0, 0.210],
    ]
)
"""
Well-bore constants for mimetic and mixed discretizations, keyed by the
aspect ratio of the two transverse cell extents.
"""

_wellbore_constant_interpolator = interp1d(
    WELLBORE_CONSTANT_TABLE[:, 0],
    WELLBORE_CONSTANT_TABLE[:, 1],
    kind="linear",
    fill_value="extrapolate",
    assume_sorted=True,
)


def compute_wellbore_constant(
    d1: OneDimensionalArray,
    d2: OneDimensionalArray,
    discretization: typing.Union[str, DiscretizationKind],
) -> OneDimensionalArray:
    """
    Well-bore constant used in the equivalent radius of each perforation.

    Two-point flux discretizations use Peaceman's 0.14. Mimetic and mixed
    discretizations interpolate (and extrapolate) the tabulated constants at the
    rounded aspect ratio `max(round(d1/d2), round(d2/d1))`.

    :param d1: First transverse extent of each perforated cell (m).
    :param d2: Second transverse extent of each perforated cell (m).
    :param discretization: Discretization the well index is derived for.
    :return: The constant for each perforation.
    :raises ValidationError: If the discretization is unknown.
    """
    kind = DiscretizationKind.parse(discretization)
    d1 = np.asarray(d1, dtype=np.float64)
    d2 = np.asarray(d2, dtype=np.float64)
    if kind in TWO_POINT_DISCRETIZATIONS:
        return np.full(d1.shape, c.TPFA_WELLBORE_CONSTANT)

    # Round half away from zero; ratios are positive.
    ratio = np.maximum(np.floor(d1 / d2 + 0.5), np.floor(d2 / d1 + 0.5))
    return np.asarray(_wellbore_constant_interpolator(ratio), dtype=np.float64)


@numba.njit(cache=True)
def compute_equivalent_radius(
    d1: float, d2: float, k1: float, k2: float, wellbore_constant: float
) -> float:
    """
    Peaceman's equivalent radius for an anisotropic cell.

        re = 2·wc·√(d1²·√(k2/k1) + d2²·√(k1/k2)) / ((k2/k1)^¼ + (k1/k2)^¼)

    :param d1: First transverse cell extent (m).
    :param d2: Second transverse cell extent (m).
    :param k1: Permeability along `d1` (m²).
    :param k2: Permeability along `d2` (m²).
    :param wellbore_constant: Well-bore constant for the discretization.
    :return: The equivalent radius (m).
    """
    numerator = 2.0 * wellbore_constant * np.sqrt(
        d1**2 * np.sqrt(k2 / k1) + d2**2 * np.sqrt(k1 / k2)
    )
    denominator = (k2 / k1) ** 0.25 + (k1 / k2) ** 0.25
    return numerator / denominator


@numba.njit(cache=True)
def compute_peaceman_well_index(
    permeability_thickness: float,
    equivalent_radius: float,
    wellbore_radius: float,
    skin_factor: float,
) -> float:
    """
    Compute the well index using the Peaceman equation.

        WI = 2π·Kh / (ln(re/rw) + s)

    :param permeability_thickness: Permeability-thickness product Kh (m³).
    :param equivalent_radius: Equivalent radius re (m).
    :param wellbore_radius: Well-bore radius rw (m).
    :param skin_factor: Skin factor s (dimensionless).
    :return: The well index (m³).
    """
    return (
        2.0
        * np.pi
        * permeability_thickness
        / (np.log(equivalent_radius / wellbore_radius) + skin_factor)
    )


@numba.njit(cache=True)
def _compute_well_indices(
    d1: np.ndarray,
    d2: np.ndarray,
    length: np.ndarray,
    k1: np.ndarray,
    k2: np.ndarray,
    wellbore_constant: np.ndarray,
    wellbore_radius: np.ndarray,
    skin_factor: np.ndarray,
    permeability_thickness: np.ndarray,
) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray]:
    n = d1.shape[0]
    well_index = np.empty(n)
    derivative = np.empty(n)
    equivalent_radius = np.empty(n)
    for i in range(n):
        re = compute_equivalent_radius(d1[i], d2[i], k1[i], k2[i], wellbore_constant[i])
        effective_permeability = np.sqrt(k1[i] * k2[i])
        kh = permeability_thickness[i]
        computed_kh = kh < 0.0
        if computed_kh:
            kh = length[i] * effective_permeability

        well_index[i] = compute_peaceman_well_index(
            kh, re, wellbore_radius[i], skin_factor[i]
        )
        # re depends on k1/k2 only, so WI is linear in the effective permeability
        if computed_kh:
            derivative[i] = well_index[i] / effective_permeability
        else:
            derivative[i] = 0.0
        equivalent_radius[i] = re
    return well_index, derivative, equivalent_radius


def select_transverse_properties(
    extents: np.ndarray,
    principal_permeability: np.ndarray,
    directions: typing.Sequence[Orientation],
) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Pick the transverse extents and permeabilities of each perforated cell.

    An x-directed perforation sees (dy, dz) and (kyy, kzz), a y-directed one
    (dx, dz) and (kxx, kzz), a z-directed one (dx, dy) and (kxx, kyy). The
    extent along the well is the perforated length.

    :param extents: Cell bounding-box extents (dx, dy, dz), shape (n, 3).
    :param principal_permeability: (kxx, kyy, kzz) per cell, shape (n, 3).
    :param directions: Direction of each perforation.
    :return: (d1, d2, length, k1, k2), each of shape (n,).
    """
    axes = np.array([Orientation.parse(d).axis for d in directions], dtype=np.int64)
    first = np.where(axes == 0, 1, 0)
    second = np.where(axes == 2, 1, 2)
    rows = np.arange(axes.size)
    return (
        extents[rows, first],
        extents[rows, second],
        extents[rows, axes],
        principal_permeability[rows, first],
        principal_permeability[rows, second],
    )


def per_perforation(
    value: typing.Any, count: int, name: str, dtype: typing.Any = np.float64
) -> np.ndarray:
    """Broadcast one value to every perforation, or check there is one per perforation."""
    array = np.array(value, dtype=dtype, copy=True)
    if array.ndim == 0:
        return np.full(count, array.item(), dtype=dtype)
    array = array.ravel()
    if array.size == 1:
        return np.full(count, array[0], dtype=dtype)
    if array.size != count:
        raise ValidationError(
            f"Expected one {name} value or {count} (one per perforation), got {array.size}."
        )
    return array


def per_perforation_directions(
    direction: typing.Union[str, Orientation, typing.Sequence[typing.Union[str, Orientation]]],
    count: int,
) -> typing.Tuple[Orientation, ...]:
    """Parse a direction, or one direction per perforation."""
    if isinstance(direction, Orientation):
        return (direction,) * count
    # A string is either one letter for all perforations or one letter per perforation
    directions = tuple(Orientation.parse(d) for d in direction)
    if len(directions) == 1:
        directions = directions * count
    if len(directions) != count:
        raise ValidationError(
            f"Expected one direction or {count} (one per perforation), got {len(directions)}."
        )
    return directions


def compute_well_index(
    grid: CartesianGrid,
    permeability: typing.Union[Permeability, np.ndarray],
    radius: typing.Union[float, typing.Sequence[float]],
    direction: typing.Union[str, Orientation, typing.Sequence[typing.Union[str, Orientation]]],
    cells: typing.Sequence[int],
    discretization: typing.Union[str, DiscretizationKind] = DiscretizationKind.TPFA,
    skin: typing.Union[float, typing.Sequence[float]] = 0.0,
    permeability_thickness: typing.Optional[typing.Sequence[float]] = None,
) -> typing.Tuple[OneDimensionalArray, OneDimensionalArray]:
    """
    Compute the effective well index of each perforation and its permeability derivative.

    :param grid: Grid the well is completed in.
    :param permeability: Permeability field (any representation).
    :param radius: Well-bore radius, one value or one per perforation (m).
    :param direction: Well direction, one of 'x', 'y', 'z', or one per perforation.
    :param cells: Perforated cells.
    :param discretization: Pressure discretization the index is derived for.
    :param skin: Skin factor, one value or one per perforation.
    :param permeability_thickness: Kh per perforation (m³). Negative entries (or None)
        mean Kh is computed as `length·√(k1·k2)`.
    :return: (WI, dWI/dk) where the derivative is taken with respect to the effective
        transverse permeability `√(k1·k2)` and is zero where Kh was supplied.
    :raises WellRadiusError: If an equivalent radius is smaller than the well radius
        and the index turns negative.
    :raises SkinFactorError: If a negative skin factor turns the index negative.
    """
    if not isinstance(permeability, Permeability):
        permeability = Permeability(permeability)
    cells = np.asarray(cells, dtype=np.int64).ravel()
    count = cells.size
    if count == 0:
        raise ValidationError("A well needs at least one perforated cell.")
    if np.any(cells < 0) or np.any(cells >= grid.num_cells):
        raise ValidationError(
            f"Perforated cells must lie in [0, {grid.num_cells}), got {cells.tolist()}."
        )
    if permeability.num_cells != grid.num_cells:
        raise ValidationError(
            f"Permeability has {permeability.num_cells} cells, grid has {grid.num_cells}."
        )

    radius = per_perforation(radius, count, "radius")
    if np.any(radius <= 0.0):
        raise ValidationError("Well-bore radius must be positive.")
    skin = per_perforation(skin, count, "skin")
    kh = per_perforation(
        -1.0 if permeability_thickness is None else permeability_thickness,
        count,
        "Kh",
    )
    directions = per_perforation_directions(direction, count)

    d1, d2, length, k1, k2 = select_transverse_properties(
        extents=np.asarray(grid.cell_extents[cells], dtype=np.float64),
        principal_permeability=np.asarray(permeability.diagonal(cells), dtype=np.float64),
        directions=directions,
    )
    wellbore_constant = compute_wellbore_constant(d1, d2, discretization)
    well_index, derivative, equivalent_radius = _compute_well_indices(
        d1, d2, length, k1, k2, wellbore_constant, radius, skin, kh
    )

    if np.any(well_index < 0.0):
        if np.any(equivalent_radius < radius):
            raise WellRadiusError(
                "Equivalent radius in well model smaller than well radius "
                "causing negative well index."
            )
        raise SkinFactorError(
            "Large negative skin factor causing negative well index."
        )

    logger.debug(
        f"Computed {count} well indices in [{well_index.min():.4e}, {well_index.max():.4e}] "
        f"for {DiscretizationKind.parse(discretization).value!r}"
    )
    return well_index, derivative


def compute_well_index_sensitivity(
    grid: CartesianGrid,
    perturbed_permeability: typing.Union[Permeability, np.ndarray],
    radius: typing.Union[float, typing.Sequence[float]],
    direction: typing.Union[str, Orientation, typing.Sequence[typing.Union[str, Orientation]]],
    cells: typing.Sequence[int],
    discretization: typing.Union[str, DiscretizationKind] = DiscretizationKind.TPFA,
    skin: typing.Union[float, typing.Sequence[float]] = 0.0,
    permeability_thickness: typing.Optional[typing.Sequence[float]] = None,
) -> OneDimensionalArray:
    """
    Well index of each perforation under an externally supplied, perturbed permeability field.

    Uses exactly the formula of `compute_well_index`, so the forward and the
    sensitivity values are consistent.

    :return: The well index under `perturbed_permeability`.
    """
    well_index, _ = compute_well_index(
        grid=grid,
        permeability=perturbed_permeability,
        radius=radius,
        direction=direction,
        cells=cells,
        discretization=discretization,
        skin=skin,
        permeability_thickness=permeability_thickness,
    )
    return well_index
