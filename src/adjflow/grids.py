"""Logically Cartesian grids and the geometry queries the solvers need."""

import logging
import typing

import attrs
import numpy as np

from adjflow._precision import get_dtype
from adjflow.errors import ValidationError
from adjflow.types import OneDimensionalArray, TwoDimensionalArray

logger = logging.getLogger(__name__)

__all__ = ["CartesianGrid", "build_cartesian_grid"]


def _as_spacing(value: typing.Any, count: int, axis: str) -> OneDimensionalArray:
    spacing = np.asarray(value, dtype=np.float64)
    if spacing.ndim == 0:
        spacing = np.full(count, float(spacing))
    if spacing.shape != (count,):
        raise ValidationError(
            f"Expected {count} cell sizes along {axis}, got shape {spacing.shape}."
        )
    if np.any(spacing <= 0.0):
        raise ValidationError(f"Cell sizes along {axis} must be positive.")
    return spacing


@attrs.frozen(slots=True, eq=False)
class CartesianGrid:
    """
    Tensor-product grid of hexahedral cells.

    Cells are numbered with x running fastest: `cell = i + nx * (j + ny * k)`.
    The z axis points downwards, so the z coordinate of a point is its depth.
    Only interior faces are represented; the outer boundary is no-flow.
    """

    shape: typing.Tuple[int, int, int]
    """Number of cells along (x, y, z)."""
    x_spacing: OneDimensionalArray
    """Cell sizes along x (m)."""
    y_spacing: OneDimensionalArray
    """Cell sizes along y (m)."""
    z_spacing: OneDimensionalArray
    """Cell sizes along z (m)."""
    origin: typing.Tuple[float, float, float] = (0.0, 0.0, 0.0)
    """Coordinates of the corner of cell (0, 0, 0)."""

    volumes: OneDimensionalArray = attrs.field(init=False)
    """Cell volumes (m³)."""
    centroids: TwoDimensionalArray = attrs.field(init=False)
    """Cell centroids, shape (num_cells, 3)."""
    cell_extents: TwoDimensionalArray = attrs.field(init=False)
    """Bounding-box extents (dx, dy, dz) of each cell, shape (num_cells, 3)."""
    neighbors: np.ndarray = attrs.field(init=False)
    """Interior face adjacency, shape (num_faces, 2). Face normals point from column 0 to column 1."""
    face_axis: np.ndarray = attrs.field(init=False)
    """Axis (0, 1, 2) each interior face is normal to."""
    face_areas: OneDimensionalArray = attrs.field(init=False)
    """Interior face areas (m²)."""
    half_transmissibility_factors: TwoDimensionalArray = attrs.field(init=False)
    """
    Geometric part of the half-face transmissibilities, `area / (half cell length)`,
    for the two cells of each interior face, shape (num_faces, 2).
    """

    def __attrs_post_init__(self) -> None:
        nx, ny, nz = self.shape
        if min(self.shape) < 1:
            raise ValidationError(f"Grid shape must be positive, got {self.shape}.")
        for name, count, axis in zip(("x_spacing", "y_spacing", "z_spacing"), self.shape, "xyz"):
            object.__setattr__(self, name, _as_spacing(getattr(self, name), count, axis))

        dx = self.x_spacing[np.arange(self.num_cells) % nx]
        dy = self.y_spacing[(np.arange(self.num_cells) // nx) % ny]
        dz = self.z_spacing[np.arange(self.num_cells) // (nx * ny)]
        extents = np.column_stack([dx, dy, dz])

        x_centres = self.origin[0] + np.cumsum(self.x_spacing) - 0.5 * self.x_spacing
        y_centres = self.origin[1] + np.cumsum(self.y_spacing) - 0.5 * self.y_spacing
        z_centres = self.origin[2] + np.cumsum(self.z_spacing) - 0.5 * self.z_spacing
        cells = np.arange(self.num_cells)
        centroids = np.column_stack(
            [
                x_centres[cells % nx],
                y_centres[(cells // nx) % ny],
                z_centres[cells // (nx * ny)],
            ]
        )

        ijk = np.column_stack([cells % nx, (cells // nx) % ny, cells // (nx * ny)])
        strides = (1, nx, nx * ny)
        neighbors = []
        axes = []
        for axis, count in enumerate(self.shape):
            left = cells[ijk[:, axis] < count - 1]
            neighbors.append(np.column_stack([left, left + strides[axis]]))
            axes.append(np.full(left.size, axis, dtype=np.int64))

        neighbors = np.concatenate(neighbors).astype(np.int64)
        face_axis = np.concatenate(axes)
        transverse = np.prod(extents, axis=1)[neighbors[:, 0]] / extents[
            neighbors[:, 0], face_axis
        ]
        half_lengths = 0.5 * np.column_stack(
            [extents[neighbors[:, 0], face_axis], extents[neighbors[:, 1], face_axis]]
        )

        dtype = get_dtype()
        object.__setattr__(self, "volumes", np.prod(extents, axis=1).astype(dtype))
        object.__setattr__(self, "centroids", centroids.astype(dtype))
        object.__setattr__(self, "cell_extents", extents.astype(dtype))
        object.__setattr__(self, "neighbors", neighbors)
        object.__setattr__(self, "face_axis", face_axis)
        object.__setattr__(self, "face_areas", transverse.astype(dtype))
        object.__setattr__(
            self,
            "half_transmissibility_factors",
            (transverse[:, None] / half_lengths).astype(dtype),
        )
        logger.debug(
            f"Built Cartesian grid {self.shape} with {self.num_cells} cells "
            f"and {self.num_faces} interior faces"
        )

    @property
    def num_cells(self) -> int:
        nx, ny, nz = self.shape
        return nx * ny * nz

    @property
    def num_faces(self) -> int:
        return int(self.neighbors.shape[0])

    @property
    def minimum_depth(self) -> float:
        """Depth of the shallowest grid node."""
        return float(self.origin[2])

    def cell_index(self, i: int, j: int, k: int = 0) -> int:
        """Linear index of the cell at logical position (i, j, k)."""
        nx, ny, nz = self.shape
        if not (0 <= i < nx and 0 <= j < ny and 0 <= k < nz):
            raise ValidationError(f"Cell ({i}, {j}, {k}) is outside grid {self.shape}.")
        return i + nx * (j + ny * k)

    def depths(self, cells: typing.Sequence[int]) -> OneDimensionalArray:
        """Depth of the centroids of `cells`."""
        return self.centroids[np.asarray(cells, dtype=np.int64), 2]


def build_cartesian_grid(
    shape: typing.Tuple[int, int, int],
    physical_size: typing.Optional[typing.Tuple[float, float, float]] = None,
    origin: typing.Tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> CartesianGrid:
    """
    Build a uniform Cartesian grid.

    :param shape: Number of cells along (x, y, z).
    :param physical_size: Extent of the whole grid along (x, y, z) in metres.
        Defaults to unit cells.
    :param origin: Coordinates of the grid corner.
    :return: The grid.
    """
    if len(shape) != 3:
        raise ValidationError("Grid shape must have three entries (nx, ny, nz).")
    shape = typing.cast(typing.Tuple[int, int, int], tuple(int(n) for n in shape))
    if physical_size is None:
        physical_size = typing.cast(
            typing.Tuple[float, float, float], tuple(float(n) for n in shape)
        )
    spacings = [
        _as_spacing(length / count, count, axis)
        for length, count, axis in zip(physical_size, shape, "xyz")
    ]
    return CartesianGrid(
        shape=shape,
        x_spacing=spacings[0],
        y_spacing=spacings[1],
        z_spacing=spacings[2],
        origin=origin,
    )
