"""
Upstream-weighted transport residual and Jacobian.

For a fixed flux field the discrete water balance of one sub-step reads

    R(s) = s - s0 + dt / pv · H(s)

where `H_i` is the upstream water flux leaving cell `i` minus the water
entering it through perforations. Injecting perforations (`q > 0`) carry
the injected water fraction, producing perforations carry `f_w(s)` of
their cell.
"""

import logging
import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np
from scipy.sparse import coo_matrix, csr_matrix  # type: ignore[import-untyped]

from adjflow.errors import ValidationError
from adjflow.fluids import FluidModel
from adjflow.grids import CartesianGrid
from adjflow.models import RockProperties
from adjflow.states import ReservoirState
from adjflow.types import OneDimensionalArray
from adjflow.wells import Wells

logger = logging.getLogger(__name__)

__all__ = [
    "TransportContext",
    "transport_residual",
    "transport_jacobian",
    "upstream_weights",
]


def _readonly(value: typing.Any, dtype: typing.Any = np.float64) -> np.ndarray:
    array = np.array(value, dtype=dtype, copy=True)
    array.setflags(write=False)
    return array


@attrs.frozen(slots=True, eq=False)
class TransportContext:
    """Everything the transport equations need besides saturation and time step."""

    pore_volumes: OneDimensionalArray = attrs.field(converter=_readonly)
    """Pore volume of each cell (m³)."""
    flux: OneDimensionalArray = attrs.field(converter=_readonly)
    """Total flux across each interior face (m³/s)."""
    neighbors: np.ndarray = attrs.field(converter=lambda v: _readonly(v, np.int64))
    """Interior face adjacency, shape (num_faces, 2)."""
    perforation_cells: np.ndarray = attrs.field(converter=lambda v: _readonly(v, np.int64))
    """Perforated cell of every perforation."""
    perforation_flux: OneDimensionalArray = attrs.field(converter=_readonly)
    """Rate of every perforation (m³/s, positive into the reservoir)."""
    injected_water_fraction: OneDimensionalArray = attrs.field(converter=_readonly)
    """Water fraction injected through every perforation."""
    fluid: FluidModel
    """Fluid model providing the fractional flow."""

    def __attrs_post_init__(self) -> None:
        if np.any(self.pore_volumes <= 0.0):
            raise ValidationError("Pore volumes must be positive.")
        if self.flux.shape[0] != self.neighbors.shape[0]:
            raise ValidationError(
                f"{self.flux.shape[0]} face fluxes for {self.neighbors.shape[0]} faces."
            )
        count = self.perforation_cells.shape[0]
        if self.perforation_flux.shape[0] != count or self.injected_water_fraction.shape[0] != count:
            raise ValidationError("Perforation arrays must have one entry per perforation.")

    @classmethod
    def from_state(
        cls,
        grid: CartesianGrid,
        rock: RockProperties,
        fluid: FluidModel,
        wells: Wells,
        state: ReservoirState,
    ) -> "TransportContext":
        """Context for the fluxes currently stored in `state`."""
        return cls(
            pore_volumes=rock.pore_volumes(grid.volumes),
            flux=state.flux,
            neighbors=grid.neighbors,
            perforation_cells=wells.perforation_cells,
            perforation_flux=state.perforation_flux,
            injected_water_fraction=wells.injected_water_fractions,
            fluid=fluid,
        )

    @property
    def num_cells(self) -> int:
        return int(self.pore_volumes.shape[0])


@numba.njit(cache=True)
def _upstream_divergence(
    fractional_flow: np.ndarray,
    flux: np.ndarray,
    neighbors: np.ndarray,
    perforation_cells: np.ndarray,
    perforation_flux: np.ndarray,
    injected_water_fraction: np.ndarray,
) -> np.ndarray:
    divergence = np.zeros(fractional_flow.shape[0])
    for face in range(flux.shape[0]):
        left = neighbors[face, 0]
        right = neighbors[face, 1]
        v = flux[face]
        upstream = left if v >= 0.0 else right
        water = fractional_flow[upstream] * v
        divergence[left] += water
        divergence[right] -= water

    for k in range(perforation_cells.shape[0]):
        q = perforation_flux[k]
        if q > 0.0:
            weight = injected_water_fraction[k]
        else:
            weight = fractional_flow[perforation_cells[k]]
        divergence[perforation_cells[k]] -= weight * q
    return divergence


@numba.njit(cache=True)
def _upstream_divergence_entries(
    fractional_flow_derivative: np.ndarray,
    flux: np.ndarray,
    neighbors: np.ndarray,
    perforation_cells: np.ndarray,
    perforation_flux: np.ndarray,
) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray]:
    num_faces = flux.shape[0]
    num_perforations = perforation_cells.shape[0]
    size = 2 * num_faces + num_perforations
    rows = np.empty(size, dtype=np.int64)
    cols = np.empty(size, dtype=np.int64)
    values = np.zeros(size)
    for face in range(num_faces):
        left = neighbors[face, 0]
        right = neighbors[face, 1]
        v = flux[face]
        upstream = left if v >= 0.0 else right
        derivative = fractional_flow_derivative[upstream] * v
        rows[2 * face] = left
        cols[2 * face] = upstream
        values[2 * face] = derivative
        rows[2 * face + 1] = right
        cols[2 * face + 1] = upstream
        values[2 * face + 1] = -derivative

    offset = 2 * num_faces
    for k in range(num_perforations):
        cell = perforation_cells[k]
        q = perforation_flux[k]
        rows[offset + k] = cell
        cols[offset + k] = cell
        # Injected composition does not depend on saturation
        if q <= 0.0:
            values[offset + k] = -fractional_flow_derivative[cell] * q
    return rows, cols, values


def transport_residual(
    context: TransportContext,
    saturation: OneDimensionalArray,
    previous_saturation: OneDimensionalArray,
    time_step: float,
) -> OneDimensionalArray:
    """
    Residual of the implicit transport equation.

    :param context: Fluxes, pore volumes and well data of the step.
    :param saturation: Trial saturation at the end of the sub-step.
    :param previous_saturation: Saturation at the start of the sub-step.
    :param time_step: Sub-step length (s).
    :return: One residual entry per cell (dimensionless).
    """
    divergence = _upstream_divergence(
        np.asarray(context.fluid.fractional_flow(saturation), dtype=np.float64),
        context.flux,
        context.neighbors,
        context.perforation_cells,
        context.perforation_flux,
        context.injected_water_fraction,
    )
    return saturation - previous_saturation + time_step / context.pore_volumes * divergence


def transport_jacobian(
    context: TransportContext, saturation: OneDimensionalArray, time_step: float
) -> csr_matrix:
    """
    Jacobian of `transport_residual` with respect to `saturation`.

    :return: Sparse matrix `I + dt·diag(1/pv)·∂H/∂s`.
    """
    n = context.num_cells
    rows, cols, values = _upstream_divergence_entries(
        np.asarray(context.fluid.fractional_flow_derivative(saturation), dtype=np.float64),
        context.flux,
        context.neighbors,
        context.perforation_cells,
        context.perforation_flux,
    )
    scale = time_step / context.pore_volumes
    diagonal = np.arange(n)
    return coo_matrix(
        (
            np.concatenate([values * scale[rows], np.ones(n)]),
            (np.concatenate([rows, diagonal]), np.concatenate([cols, diagonal])),
        ),
        shape=(n, n),
    ).tocsr()


def upstream_weights(
    context: TransportContext, saturation: OneDimensionalArray
) -> typing.Tuple[OneDimensionalArray, OneDimensionalArray]:
    """
    Water fractions carried by each face and each perforation.

    These are the derivatives of `H` with respect to the face fluxes and
    the negated perforation rates.

    :return: (face weights, perforation weights).
    """
    f = np.asarray(context.fluid.fractional_flow(saturation), dtype=np.float64)
    upstream = np.where(context.flux >= 0.0, context.neighbors[:, 0], context.neighbors[:, 1])
    perforation_weights = np.where(
        context.perforation_flux > 0.0,
        context.injected_water_fraction,
        f[context.perforation_cells],
    )
    return f[upstream], perforation_weights
