"""
Mixed two-point pressure discretization with well equations.

The raw unknowns are ordered as

    z = (v, π, w, ω)

with `v` the face fluxes, `π = -p` the negated cell pressures, `w = -q` the
negated perforation rates and `ω = -pw` the negated bottom-hole pressures.
The system reads

    | B   Dᵀ  0   0  | | v |   | 0 |
    | D   0   Pᵀ  0  | | π | = | 0 |
    | 0   P   Bq  -W | | w |   | 0 |
    | 0   0   C   E  | | ω |   | u |

where `B` and `Bq` are the face and perforation resistances at the
saturation of the previous step, `D` the cell/face divergence, `P` the
perforation/cell incidence, `W` the perforation/well incidence, and the
last block row holds one control equation per well (`-Σ w = rate` or
`-ω = bhp`). `apply` and `apply_transpose` solve with the same operator,
so the forward and the adjoint problems share one assembly.
"""

import logging
import typing

import attrs
import numpy as np
from scipy.sparse import coo_matrix, csr_matrix  # type: ignore[import-untyped]

from adjflow.config import Config
from adjflow.diffusivity.base import solve_with_config
from adjflow.errors import ValidationError
from adjflow.fluids import FluidModel
from adjflow.grids import CartesianGrid
from adjflow.models import RockProperties
from adjflow.states import PressureSolution, ReservoirState, WellSolution
from adjflow.types import OneDimensionalArray, TwoDimensionalArray
from adjflow.wells import Wells

logger = logging.getLogger(__name__)

__all__ = ["PressureSystem", "forward_pressure_step"]


@attrs.frozen(slots=True, eq=False)
class PressureSystem:
    """Assembled pressure system of one outer step."""

    matrix: csr_matrix
    """The system matrix."""
    rhs: OneDimensionalArray
    """Forward right-hand side (well controls in the last block)."""
    neighbors: np.ndarray
    """Interior face adjacency, shape (num_faces, 2)."""
    half_transmissibilities: TwoDimensionalArray
    """Permeability-weighted half-face transmissibilities, shape (num_faces, 2)."""
    perforation_cells: np.ndarray
    """Perforated cell of every perforation."""
    perforation_owners: np.ndarray
    """Owning well of every perforation."""
    well_indices: OneDimensionalArray
    """Well index of every perforation."""
    well_index_derivatives: OneDimensionalArray
    """Permeability derivative of every perforation's well index."""
    mobility: OneDimensionalArray
    """Total mobility of every cell at the assembly saturation."""
    mobility_derivative: OneDimensionalArray
    """Saturation derivative of the total mobility of every cell."""
    permeability: OneDimensionalArray
    """Isotropic permeability of every cell, or an empty array for anisotropic fields."""
    num_wells: int
    pinned: bool
    """Whether cell 0 was pinned because no well fixes the pressure level."""
    config: Config

    @classmethod
    def assemble(
        cls,
        grid: CartesianGrid,
        rock: RockProperties,
        fluid: FluidModel,
        wells: Wells,
        saturation: OneDimensionalArray,
        config: typing.Optional[Config] = None,
    ) -> "PressureSystem":
        """
        Assemble the mixed system with mobilities evaluated at `saturation`.

        :param grid: Grid of the model.
        :param rock: Rock properties.
        :param fluid: Fluid model providing the total mobility.
        :param wells: Wells, with the controls in force.
        :param saturation: Saturation the mobilities are evaluated at.
        :param config: Linear solver settings.
        :return: The assembled system.
        """
        config = config or Config()
        nf, nc = grid.num_faces, grid.num_cells
        npf, nw = wells.num_perforations, len(wells)
        if saturation.shape[0] != nc:
            raise ValidationError(
                f"Saturation has {saturation.shape[0]} entries, grid has {nc} cells."
            )

        neighbors = grid.neighbors
        diagonal = rock.permeability.diagonal()
        half_transmissibilities = grid.half_transmissibility_factors * np.column_stack(
            [
                diagonal[neighbors[:, 0], grid.face_axis],
                diagonal[neighbors[:, 1], grid.face_axis],
            ]
        )
        mobility = np.asarray(fluid.total_mobility(saturation), dtype=np.float64)
        mobility_derivative = np.asarray(
            fluid.total_mobility_derivative(saturation), dtype=np.float64
        )

        perforation_cells = wells.perforation_cells
        owners = wells.perforation_owners
        well_indices = wells.well_indices
        well_index_derivatives = (
            np.concatenate([w.well_index_derivative for w in wells]) if nw else np.zeros(0)
        )

        face_resistance = 1.0 / (
            half_transmissibilities[:, 0] * mobility[neighbors[:, 0]]
        ) + 1.0 / (half_transmissibilities[:, 1] * mobility[neighbors[:, 1]])
        perforation_resistance = 1.0 / (well_indices * mobility[perforation_cells])

        faces = np.arange(nf)
        perforations = np.arange(npf)
        cell_offset, perforation_offset, well_offset = nf, nf + nc, nf + nc + npf

        rows = [faces, faces, faces, cell_offset + neighbors[:, 0], cell_offset + neighbors[:, 1]]
        cols = [faces, cell_offset + neighbors[:, 0], cell_offset + neighbors[:, 1], faces, faces]
        data = [face_resistance, np.ones(nf), -np.ones(nf), np.ones(nf), -np.ones(nf)]

        rows += [
            cell_offset + perforation_cells,
            perforation_offset + perforations,
            perforation_offset + perforations,
            perforation_offset + perforations,
        ]
        cols += [
            perforation_offset + perforations,
            cell_offset + perforation_cells,
            perforation_offset + perforations,
            well_offset + owners,
        ]
        data += [np.ones(npf), np.ones(npf), perforation_resistance, -np.ones(npf)]

        rhs = np.zeros(well_offset + nw)
        for position, well in enumerate(wells):
            row = well_offset + position
            if well.is_rate_controlled:
                members = perforations[owners == position]
                rows.append(np.full(members.size, row))
                cols.append(perforation_offset + members)
                data.append(-np.ones(members.size))
            else:
                rows.append(np.array([row]))
                cols.append(np.array([row]))
                data.append(np.array([-1.0]))
            rhs[row] = well.target

        pinned = not wells.has_pressure_control
        if pinned:
            # Fix the pressure level through the first cell
            rows.append(np.array([cell_offset]))
            cols.append(np.array([cell_offset]))
            data.append(np.array([1.0]))

        size = well_offset + nw
        matrix = coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
            shape=(size, size),
        ).tocsr()

        permeability = (
            np.asarray(rock.permeability.scalar(), dtype=np.float64)
            if rock.permeability.is_isotropic
            else np.zeros(0)
        )
        logger.debug(
            f"Assembled pressure system of size {size} ({nf} faces, {nc} cells, "
            f"{npf} perforations, {nw} wells, pinned={pinned})"
        )
        return cls(
            matrix=matrix,
            rhs=rhs,
            neighbors=neighbors,
            half_transmissibilities=half_transmissibilities,
            perforation_cells=perforation_cells,
            perforation_owners=owners,
            well_indices=well_indices,
            well_index_derivatives=well_index_derivatives,
            mobility=mobility,
            mobility_derivative=mobility_derivative,
            permeability=permeability,
            num_wells=nw,
            pinned=pinned,
            config=config,
        )

    @property
    def num_faces(self) -> int:
        return int(self.neighbors.shape[0])

    @property
    def num_cells(self) -> int:
        return int(self.mobility.shape[0])

    @property
    def num_perforations(self) -> int:
        return int(self.perforation_cells.shape[0])

    @property
    def size(self) -> int:
        return int(self.matrix.shape[0])

    def _blocks(self, raw: OneDimensionalArray) -> typing.Tuple[np.ndarray, ...]:
        raw = np.asarray(raw, dtype=np.float64)
        if raw.shape != (self.size,):
            raise ValidationError(
                f"Expected a vector of length {self.size}, got shape {raw.shape}."
            )
        nf, nc, npf = self.num_faces, self.num_cells, self.num_perforations
        return (
            raw[:nf],
            raw[nf : nf + nc],
            raw[nf + nc : nf + nc + npf],
            raw[nf + nc + npf :],
        )

    def pack(
        self,
        flux: typing.Optional[OneDimensionalArray] = None,
        pressure: typing.Optional[OneDimensionalArray] = None,
        well_flux: typing.Optional[OneDimensionalArray] = None,
        well: typing.Optional[OneDimensionalArray] = None,
    ) -> OneDimensionalArray:
        """Stack raw blocks into one vector. Missing blocks are zero."""
        blocks = (
            (flux, self.num_faces),
            (pressure, self.num_cells),
            (well_flux, self.num_perforations),
            (well, self.num_wells),
        )
        return np.concatenate(
            [
                np.zeros(size) if block is None else np.asarray(block, dtype=np.float64)
                for block, size in blocks
            ]
        )

    def apply(self, rhs: OneDimensionalArray) -> OneDimensionalArray:
        """Solve `A x = rhs`."""
        return solve_with_config(self.matrix, np.asarray(rhs, dtype=np.float64), self.config)

    def apply_transpose(self, rhs: OneDimensionalArray) -> OneDimensionalArray:
        """Solve `Aᵀ y = rhs`."""
        return solve_with_config(
            self.matrix.transpose().tocsr(), np.asarray(rhs, dtype=np.float64), self.config
        )

    def unpack(self, raw: OneDimensionalArray) -> PressureSolution:
        """
        Map a raw vector to physical values.

        Pressure, perforation rate and bottom-hole pressure are negated, the flux is kept.
        """
        v, pi, w, omega = self._blocks(raw)
        return PressureSolution(
            flux=v.copy(),
            pressure=-pi,
            well_flux=-w,
            bottom_hole_pressure=-omega,
        )

    def solve(self) -> typing.Tuple[OneDimensionalArray, PressureSolution]:
        """Forward solve. Returns the raw solution and its unpacked values."""
        raw = self.apply(self.rhs)
        return raw, self.unpack(raw)

    def saturation_sensitivity(
        self, raw: OneDimensionalArray, dual: OneDimensionalArray
    ) -> OneDimensionalArray:
        """
        `(∂(A z)/∂s)ᵀ y` for the assembly saturation.

        Only the face and perforation resistances depend on saturation.

        :param raw: Raw forward solution `z`.
        :param dual: Raw transposed solution `y`.
        :return: One value per cell.
        """
        v, _, w, _ = self._blocks(raw)
        yv, _, yw, _ = self._blocks(dual)
        nc = self.num_cells
        lam, dlam = self.mobility, self.mobility_derivative
        sensitivity = np.zeros(nc)
        for side in (0, 1):
            cells = self.neighbors[:, side]
            t = self.half_transmissibilities[:, side]
            sensitivity += np.bincount(
                cells,
                weights=yv * v * (-dlam[cells] / (t * lam[cells] ** 2)),
                minlength=nc,
            )
        cells = self.perforation_cells
        sensitivity += np.bincount(
            cells,
            weights=yw * w * (-dlam[cells] / (self.well_indices * lam[cells] ** 2)),
            minlength=nc,
        )
        return sensitivity

    def permeability_sensitivity(
        self, raw: OneDimensionalArray, dual: OneDimensionalArray
    ) -> OneDimensionalArray:
        """
        `(∂(A z)/∂K)ᵀ y` for an isotropic permeability field.

        Half-face transmissibilities are linear in the permeability of their cell.
        Perforation resistances follow from the well index derivative.

        :param raw: Raw forward solution `z`.
        :param dual: Raw transposed solution `y`.
        :return: One value per cell.
        :raises ValidationError: If the system was assembled with an anisotropic field.
        """
        if self.permeability.size == 0:
            raise ValidationError(
                "Permeability sensitivities are only available for isotropic fields."
            )
        v, _, w, _ = self._blocks(raw)
        yv, _, yw, _ = self._blocks(dual)
        nc = self.num_cells
        lam, k = self.mobility, self.permeability
        sensitivity = np.zeros(nc)
        for side in (0, 1):
            cells = self.neighbors[:, side]
            t = self.half_transmissibilities[:, side]
            sensitivity += np.bincount(
                cells,
                weights=yv * v * (-1.0 / (t * lam[cells] * k[cells])),
                minlength=nc,
            )
        cells = self.perforation_cells
        resistance = 1.0 / (self.well_indices * lam[cells])
        sensitivity += np.bincount(
            cells,
            weights=yw
            * w
            * (-resistance * self.well_index_derivatives / self.well_indices),
            minlength=nc,
        )
        return sensitivity


def forward_pressure_step(
    grid: CartesianGrid,
    rock: RockProperties,
    fluid: FluidModel,
    wells: Wells,
    state: ReservoirState,
    config: typing.Optional[Config] = None,
) -> typing.Tuple[PressureSystem, OneDimensionalArray]:
    """
    Solve the pressure system at the current saturation and store the solution in `state`.

    :param grid: Grid of the model.
    :param rock: Rock properties.
    :param fluid: Fluid model.
    :param wells: Wells with the controls in force.
    :param state: State to update in place. Only its saturation is read.
    :param config: Linear solver settings.
    :return: The assembled system and its raw solution.
    """
    system = PressureSystem.assemble(
        grid=grid,
        rock=rock,
        fluid=fluid,
        wells=wells,
        saturation=state.saturation,
        config=config,
    )
    raw, solution = system.solve()
    state.pressure = solution.pressure
    state.flux = solution.flux
    offsets = np.cumsum([0] + [w.num_perforations for w in wells])
    state.wells = [
        WellSolution(
            bottom_hole_pressure=float(solution.bottom_hole_pressure[i]),
            flux=solution.well_flux[offsets[i] : offsets[i + 1]].copy(),
        )
        for i in range(len(wells))
    ]
    logger.debug(
        f"Pressure solve: p in [{solution.pressure.min():.4e}, {solution.pressure.max():.4e}] Pa, "
        f"max |v| = {np.abs(solution.flux).max(initial=0.0):.4e} m³/s"
    )
    return system, raw
