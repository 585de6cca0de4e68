"""Forward and adjoint states of a simulation run."""

import logging
import typing

import attrs
import numpy as np

from adjflow._precision import get_dtype
from adjflow.errors import ValidationError
from adjflow.types import OneDimensionalArray

if typing.TYPE_CHECKING:
    from adjflow.diffusivity.implicit import TransportReport
    from adjflow.diffusivity.pressure import PressureSystem
    from adjflow.wells import Wells

logger = logging.getLogger(__name__)

__all__ = [
    "WellSolution",
    "ReservoirState",
    "PressureSolution",
    "AdjointState",
    "StepRecord",
    "Trajectory",
]


@attrs.define(slots=True)
class WellSolution:
    """Solution of one well."""

    bottom_hole_pressure: float
    """Bottom-hole pressure (Pa)."""
    flux: OneDimensionalArray
    """Rate of each perforation (m³/s, positive into the reservoir)."""


@attrs.define(slots=True, eq=False)
class ReservoirState:
    """
    Per-cell and per-well solution of the forward problem.

    The transport solver updates `saturation` in place. Pressure, fluxes and
    well solutions are replaced after every pressure solve.
    """

    saturation: OneDimensionalArray
    """Water saturation of each cell, in [0, 1]."""
    pressure: OneDimensionalArray
    """Pressure of each cell (Pa)."""
    flux: OneDimensionalArray
    """Total Darcy flux across each interior face (m³/s), positive from the first to the second neighbour."""
    wells: typing.List[WellSolution] = attrs.field(factory=list)
    """Solution of each well, in well order."""

    @classmethod
    def initialize(
        cls,
        num_cells: int,
        num_faces: int,
        wells: "Wells",
        saturation: typing.Union[float, typing.Sequence[float]] = 0.0,
        pressure: typing.Union[float, typing.Sequence[float]] = 0.0,
    ) -> "ReservoirState":
        """
        Initial state with zero fluxes.

        :param num_cells: Number of cells.
        :param num_faces: Number of interior faces.
        :param wells: Wells of the model.
        :param saturation: Initial water saturation, one value or one per cell.
        :param pressure: Initial pressure, one value or one per cell (Pa).
        """
        dtype = get_dtype()
        s = np.array(np.broadcast_to(saturation, (num_cells,)), dtype=dtype)
        if np.any(s < 0.0) or np.any(s > 1.0) or not np.all(np.isfinite(s)):
            raise ValidationError("Initial saturation must lie in [0, 1].")
        p = np.array(np.broadcast_to(pressure, (num_cells,)), dtype=dtype)
        return cls(
            saturation=s,
            pressure=p,
            flux=np.zeros(num_faces, dtype=dtype),
            wells=[
                WellSolution(
                    bottom_hole_pressure=0.0, flux=np.zeros(w.num_perforations, dtype=dtype)
                )
                for w in wells
            ],
        )

    @property
    def perforation_flux(self) -> OneDimensionalArray:
        """Rates of all perforations of all wells, in perforation order."""
        if not self.wells:
            return np.zeros(0)
        return np.concatenate([w.flux for w in self.wells])

    @property
    def bottom_hole_pressures(self) -> OneDimensionalArray:
        return np.array([w.bottom_hole_pressure for w in self.wells], dtype=np.float64)

    def copy(self) -> "ReservoirState":
        """Deep copy of the state."""
        return ReservoirState(
            saturation=self.saturation.copy(),
            pressure=self.pressure.copy(),
            flux=self.flux.copy(),
            wells=[
                WellSolution(bottom_hole_pressure=w.bottom_hole_pressure, flux=w.flux.copy())
                for w in self.wells
            ],
        )


@attrs.frozen(slots=True)
class PressureSolution:
    """Physical values of a raw pressure-system vector."""

    flux: OneDimensionalArray
    """Face fluxes (m³/s)."""
    pressure: OneDimensionalArray
    """Cell pressures (Pa)."""
    well_flux: OneDimensionalArray
    """Perforation rates (m³/s)."""
    bottom_hole_pressure: OneDimensionalArray
    """Bottom-hole pressure of each well (Pa)."""


@attrs.frozen(slots=True)
class AdjointState:
    """
    Dual state of one outer step.

    The entries are the Lagrange multipliers of the discrete equations. The
    pressure and well flux duals carry the opposite sign of the shared
    unpacking of the raw transposed solution.
    """

    pressure: OneDimensionalArray
    """Multiplier of each cell's conservation equation."""
    flux: OneDimensionalArray
    """Multiplier of each face's Darcy equation."""
    saturation: OneDimensionalArray
    """Multiplier of the transport equation of the last accepted sub-step."""
    well_flux: OneDimensionalArray
    """Multiplier of each perforation's inflow equation."""
    well_pressure: OneDimensionalArray
    """Unpacked well-control multiplier. `-well_pressure` is the control gradient."""
    transport: typing.Tuple[OneDimensionalArray, ...] = ()
    """Multipliers of every accepted transport sub-step, first to last."""
    carry: typing.Optional[OneDimensionalArray] = None
    """Saturation sensitivity passed to the previous step."""
    dual: typing.Optional[OneDimensionalArray] = None
    """Raw solution of the transposed pressure system."""


@attrs.frozen(slots=True, eq=False)
class StepRecord:
    """One accepted outer step of a forward run."""

    index: int
    """Position of the step, starting at 1."""
    start_time: float
    """Time at the start of the step (s)."""
    time_step: float
    """Length of the step (s)."""
    wells: "Wells"
    """Wells, with the controls in force during the step."""
    pressure_system: "PressureSystem"
    """Pressure system assembled for the step."""
    raw_solution: OneDimensionalArray
    """Raw solution of the pressure system."""
    start_saturation: OneDimensionalArray
    """Saturation at the start of the step."""
    state: ReservoirState
    """Snapshot of the state after transport."""
    report: "TransportReport"
    """Accepted transport sub-steps."""

    @property
    def end_time(self) -> float:
        return self.start_time + self.time_step


@attrs.frozen(slots=True, eq=False)
class Trajectory:
    """Initial state and every accepted outer step of a forward run."""

    initial_state: ReservoirState
    steps: typing.Tuple[StepRecord, ...] = attrs.field(converter=tuple)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> typing.Iterator[StepRecord]:
        return iter(self.steps)

    @property
    def final_state(self) -> ReservoirState:
        if not self.steps:
            return self.initial_state
        return self.steps[-1].state

    @property
    def total_time(self) -> float:
        return sum(step.time_step for step in self.steps)
