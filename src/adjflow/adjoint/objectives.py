"""Discounted cash-flow (net present value) objective and its partial derivatives."""

import logging
import typing
import warnings

import attrs
import numpy as np
from scipy.sparse import csr_matrix, dia_matrix  # type: ignore[import-untyped]

from adjflow.constants import c
from adjflow.fluids import FluidModel
from adjflow.grids import CartesianGrid
from adjflow.states import StepRecord, Trajectory
from adjflow.types import OneDimensionalArray
from adjflow.wells import Wells

logger = logging.getLogger(__name__)

__all__ = [
    "NPVParameters",
    "StepPartials",
    "ObjectiveAccumulator",
    "perforation_signs",
    "npv",
]


@attrs.frozen
class NPVParameters:
    """Prices of the net present value objective, per barrel."""

    oil_price: float = 125.0
    """Revenue per barrel of produced oil."""
    water_production_cost: float = 10.0
    """Cost per barrel of produced water."""
    water_injection_cost: float = 0.0
    """Cost per barrel of injected water."""
    discount_rate: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Relative discount factor over the whole schedule."""

    @property
    def oil_revenue(self) -> float:
        """Oil price per cubic metre."""
        return self.oil_price / c.BARREL

    @property
    def water_production_rate_cost(self) -> float:
        """Water production cost per cubic metre."""
        return self.water_production_cost / c.BARREL

    @property
    def water_injection_rate_cost(self) -> float:
        """Water injection cost per cubic metre."""
        return self.water_injection_cost / c.BARREL


@attrs.frozen(slots=True, eq=False)
class StepPartials:
    """
    Partial derivatives of one step's objective contribution.

    Rates are perforation rates (positive into the reservoir); the adjoint maps
    them to the raw pressure unknowns.
    """

    flux: OneDimensionalArray
    """With respect to the face fluxes."""
    pressure: OneDimensionalArray
    """With respect to the cell pressures."""
    well_pressure: OneDimensionalArray
    """With respect to the bottom-hole pressures."""
    well_flux: OneDimensionalArray
    """With respect to the perforation rates."""
    saturation: OneDimensionalArray
    """With respect to the saturation at the end of the step."""
    controls: OneDimensionalArray
    """With respect to the well controls of the step."""
    saturation_hessian: typing.Optional[dia_matrix] = None
    """Second derivative with respect to saturation (diagonal)."""
    saturation_well_flux: typing.Optional[csr_matrix] = None
    """Mixed second derivative with respect to saturation and perforation rates, cells × perforations."""

    @classmethod
    def zeros(cls, num_faces: int, num_cells: int, num_perforations: int, num_wells: int) -> "StepPartials":
        return cls(
            flux=np.zeros(num_faces),
            pressure=np.zeros(num_cells),
            well_pressure=np.zeros(num_wells),
            well_flux=np.zeros(num_perforations),
            saturation=np.zeros(num_cells),
            controls=np.zeros(num_wells),
        )


@attrs.define
class ObjectiveAccumulator:
    """Running objective value and, optionally, per-step partials."""

    value: float = 0.0
    partials: typing.List[StepPartials] = attrs.field(factory=list)

    def add(self, value: float, partials: typing.Optional[StepPartials] = None) -> None:
        self.value += value
        if partials is not None:
            self.partials.append(partials)


def perforation_signs(wells: Wells, rates: OneDimensionalArray) -> np.ndarray:
    """
    Injector (+1) or producer (-1) status of every perforation.

    The status follows the sign of the rate. A perforation with exactly zero
    rate takes the explicit sign of its well, with a warning. Without an
    explicit sign it is neither (0).

    :param wells: Wells owning the perforations.
    :param rates: Rate of every perforation.
    :return: One of -1, 0, 1 per perforation.
    """
    signs = np.sign(rates).astype(np.int64)
    zero = np.flatnonzero(signs == 0)
    if zero.size:
        owners = wells.perforation_owners
        names = sorted({wells[int(owners[k])].name for k in zero})
        warnings.warn(
            f"Zero-rate perforations in wells {names}; using the explicit well sign.",
            UserWarning,
            stacklevel=3,
        )
        for k in zero:
            sign = wells[int(owners[k])].sign
            signs[k] = 0 if sign is None else sign
    return signs


def _step_contribution(
    step: StepRecord,
    wells: Wells,
    fluid: FluidModel,
    parameters: NPVParameters,
    discount: float,
    num_cells: int,
    num_faces: int,
    compute_partials: bool,
) -> typing.Tuple[float, typing.Optional[StepPartials]]:
    rates = step.state.perforation_flux
    cells = wells.perforation_cells
    saturation = step.state.saturation[cells]
    f = np.asarray(fluid.fractional_flow(saturation), dtype=np.float64)
    signs = perforation_signs(wells, rates)
    injecting = signs > 0
    producing = signs < 0

    ro = parameters.oil_revenue
    rw = parameters.water_production_rate_cost
    ri = parameters.water_injection_rate_cost
    weight = step.time_step * discount

    value = weight * (
        -ri * rates[injecting].sum()
        + rw * (rates[producing] * f[producing]).sum()
        - ro * (rates[producing] * (1.0 - f[producing])).sum()
    )
    if not compute_partials:
        return float(value), None

    npf = cells.size
    df = np.asarray(fluid.fractional_flow_derivative(saturation), dtype=np.float64)
    d2f = np.asarray(fluid.fractional_flow_second_derivative(saturation), dtype=np.float64)
    price = rw + ro

    well_flux = np.zeros(npf)
    well_flux[injecting] = -weight * ri
    well_flux[producing] = weight * (rw * f[producing] - ro * (1.0 - f[producing]))

    producers = np.flatnonzero(producing)
    ds = np.zeros(num_cells)
    np.add.at(ds, cells[producers], weight * rates[producers] * df[producers] * price)
    d2s = np.zeros(num_cells)
    np.add.at(d2s, cells[producers], weight * rates[producers] * d2f[producers] * price)
    mixed = csr_matrix(
        (weight * df[producers] * price, (cells[producers], producers)),
        shape=(num_cells, npf),
    )
    partials = StepPartials(
        flux=np.zeros(num_faces),
        pressure=np.zeros(num_cells),
        well_pressure=np.zeros(len(wells)),
        well_flux=well_flux,
        saturation=ds,
        controls=np.zeros(len(wells)),
        saturation_hessian=dia_matrix((d2s[None, :], [0]), shape=(num_cells, num_cells)),
        saturation_well_flux=mixed,
    )
    return float(value), partials


def npv(
    grid: CartesianGrid,
    wells: Wells,
    trajectory: Trajectory,
    fluid: FluidModel,
    parameters: typing.Optional[NPVParameters] = None,
    compute_partials: bool = False,
) -> ObjectiveAccumulator:
    """
    Net present value of a forward run.

        J = Σ_n dt_n·(1 + d)^(-t_n / T)·(-ri·Σ_inj q + rw·Σ_prod q·f_w - ro·Σ_prod q·(1 - f_w))

    with `t_n` the end of step `n`, `T` the end of the run, and `f_w` evaluated
    at the saturation of the perforated cells after the step. Producing rates are
    negative, so produced oil adds to the value.

    :param grid: Grid of the model.
    :param wells: Wells of the model.
    :param trajectory: Recorded forward run.
    :param fluid: Fluid model.
    :param parameters: Prices and discount rate.
    :param compute_partials: Whether to also return per-step partial derivatives.
    :return: The accumulated value, with one `StepPartials` per step if requested.
    """
    parameters = parameters or NPVParameters()
    accumulator = ObjectiveAccumulator()
    total_time = trajectory.total_time
    for step in trajectory:
        discount = (1.0 + parameters.discount_rate) ** (-step.end_time / total_time)
        value, partials = _step_contribution(
            step=step,
            wells=wells,
            fluid=fluid,
            parameters=parameters,
            discount=discount,
            num_cells=grid.num_cells,
            num_faces=grid.num_faces,
            compute_partials=compute_partials,
        )
        accumulator.add(value, partials)
    logger.debug(f"NPV over {len(trajectory)} steps: {accumulator.value:.6e}")
    return accumulator
