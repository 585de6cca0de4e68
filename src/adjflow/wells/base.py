"""Well records and the well collection of a reservoir model."""

import logging
import typing
import warnings

import attrs
import numpy as np

from adjflow.config import Config
from adjflow.errors import ValidationError
from adjflow.grids import CartesianGrid
from adjflow.models import Permeability, RockProperties
from adjflow.types import (
    TWO_POINT_DISCRETIZATIONS,
    ControlMode,
    DiscretizationKind,
    OneDimensionalArray,
    Orientation,
)
from adjflow.wells.core import (
    per_perforation,
    per_perforation_directions,
    compute_well_index,
    compute_well_index_sensitivity,
)

logger = logging.getLogger(__name__)

__all__ = ["Well", "Wells", "add_well"]


def _readonly(value: typing.Any, dtype: typing.Any = np.float64) -> np.ndarray:
    array = np.array(value, dtype=dtype, copy=True).ravel()
    array.setflags(write=False)
    return array


def _optional_readonly(value: typing.Any) -> typing.Optional[np.ndarray]:
    if value is None:
        return None
    return _readonly(value)


def _to_composition(value: typing.Any) -> typing.Tuple[float, float]:
    composition = tuple(float(v) for v in value)
    if len(composition) != 2:
        raise ValidationError(
            f"Composition must have two entries (water, oil), got {len(composition)}."
        )
    if min(composition) < 0.0 or abs(sum(composition) - 1.0) > 1e-12:
        raise ValidationError(
            f"Composition fractions must be non-negative and sum to one, got {composition}."
        )
    return typing.cast(typing.Tuple[float, float], composition)


def _validate_sign(instance: typing.Any, attribute: typing.Any, value: typing.Any) -> None:
    if value is not None and value not in (1, -1):
        raise ValidationError(
            f"Well sign must be 1 (injector) or -1 (producer), got {value!r}."
        )


@attrs.frozen(slots=True, eq=False)
class Well:
    """
    A vertical, horizontal or deviated point well completed in one or more cells.

    All per-perforation arrays share the length of `cells`. Rates are positive
    into the reservoir.
    """

    name: str
    """Name of the well."""
    control: ControlMode = attrs.field(converter=ControlMode.parse)
    """Whether the well is driven by a rate or a bottom-hole pressure target."""
    target: float = attrs.field(converter=float)
    """Rate (m³/s) or bottom-hole pressure (Pa) target, depending on `control`."""
    cells: np.ndarray = attrs.field(converter=lambda v: _readonly(v, np.int64))
    """Perforated cells."""
    radius: OneDimensionalArray = attrs.field(converter=_readonly)
    """Well-bore radius of each perforation (m)."""
    directions: typing.Tuple[Orientation, ...] = attrs.field(
        converter=lambda v: tuple(Orientation.parse(d) for d in v)
    )
    """Direction of each perforation."""
    skin: OneDimensionalArray = attrs.field(converter=_readonly)
    """Skin factor of each perforation."""
    well_index: OneDimensionalArray = attrs.field(converter=_readonly)
    """Effective well index of each perforation (m³)."""
    well_index_derivative: OneDimensionalArray = attrs.field(converter=_readonly)
    """Derivative of the well index with respect to the effective transverse permeability (m)."""
    computed: np.ndarray = attrs.field(converter=lambda v: _readonly(v, np.bool_))
    """Which well indices were computed (as opposed to supplied)."""
    depth_offsets: OneDimensionalArray = attrs.field(converter=_readonly)
    """Depth of each perforated cell centroid below the reference depth (m)."""
    reference_depth: float = attrs.field(converter=float)
    """Depth the bottom-hole pressure refers to (m)."""
    discretization: DiscretizationKind = attrs.field(
        default=DiscretizationKind.TPFA, converter=DiscretizationKind.parse
    )
    """Pressure discretization the computed well indices were derived for."""
    composition: typing.Tuple[float, float] = attrs.field(
        default=(1.0, 0.0), converter=_to_composition
    )
    """Injected fluid composition as (water, oil) fractions."""
    sign: typing.Optional[int] = attrs.field(default=None, validator=_validate_sign)
    """+1 for injectors, -1 for producers, None if unknown."""
    permeability_thickness: typing.Optional[OneDimensionalArray] = attrs.field(
        default=None, converter=_optional_readonly
    )
    """Supplied Kh per perforation (m³). Negative entries are computed."""
    well_index_sensitivity: typing.Optional[OneDimensionalArray] = attrs.field(
        default=None, converter=_optional_readonly
    )
    """Well index recomputed under a perturbed permeability field, if requested."""

    def __attrs_post_init__(self) -> None:
        count = self.cells.size
        if count == 0:
            raise ValidationError(f"Well {self.name!r} has no perforations.")
        for field_name in (
            "radius",
            "skin",
            "well_index",
            "well_index_derivative",
            "computed",
            "depth_offsets",
        ):
            size = getattr(self, field_name).size
            if size != count:
                raise ValidationError(
                    f"Well {self.name!r}: {field_name} has {size} entries, expected {count}."
                )
        if len(self.directions) != count:
            raise ValidationError(
                f"Well {self.name!r}: expected {count} directions, got {len(self.directions)}."
            )
        if np.any(self.well_index <= 0.0):
            raise ValidationError(
                f"Well {self.name!r} has non-positive well indices; every perforation "
                "needs a positive index to connect it to the reservoir."
            )

    @property
    def num_perforations(self) -> int:
        return int(self.cells.size)

    @property
    def is_rate_controlled(self) -> bool:
        return self.control is ControlMode.RATE

    @property
    def is_pressure_controlled(self) -> bool:
        return self.control is ControlMode.BHP

    @property
    def injected_water_fraction(self) -> float:
        """Water fraction of the fluid entering the reservoir through this well."""
        return self.composition[0]

    def with_target(self, target: float) -> "Well":
        """Copy of the well with a new control target."""
        return attrs.evolve(self, target=target)

    def with_permeability(
        self, grid: CartesianGrid, permeability: typing.Union[Permeability, np.ndarray]
    ) -> "Well":
        """
        Copy of the well with computed well indices refreshed for a new permeability field.

        Supplied well indices are kept as they are.
        """
        if not np.any(self.computed):
            return self
        mask = self.computed
        kh = None
        if self.permeability_thickness is not None:
            kh = self.permeability_thickness[mask]
        values, derivative = compute_well_index(
            grid=grid,
            permeability=permeability,
            radius=self.radius[mask],
            direction=[d for d, m in zip(self.directions, mask) if m],
            cells=self.cells[mask],
            discretization=self.discretization,
            skin=self.skin[mask],
            permeability_thickness=kh,
        )
        well_index = np.array(self.well_index)
        well_index_derivative = np.array(self.well_index_derivative)
        well_index[mask] = values
        well_index_derivative[mask] = derivative
        return attrs.evolve(
            self, well_index=well_index, well_index_derivative=well_index_derivative
        )


def _to_wells(value: typing.Any) -> typing.Tuple[Well, ...]:
    return tuple(value)


@typing.final
@attrs.frozen(slots=True)
class Wells:
    """
    Ordered collection of wells.

    Perforations of all wells are numbered consecutively in well order. The same
    numbering is used by the pressure system, the transport oracle and the objective.
    """

    wells: typing.Tuple[Well, ...] = attrs.field(factory=tuple, converter=_to_wells)
    """The wells, in the order their equations appear in the pressure system."""

    def __attrs_post_init__(self) -> None:
        names = [well.name for well in self.wells]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValidationError(f"Duplicate well names: {sorted(duplicates)}")

    def __iter__(self) -> typing.Iterator[Well]:
        return iter(self.wells)

    def __len__(self) -> int:
        return len(self.wells)

    def __getitem__(self, key: typing.Union[int, str], /) -> Well:
        """
        Get a well by position or by name.

        :param key: Position of the well or its name.
        :return: The well.
        """
        if isinstance(key, str):
            return self.get_by_name(key)
        return self.wells[key]

    def get_by_name(self, name: str) -> Well:
        """
        Get a well by its name.

        :param name: The name of the well.
        :raises KeyError: If no well is called `name`.
        """
        for well in self.wells:
            if well.name == name:
                return well
        raise KeyError(name)

    @property
    def names(self) -> typing.List[str]:
        return [well.name for well in self.wells]

    @property
    def num_perforations(self) -> int:
        return sum(well.num_perforations for well in self.wells)

    @property
    def perforation_cells(self) -> np.ndarray:
        """Perforated cell of every perforation."""
        if not self.wells:
            return np.zeros(0, dtype=np.int64)
        return np.concatenate([well.cells for well in self.wells])

    @property
    def perforation_owners(self) -> np.ndarray:
        """Position of the owning well of every perforation."""
        return np.repeat(
            np.arange(len(self.wells), dtype=np.int64),
            [well.num_perforations for well in self.wells],
        ).astype(np.int64)

    @property
    def well_indices(self) -> OneDimensionalArray:
        """Well index of every perforation."""
        if not self.wells:
            return np.zeros(0)
        return np.concatenate([well.well_index for well in self.wells])

    @property
    def injected_water_fractions(self) -> OneDimensionalArray:
        """Injected water fraction of every perforation."""
        return np.repeat(
            np.array([well.injected_water_fraction for well in self.wells], dtype=np.float64),
            [well.num_perforations for well in self.wells],
        )

    @property
    def targets(self) -> OneDimensionalArray:
        """Control target of every well."""
        return np.array([well.target for well in self.wells], dtype=np.float64)

    @property
    def has_pressure_control(self) -> bool:
        """Whether any well fixes the pressure level of the system."""
        return any(well.is_pressure_controlled for well in self.wells)

    def append(self, well: Well) -> "Wells":
        """New collection with `well` appended."""
        return Wells(wells=self.wells + (well,))

    def with_targets(self, targets: typing.Sequence[float]) -> "Wells":
        """New collection with the control target of every well replaced."""
        targets = np.asarray(targets, dtype=np.float64).ravel()
        if targets.size != len(self.wells):
            raise ValidationError(
                f"Expected {len(self.wells)} targets, got {targets.size}."
            )
        return Wells(
            wells=[well.with_target(t) for well, t in zip(self.wells, targets)]
        )

    def with_permeability(
        self, grid: CartesianGrid, permeability: typing.Union[Permeability, np.ndarray]
    ) -> "Wells":
        """New collection with computed well indices refreshed for `permeability`."""
        return Wells(wells=[w.with_permeability(grid, permeability) for w in self.wells])


def add_well(
    wells: typing.Optional[Wells],
    grid: CartesianGrid,
    rock: RockProperties,
    cells: typing.Sequence[int],
    *,
    control: typing.Union[str, ControlMode] = ControlMode.BHP,
    target: float = 0.0,
    radius: typing.Union[float, typing.Sequence[float]] = 0.1,
    direction: typing.Union[str, Orientation, typing.Sequence[typing.Union[str, Orientation]]] = "z",
    name: typing.Optional[str] = None,
    composition: typing.Sequence[float] = (1.0, 0.0),
    well_index: typing.Optional[typing.Union[float, typing.Sequence[float]]] = None,
    permeability_thickness: typing.Optional[typing.Union[float, typing.Sequence[float]]] = None,
    skin: typing.Union[float, typing.Sequence[float]] = 0.0,
    reference_depth: typing.Optional[float] = None,
    sign: typing.Optional[int] = None,
    discretization: typing.Optional[typing.Union[str, DiscretizationKind]] = None,
    config: typing.Optional[Config] = None,
    sensitivity_permeability: typing.Optional[typing.Union[Permeability, np.ndarray]] = None,
) -> Wells:
    """
    Insert a well into a well collection.

    Well indices are supplied per perforation or computed with the Peaceman
    model. Supplied entries that are positive are kept, negative entries are
    computed and zero entries are rejected.

    Example:
    ```python
    wells = add_well(None, grid, rock, [0], control="rate", target=1e-4, name="I1")
    wells = add_well(wells, grid, rock, [24], control="bhp", target=100 * c.BAR, name="P1")
    ```

    :param wells: Existing collection, or None to start a new one.
    :param grid: Grid the well is completed in.
    :param rock: Rock properties; the permeability is used for computed well indices.
    :param cells: Perforated cells.
    :param control: 'rate' or 'bhp'.
    :param target: Control target. Rates are positive into the reservoir (m³/s),
        pressures in Pa.
    :param radius: Well-bore radius, one value or one per perforation (m).
    :param direction: 'x', 'y', 'z', or one per perforation.
    :param name: Well name. Defaults to 'W<n>'.
    :param composition: Injected (water, oil) fractions.
    :param well_index: Supplied well indices. Negative entries are computed.
    :param permeability_thickness: Supplied Kh per perforation. Negative entries are computed.
    :param skin: Skin factor, one value or one per perforation.
    :param reference_depth: Depth the bottom-hole pressure refers to. Defaults to the
        shallowest depth of the grid.
    :param sign: +1 for injectors, -1 for producers.
    :param discretization: Pressure discretization the well index is derived for.
        Defaults to the discretization of `config`.
    :param config: Run configuration supplying the default discretization.
    :param sensitivity_permeability: Perturbed permeability field under which to also
        compute the well index for sensitivity studies.
    :return: A new collection holding the existing wells followed by the new one.
    :raises ValidationError: For inconsistent input.
    """
    wells = Wells() if wells is None else wells
    control = ControlMode.parse(control)
    if discretization is None:
        discretization = (config or Config()).discretization
    discretization = DiscretizationKind.parse(discretization)
    name = name if name is not None else f"W{len(wells) + 1}"
    _validate_sign(None, None, sign)

    cells = np.asarray(cells, dtype=np.int64).ravel()
    count = cells.size
    if count == 0:
        raise ValidationError(f"Well {name!r} needs at least one perforated cell.")
    if np.any(cells < 0) or np.any(cells >= grid.num_cells):
        raise ValidationError(
            f"Well {name!r}: perforated cells must lie in [0, {grid.num_cells})."
        )
    radius = per_perforation(radius, count, "radius")
    skin = per_perforation(skin, count, "skin")
    directions = per_perforation_directions(direction, count)
    well_index = per_perforation(
        -1.0 if well_index is None else well_index, count, "well index"
    )
    kh = None
    if permeability_thickness is not None:
        kh = per_perforation(permeability_thickness, count, "Kh")

    computed = well_index < 0.0
    if discretization not in TWO_POINT_DISCRETIZATIONS:
        if not np.any(computed):
            warnings.warn(
                f"Well {name!r}: supplied well indices are likely Peaceman indices for a "
                f"two-point scheme and may be inaccurate for {discretization.value!r}.",
                UserWarning,
                stacklevel=2,
            )
        elif not np.all(computed):
            warnings.warn(
                f"Well {name!r} combines supplied and computed well indices "
                f"for {discretization.value!r}; the supplied ones may be inconsistent.",
                UserWarning,
                stacklevel=2,
            )

    derivative = np.zeros(count)
    sensitivity = None
    if sensitivity_permeability is not None:
        sensitivity = np.array(well_index)
    if np.any(computed):
        arguments = dict(
            grid=grid,
            radius=radius[computed],
            direction=[d for d, m in zip(directions, computed) if m],
            cells=cells[computed],
            discretization=discretization,
            skin=skin[computed],
            permeability_thickness=None if kh is None else kh[computed],
        )
        well_index[computed], derivative[computed] = compute_well_index(
            permeability=rock.permeability, **arguments
        )
        if sensitivity is not None:
            sensitivity[computed] = compute_well_index_sensitivity(
                perturbed_permeability=sensitivity_permeability, **arguments
            )

    target = float(target)
    if control is ControlMode.RATE:
        if target == 0.0 and sign is None:
            raise ValidationError(
                f"Rate-controlled well {name!r} has a zero target; "
                "pass sign=1 (injector) or sign=-1 (producer)."
            )
        if target != 0.0:
            target_sign = 1 if target > 0.0 else -1
            if sign is not None and sign != target_sign:
                warnings.warn(
                    f"Well {name!r}: sign {sign} disagrees with the sign of its rate "
                    f"target; using {target_sign}.",
                    UserWarning,
                    stacklevel=2,
                )
            sign = target_sign

    if reference_depth is None:
        reference_depth = grid.minimum_depth
    depth_offsets = grid.depths(cells) - reference_depth

    well = Well(
        name=name,
        control=control,
        target=target,
        cells=cells,
        radius=radius,
        directions=directions,
        skin=skin,
        well_index=well_index,
        well_index_derivative=derivative,
        computed=computed,
        depth_offsets=depth_offsets,
        reference_depth=reference_depth,
        discretization=discretization,
        composition=composition,
        sign=sign,
        permeability_thickness=kh,
        well_index_sensitivity=sensitivity,
    )
    logger.debug(
        f"Added {control.value}-controlled well {name!r} with {count} perforations"
    )
    return wells.append(well)
