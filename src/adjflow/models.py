"""Rock properties of a reservoir model."""

import logging
import typing

import attrs
import numpy as np

from adjflow._precision import get_dtype
from adjflow.errors import ValidationError
from adjflow.types import OneDimensionalArray, PermeabilityKind, TwoDimensionalArray

logger = logging.getLogger(__name__)

__all__ = ["Permeability", "RockProperties"]

# Columns of the principal diagonal (kxx, kyy, kzz) for each representation.
_DIAGONAL_COLUMNS = {
    PermeabilityKind.ISOTROPIC: (0, 0, 0),
    PermeabilityKind.DIAGONAL: (0, 1, 2),
    PermeabilityKind.TENSOR: (0, 3, 5),
}


@attrs.frozen(slots=True, eq=False)
class Permeability:
    """
    Per-cell absolute permeability (m²).

    Accepts one column (isotropic), three columns (diagonal kxx, kyy, kzz) or six
    columns (full symmetric tensor kxx, kxy, kxz, kyy, kyz, kzz). The representation
    is resolved once into `kind` and never re-inferred from the array shape.
    """

    values: TwoDimensionalArray
    """Permeability values, shape (num_cells, 1 | 3 | 6)."""
    kind: PermeabilityKind = attrs.field(init=False)
    """The resolved representation."""

    def __attrs_post_init__(self) -> None:
        values = np.array(self.values, dtype=get_dtype(), copy=True)
        if values.ndim == 1:
            values = values[:, None]
        if values.ndim != 2:
            raise ValidationError(
                f"Permeability must be a 1D or 2D array, got {values.ndim} dimensions."
            )
        try:
            kind = PermeabilityKind(values.shape[1])
        except ValueError:
            raise ValidationError(
                f"Permeability must have 1, 3 or 6 columns, got {values.shape[1]}."
            ) from None
        if not np.all(np.isfinite(values)):
            raise ValidationError("Permeability contains non-finite values.")
        if np.any(values[:, list(set(_DIAGONAL_COLUMNS[kind]))] <= 0.0):
            raise ValidationError("Principal permeabilities must be positive.")
        values.setflags(write=False)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "kind", kind)

    @property
    def num_cells(self) -> int:
        return int(self.values.shape[0])

    @property
    def is_isotropic(self) -> bool:
        return self.kind is PermeabilityKind.ISOTROPIC

    def diagonal(
        self, cells: typing.Optional[typing.Sequence[int]] = None
    ) -> TwoDimensionalArray:
        """
        Principal permeabilities (kxx, kyy, kzz).

        :param cells: Restrict to these cells. All cells by default.
        :return: Array of shape (n, 3).
        """
        values = self.values if cells is None else self.values[np.asarray(cells)]
        return values[:, list(_DIAGONAL_COLUMNS[self.kind])]

    def scalar(self) -> OneDimensionalArray:
        """The single permeability of each cell. Only defined for isotropic fields."""
        if not self.is_isotropic:
            raise ValidationError(
                f"Expected an isotropic permeability field, got {self.kind.name.lower()}."
            )
        return self.values[:, 0]

    def with_values(self, values: typing.Any) -> "Permeability":
        """New permeability of the same kind with `values` replaced."""
        new = Permeability(values)
        if new.kind is not self.kind:
            raise ValidationError(
                f"Replacement permeability is {new.kind.name.lower()}, "
                f"expected {self.kind.name.lower()}."
            )
        return new


def _to_permeability(value: typing.Any) -> Permeability:
    if isinstance(value, Permeability):
        return value
    return Permeability(value)


@attrs.frozen(slots=True, eq=False)
class RockProperties:
    """
    Rock properties of a reservoir model.

    These properties remain constant over a run.
    """

    porosity: OneDimensionalArray = attrs.field(
        converter=lambda value: np.asarray(value, dtype=get_dtype()).ravel()
    )
    """Porosity of each cell (fraction)."""
    permeability: Permeability = attrs.field(converter=_to_permeability)
    """Absolute permeability (m²)."""

    def __attrs_post_init__(self) -> None:
        if self.porosity.shape[0] != self.permeability.num_cells:
            raise ValidationError(
                f"Porosity has {self.porosity.shape[0]} values but permeability "
                f"has {self.permeability.num_cells}."
            )
        if np.any(self.porosity <= 0.0) or np.any(self.porosity > 1.0):
            raise ValidationError("Porosity must lie in (0, 1].")

    @property
    def num_cells(self) -> int:
        return int(self.porosity.shape[0])

    def pore_volumes(self, volumes: OneDimensionalArray) -> OneDimensionalArray:
        """Pore volume of each cell given the bulk cell volumes."""
        if volumes.shape[0] != self.num_cells:
            raise ValidationError(
                f"Grid has {volumes.shape[0]} cells but rock has {self.num_cells}."
            )
        return volumes * self.porosity

    def with_permeability(self, values: typing.Any) -> "RockProperties":
        """Copy of the rock with the permeability values replaced (same representation)."""
        return attrs.evolve(self, permeability=self.permeability.with_values(values))
