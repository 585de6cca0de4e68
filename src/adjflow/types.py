import enum
import typing

import numpy as np
import numpy.typing  # noqa: F401
from typing_extensions import TypeAlias

from adjflow.errors import ValidationError


__all__ = [
    "OneDimensionalArray",
    "TwoDimensionalArray",
    "FloatOrArray",
    "Orientation",
    "ControlMode",
    "DiscretizationKind",
    "PermeabilityKind",
    "Solver",
    "Preconditioner",
    "TWO_POINT_DISCRETIZATIONS",
]

T = typing.TypeVar("T")

OneDimensionalArray: TypeAlias = np.ndarray
"""1D array of floats, typically one value per cell, face or perforation"""
TwoDimensionalArray: TypeAlias = np.ndarray
"""2D array of floats, e.g. per-cell permeability columns"""
FloatOrArray = typing.Union[float, np.typing.NDArray[np.floating]]


class Orientation(str, enum.Enum):
    """Direction along which a well perforation is drilled."""

    X = "x"
    Y = "y"
    Z = "z"

    @property
    def axis(self) -> int:
        """Index of the axis (0, 1, 2) the orientation runs along."""
        return "xyz".index(self.value)

    @classmethod
    def parse(cls, value: typing.Union[str, "Orientation"]) -> "Orientation":
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            raise ValidationError(
                f"Unknown well direction {value!r}. Use one of 'x', 'y', 'z'."
            ) from None


class ControlMode(str, enum.Enum):
    """How a well is driven. Exactly one mode applies per well."""

    RATE = "rate"
    """Total surface-equivalent rate target (m³/s, positive into the reservoir)."""
    BHP = "bhp"
    """Bottom-hole pressure target (Pa)."""

    @classmethod
    def parse(cls, value: typing.Union[str, "ControlMode"]) -> "ControlMode":
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            raise ValidationError(
                f"Unknown well control {value!r}. Use 'rate' or 'bhp'."
            ) from None


class DiscretizationKind(str, enum.Enum):
    """
    Family of pressure discretization a well index is derived for.

    Two-point schemes use the classical Peaceman constant, mimetic and mixed
    (Raviart-Thomas) schemes look it up from the aspect-ratio table.
    """

    TPFA = "tpfa"
    QUASI_TPFA = "quasi_tpfa"
    MIMETIC = "mimetic"
    RAVIART_THOMAS = "raviart_thomas"

    @classmethod
    def parse(
        cls, value: typing.Union[str, "DiscretizationKind"]
    ) -> "DiscretizationKind":
        try:
            return cls(str(getattr(value, "value", value)).lower())
        except ValueError:
            raise ValidationError(
                f"Unknown discretization {value!r}. "
                f"Use one of {', '.join(repr(k.value) for k in cls)}."
            ) from None


TWO_POINT_DISCRETIZATIONS = frozenset(
    {DiscretizationKind.TPFA, DiscretizationKind.QUASI_TPFA}
)


class PermeabilityKind(enum.Enum):
    """Representation of per-cell permeability, resolved from the column count once."""

    ISOTROPIC = 1
    DIAGONAL = 3
    TENSOR = 6


Solver = typing.Union[
    typing.Literal["direct", "bicgstab", "gmres", "lgmres", "tfqmr"],
    typing.Callable[..., typing.Tuple[np.ndarray, int]],
]
"""Linear solver name or callable following the `scipy.sparse.linalg` signature"""

Preconditioner = typing.Optional[typing.Literal["ilu", "amg", "diagonal"]]
"""Preconditioner applied to iterative linear solves"""
