"""Unit conversion factors to strict SI, and numerical defaults."""

from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "ConstantsContext", "get_constant"]


@attrs.frozen(slots=True)
class Constant:
    """A value together with what it stands for and its unit."""

    value: typing.Any
    description: typing.Optional[str] = None
    unit: typing.Optional[str] = None

    def __str__(self) -> str:
        return f"{self.value}{self.unit or ''}"


# Every factor converts *to* SI, e.g. `5 * c.MILLIDARCY` is a permeability in m².
DEFAULT_CONSTANTS: typing.Dict[str, Constant] = {
    "DARCY": Constant(9.869232667160130e-13, "One darcy", "m²"),
    "MILLIDARCY": Constant(9.869232667160130e-16, "One millidarcy", "m²"),
    "CENTIPOISE": Constant(1e-3, "One centipoise", "Pa·s"),
    "BAR": Constant(1e5, "One bar", "Pa"),
    "PSI": Constant(6894.757293168361, "One psi", "Pa"),
    "DAY": Constant(86400.0, "One day", "s"),
    "YEAR": Constant(365.0 * 86400.0, "One 365-day year", "s"),
    "BARREL": Constant(0.1590, "One oil-field barrel, as priced in cash-flow objectives", "m³"),
    "TPFA_WELLBORE_CONSTANT": Constant(
        0.14, "Peaceman well-bore constant for two-point flux discretizations"
    ),
}


class Constants:
    """
    Mutable store of conversion factors.

    `constants.BAR` returns the bare value, `constants["BAR"]` the `Constant`
    with its unit. Assigning a plain value wraps it in a `Constant`.
    """

    __slots__ = ("_store",)

    def __init__(self) -> None:
        object.__setattr__(self, "_store", dict(DEFAULT_CONSTANTS))

    def __getattr__(self, name: str) -> typing.Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._store[name].value
        except KeyError:
            raise AttributeError(f"No constant named {name!r}") from None

    def __setattr__(self, name: str, value: typing.Any) -> None:
        self[name] = value

    def __getitem__(self, name: str) -> Constant:
        return self._store[name]

    def __setitem__(self, name: str, value: typing.Any) -> None:
        self._store[name] = value if isinstance(value, Constant) else Constant(value)

    def __contains__(self, name: str) -> bool:
        return name in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self._store)} constants)"

    def get_constant(
        self, name: str, default: typing.Optional[Constant] = None
    ) -> typing.Optional[Constant]:
        return self._store.get(name, default)

    def __call__(self) -> "ConstantsContext":
        """Context manager making this store the one behind `adjflow.c`."""
        return ConstantsContext(self)


_constants_context: ContextVar[Constants] = ContextVar(
    "constants_context", default=Constants()
)


class ConstantsContext:
    """Temporarily replaces the store behind `adjflow.c`."""

    def __init__(self, constants: Constants) -> None:
        self._constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _constants_context.set(self._constants)
        return self._constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _constants_context.reset(self._token)
            self._token = None


class _ConstantsProxy:
    """Looks names up in the store of the current context."""

    @property
    def _constants(self) -> Constants:
        return _constants_context.get()

    def __getattr__(self, name: str) -> typing.Any:
        return getattr(self._constants, name)

    def __getitem__(self, name: str) -> Constant:
        return self._constants[name]


c = _ConstantsProxy()
"""Conversion factors of the current context."""


def get_constant(name: str) -> typing.Optional[Constant]:
    """`Constant` named `name` in the current context, or None."""
    return c._constants.get_constant(name)
