"""Two-phase (water/oil) fluid models: fractional flow and mobilities."""

import typing

import attrs
import numpy as np

from adjflow.constants import c
from adjflow.errors import ValidationError
from adjflow.types import FloatOrArray

__all__ = ["FluidModel", "CoreyFluid"]


@typing.runtime_checkable
class FluidModel(typing.Protocol):
    """
    Pointwise fluid functions of water saturation.

    `fractional_flow` must be monotone non-decreasing with `f(0) = 0` and `f(1) = 1`.
    """

    def fractional_flow(self, saturation: FloatOrArray) -> FloatOrArray: ...

    def fractional_flow_derivative(self, saturation: FloatOrArray) -> FloatOrArray: ...

    def fractional_flow_second_derivative(
        self, saturation: FloatOrArray
    ) -> FloatOrArray: ...

    def total_mobility(self, saturation: FloatOrArray) -> FloatOrArray: ...

    def total_mobility_derivative(self, saturation: FloatOrArray) -> FloatOrArray: ...


def _power_derivatives(
    x: np.ndarray, exponent: float
) -> typing.Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """x**n and its first two derivatives, with 0**0 = 1 and without 0 * inf."""
    value = np.power(x, exponent)
    first = exponent * np.power(x, exponent - 1.0) if exponent >= 1.0 else np.zeros_like(x)
    if exponent == 1.0:
        second = np.zeros_like(x)
    elif exponent >= 2.0:
        second = exponent * (exponent - 1.0) * np.power(x, exponent - 2.0)
    else:
        raise ValidationError("Corey exponents between 1 and 2 are not supported.")
    return value, first, second


@attrs.frozen(slots=True)
class CoreyFluid:
    """
    Incompressible water/oil pair with Corey relative permeabilities.

    Relative permeabilities are powers of the normalized saturation
    `se = (s - swr) / (1 - swr - sor)`:

        krw = se^nw,  kro = (1 - se)^no

    The fractional flow of water is `f = (krw/μw) / (krw/μw + kro/μo)`.
    """

    water_viscosity: float = attrs.field(
        default=1.0 * c.CENTIPOISE, validator=attrs.validators.gt(0)
    )
    """Water viscosity (Pa·s)."""
    oil_viscosity: float = attrs.field(
        default=5.0 * c.CENTIPOISE, validator=attrs.validators.gt(0)
    )
    """Oil viscosity (Pa·s)."""
    water_exponent: float = attrs.field(default=2.0)
    """Corey exponent of the water curve."""
    oil_exponent: float = attrs.field(default=2.0)
    """Corey exponent of the oil curve."""
    residual_water_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.ge(0)
    )
    """Residual (irreducible) water saturation."""
    residual_oil_saturation: float = attrs.field(
        default=0.0, validator=attrs.validators.ge(0)
    )
    """Residual oil saturation."""

    def __attrs_post_init__(self) -> None:
        for name in ("water_exponent", "oil_exponent"):
            exponent = getattr(self, name)
            if not (exponent == 1.0 or exponent >= 2.0):
                raise ValidationError(
                    f"{name} must be 1 or at least 2 to keep the second derivative finite, got {exponent}."
                )
        if self.residual_water_saturation + self.residual_oil_saturation >= 1.0:
            raise ValidationError("Residual saturations must sum to less than one.")

    def _normalized(
        self, saturation: FloatOrArray
    ) -> typing.Tuple[np.ndarray, np.ndarray]:
        span = 1.0 - self.residual_water_saturation - self.residual_oil_saturation
        se = (np.asarray(saturation, dtype=np.float64) - self.residual_water_saturation) / span
        # Curves are flat outside the mobile range
        dse = np.where((se >= 0.0) & (se <= 1.0), 1.0 / span, 0.0)
        return np.clip(se, 0.0, 1.0), dse

    def _phase_mobilities(self, saturation: FloatOrArray):
        se, dse = self._normalized(saturation)
        krw, dkrw, d2krw = _power_derivatives(se, self.water_exponent)
        kro, dkro, d2kro = _power_derivatives(1.0 - se, self.oil_exponent)
        mw, mo = self.water_viscosity, self.oil_viscosity
        water = (krw / mw, dkrw * dse / mw, d2krw * dse**2 / mw)
        # d/ds of (1 - se)^n carries a minus sign, the second derivative does not
        oil = (kro / mo, -dkro * dse / mo, d2kro * dse**2 / mo)
        return water, oil

    def total_mobility(self, saturation: FloatOrArray) -> np.ndarray:
        """λt = krw/μw + kro/μo (1/(Pa·s))."""
        (lw, _, _), (lo, _, _) = self._phase_mobilities(saturation)
        return lw + lo

    def total_mobility_derivative(self, saturation: FloatOrArray) -> np.ndarray:
        """dλt/ds."""
        (_, dlw, _), (_, dlo, _) = self._phase_mobilities(saturation)
        return dlw + dlo

    def fractional_flow(self, saturation: FloatOrArray) -> np.ndarray:
        """f_w(s) = λw / (λw + λo)."""
        (lw, _, _), (lo, _, _) = self._phase_mobilities(saturation)
        return lw / (lw + lo)

    def fractional_flow_derivative(self, saturation: FloatOrArray) -> np.ndarray:
        """df_w/ds = (λw'·λo - λw·λo') / (λw + λo)²."""
        (lw, dlw, _), (lo, dlo, _) = self._phase_mobilities(saturation)
        return (dlw * lo - lw * dlo) / (lw + lo) ** 2

    def fractional_flow_second_derivative(self, saturation: FloatOrArray) -> np.ndarray:
        """
        d²f_w/ds².

        With N = λw'·λo - λw·λo' and D = λw + λo,
        f'' = (λw''·λo - λw·λo'') / D² - 2·N·(λw' + λo') / D³.
        """
        (lw, dlw, d2lw), (lo, dlo, d2lo) = self._phase_mobilities(saturation)
        total = lw + lo
        numerator = dlw * lo - lw * dlo
        return (d2lw * lo - lw * d2lo) / total**2 - 2.0 * numerator * (
            dlw + dlo
        ) / total**3
