"""
*ADJFLOW*

Implicit two-phase transport, discrete adjoint sensitivities and
Peaceman well indices for incompressible oil/water reservoir simulation.
"""

from ._precision import *  # noqa
from .constants import *  # noqa
from .types import *  # noqa
from .config import *  # noqa
from .grids import *  # noqa
from .models import *  # noqa
from .fluids import *  # noqa
from .wells import *  # noqa
from .states import *  # noqa
from .stores import *  # noqa
from .timing import *  # noqa
from .diffusivity import *  # noqa
from .simulate import *  # noqa
from .adjoint import *  # noqa
