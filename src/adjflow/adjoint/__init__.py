from .objectives import *  # noqa
from .solver import *  # noqa
from .gradients import *  # noqa
