from .base import *  # noqa
from .core import *  # noqa
