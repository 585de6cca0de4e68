from .base import *  # noqa
from .pressure import *  # noqa
from .transport import *  # noqa
from .implicit import *  # noqa
