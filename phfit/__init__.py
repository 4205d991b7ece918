__version__ = "0.1.0"

from . import util
from . import numeric
from . import markov
