from .doublebits import *
from .doublebits import __all__
