from .io import *
from .tools import *
