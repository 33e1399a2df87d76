from .backends import *
from .expr import Ref, Expr
from .cluster import Cluster, Future
from . import backends

__all__ = backends.__all__ + ['Ref', 'Expr', 'Cluster', 'Future']
