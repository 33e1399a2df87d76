"""
    Expressions shipped to the workers.

    A worker owns a plain dict, its store, holding the named slots.
    Remote computations refer to slots with :py:class:`Ref` and defer
    calls with :py:class:`Expr`; both are resolved by :py:func:`evaluate`
    on the worker, against that worker's store.

    >>> Expr(numpy.sum, Ref('x'), axis=0)      # numpy.sum(x, axis=0) on the worker
    >>> (Ref('a'), Ref('b'))                   # the tuple (a, b) on the worker

"""
__all__ = ['Ref', 'Expr', 'evaluate', 'quote']

class Ref(object):
    """ Reference to the slot `name` in the store of a worker. """
    __slots__ = ('name',)

    def __init__(self, name):
        self.name = name

    def __repr__(self):
        return 'Ref(%r)' % self.name

    def __eq__(self, other):
        return isinstance(other, Ref) and other.name == self.name

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((Ref, self.name))

class Expr(object):
    """ A deferred call fn(*args, **kwargs), evaluated on a worker.

        The arguments are evaluated first, so they may contain
        Ref, Expr, or tuples and lists of those.
    """
    __slots__ = ('fn', 'args', 'kwargs')

    def __init__(self, fn, *args, **kwargs):
        self.fn = fn
        self.args = args
        self.kwargs = kwargs

    def __repr__(self):
        args = [repr(a) for a in self.args]
        args += ['%s=%r' % kv for kv in self.kwargs.items()]
        return 'Expr(%s)' % ', '.join([getattr(self.fn, '__name__', repr(self.fn))] + args)

def quote(val):
    """ Convert a value reference given by the caller to an expression.

        A str names a slot; Ref and Expr are kept; lists and tuples are
        converted element-wise into a tuple; anything else is a constant.
    """
    if isinstance(val, str):
        return Ref(val)
    if isinstance(val, (Ref, Expr)):
        return val
    if isinstance(val, (list, tuple)):
        return tuple(quote(v) for v in val)
    return val

def evaluate(expr, store):
    if isinstance(expr, Ref):
        try:
            return store[expr.name]
        except KeyError:
            raise NameError("name '%s' is not defined on this worker" % expr.name)
    if isinstance(expr, Expr):
        args = [evaluate(a, store) for a in expr.args]
        kwargs = dict((k, evaluate(v, store)) for k, v in expr.kwargs.items())
        return expr.fn(*args, **kwargs)
    if isinstance(expr, tuple):
        return tuple(evaluate(e, store) for e in expr)
    if isinstance(expr, list):
        return [evaluate(e, store) for e in expr]
    return expr

# units of work; each is called as func(store, *args) on the worker.

def assign(store, name, value):
    store[name] = value

def assign_evaluated(store, name, expr):
    store[name] = evaluate(expr, store)

def fetch(store, expr):
    return evaluate(expr, store)

def execute(store, expr):
    evaluate(expr, store)
