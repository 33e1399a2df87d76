"""
    Explicit placement of data and computation on a pool of workers.

    .. contents:: Topics
        :local:

    Programming Model
    -----------------
    A :py:class:`Cluster` is a fixed pool of workers. Every worker owns a
    private store of named slots. Nothing is distributed implicitly: the caller
    decides which worker holds which value and where each computation runs.

    Values are shipped to a worker with :py:func:`save_at`; computations with
    :py:func:`compute_at` and :py:func:`get_from`. A computation is an
    :py:class:`Expr`, a deferred call whose arguments may refer to the
    slots of the worker it runs on with :py:class:`Ref`. Wherever a value
    reference is expected, a plain str is taken as the name of a slot.

    A dataset spread over several workers is described by a :py:class:`Dinfo`,
    the name of the slot and the ordered list of workers holding the parts.
    :py:func:`scatter_array` and :py:func:`gather_array` split a numpy array
    into such a dataset and paste it back. :py:func:`dmapreduce`,
    :py:func:`dtransform` and :py:func:`dexec` run functions on every part.

    All dispatches return immediately; results are collected by waiting on
    the returned :py:class:`Future`. Work sent to one worker runs in the
    order it was dispatched.

    Examples
    --------

    Sum of squares of a matrix split over two workers

    >>> with distdata.Cluster(np=2) as cluster:
    >>>     di = distdata.scatter_array(cluster, 'x', numpy.random.rand(1000, 3))
    >>>     s = distdata.dmapreduce(cluster, di, lambda x: (x ** 2).sum(), operator.add)
    >>>     distdata.unscatter(cluster, di)

    Scale the dataset in place and keep a copy

    >>> di = distdata.dtransform(cluster, di, lambda x: x * 2)
    >>> di2 = distdata.dtransform(cluster, di, lambda x: x.copy(), target='y')

    API References
    --------------

"""
__all__ = ['Dinfo', 'DistributionMismatch',
        'save_at', 'compute_at', 'get_from', 'get_val_from', 'remove_from',
        'partition', 'scatter_array', 'unscatter', 'gather_array',
        'dexec', 'dtransform', 'dmapreduce', 'dmap', 'dpmap',
        'tmp_name',
        ]

import itertools
import logging
import operator
import queue
from collections import deque, namedtuple

import numpy

from .core import expr as _expr
from .core.expr import Expr, Ref, quote

logger = logging.getLogger(__name__)

class DistributionMismatch(ValueError):
    """ Raised when datasets combined in one operation are not held by
        the same workers in the same order.
    """
    pass

class Dinfo(namedtuple('Dinfo', ['name', 'workers'])):
    """ A dataset distributed amongst workers.

        Attributes
        ----------
        name : str
            the slot name under which every worker holds its part.
        workers : tuple of int
            the workers holding the parts, in order. Part i of a scattered
            array lives on workers[i].

    """
    __slots__ = ()

    def __new__(cls, name, workers):
        return super(Dinfo, cls).__new__(cls, name, tuple(workers))

def save_at(cluster, worker, name, value):
    """ Save value to the slot name at worker.

        value is shipped as data; a Ref or Expr is stored as is.
        Use :py:func:`compute_at` to evaluate an expression on the worker.

        Returns
        -------
        future : Future
            resolves to None once the value is stored.

    """
    return cluster.dispatch(worker, _expr.assign, name, value)

def compute_at(cluster, worker, name, expr):
    """ Evaluate expr on worker and save the result to the slot name.

        Returns
        -------
        future : Future
            resolves to None once the value is stored.

    """
    return cluster.dispatch(worker, _expr.assign_evaluated, name, quote(expr))

def get_from(cluster, worker, expr):
    """ Evaluate expr on worker.

        expr may be a slot name, a Ref, or an Expr over the slots of the worker.

        Returns
        -------
        future : Future
            resolves to the value of expr.

    """
    return cluster.dispatch(worker, _expr.fetch, quote(expr))

def get_val_from(cluster, worker, expr):
    """ Shortcut for waiting on the future from :py:func:`get_from`. """
    return get_from(cluster, worker, expr).wait()

def remove_from(cluster, worker, name):
    """ Set the slot name on worker to None, freeing the data. """
    return save_at(cluster, worker, name, None)

def _unpack(val, workers):
    if isinstance(val, Dinfo):
        return val.name, val.workers
    return val, workers

def _names(val):
    if isinstance(val, Dinfo):
        return val.name
    if isinstance(val, Ref):
        return val.name
    return val

def tmp_name(val, prefix='', suffix='_tmp'):
    """ Decorate a slot name (or the name of a Dinfo) with prefix and suffix,
        to make a name for a related temporary value.
    """
    return prefix + _names(val) + suffix

def _waitall(futures):
    # dispatch everything first, then wait in order.
    return [f.wait() for f in list(futures)]

def _ordered(cluster, pairs, prefetch=None):
    """ Evaluate expressions on workers, yielding the results in order.

        pairs is a sequence of (worker, expr). At most prefetch + 1 results
        are dispatched but not yet awaited, so prefetch of them are in
        flight while the consumer holds the last one; None dispatches
        everything at once. A future is released as soon as its result
        is taken.
    """
    pairs = iter(pairs)
    window = deque()

    def refill(n):
        for worker, e in itertools.islice(pairs, n):
            window.append(get_from(cluster, worker, e))

    if prefetch is None:
        refill(None)
    else:
        refill(prefetch + 1)

    while window:
        r = window.popleft().wait()
        yield r
        if prefetch is not None:
            refill(1)

def partition(n, nworkers):
    """ The extents [start, stop) of nworkers contiguous parts of n items.

        The sizes differ by at most one.
    """
    return [(i * n // nworkers, (i + 1) * n // nworkers) for i in range(nworkers)]

def _axis(dim, ndim):
    if dim < -ndim or dim >= ndim:
        raise ValueError("axis %d is out of bounds for array of dimension %d" % (dim, ndim))
    return dim % ndim

def scatter_array(cluster, name, x, workers=None, dim=0):
    """ Distribute roughly equal parts of array x, split along axis dim,
        among workers into the slot name.

        Parameters
        ----------
        name : str
            slot name of the distributed data.
        x : array_like
            the array to scatter.
        workers : list of int
            the workers, in order. Default is all workers of the cluster.
        dim : int
            the axis x is split along.

        Returns
        -------
        dinfo : Dinfo
            the distributed data.

        Raises
        ------
        ValueError
            if there are no workers, or fewer items along dim than workers.

    """
    if workers is None:
        workers = cluster.workers()
    workers = list(workers)
    x = numpy.asarray(x)
    if len(workers) == 0:
        raise ValueError("cannot scatter to an empty list of workers")
    if x.ndim == 0:
        raise ValueError("cannot scatter a 0-d array")
    dim = _axis(dim, x.ndim)
    n = x.shape[dim]
    if n < len(workers):
        raise ValueError("cannot scatter %d items along axis %d among %d workers"
                % (n, dim, len(workers)))

    futures = []
    for worker, (start, stop) in zip(workers, partition(n, len(workers))):
        extent = [slice(None)] * x.ndim
        extent[dim] = slice(start, stop)
        futures.append(save_at(cluster, worker, name, x[tuple(extent)]))
    _waitall(futures)

    return Dinfo(name, workers)

def unscatter(cluster, val, workers=None):
    """ Remove the data in slot val (or described by a Dinfo) from workers. """
    name, workers = _unpack(val, workers)
    _waitall([remove_from(cluster, worker, name) for worker in workers])

def _shape(x):
    shape = getattr(x, 'shape', None)
    return [None if shape is None else tuple(shape)]

def _spec(x):
    return getattr(x, 'shape', None), getattr(x, 'dtype', None)

def gather_array(cluster, val, workers=None, dim=0, free=False):
    """ Collect the arrays distributed on workers in slot val into an array.

        The parts are pasted along axis dim, i.e. dim=0 is roughly
        equivalent to numpy.concatenate(parts, axis=0). The result is
        preallocated, which is cheaper than a :py:func:`dmapreduce` with
        concatenation as the fold.

        Parameters
        ----------
        val : str or Dinfo
            the distributed data.
        workers : list of int
            the workers, in order. Taken from val if it is a Dinfo.
        dim : int
            the axis to paste along.
        free : boolean
            if True, the data is :py:func:`unscatter` -ed after it is gathered.

        Raises
        ------
        TypeError
            if the data on a worker is not array shaped.
        ValueError
            if the shapes of the parts disagree on the axes other than dim.

    """
    name, workers = _unpack(val, workers)
    workers = list(workers)
    if len(workers) == 0:
        raise ValueError("cannot gather from an empty list of workers")

    shape0, dtype = get_val_from(cluster, workers[0], Expr(_spec, Ref(name)))
    shapes = dmapreduce(cluster, name, _shape, operator.add, workers)

    for worker, shape in zip(workers, shapes):
        if shape is None:
            raise TypeError("data '%s' on worker %d is not an array" % (name, worker))
    if shape0 is None or dtype is None:
        raise TypeError("data '%s' on worker %d is not an array" % (name, workers[0]))
    shape0 = tuple(shape0)
    if len(shape0) == 0:
        raise TypeError("data '%s' on worker %d is a 0-d array" % (name, workers[0]))
    dim = _axis(dim, len(shape0))

    def others(shape):
        return shape[:dim] + shape[dim + 1:]

    for worker, shape in zip(workers, shapes):
        if len(shape) != len(shape0) or others(shape) != others(shape0):
            raise ValueError("data '%s' on worker %d has shape %s, which does not match %s along axis %d"
                    % (name, worker, shape, shape0, dim))

    sizes = [shape[dim] for shape in shapes]
    ressize = list(shape0)
    ressize[dim] = sum(sizes)
    result = numpy.empty(ressize, dtype=dtype)

    off = 0
    parts = _ordered(cluster, [(worker, Ref(name)) for worker in workers], prefetch=0)
    for size, part in zip(sizes, parts):
        extent = [slice(None)] * len(ressize)
        extent[dim] = slice(off, off + size)
        result[tuple(extent)] = part
        off += size

    if free:
        unscatter(cluster, name, workers)
    return result

def _workerset(vals):
    # all Dinfo in vals must be held by the same workers, in the same order.
    workers = vals[0].workers
    for val in vals[1:]:
        if val.workers != workers:
            logger.error("workers in Dinfo objects do not match: %s != %s",
                    workers, val.workers)
            raise DistributionMismatch("data distribution mismatch: %s != %s"
                    % (workers, val.workers))
    return workers

def _bind(cluster, val, fn, workers):
    """ Apply fn to the data val: returns the slot name(s) of val, the
        expression to evaluate and the workers to evaluate it on.

        A list of value references (or of Dinfo held by the same workers)
        gives one argument to fn per element.
    """
    if isinstance(val, list) and len(val) > 0:
        dinfos = [v for v in val if isinstance(v, Dinfo)]
        if len(dinfos) == len(val):
            workers = _workerset(val)
            val = [v.name for v in val]
        elif len(dinfos) > 0:
            raise TypeError("cannot mix Dinfo and value references as arguments")
    name, workers = _unpack(val, workers)
    if workers is None:
        workers = cluster.workers()
    if isinstance(name, list):
        e = Expr(fn, *quote(name))
    else:
        e = Expr(fn, quote(name))
    return name, e, list(workers)

def dmapreduce(cluster, val, map, fold, workers=None, prefetch=None):
    """ A distributed work-alike of the standard map-reduce.

        Run map (a non-modifying transform) on the data described by val on
        every worker, and fold the results with fold (a 2-to-1 reduction),
        on the coordinator.

        fold is assumed to be associative, but not commutative (as in
        semigroups). The fold is a sequential left fold in the order of
        workers: fold(fold(m1, m2), m3), regardless of the order in which
        the workers finish.

        Parameters
        ----------
        val : value reference, list, Dinfo or list of Dinfo
            the data map is applied to. A list gives one argument to map
            per element (a "zip-map"); a list of Dinfo must all be held by
            the same workers in the same order.
        map : callable
            runs on the workers.
        fold : callable
            runs on the coordinator.
        workers : list of int
            the workers, in order. Taken from val if it is a Dinfo.
            Default is all workers of the cluster.
        prefetch : int or None
            the number of results kept in flight beyond the one being
            folded. None (default) dispatches to all workers at once;
            0 waits for each result before dispatching the next.

        Returns
        -------
        The reduced result, or None if there are no workers. (We don't
        have a monoid to conjure a zero element.)

        Raises
        ------
        DistributionMismatch
            before anything is dispatched, if the Dinfo in val disagree.
        WorkerException
            if map failed on any worker.

        Examples
        --------
        Mean of all distributed data

        >>> s, n = dmapreduce(cluster, di,
        >>>     lambda d: (d.sum(), d.size),
        >>>     lambda a, b: (a[0] + b[0], a[1] + b[1]))
        >>> print(s / n)

        Join two datasets on the same workers

        >>> dmapreduce(cluster, [di1, di2],
        >>>     lambda a, b: numpy.hstack([a, b]),
        >>>     lambda x, y: numpy.vstack([x, y]))

    """
    if prefetch is not None and prefetch < 0:
        raise ValueError("prefetch must be non-negative, got %d" % prefetch)

    if isinstance(val, list) and len(val) == 0:
        return None
    name, e, workers = _bind(cluster, val, map, workers)

    if len(workers) == 0:
        return None

    results = _ordered(cluster, [(worker, e) for worker in workers], prefetch)
    res = next(results)
    for r in results:
        res = fold(res, r)
    return res

def dexec(cluster, val, fn, workers=None):
    """ Execute fn on workers, taking the data val as the argument.

        Results are not collected. This is optimal for computations that
        modify the data in place, that are not easily expressible with
        :py:func:`dtransform`.

        val takes the same forms as in :py:func:`dmapreduce`; a list
        gives one argument to fn per element.
    """
    if isinstance(val, list) and len(val) == 0:
        return
    name, e, workers = _bind(cluster, val, fn, workers)
    _waitall([cluster.dispatch(worker, _expr.execute, e) for worker in workers])

def dtransform(cluster, val, fn, workers=None, target=None):
    """ Transform the distributed data val by fn, storing the result in
        the slot target (default: the slot of val).

        Returns
        -------
        dinfo : Dinfo
            the transformed data.

        Examples
        --------
        Multiply all saved data by 2

        >>> dtransform(cluster, 'mydata', lambda d: 2 * d)

        Generate new data from nothing

        >>> dtransform(cluster, None, lambda _: numpy.random.rand(5), target='noise')

    """
    name, e, workers = _bind(cluster, val, fn, workers)
    if target is None:
        target = _names(name)
        if not isinstance(target, str):
            raise ValueError("a target slot name is required to transform %r" % (name,))
    _waitall([compute_at(cluster, worker, target, e) for worker in workers])
    return Dinfo(target, workers)

def dmap(cluster, args, fn, workers):
    """ Evaluate fn(args[i]) on workers[i].

        fn runs on the coordinator and returns an expression (an Expr, a
        Ref or a slot name) to be evaluated on the worker.

        Returns
        -------
        results : list
            in the order of workers.

        Raises
        ------
        ValueError
            if args and workers differ in length. Nothing is dispatched,
            nor if fn raises on any argument.

    """
    args = list(args)
    workers = list(workers)
    if len(args) != len(workers):
        raise ValueError("%d arguments given for %d workers" % (len(args), len(workers)))
    exprs = [fn(arg) for arg in args]
    return _waitall([get_from(cluster, worker, e) for e, worker in zip(exprs, workers)])

def dpmap(cluster, fn, sequence, workers=None):
    """ Distributed pool map.

        Evaluate the expression fn(item) for every item of sequence, on
        whichever worker is free; each worker has one item at a time.
        Unlike :py:func:`dmap`, any worker may receive any item, so the
        expression shall only refer to data every worker holds.

        Returns
        -------
        results : list
            in the order of sequence.

        Examples
        --------
        >>> dpmap(cluster, lambda x: Expr(compute, Ref('data'), x), range(10))
    """
    if workers is None:
        workers = cluster.workers()
    idle = deque(workers)
    if len(idle) == 0:
        raise ValueError("cannot map over an empty list of workers")

    items = enumerate(sequence)
    done = queue.Queue()
    results = {}
    outstanding = 0

    def submit(worker):
        for i, item in itertools.islice(items, 1):
            f = get_from(cluster, worker, fn(item))
            f.add_done_callback(lambda f, i=i: done.put((i, f)))
            return True
        return False

    while idle and submit(idle[0]):
        idle.popleft()
        outstanding += 1

    while outstanding > 0:
        i, f = done.get()
        outstanding -= 1
        results[i] = f.wait()
        if submit(f.worker):
            outstanding += 1

    return [results[i] for i in range(len(results))]
