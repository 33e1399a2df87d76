"""
    Statistics on distributed matrices.

    The parts of a dataset are 2-d numpy arrays of observations (rows) and
    features (columns), split along the rows. Buckets are 1-d integer arrays
    of the same length as the parts they describe, with values in
    [0, nbuckets); rows outside that range are ignored.

    Everything here is built on :py:func:`dmapreduce`, :py:func:`dtransform`
    and :py:func:`dexec`; only small summaries travel to the coordinator.
"""
import copy
import functools
import operator

import numpy

from ..distdata import dexec, dmapreduce, dtransform

__all__ = ['dcopy', 'dselect', 'dapply_cols', 'dapply_rows',
        'dstat', 'dstat_buckets', 'dcount', 'dcount_buckets',
        'dscale', 'dmedian', 'dmedian_buckets']

def _addtuples(a, b):
    return tuple(x + y for x, y in zip(a, b))

def dcopy(cluster, dinfo, target):
    """ Clone the data of dinfo into the slot target on the same workers. """
    return dtransform(cluster, dinfo, copy.deepcopy, target=target)

def _select(d, columns):
    return d[:, columns]

def dselect(cluster, dinfo, columns, target=None):
    """ Keep only the given columns, storing the result in target
        (default: in place of dinfo).
    """
    columns = list(columns)
    return dtransform(cluster, dinfo, functools.partial(_select, columns=columns), target=target)

def _apply_cols(d, fn, columns):
    for i, c in enumerate(columns):
        d[:, c] = fn(d[:, c], i)

def dapply_cols(cluster, dinfo, fn, columns):
    """ Replace, in place, every selected column c by fn(column, i),
        where i is the position of c in columns.
    """
    columns = list(columns)
    dexec(cluster, dinfo, functools.partial(_apply_cols, fn=fn, columns=columns))

def _apply_rows(d, fn):
    for r in range(d.shape[0]):
        d[r, :] = fn(d[r, :])

def dapply_rows(cluster, dinfo, fn):
    """ Replace, in place, every row by fn(row). """
    dexec(cluster, dinfo, functools.partial(_apply_rows, fn=fn))

def _moments(d, columns):
    x = numpy.asarray(d[:, columns], dtype='f8')
    return x.shape[0], x.sum(axis=0), (x ** 2).sum(axis=0)

def _finish(n, s, ss):
    n = numpy.asarray(n, dtype='f8')
    with numpy.errstate(invalid='ignore', divide='ignore'):
        means = s / n
        var = (ss - n * means ** 2) / (n - 1)
    return means, numpy.sqrt(numpy.maximum(var, 0))

def dstat(cluster, dinfo, columns):
    """ Means and (sample) standard deviations of the selected columns.

        Returns
        -------
        means, sds : array_like
            one entry per column.
    """
    columns = list(columns)
    n, s, ss = dmapreduce(cluster, dinfo,
            functools.partial(_moments, columns=columns), _addtuples)
    return _finish(n, s, ss)

def _valid(b, nbuckets):
    b = numpy.asarray(b)
    return (b >= 0) & (b < nbuckets)

def _bucket_moments(d, b, nbuckets, columns):
    mask = _valid(b, nbuckets)
    b = numpy.asarray(b)[mask].astype('intp')
    x = numpy.asarray(d[:, columns], dtype='f8')[mask]
    n = numpy.bincount(b, minlength=nbuckets)[:, None]
    s = numpy.zeros((nbuckets, len(columns)))
    ss = numpy.zeros((nbuckets, len(columns)))
    numpy.add.at(s, b, x)
    numpy.add.at(ss, b, x ** 2)
    return n, s, ss

def dstat_buckets(cluster, dinfo, nbuckets, buckets, columns):
    """ Per-bucket means and (sample) standard deviations.

        Parameters
        ----------
        buckets : Dinfo
            bucket of every row, held by the same workers as dinfo.

        Returns
        -------
        means, sds : array_like
            of shape (nbuckets, len(columns)). Empty buckets give nan.
    """
    columns = list(columns)
    n, s, ss = dmapreduce(cluster, [dinfo, buckets],
            functools.partial(_bucket_moments, nbuckets=nbuckets, columns=columns),
            _addtuples)
    return _finish(n, s, ss)

def _count(d, ncats):
    d = numpy.asarray(d).ravel()
    d = d[(d >= 0) & (d < ncats)].astype('intp')
    return numpy.bincount(d, minlength=ncats)

def dcount(cluster, ncats, dinfo):
    """ Count the integer values 0 .. ncats-1 in the distributed data. """
    return dmapreduce(cluster, dinfo, functools.partial(_count, ncats=ncats), operator.add)

def _count_buckets(d, b, ncats, nbuckets):
    d = numpy.asarray(d).ravel()
    b = numpy.asarray(b).ravel()
    mask = _valid(b, nbuckets) & (d >= 0) & (d < ncats)
    idx = b[mask].astype('intp') * ncats + d[mask].astype('intp')
    return numpy.bincount(idx, minlength=nbuckets * ncats).reshape(nbuckets, ncats)

def dcount_buckets(cluster, ncats, dinfo, nbuckets, buckets):
    """ Count the integer values 0 .. ncats-1 in every bucket.

        Returns
        -------
        counts : array_like
            of shape (nbuckets, ncats).
    """
    return dmapreduce(cluster, [dinfo, buckets],
            functools.partial(_count_buckets, ncats=ncats, nbuckets=nbuckets),
            operator.add)

def _scale(d, columns, means, sds):
    d[:, columns] = (d[:, columns] - means) / sds

def dscale(cluster, dinfo, columns):
    """ Scale the selected columns in place to zero mean and unit variance.

        Columns with zero variance are only centered. The data must be
        of a floating point type.
    """
    columns = list(columns)
    means, sds = dstat(cluster, dinfo, columns)
    sds = numpy.where(sds == 0, 1.0, sds)
    dexec(cluster, dinfo, functools.partial(_scale, columns=columns, means=means, sds=sds))

def _range(d, columns):
    x = d[:, columns]
    return x.min(axis=0), x.max(axis=0), x.shape[0]

def _minmax(a, b):
    return numpy.minimum(a[0], b[0]), numpy.maximum(a[1], b[1]), a[2] + b[2]

def _below(d, columns, mid):
    return (d[:, columns] < mid).sum(axis=0)

def dmedian(cluster, dinfo, columns, iters=20):
    """ Approximate medians of the selected columns.

        The value range of every column is bisected iters times; each step
        is one distributed count of the values below the midpoint.
    """
    columns = list(columns)
    lo, hi, n = dmapreduce(cluster, dinfo,
            functools.partial(_range, columns=columns), _minmax)
    lo = numpy.asarray(lo, dtype='f8')
    hi = numpy.asarray(hi, dtype='f8')
    for i in range(iters):
        mid = (lo + hi) / 2
        below = dmapreduce(cluster, dinfo,
                functools.partial(_below, columns=columns, mid=mid), operator.add)
        left = 2 * below < n
        lo = numpy.where(left, mid, lo)
        hi = numpy.where(left, hi, mid)
    return (lo + hi) / 2

def _bucket_range(d, b, nbuckets, columns):
    mask = _valid(b, nbuckets)
    b = numpy.asarray(b)[mask].astype('intp')
    x = numpy.asarray(d[:, columns], dtype='f8')[mask]
    lo = numpy.full((nbuckets, len(columns)), numpy.inf)
    hi = numpy.full((nbuckets, len(columns)), -numpy.inf)
    numpy.minimum.at(lo, b, x)
    numpy.maximum.at(hi, b, x)
    return lo, hi, numpy.bincount(b, minlength=nbuckets)[:, None]

def _bucket_below(d, b, nbuckets, columns, mid):
    mask = _valid(b, nbuckets)
    b = numpy.asarray(b)[mask].astype('intp')
    x = numpy.asarray(d[:, columns], dtype='f8')[mask]
    below = numpy.zeros((nbuckets, len(columns)), dtype='i8')
    numpy.add.at(below, b, x < mid[b])
    return below

def dmedian_buckets(cluster, dinfo, nbuckets, buckets, columns, iters=20):
    """ Approximate medians of the selected columns in every bucket.

        Returns
        -------
        medians : array_like
            of shape (nbuckets, len(columns)). Empty buckets give nan.
    """
    columns = list(columns)
    lo, hi, n = dmapreduce(cluster, [dinfo, buckets],
            functools.partial(_bucket_range, nbuckets=nbuckets, columns=columns),
            _minmax)
    empty = numpy.broadcast_to(n == 0, lo.shape)
    lo = numpy.where(empty, 0.0, lo)
    hi = numpy.where(empty, 0.0, hi)
    for i in range(iters):
        mid = (lo + hi) / 2
        below = dmapreduce(cluster, [dinfo, buckets],
                functools.partial(_bucket_below, nbuckets=nbuckets, columns=columns, mid=mid),
                operator.add)
        left = 2 * below < n
        lo = numpy.where(left, mid, lo)
        hi = numpy.where(left, hi, mid)
    return numpy.where(empty, numpy.nan, (lo + hi) / 2)
