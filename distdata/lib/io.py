"""
    Store the distributed data in files and load it back.

    Every worker writes (and reads) its own part, in parallel; the files
    must be reachable from the workers, not necessarily from the coordinator.
"""
import os
import pickle

from ..core.expr import Expr, Ref
from ..distdata import Dinfo, compute_at, dmap

__all__ = ['default_files', 'dstore', 'dload', 'dunlink']

def default_files(name, workers):
    """ Make a good set of filenames for saving a dataset. """
    return ["%s-%d.slice" % (name, i) for i in range(1, len(workers) + 1)]

def _unpack(val, workers, files):
    if isinstance(val, Dinfo):
        val, workers = val.name, val.workers
    workers = list(workers)
    if files is None:
        files = default_files(val, workers)
    return val, workers, list(files)

def _dump(filename, value):
    with open(filename, 'wb') as f:
        pickle.dump(value, f, protocol=pickle.HIGHEST_PROTOCOL)

def _load(filename):
    with open(filename, 'rb') as f:
        return pickle.load(f)

def dstore(cluster, val, workers=None, files=None):
    """ Export the slot val on every worker to the corresponding file.

        Parameters
        ----------
        val : str or Dinfo
            the distributed data.
        workers : list of int
            taken from val if it is a Dinfo.
        files : list of str
            one file per worker; default from :py:func:`default_files`.

    """
    name, workers, files = _unpack(val, workers, files)
    dmap(cluster, files, lambda fn: Expr(_dump, fn, Ref(name)), workers)

def dload(cluster, val, workers=None, files=None):
    """ Import the slot val on every worker from the corresponding file.

        Returns
        -------
        dinfo : Dinfo
            the loaded data.
    """
    name, workers, files = _unpack(val, workers, files)
    if len(files) != len(workers):
        raise ValueError("%d files given for %d workers" % (len(files), len(workers)))
    futures = [compute_at(cluster, worker, name, Expr(_load, fn))
            for fn, worker in zip(files, workers)]
    for f in futures:
        f.wait()
    return Dinfo(name, workers)

def dunlink(cluster, val, workers=None, files=None):
    """ Remove the files created by :py:func:`dstore` with the same parameters. """
    name, workers, files = _unpack(val, workers, files)
    dmap(cluster, files, lambda fn: Expr(os.remove, fn), workers)
