"""
Explicit placement of data and computation on a pool of workers.

There are no implicit distribution policies: the caller decides which worker
holds which part of a dataset, and where each computation runs.

Environment variable OMP_NUM_THREADS is used to determine the
default number of workers.

Two major components:

distdata.Cluster and the distributed primitives.

distdata.Cluster is a fixed pool of workers (processes, or threads with
distdata.ThreadBackend). Every worker keeps a private store of named
slots, and runs the work it receives in the order it was dispatched.

   with distdata.Cluster(np=4) as cluster:
       f = distdata.save_at(cluster, 1, 'x', numpy.arange(10))
       f.wait()
       distdata.get_val_from(cluster, 1, distdata.Expr(numpy.sum, distdata.Ref('x')))

The distributed primitives operate on datasets described by
distdata.Dinfo, the slot name and the ordered list of workers:

1 Placement and retrieval

   save_at, compute_at, get_from, get_val_from, remove_from

2 Scatter and gather of numpy arrays

   di = scatter_array(cluster, 'x', x)
   x = gather_array(cluster, di, free=True)

3 Map-reduce. map runs on the workers, fold is a left fold on the
  coordinator, in the order of the workers; fold need not be commutative.

   total = dmapreduce(cluster, di, numpy.sum, operator.add)

4 Transform, exec and foreach

   dtransform, dexec, dmap, dpmap

5 Persistence and statistics, built on the above

   dstore, dload, dunlink
   dstat, dscale, dmedian, dcount, ...

Debugging:
  It is difficult to debug parallel code. There is a debugging mode
  where everything is run from the coordinator, and can be debugged.

    distdata.set_debug(True)

  The mode is picked up when a Cluster starts.
"""

from .core import *
from .distdata import *
from .lib import *
