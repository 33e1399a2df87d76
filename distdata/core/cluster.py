import itertools
import logging
import queue
import threading
import traceback

import cloudpickle

from .backends import ProcessBackend, WorkerException, cpu_count, get_debug

__all__ = ['Cluster', 'Future']

logger = logging.getLogger(__name__)

dumps = cloudpickle.dumps
loads = cloudpickle.loads

def _run(store, payload):
    """ Run one unit of work against store.

        Returns (True, serialized result) or (False, serialized
        (reason, traceback)).
    """
    try:
        func, args = loads(payload)
        return True, dumps(func(store, *args))
    except BaseException as e:
        tb = traceback.format_exc()
        # Some of the Exception types in extension types are probably
        # not picklable (thus can't be sent via a queue); ship the
        # string version instead.
        try:
            return False, dumps((e, tb))
        except Exception:
            return False, dumps((str(e), tb))

def _loadError(r):
    try:
        reason, tb = loads(r)
    except Exception as e:
        reason, tb = "exception could not be unpickled: %s" % e, ""
    return reason, tb

def _workerMain(rank, inbox, outbox):
    store = {}
    while True:
        capsule = inbox.get()
        if capsule is None:
            break
        taskid, payload = capsule
        ok, r = _run(store, payload)
        outbox.put((taskid, ok, r))

class Future(object):
    """ The pending result of a unit of work dispatched to a worker.

        Attributes
        ----------
        worker : int
            The id of the worker the unit of work was dispatched to.

    """
    def __init__(self, worker):
        self.worker = worker
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = []
        self._ok = None
        self._value = None

    def _resolve(self, ok, value):
        with self._lock:
            self._ok = ok
            self._value = value
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for fn in callbacks:
            self._invoke(fn)

    def _invoke(self, fn):
        # a failing callback must not take down the thread resolving futures.
        try:
            fn(self)
        except Exception:
            logger.exception("exception calling callback for future of worker %d", self.worker)

    def done(self):
        """ True if the unit of work has completed or failed. """
        return self._event.is_set()

    def add_done_callback(self, fn):
        """ Call fn(future) once the future is resolved.

            fn runs on the thread resolving the future, or immediately
            if the future is already resolved. An exception raised by fn
            is logged and otherwise ignored.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(fn)
                return
        self._invoke(fn)

    def wait(self):
        """ Wait for the unit of work to finish.
            The return value of the remote call is returned.
            If any exception occurred it is wrapped and raised.

            Raises
            ------
            WorkerException
                If the remote call raised, or the worker died.
        """
        self._event.wait()
        if not self._ok:
            raise WorkerException(self.worker, *self._value)
        return loads(self._value)

class Cluster(object):
    """
        A fixed pool of workers, each with its own store of named slots.

        Parameters
        ----------
        np   : int or None
            Number of workers. Default (None) is from OMP_NUM_THREADS or
            the number of available cores on the computer.

        backend : ProcessBackend or ThreadBackend
            ProcessBackend is preferred. ThreadBackend can be used in cases
            where process creation is not allowed.

        Attributes
        ----------
        np   : int
            Number of workers.

        ndispatched : int
            Number of units of work dispatched so far.

        Notes
        -----
        Units of work sent to the same worker run in the order they were
        dispatched. There is no ordering across workers.

        In debug mode (:py:func:`set_debug`) no workers are spawned, and
        every unit of work runs on the calling thread at dispatch time.

        Examples
        --------

        >>> with Cluster(np=2) as cluster:
        >>>     f = cluster.dispatch(1, lambda store: len(store))
        >>>     f.wait()
        0
    """
    def __init__(self, np=None, backend=ProcessBackend):
        self.backend = backend
        if np is None:
            self.np = cpu_count()
        else:
            self.np = np
        self.ndispatched = 0
        self._taskid = itertools.count()
        self._lock = threading.Lock()
        self._pending = {}
        self._dead = set()
        self._stores = None
        self._P = {}
        self._inboxes = {}
        self._outbox = None
        self._collector = None
        self._started = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.shutdown()

    def workers(self):
        """ The ids of the live workers, in ascending order. """
        return [rank for rank in range(1, self.np + 1) if rank not in self._dead]

    def start(self):
        if self._started:
            raise RuntimeError("cluster already started")
        self._started = True
        self._dead = set()

        if get_debug():
            logger.debug("debug mode: running %d workers inline", self.np)
            self._stores = dict((rank, {}) for rank in range(1, self.np + 1))
            return

        self._outbox = self.backend.QueueFactory()
        for rank in range(1, self.np + 1):
            inbox = self.backend.QueueFactory()
            self._inboxes[rank] = inbox
            self._P[rank] = self.backend.WorkerFactory(target=_workerMain,
                    args=(rank, inbox, self._outbox))

        # workers are started before the collector thread, so that
        # no thread is running when the worker processes fork.
        for p in self._P.values():
            p.start()
        logger.debug("started %d workers", self.np)

        self._collector = threading.Thread(target=self._collect)
        self._collector.daemon = True
        self._collector.start()

    def shutdown(self):
        """ Stop all workers once they have run the work already dispatched. """
        if not self._started:
            return
        self._started = False

        if self._stores is not None:
            self._stores = None
            return

        for rank, inbox in self._inboxes.items():
            if rank not in self._dead:
                inbox.put(None)
        for p in self._P.values():
            p.join()
        self._outbox.put(None)
        self._collector.join()

        with self._lock:
            pending, self._pending = self._pending, {}
        for worker, future in pending.values():
            future._resolve(False, (Exception("cluster shut down"), ""))

        self._P = {}
        self._inboxes = {}
        self._outbox = None
        self._collector = None
        logger.debug("all workers stopped")

    def dispatch(self, worker, func, *args):
        """ Run func(store, \\*args) on worker, without waiting.

            Parameters
            ----------
            worker : int
                id of the worker.
            func : callable
                the unit of work; receives the store of the worker, a dict
                mapping slot names to values, as the first argument.
            args : the remaining arguments of func; shipped as data.

            Returns
            -------
            future : Future
                resolves to the return value of func.

        """
        if not self._started:
            raise RuntimeError("cluster is not started")
        if worker not in range(1, self.np + 1):
            raise KeyError("no worker with id %r" % (worker,))

        payload = dumps((func, args))
        future = Future(worker)
        self.ndispatched = self.ndispatched + 1

        if self._stores is not None:
            self._deliver(future, *_run(self._stores[worker], payload))
            return future

        taskid = next(self._taskid)
        with self._lock:
            if worker in self._dead:
                future._resolve(False, (Exception("worker %d is dead" % worker), ""))
                return future
            self._pending[taskid] = (worker, future)
        logger.debug("dispatch %d to worker %d", taskid, worker)
        self._inboxes[worker].put((taskid, payload))
        return future

    def _collect(self):
        while True:
            try:
                capsule = self._outbox.get(timeout=0.5)
            except queue.Empty:
                self._checkWorkers()
                continue
            if capsule is None:
                return
            taskid, ok, r = capsule
            with self._lock:
                worker, future = self._pending.pop(taskid)
            self._deliver(future, ok, r)

    @staticmethod
    def _deliver(future, ok, r):
        # results are deserialized lazily by the waiter; errors now.
        if ok:
            future._resolve(True, r)
        else:
            future._resolve(False, _loadError(r))

    def _checkWorkers(self):
        # a worker that exited before receiving the stop sentinel has
        # been killed by the os; fail everything it still owed us.
        for rank, p in self._P.items():
            if rank in self._dead or p.is_alive() or not self._started:
                continue
            exitcode = getattr(p, 'exitcode', None)
            logger.error("worker %d died with exit code %s", rank, exitcode)
            e = Exception("worker %d died with exit code %s" % (rank, exitcode))
            with self._lock:
                self._dead.add(rank)
                lost = [taskid for taskid, (worker, future) in self._pending.items()
                        if worker == rank]
                lost = [self._pending.pop(taskid)[1] for taskid in lost]
            for future in lost:
                future._resolve(False, (e, ""))
