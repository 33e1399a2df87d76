import os
import multiprocessing
import threading
import queue
import warnings

__distdatadebug__ = False

__all__ = ['set_debug', 'get_debug', 'cpu_count',
        'ThreadBackend', 'ProcessBackend',
        'WorkerException', 'LostExceptionType']

def set_debug(flag):
    """ Set the debug mode.

        In debug mode (flag==True), a Cluster started afterwards spawns no
        workers. Every unit of work runs on the caller's thread, against a
        store kept in the coordinator, so that exceptions can be inspected
        by a debugger, e.g. pdb.

        Parameters
        ----------
        flag : boolean
            True for debug mode, False for production mode.

    """
    global __distdatadebug__
    __distdatadebug__ = flag

def get_debug():
    """ Get the debug mode.

        Returns
        -------
        The debug mode. True if currently in debugging mode.

    """
    global __distdatadebug__
    return __distdatadebug__

def cpu_count():
    """ Returns the default number of workers to be spawned.

        The default value is the number of cpu cores seen by python.
        :code:`OMP_NUM_THREADS` environment variable overrides it.

        On PBS/torque systems if OMP_NUM_THREADS is empty, we try to
        use the value of :code:`PBS_NUM_PPN` variable.

    """
    num = os.getenv("OMP_NUM_THREADS")
    if num is None:
        num = os.getenv("PBS_NUM_PPN")
    try:
        return int(num)
    except (TypeError, ValueError):
        return multiprocessing.cpu_count()

class LostExceptionType(Warning):
    """ Warning issued when a unpicklable exception occurs on a worker.
    """
    pass

class WorkerException(Exception):
    """ Represents an exception that has occured on a worker.

        Attributes
        ----------
        worker : int
            The id of the worker where the unit of work failed.

        reason : Exception, or subclass of Exception.
            The underlining reason of the exception.
            If the original exception can be pickled, the type of the exception
            is preserved. Otherwise, a LostExceptionType warning is issued, and
            reason is of type Exception.

        traceback : str
            The string version of the remote traceback that can be used to
            inspect the error.

    """
    def __init__(self, worker, reason, traceback=""):
        if not isinstance(reason, BaseException):
            warnings.warn("Type information of Unpicklable exception %s is lost" % reason, LostExceptionType)
            reason = Exception(reason)
        self.worker = worker
        self.reason = reason
        self.traceback = traceback
        Exception.__init__(self, "worker %d: %s\n%s" % (worker, str(reason), str(traceback)))

    def __reduce__(self):
        return WorkerException, (self.worker, self.reason, self.traceback)

class ThreadBackend:
      QueueFactory = staticmethod(queue.Queue)

      @staticmethod
      def WorkerFactory(*args, **kwargs):
        worker = threading.Thread(*args, **kwargs)
        worker.daemon = True
        return worker

class ProcessBackend:
      QueueFactory = staticmethod(multiprocessing.Queue)

      @staticmethod
      def WorkerFactory(*args, **kwargs):
        worker = multiprocessing.Process(*args, **kwargs)
        worker.daemon = True
        return worker
