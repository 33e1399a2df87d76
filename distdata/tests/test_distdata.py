import operator
import time

import numpy
from numpy.testing import (assert_equal, assert_array_equal,
    assert_almost_equal, assert_array_almost_equal)

from distdata import (Cluster, ThreadBackend, WorkerException,
    Dinfo, DistributionMismatch, Expr, Ref,
    save_at, compute_at, get_from, get_val_from, remove_from,
    partition, scatter_array, unscatter, gather_array,
    dexec, dtransform, dmapreduce, dmap, dpmap, tmp_name)

def test_dinfo():
    di = Dinfo('test', [1, 2, 3])
    assert di.name == 'test'
    assert di.workers == (1, 2, 3)
    assert di == Dinfo('test', (1, 2, 3))
    assert di != Dinfo('test', (2, 1, 3))
    assert hash(di) == hash(Dinfo('test', [1, 2, 3]))

def test_transfers():
    with Cluster(np=2) as cluster:
        data = numpy.random.uniform(size=5)
        save_at(cluster, 1, 'test', data).wait()

        assert_array_equal(get_from(cluster, 1, 'test').wait(), data)
        assert_array_equal(get_val_from(cluster, 1, 'test'), data)
        assert_array_equal(get_val_from(cluster, 1, Ref('test')), data)
        assert_almost_equal(get_val_from(cluster, 1, Expr(numpy.sum, Ref('test'))), data.sum())

        remove_from(cluster, 1, 'test').wait()
        assert get_val_from(cluster, 1, 'test') is None

def test_undefined_name():
    with Cluster(np=2) as cluster:
        save_at(cluster, 1, 'test', 123).wait()
        try:
            get_val_from(cluster, 2, 'test')
        except WorkerException as e:
            assert e.worker == 2
            assert isinstance(e.reason, NameError)
            return
    raise AssertionError("Shall not reach here")

def test_fire_and_forget():
    with Cluster(np=1) as cluster:
        # dispatches to one worker run in order; no need to wait for the save.
        save_at(cluster, 1, 'x', 1)
        compute_at(cluster, 1, 'x', Expr(operator.add, Ref('x'), 1))
        compute_at(cluster, 1, 'x', Expr(operator.mul, Ref('x'), 10))
        assert get_val_from(cluster, 1, 'x') == 20

def test_save_is_data():
    with Cluster(np=1) as cluster:
        save_at(cluster, 1, 'x', Ref('y')).wait()
        assert get_val_from(cluster, 1, 'x') == Ref('y')
        save_at(cluster, 1, 'y', 'why').wait()
        compute_at(cluster, 1, 'x', Ref('y')).wait()
        assert get_val_from(cluster, 1, 'x') == 'why'
        compute_at(cluster, 1, 'z', ('x', 'y')).wait()
        assert get_val_from(cluster, 1, 'z') == ('why', 'why')

def test_partition():
    for n in [3, 10, 11, 1000]:
        for w in [1, 2, 3]:
            p = partition(n, w)
            sizes = [stop - start for start, stop in p]
            assert sum(sizes) == n
            assert max(sizes) - min(sizes) <= 1
            assert p[0][0] == 0
            assert p[-1][1] == n
            for (a, b), (c, d) in zip(p[:-1], p[1:]):
                assert b == c
    assert partition(10, 3) == [(0, 3), (3, 6), (6, 10)]

def test_scatter():
    with Cluster(np=3) as cluster:
        W = cluster.workers()
        d = numpy.random.uniform(size=(100, 5))
        di = scatter_array(cluster, 'test', d, W)

        assert di.name == 'test'
        assert di.workers == tuple(W)
        for w, (start, stop) in zip(W, partition(100, 3)):
            assert_array_equal(get_val_from(cluster, w, 'test'), d[start:stop])

        assert_array_equal(gather_array(cluster, di), d)
        assert all(get_val_from(cluster, w, 'test') is not None for w in W)
        unscatter(cluster, di)
        assert all(get_val_from(cluster, w, 'test') is None for w in W)

def test_roundtrip():
    with Cluster(np=3) as cluster:
        shapes = [(10,), (7, 4), (5, 6, 3)]
        for shape in shapes:
            a = numpy.arange(numpy.prod(shape)).reshape(shape)
            for dim in range(-1, len(shape)):
                if a.shape[dim] < 3:
                    continue
                di = scatter_array(cluster, 'a', a, dim=dim)
                b = gather_array(cluster, di, dim=dim)
                assert_equal(b.dtype, a.dtype)
                assert_array_equal(b, a)

def test_roundtrip_subset():
    with Cluster(np=3) as cluster:
        a = numpy.random.uniform(size=(11, 2))
        di = scatter_array(cluster, 'a', a, [3, 1])
        assert_array_equal(get_val_from(cluster, 3, 'a'), a[:5])
        assert_array_equal(gather_array(cluster, 'a', [3, 1]), a)
        # the order of the workers is the order of the parts
        assert_array_equal(gather_array(cluster, 'a', [1, 3]), numpy.concatenate([a[5:], a[:5]]))

def test_roundtrip_threads():
    with Cluster(np=2, backend=ThreadBackend) as cluster:
        a = numpy.random.uniform(size=(9, 3))
        di = scatter_array(cluster, 'a', a, dim=1)
        assert_array_equal(gather_array(cluster, di, dim=1), a)

def test_scatter_too_small():
    with Cluster(np=3) as cluster:
        n = cluster.ndispatched
        try:
            scatter_array(cluster, 'a', numpy.arange(2))
        except ValueError:
            assert cluster.ndispatched == n
            return
    raise AssertionError("Shall not reach here")

def test_scatter_bad_axis():
    with Cluster(np=2) as cluster:
        try:
            scatter_array(cluster, 'a', numpy.zeros((4, 4)), dim=2)
        except ValueError:
            return
    raise AssertionError("Shall not reach here")

def test_gather_free():
    with Cluster(np=2) as cluster:
        a = numpy.arange(10.)
        di = scatter_array(cluster, 'a', a)
        assert_array_equal(gather_array(cluster, di, free=True), a)
        assert all(get_val_from(cluster, w, 'a') is None for w in di.workers)

def test_gather_not_array():
    with Cluster(np=2) as cluster:
        for w in cluster.workers():
            save_at(cluster, w, 'a', [1, 2, 3]).wait()
        try:
            gather_array(cluster, 'a', cluster.workers())
        except TypeError:
            return
    raise AssertionError("Shall not reach here")

def test_gather_mismatch():
    with Cluster(np=2) as cluster:
        save_at(cluster, 1, 'a', numpy.zeros((2, 3)))
        save_at(cluster, 2, 'a', numpy.zeros((2, 4)))
        # fine along the axis where they differ
        assert_equal(gather_array(cluster, 'a', [1, 2], dim=1).shape, (2, 7))
        try:
            gather_array(cluster, 'a', [1, 2], dim=0)
        except ValueError:
            return
    raise AssertionError("Shall not reach here")

def test_dmapreduce():
    with Cluster(np=3) as cluster:
        W = cluster.workers()
        di = dtransform(cluster, None, lambda _: numpy.random.uniform(size=5), W, 'test')
        orig = gather_array(cluster, di)
        assert_array_equal(get_val_from(cluster, W[0], 'test'), orig[:5])

        assert_almost_equal(
            dmapreduce(cluster, 'test', lambda d: (d ** 2).sum(), operator.add, W),
            (orig ** 2).sum())

        dtransform(cluster, di, lambda d: d * 2)
        assert_array_equal(gather_array(cluster, 'test', W), orig * 2)

        assert_almost_equal(
            dmapreduce(cluster, di, lambda d: (d ** 2).sum(), operator.add),
            ((orig * 2) ** 2).sum())

        for prefetch in [0, 1, 2, 10]:
            assert_almost_equal(
                dmapreduce(cluster, di, lambda d: (d ** 2).sum(), operator.add, prefetch=prefetch),
                ((orig * 2) ** 2).sum())

def test_fold_order():
    with Cluster(np=3) as cluster:
        # the first worker finishes last
        di = scatter_array(cluster, 'delay', numpy.array([0.6, 0.3, 0.0]))
        def work(d):
            time.sleep(d[0])
            return [float(d[0])]
        for prefetch in [None, 0, 1]:
            r = dmapreduce(cluster, di, work, operator.add, prefetch=prefetch)
            assert_equal(r, [0.6, 0.3, 0.0])

        r = dmapreduce(cluster, di, lambda d: float(d[0]), lambda a, b: (a, b))
        assert_equal(r, ((0.6, 0.3), 0.0))

def test_prefetch_window():
    with Cluster(np=4) as cluster:
        di = scatter_array(cluster, 'a', numpy.arange(8.))
        # results dispatched but not yet consumed, seen from inside fold
        for prefetch, expected in [(0, [0, 0, 0]), (1, [1, 1, 0]),
                (2, [2, 1, 0]), (None, [2, 1, 0])]:
            inflight = []
            n = cluster.ndispatched
            def fold(a, b):
                inflight.append(cluster.ndispatched - n - len(a) - 1)
                return a + b
            r = dmapreduce(cluster, di, lambda d: [d.sum()], fold, prefetch=prefetch)
            assert_equal(r, [1., 5., 9., 13.])
            assert_equal(inflight, expected)

def test_dmapreduce_empty():
    with Cluster(np=2) as cluster:
        called = []
        n = cluster.ndispatched
        assert dmapreduce(cluster, 'noname', lambda x: called.append(x), operator.add, []) is None
        assert dmapreduce(cluster, Dinfo('noname', []), lambda x: x, operator.add) is None
        assert dmapreduce(cluster, [], lambda x: x, operator.add) is None
        assert cluster.ndispatched == n
        assert called == []

def test_dmapreduce_single():
    with Cluster(np=2) as cluster:
        save_at(cluster, 2, 'a', 5).wait()
        assert dmapreduce(cluster, 'a', lambda a: a + 1, None, [2]) == 6

def test_dmapreduce_raise():
    with Cluster(np=3) as cluster:
        di = scatter_array(cluster, 'a', numpy.arange(3))
        def work(d):
            if d[0] == 1:
                raise ZeroDivisionError("from the middle")
            return d[0]
        try:
            dmapreduce(cluster, di, work, operator.add)
        except WorkerException as e:
            assert e.worker == 2
            assert isinstance(e.reason, ZeroDivisionError)
            return
    raise AssertionError("Shall not reach here")

def test_dmapreduce_bad_prefetch():
    with Cluster(np=1) as cluster:
        try:
            dmapreduce(cluster, 'a', len, operator.add, prefetch=-1)
        except ValueError:
            return
    raise AssertionError("Shall not reach here")

def test_zipmap():
    with Cluster(np=2) as cluster:
        a = numpy.arange(10.)
        b = numpy.arange(10.) * 10
        dia = scatter_array(cluster, 'a', a)
        dib = scatter_array(cluster, 'b', b)

        assert_almost_equal(
            dmapreduce(cluster, ['a', 'b'], lambda a, b: (a * b).sum(), operator.add, cluster.workers()),
            (a * b).sum())

        r = dmapreduce(cluster, [dia, dib],
                lambda a, b: numpy.stack([a, b], axis=1),
                lambda x, y: numpy.concatenate([x, y]))
        assert_array_equal(r, numpy.stack([a, b], axis=1))

        # a quoted tuple is one argument
        r = dmapreduce(cluster, ('a', 'b'), lambda t: len(t), operator.add)
        assert_equal(r, 4)

def test_distribution_mismatch():
    with Cluster(np=2) as cluster:
        a = scatter_array(cluster, 'a', numpy.arange(10), [1, 2])
        b = scatter_array(cluster, 'b', numpy.arange(10), [2, 1])
        n = cluster.ndispatched
        try:
            dmapreduce(cluster, [a, b], lambda a, b: 0, operator.add)
        except DistributionMismatch:
            assert cluster.ndispatched == n
            return
    raise AssertionError("Shall not reach here")

def test_dtransform():
    with Cluster(np=2) as cluster:
        a = numpy.random.uniform(size=(10, 2))
        di = scatter_array(cluster, 'a', a)

        assert dtransform(cluster, di, lambda d: d) == di
        assert_array_equal(gather_array(cluster, di), a)

        di2 = dtransform(cluster, di, lambda d: d + 1, target='b')
        assert di2 == Dinfo('b', di.workers)
        assert_array_equal(gather_array(cluster, di), a)
        assert_array_equal(gather_array(cluster, di2), a + 1)

def test_dtransform_needs_target():
    with Cluster(np=1) as cluster:
        try:
            dtransform(cluster, None, lambda _: 0)
        except ValueError:
            return
    raise AssertionError("Shall not reach here")

def test_dexec():
    with Cluster(np=2) as cluster:
        a = numpy.arange(10.)
        di = scatter_array(cluster, 'a', a)
        assert dexec(cluster, di, lambda d: numpy.multiply(d, 3, out=d)) is None
        assert_array_equal(gather_array(cluster, di), a * 3)

def test_dexec_zipmap():
    with Cluster(np=2) as cluster:
        a = numpy.arange(10.)
        dia = scatter_array(cluster, 'a', a)
        dib = scatter_array(cluster, 'b', a * 10)
        dexec(cluster, [dia, dib], lambda a, b: numpy.add(a, b, out=a))
        assert_array_equal(gather_array(cluster, dia), a * 11)
        dexec(cluster, ['a', 'b'], lambda a, b: numpy.subtract(a, b, out=a), cluster.workers())
        assert_array_equal(gather_array(cluster, dia), a)

        dic = scatter_array(cluster, 'c', a, [2, 1])
        n = cluster.ndispatched
        try:
            dexec(cluster, [dia, dic], lambda a, c: None)
        except DistributionMismatch:
            assert cluster.ndispatched == n
            return
    raise AssertionError("Shall not reach here")

def test_dmap():
    with Cluster(np=2) as cluster:
        W = cluster.workers()
        di = dtransform(cluster, None, lambda _: numpy.random.uniform(size=5), W, 'test')
        t = [2., 0.]
        expected = [(2 * get_val_from(cluster, W[0], 'test')).sum(), 0.]
        r = dmap(cluster, t, lambda i: Expr(lambda d, i: (i * d).sum(), Ref(di.name), i), W)
        assert_array_almost_equal(r, expected)

def test_dmap_count():
    with Cluster(np=2) as cluster:
        n = cluster.ndispatched
        try:
            dmap(cluster, [1, 2, 3], lambda i: i, cluster.workers())
        except ValueError:
            assert cluster.ndispatched == n
            return
    raise AssertionError("Shall not reach here")

def test_dmap_fn_raise():
    with Cluster(np=2) as cluster:
        n = cluster.ndispatched
        def fn(i):
            if i == 2:
                raise KeyError(i)
            return i
        try:
            dmap(cluster, [1, 2], fn, cluster.workers())
        except KeyError:
            assert cluster.ndispatched == n
            return
    raise AssertionError("Shall not reach here")

def test_dpmap():
    with Cluster(np=3) as cluster:
        for w in cluster.workers():
            save_at(cluster, w, 'base', 100)
        def work(base, x):
            time.sleep(0.05 * numpy.random.uniform())
            return base + x
        r = dpmap(cluster, lambda x: Expr(work, Ref('base'), x), range(20))
        assert_equal(r, list(range(100, 120)))
        assert_equal(dpmap(cluster, lambda x: x, []), [])

def test_tmp_name():
    assert tmp_name('test') != 'test'
    assert tmp_name('test', prefix='abc', suffix='def') == 'abctestdef'
    assert tmp_name(Dinfo('test', [1])) == 'test_tmp'

def test_sum_of_squares():
    with Cluster(np=2) as cluster:
        a = numpy.arange(3000, dtype='f8').reshape(1000, 3) / 3000.
        di = scatter_array(cluster, 'a', a)
        r = dmapreduce(cluster, di, lambda d: (d ** 2).sum(), operator.add)
        assert abs(r - (a ** 2).sum()) < 1e-8
        unscatter(cluster, di)
