import gc
import unittest
from unittest import TestCase

import numpy as np

from stridex.domain._errors import AllocationError, ShapeMismatchError
from stridex.domain.device._device import Device
from stridex.domain.device._device_protocol import DeviceBackendLike
from stridex.infrastructure.backends._host_backend import HostBackend


def _upload(backend, values: np.ndarray):
    buf = backend.allocate(values.nbytes)
    backend.upload(buf, values)
    return buf


def _download(backend, buf, dtype, n):
    out = np.empty(n, dtype=dtype)
    backend.download(out, buf)
    return out


class TestHostBackendBasics(TestCase):
    def test_satisfies_backend_protocol(self):
        b = HostBackend()
        self.assertIsInstance(b, DeviceBackendLike)
        self.assertEqual(b.device, Device("cpu"))
        self.assertEqual(b.framework, "numpy")

    def test_negative_capacity_rejected(self):
        with self.assertRaises(ValueError):
            HostBackend(capacity_bytes=-1)

    def test_upload_download_roundtrip(self):
        b = HostBackend()
        values = np.arange(10, dtype=np.float32)
        buf = _upload(b, values)
        self.assertEqual(b.pending, 1)
        np.testing.assert_array_equal(_download(b, buf, np.float32, 10), values)
        self.assertEqual(b.pending, 0)
        buf.decref()

    def test_upload_snapshots_host_data(self):
        b = HostBackend()
        values = np.arange(4, dtype=np.int32)
        buf = _upload(b, values)
        values[:] = -1
        np.testing.assert_array_equal(
            _download(b, buf, np.int32, 4), np.arange(4, dtype=np.int32)
        )
        buf.decref()

    def test_transfer_size_mismatch(self):
        b = HostBackend()
        buf = b.allocate(8)
        with self.assertRaises(ValueError):
            b.upload(buf, np.zeros(3, dtype=np.float32))
        with self.assertRaises(ValueError):
            b.download(np.zeros(3, dtype=np.float32), buf)
        buf.decref()

    def test_free_unknown_pointer(self):
        b = HostBackend()
        with self.assertRaises(RuntimeError):
            b.free(0xDEAD)
        b.free(0)


class TestHostBackendCapacity(TestCase):
    def test_allocation_beyond_capacity_raises(self):
        b = HostBackend(capacity_bytes=64)
        a = b.allocate(48)
        with self.assertRaises(AllocationError) as cm:
            b.allocate(32)
        self.assertEqual(cm.exception.nbytes, 32)
        self.assertEqual(b.stats.live_allocations, 1)
        self.assertEqual(b.bytes_in_use, 48)

        a.decref()
        c = b.allocate(64)
        self.assertEqual(b.bytes_in_use, 64)
        c.decref()
        self.assertEqual(b.bytes_in_use, 0)


class TestHostBackendStridedOps(TestCase):
    def setUp(self) -> None:
        self.b = HostBackend()

    def test_gather_reads_strided_run(self):
        src = _upload(self.b, np.arange(20, dtype=np.int64))
        dst = self.b.allocate(4 * 8)
        self.b.gather_strided(dst, src, offset=3, stride=5, count=4, itemsize=8)
        np.testing.assert_array_equal(
            _download(self.b, dst, np.int64, 4), np.array([3, 8, 13, 18])
        )
        self.assertEqual(self.b.stats.bulk_ops, 1)
        src.decref()
        dst.decref()

    def test_scatter_writes_strided_run(self):
        dst = _upload(self.b, np.zeros(10, dtype=np.int16))
        src = _upload(self.b, np.array([7, 8, 9], dtype=np.int16))
        self.b.scatter_strided(dst, src, offset=1, stride=4, count=3, itemsize=2)
        np.testing.assert_array_equal(
            _download(self.b, dst, np.int16, 10),
            np.array([0, 7, 0, 0, 0, 8, 0, 0, 0, 9], dtype=np.int16),
        )
        src.decref()
        dst.decref()

    def test_operations_are_deferred_until_synchronize(self):
        host = np.zeros(6, dtype=np.float32)
        target = self.b.map_external(host.ctypes.data, host.nbytes, owner=host)
        src = _upload(self.b, np.ones(3, dtype=np.float32))
        self.b.scatter_strided(target, src, offset=0, stride=2, count=3, itemsize=4)

        np.testing.assert_array_equal(host, np.zeros(6, dtype=np.float32))
        self.assertEqual(self.b.pending, 2)

        self.b.synchronize()
        np.testing.assert_array_equal(host, np.array([1, 0, 1, 0, 1, 0], dtype=np.float32))
        self.assertEqual(self.b.pending, 0)
        self.assertEqual(self.b.stats.synchronizations, 1)
        target.decref()
        src.decref()

    def test_run_out_of_bounds_is_rejected(self):
        src = self.b.allocate(10 * 4)
        dst = self.b.allocate(4 * 4)
        with self.assertRaises(ShapeMismatchError):
            self.b.gather_strided(dst, src, offset=2, stride=3, count=4, itemsize=4)
        with self.assertRaises(ShapeMismatchError):
            self.b.gather_strided(dst, src, offset=0, stride=0, count=4, itemsize=4)
        self.assertEqual(self.b.pending, 0)
        self.assertEqual(self.b.stats.bulk_ops, 0)
        src.decref()
        dst.decref()

    def test_empty_run_counts_but_enqueues_nothing(self):
        src = self.b.allocate(0)
        dst = self.b.allocate(0)
        self.b.gather_strided(dst, src, offset=0, stride=1, count=0, itemsize=4)
        self.assertEqual(self.b.stats.bulk_ops, 1)
        self.assertEqual(self.b.pending, 0)
        src.decref()
        dst.decref()

    def test_released_buffer_is_rejected(self):
        src = self.b.allocate(16)
        dst = self.b.allocate(16)
        src.decref()
        with self.assertRaises(RuntimeError):
            self.b.gather_strided(dst, src, offset=0, stride=1, count=4, itemsize=4)
        dst.decref()

    def test_pending_op_keeps_buffers_alive(self):
        src = _upload(self.b, np.arange(4, dtype=np.int32))
        dst = self.b.allocate(16)
        self.b.gather_strided(dst, src, offset=0, stride=1, count=4, itemsize=4)

        # the caller drops its reference before the op runs
        src.decref()
        gc.collect()
        self.assertTrue(src.alive)

        np.testing.assert_array_equal(
            _download(self.b, dst, np.int32, 4), np.arange(4, dtype=np.int32)
        )
        self.assertFalse(src.alive)
        dst.decref()
        self.assertEqual(self.b.stats.live_allocations, 0)


if __name__ == "__main__":
    unittest.main()
