from __future__ import annotations

import gc
import unittest
import weakref
from unittest import TestCase

import numpy as np

from stridex.domain._errors import (
    AllocationError,
    DeviceMismatchError,
    DtypeMismatchError,
    ShapeMismatchError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from stridex.domain._scalar import ScalarKind
from stridex.infrastructure._context import InteropContext
from stridex.infrastructure.arrays._device_array import DeviceArray
from stridex.infrastructure.arrays._nested_array import NestedArray
from stridex.infrastructure.backends._host_backend import HostBackend
from stridex.infrastructure.dtypes._translator import numpy_dtype
from stridex.infrastructure.interop._exchange import export_to_tensor, import_tensor
from stridex.infrastructure.interop._frameworks import HostDeviceTensor

from .._fake_tensors import FakeCudaArray, FakeTorchTensor, ints

_KINDS = (
    ScalarKind.BOOL,
    ScalarKind.INT8,
    ScalarKind.UINT8,
    ScalarKind.INT16,
    ScalarKind.INT32,
    ScalarKind.INT64,
    ScalarKind.FLOAT16,
    ScalarKind.FLOAT32,
    ScalarKind.FLOAT64,
)

_SHAPES = {1: (7,), 2: (5, 3), 3: (2, 3, 4), 4: (2, 1, 3, 2)}


def _sample(shape, kind: ScalarKind) -> np.ndarray:
    x = ints(shape)
    if kind is ScalarKind.BOOL:
        return (x % 3 == 0)
    return x.astype(numpy_dtype(kind))


def _non_contiguous(x: np.ndarray) -> np.ndarray:
    if x.ndim == 1:
        return np.repeat(x, 2)[::2]
    return np.ascontiguousarray(x.T).T


class _HostContextCase(TestCase):
    def setUp(self) -> None:
        self.backend = HostBackend()
        self.ctx = InteropContext(self.backend)


class TestRoundTrips(_HostContextCase):
    def test_contiguous_round_trip_all_kinds_and_ranks(self):
        for depth, shape in _SHAPES.items():
            for kind in _KINDS:
                with self.subTest(depth=depth, kind=kind):
                    x = _sample(shape, kind)
                    arr = import_tensor(x, depth, kind, context=self.ctx)
                    self.assertEqual(arr.shape, tuple(reversed(shape)))
                    self.assertIs(arr.kind, kind)
                    out = export_to_tensor(arr, eval=True, context=self.ctx)
                    self.assertEqual(out.dtype, x.dtype)
                    np.testing.assert_array_equal(out, x)

    def test_non_contiguous_round_trip_all_kinds_and_ranks(self):
        for depth, shape in _SHAPES.items():
            for kind in _KINDS:
                with self.subTest(depth=depth, kind=kind):
                    x = _non_contiguous(_sample(shape, kind))
                    arr = import_tensor(x, depth, kind, context=self.ctx)
                    np.testing.assert_array_equal(arr.numpy(), x)
                    out = export_to_tensor(arr, context=self.ctx)
                    np.testing.assert_array_equal(out, x)

    def test_rank3_scenario(self):
        x = ints((2, 3, 4), np.int64)
        arr = import_tensor(x, 3, ScalarKind.INT64, context=self.ctx)
        self.assertIsInstance(arr, NestedArray)
        self.assertEqual(arr.shape, (4, 3, 2))
        for i in range(2):
            for j in range(3):
                for k in range(4):
                    self.assertEqual(arr[k][j][i], x[i, j, k])

    def test_vector_batch(self):
        x = np.random.rand(1000, 3).astype(np.float32)
        v = import_tensor(x, 2, ScalarKind.FLOAT32, context=self.ctx)
        self.assertEqual(v.shape, (3, 1000))
        np.testing.assert_array_equal(v.y.numpy(), x[:, 1])

    def test_empty_tensor(self):
        x = np.zeros((0, 3), dtype=np.float32)
        arr = import_tensor(x, 2, ScalarKind.FLOAT32, context=self.ctx)
        self.assertEqual(arr.shape, (3, 0))
        out = export_to_tensor(arr, context=self.ctx)
        self.assertEqual(out.shape, (0, 3))

    def test_export_is_idempotent(self):
        x = ints((3, 2, 2), np.int32)
        arr = import_tensor(x, 3, ScalarKind.INT32, context=self.ctx)
        a = export_to_tensor(arr, context=self.ctx)
        b = export_to_tensor(arr, context=self.ctx)
        self.assertIsNot(a, b)
        np.testing.assert_array_equal(a, b)

    def test_import_does_not_alias_source(self):
        x = ints((4, 2), np.float64)
        arr = import_tensor(x, 2, ScalarKind.FLOAT64, context=self.ctx)
        self.backend.synchronize()
        x[:] = -1
        np.testing.assert_array_equal(arr.numpy(), ints((4, 2), np.float64))


class TestBulkOperationBound(_HostContextCase):
    def _ops(self, fn):
        before = self.backend.stats.bulk_ops
        fn()
        return self.backend.stats.bulk_ops - before

    def test_import_issues_one_op_per_leaf(self):
        x = ints((2, 3, 4), np.float32)
        self.assertEqual(
            self._ops(lambda: import_tensor(x, 3, ScalarKind.FLOAT32, context=self.ctx)), 12
        )
        y = ints((1000, 3), np.float32)
        self.assertEqual(
            self._ops(lambda: import_tensor(y, 2, ScalarKind.FLOAT32, context=self.ctx)), 3
        )

    def test_export_issues_one_op_per_leaf(self):
        arr = NestedArray.zero(ScalarKind.FLOAT64, (4, 3, 2), self.backend)
        self.assertEqual(self._ops(lambda: export_to_tensor(arr, context=self.ctx)), 12)
        d = DeviceArray.zero(ScalarKind.FLOAT64, 10_000, self.backend)
        self.assertEqual(self._ops(lambda: export_to_tensor(d, context=self.ctx)), 1)


class TestExportDestinations(_HostContextCase):
    def test_export_into_transposed_destination(self):
        x = ints((3, 4), np.int32)
        arr = import_tensor(x, 2, ScalarKind.INT32, context=self.ctx)
        out = np.zeros((4, 3), dtype=np.int32).T
        result = export_to_tensor(arr, out=out, context=self.ctx)
        self.assertIs(result, out)
        np.testing.assert_array_equal(out, x)

    def test_export_into_gapped_destination(self):
        x = ints((3, 2), np.float32)
        arr = import_tensor(x, 2, ScalarKind.FLOAT32, context=self.ctx)
        storage = np.full((6, 5), 7.0, dtype=np.float32)
        out = storage[::2, 1:5:3]
        export_to_tensor(arr, out=out, context=self.ctx)
        np.testing.assert_array_equal(out, x)
        mask = np.ones_like(storage, dtype=bool)
        mask[::2, 1:5:3] = False
        self.assertTrue((storage[mask] == 7.0).all())

    def test_export_into_interleaved_destination(self):
        # rows 3 elements apart, columns 2 apart: the two axes interleave
        x = ints((2, 2), np.int32)
        arr = import_tensor(x, 2, ScalarKind.INT32, context=self.ctx)
        storage = np.full(8, -1, dtype=np.int32)
        out = np.lib.stride_tricks.as_strided(storage, shape=(2, 2), strides=(12, 8))
        export_to_tensor(arr, out=out, context=self.ctx)
        np.testing.assert_array_equal(out, x)
        np.testing.assert_array_equal(storage[[1, 4, 6, 7]], [-1, -1, -1, -1])

    def test_deferred_export_reads_stale_until_synchronized(self):
        x = ints((4, 2), np.int64)
        arr = import_tensor(x, 2, ScalarKind.INT64, context=self.ctx)
        out = np.full((4, 2), -5, dtype=np.int64)
        export_to_tensor(arr, eval=False, out=out, context=self.ctx)
        self.assertTrue((out == -5).all())
        self.ctx.synchronize()
        np.testing.assert_array_equal(out, x)

    def test_export_to_fake_torch_destination(self):
        arr = import_tensor(ints((2, 2), np.float16), 2, ScalarKind.FLOAT16, context=self.ctx)
        storage = np.zeros((2, 2), dtype=np.float16)
        export_to_tensor(arr, out=FakeTorchTensor(storage), context=self.ctx)
        np.testing.assert_array_equal(storage, ints((2, 2), np.float16))


class TestForeignSurfaces(TestCase):
    def test_fake_torch_tensor_on_cpu(self):
        backend = HostBackend()
        x = ints((3, 2), np.int16)
        arr = import_tensor(FakeTorchTensor(x), 2, ScalarKind.INT16,
                            context=InteropContext(backend))
        np.testing.assert_array_equal(arr.numpy(), x)

    def test_accelerator_tensors_on_matching_device(self):
        # host memory presented as cuda:0 to a backend serving cuda:0
        backend = HostBackend(device="cuda:0")
        ctx = InteropContext(backend)
        x = ints((5, 2), np.float32)
        for obj in (FakeTorchTensor(x, device="cuda:0"), FakeCudaArray(x)):
            with self.subTest(surface=type(obj).__name__):
                arr = import_tensor(obj, 2, ScalarKind.FLOAT32, context=ctx)
                np.testing.assert_array_equal(arr.numpy(), x)

    def test_fresh_export_on_emulated_accelerator(self):
        ctx = InteropContext(HostBackend(device="cuda:0"))
        x = ints((3, 4), np.float32)
        arr = import_tensor(FakeCudaArray(x), 2, ScalarKind.FLOAT32, context=ctx)
        out = export_to_tensor(arr, context=ctx)
        self.assertIsInstance(out, HostDeviceTensor)
        self.assertEqual(str(out.device), "cuda:0")
        self.assertEqual(out.__cuda_array_interface__["shape"], (3, 4))
        np.testing.assert_array_equal(np.asarray(out), x)

        # the fresh tensor is itself a valid import source
        again = import_tensor(out, 2, ScalarKind.FLOAT32, context=ctx)
        np.testing.assert_array_equal(again.numpy(), x)

    def test_source_kept_alive_until_synchronized(self):
        backend = HostBackend()
        ctx = InteropContext(backend)
        t = FakeTorchTensor(ints((4, 3), np.float64))
        ref = weakref.ref(t)
        arr = import_tensor(t, 2, ScalarKind.FLOAT64, context=ctx)
        del t
        gc.collect()
        self.assertIsNotNone(ref())

        np.testing.assert_array_equal(arr.numpy(), ints((4, 3), np.float64))
        gc.collect()
        self.assertIsNone(ref())


class TestFailuresTouchNothing(_HostContextCase):
    def _assert_untouched(self):
        self.assertEqual(self.backend.stats.allocations, 0)
        self.assertEqual(self.backend.stats.bulk_ops, 0)
        self.assertEqual(self.backend.pending, 0)

    def test_import_rejections(self):
        cases = [
            (ShapeMismatchError, ints((2, 2), np.float32), 3, ScalarKind.FLOAT32),
            (DtypeMismatchError, ints((4,), np.float64), 1, ScalarKind.FLOAT32),
            (TypeMismatchError, [1.0, 2.0], 1, ScalarKind.FLOAT32),
            (UnsupportedTypeError, np.zeros(3, dtype=np.uint32), 1, ScalarKind.UINT32),
            (ShapeMismatchError, ints((6,), np.int8)[::-2], 1, ScalarKind.INT8),
            (DeviceMismatchError,
             FakeTorchTensor(ints((3,), np.float32), device="cuda:0"), 1, ScalarKind.FLOAT32),
        ]
        for err, obj, depth, kind in cases:
            with self.subTest(err=err.__name__):
                with self.assertRaises(err):
                    import_tensor(obj, depth, kind, context=self.ctx)
                self._assert_untouched()

    def test_export_rejections(self):
        arr = NestedArray.zero(ScalarKind.INT32, (2, 3), self.backend)
        self.backend.synchronize()
        self.backend.stats.reset()

        readonly = np.zeros((3, 2), dtype=np.int32)
        readonly.setflags(write=False)
        overlapping = np.lib.stride_tricks.as_strided(
            np.zeros(8, dtype=np.int32), shape=(3, 2), strides=(4, 4)
        )
        cases = [
            (ShapeMismatchError, np.zeros((2, 3), dtype=np.int32)),
            (DtypeMismatchError, np.zeros((3, 2), dtype=np.int64)),
            (ShapeMismatchError, np.zeros((3, 2, 1), dtype=np.int32)),
            (TypeMismatchError, readonly),
            (ShapeMismatchError, overlapping),
            (TypeMismatchError, "not a tensor"),
        ]
        for err, out in cases:
            with self.subTest(err=err.__name__):
                with self.assertRaises(err):
                    export_to_tensor(arr, out=out, context=self.ctx)
                self._assert_untouched()

    def test_export_rejects_non_arrays_and_foreign_contexts(self):
        with self.assertRaises(TypeMismatchError):
            export_to_tensor(np.zeros(3), context=self.ctx)
        other = DeviceArray.zero(ScalarKind.FLOAT32, 3, HostBackend())
        with self.assertRaises(TypeMismatchError):
            export_to_tensor(other, context=self.ctx)

    def test_allocation_failure_leaves_nothing_allocated(self):
        backend = HostBackend(capacity_bytes=100)
        ctx = InteropContext(backend)
        x = ints((50, 4), np.float32)
        with self.assertRaises(AllocationError):
            import_tensor(x, 2, ScalarKind.FLOAT32, context=ctx)
        self.assertEqual(backend.stats.live_allocations, 0)
        self.assertEqual(backend.stats.bulk_ops, 0)


if __name__ == "__main__":
    unittest.main()
