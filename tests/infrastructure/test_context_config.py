import unittest
from unittest import TestCase

import numpy as np

from stridex.domain._scalar import ScalarKind
from stridex.infrastructure._context import (
    InteropConfig,
    InteropContext,
    get_default_context,
    resolve_backend,
    set_default_context,
    synchronize,
)
from stridex.infrastructure.arrays._device_array import DeviceArray
from stridex.infrastructure.backends._host_backend import HostBackend
from stridex.infrastructure.interop._exchange import export_to_tensor, import_tensor


class TestInteropConfig(TestCase):
    def test_defaults(self):
        cfg = InteropConfig.from_env({})
        self.assertEqual(cfg.backend, "host")
        self.assertIsNone(cfg.device)
        self.assertIsNone(cfg.host_capacity)
        self.assertIsNone(cfg.cudart_path)
        self.assertIsNone(cfg.log_level)

    def test_from_env(self):
        cfg = InteropConfig.from_env(
            {
                "STRIDEX_BACKEND": " CUDA ",
                "STRIDEX_DEVICE": "cuda:1",
                "STRIDEX_HOST_CAPACITY": "4096",
                "STRIDEX_CUDART": "/opt/cuda/lib64/libcudart.so",
                "STRIDEX_LOG_LEVEL": "debug",
            }
        )
        self.assertEqual(cfg.backend, "cuda")
        self.assertEqual(cfg.device, "cuda:1")
        self.assertEqual(cfg.host_capacity, 4096)
        self.assertEqual(cfg.cudart_path, "/opt/cuda/lib64/libcudart.so")
        self.assertEqual(cfg.log_level, "debug")

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            InteropConfig(backend="opencl")
        with self.assertRaises(ValueError):
            InteropConfig.from_env({"STRIDEX_BACKEND": "metal"})

    def test_bad_capacity(self):
        with self.assertRaises(ValueError):
            InteropConfig.from_env({"STRIDEX_HOST_CAPACITY": "lots"})

    def test_host_backend_creation(self):
        backend = InteropConfig(host_capacity=128).create_backend()
        self.assertIsInstance(backend, HostBackend)
        self.assertEqual(backend.capacity_bytes, 128)
        self.assertEqual(str(backend.device), "cpu")


class TestInteropContext(TestCase):
    def tearDown(self) -> None:
        set_default_context(None)

    def test_rejects_non_backend(self):
        with self.assertRaises(TypeError):
            InteropContext(object())

    def test_from_config(self):
        ctx = InteropContext.from_config(InteropConfig())
        self.assertIsInstance(ctx.backend, HostBackend)
        self.assertEqual(str(ctx.device), "cpu")

    def test_default_context_is_lazy_singleton(self):
        set_default_context(None)
        a = get_default_context()
        self.assertIs(get_default_context(), a)
        self.assertIs(resolve_backend(), a.backend)

    def test_default_context_used_by_entry_points(self):
        ctx = InteropContext(HostBackend())
        set_default_context(ctx)
        x = np.arange(6, dtype=np.int32).reshape(3, 2)
        arr = import_tensor(x, 2, ScalarKind.INT32)
        self.assertIs(arr.backend, ctx.backend)

        out = np.zeros((3, 2), dtype=np.int32)
        export_to_tensor(arr, eval=False, out=out)
        synchronize()
        np.testing.assert_array_equal(out, x)

    def test_factories_fall_back_to_default_backend(self):
        ctx = InteropContext(HostBackend())
        set_default_context(ctx)
        self.assertIs(DeviceArray.zero(ScalarKind.FLOAT32, 2).backend, ctx.backend)


if __name__ == "__main__":
    unittest.main()
