"""
ctypes bindings for the CUDA runtime library.

This module loads ``cudart`` and exposes the handful of runtime entry points
the CUDA backend needs:

- cudaSetDevice / cudaGetDeviceCount
- cudaMalloc / cudaMallocManaged / cudaFree
- cudaMemcpy (blocking host transfers)
- cudaMemcpy2DAsync (one strided bulk copy per call)
- cudaDeviceSynchronize
- cudaGetErrorString

Library resolution
------------------
`load_cuda_runtime()` tries, in order: an explicit path argument, the
``STRIDEX_CUDART`` environment variable, ``ctypes.util.find_library``, and a
list of versioned sonames / DLL names. On Windows, ``<CUDA_PATH>/bin`` is
registered as a DLL directory first.

Design notes
------------
- Device pointers are plain Python ints (``uintptr_t``) and are passed as
  ``c_void_p``.
- A non-zero status raises ``RuntimeError`` carrying the runtime's error
  string; allocation failures raise `AllocationError` instead.
"""

from __future__ import annotations

import ctypes
import ctypes.util
from ctypes import c_char_p, c_int, c_size_t, c_uint, c_void_p
from functools import lru_cache
import logging
import os
import sys
from typing import Optional

from ...domain._errors import AllocationError

logger = logging.getLogger(__name__)

DevPtr = int

CUDA_MEMCPY_HOST_TO_DEVICE = 1
CUDA_MEMCPY_DEVICE_TO_HOST = 2
CUDA_MEMCPY_DEFAULT = 4
CUDA_MEM_ATTACH_GLOBAL = 1

_CANDIDATE_NAMES = (
    "libcudart.so",
    "libcudart.so.12",
    "libcudart.so.11.0",
    "cudart64_12.dll",
    "cudart64_110.dll",
)


def _add_windows_dll_dirs() -> None:
    if sys.platform != "win32":
        return
    cuda_path = os.environ.get("CUDA_PATH", "")
    if not cuda_path:
        return
    cuda_bin = os.path.join(cuda_path, "bin")
    if os.path.isdir(cuda_bin):
        os.add_dll_directory(cuda_bin)


@lru_cache(maxsize=None)
def load_cuda_runtime(path: Optional[str] = None) -> ctypes.CDLL:
    """
    Load and cache the CUDA runtime shared library.

    Parameters
    ----------
    path : str, optional
        Explicit library path. Falls back to ``STRIDEX_CUDART`` and then to
        the standard search.

    Returns
    -------
    ctypes.CDLL
        Loaded runtime handle.

    Raises
    ------
    OSError
        If no CUDA runtime library can be loaded.
    """
    _add_windows_dll_dirs()

    candidates = []
    explicit = path or os.environ.get("STRIDEX_CUDART", "")
    if explicit:
        candidates.append(explicit)
    found = ctypes.util.find_library("cudart")
    if found:
        candidates.append(found)
    candidates.extend(_CANDIDATE_NAMES)

    errors = []
    for name in candidates:
        try:
            lib = ctypes.CDLL(name)
        except OSError as e:
            errors.append(f"{name}: {e}")
            continue
        logger.debug("loaded CUDA runtime from %s", name)
        return lib
    raise OSError("CUDA runtime library not found. Tried: " + "; ".join(errors))


class CudaRuntime:
    """
    Thin binding layer around a loaded CUDA runtime.

    Performs one-time ``argtypes``/``restype`` binding and turns status codes
    into exceptions. Does not track allocations; callers (the storage layer)
    own every pointer they obtain.
    """

    def __init__(self, lib: ctypes.CDLL) -> None:
        self.lib = lib
        self._bound = False

    def _bind(self) -> None:
        if self._bound:
            return
        lib = self.lib
        lib.cudaSetDevice.argtypes = [c_int]
        lib.cudaSetDevice.restype = c_int

        lib.cudaGetDeviceCount.argtypes = [ctypes.POINTER(c_int)]
        lib.cudaGetDeviceCount.restype = c_int

        lib.cudaMalloc.argtypes = [ctypes.POINTER(c_void_p), c_size_t]
        lib.cudaMalloc.restype = c_int

        lib.cudaMallocManaged.argtypes = [ctypes.POINTER(c_void_p), c_size_t, c_uint]
        lib.cudaMallocManaged.restype = c_int

        lib.cudaFree.argtypes = [c_void_p]
        lib.cudaFree.restype = c_int

        lib.cudaMemcpy.argtypes = [c_void_p, c_void_p, c_size_t, c_int]
        lib.cudaMemcpy.restype = c_int

        lib.cudaMemcpy2DAsync.argtypes = [
            c_void_p, c_size_t,  # dst, dpitch
            c_void_p, c_size_t,  # src, spitch
            c_size_t, c_size_t,  # width (bytes), height (rows)
            c_int,  # cudaMemcpyKind
            c_void_p,  # stream
        ]
        lib.cudaMemcpy2DAsync.restype = c_int

        lib.cudaDeviceSynchronize.argtypes = []
        lib.cudaDeviceSynchronize.restype = c_int

        lib.cudaGetErrorString.argtypes = [c_int]
        lib.cudaGetErrorString.restype = c_char_p
        self._bound = True

    def _check(self, status: int, what: str) -> None:
        if status == 0:
            return
        msg = self.lib.cudaGetErrorString(int(status))
        text = msg.decode("utf-8", "replace") if msg else "unknown error"
        raise RuntimeError(f"{what} failed with status={status}: {text}")

    def set_device(self, index: int) -> None:
        self._bind()
        self._check(self.lib.cudaSetDevice(int(index)), "cudaSetDevice")

    def device_count(self) -> int:
        self._bind()
        out = c_int(0)
        self._check(self.lib.cudaGetDeviceCount(ctypes.byref(out)), "cudaGetDeviceCount")
        return int(out.value)

    def malloc(self, nbytes: int, *, managed: bool = False, device: str = "cuda") -> DevPtr:
        """
        Allocate device (or managed) memory; one attempt, no retry.

        Raises
        ------
        AllocationError
            If the runtime reports a failure.
        """
        self._bind()
        out = c_void_p(0)
        if managed:
            st = self.lib.cudaMallocManaged(
                ctypes.byref(out), c_size_t(int(nbytes)), c_uint(CUDA_MEM_ATTACH_GLOBAL)
            )
        else:
            st = self.lib.cudaMalloc(ctypes.byref(out), c_size_t(int(nbytes)))
        if st != 0:
            msg = self.lib.cudaGetErrorString(int(st))
            raise AllocationError(
                nbytes, device, msg.decode("utf-8", "replace") if msg else None
            )
        return int(out.value or 0)

    def free(self, ptr: DevPtr) -> None:
        self._bind()
        if int(ptr) == 0:
            return
        self._check(self.lib.cudaFree(c_void_p(int(ptr))), "cudaFree")

    def memcpy(self, dst: int, src: int, nbytes: int, kind: int) -> None:
        self._bind()
        if int(nbytes) == 0:
            return
        self._check(
            self.lib.cudaMemcpy(
                c_void_p(int(dst)), c_void_p(int(src)), c_size_t(int(nbytes)), int(kind)
            ),
            "cudaMemcpy",
        )

    def memcpy_2d_async(
        self,
        dst: int,
        dpitch: int,
        src: int,
        spitch: int,
        width: int,
        height: int,
        kind: int = CUDA_MEMCPY_DEFAULT,
    ) -> None:
        """
        Enqueue one pitched copy of `height` rows of `width` bytes on the
        default stream.
        """
        self._bind()
        self._check(
            self.lib.cudaMemcpy2DAsync(
                c_void_p(int(dst)),
                c_size_t(int(dpitch)),
                c_void_p(int(src)),
                c_size_t(int(spitch)),
                c_size_t(int(width)),
                c_size_t(int(height)),
                int(kind),
                c_void_p(0),
            ),
            "cudaMemcpy2DAsync",
        )

    def synchronize(self) -> None:
        self._bind()
        self._check(self.lib.cudaDeviceSynchronize(), "cudaDeviceSynchronize")
