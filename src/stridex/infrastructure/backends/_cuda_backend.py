"""
CUDA runtime backend.

Each strided bulk operation maps onto a single ``cudaMemcpy2DAsync`` call on
the default stream: a run of `count` elements at element stride `stride` is a
pitched copy of `count` rows, each `itemsize` bytes wide, with a pitch of
``stride * itemsize`` bytes on the strided side and ``itemsize`` bytes on the
dense side. The default stream executes those copies in issue order, which is
the only ordering guarantee the marshaller relies on.

Nothing here waits for the device except `synchronize()` and `download()`.
Buffers touched by an enqueued copy are retained until the next
synchronization so their memory cannot be freed (or a borrowed owner
collected) while the device may still access it.
"""

from __future__ import annotations

import ctypes
import logging
from typing import Optional

import numpy as np

from ...domain.device._device import Device
from ..storage._device_buffer import DeviceBuffer
from ._base import DeviceBackendBase
from ._cuda_runtime import (
    CUDA_MEMCPY_DEFAULT,
    CUDA_MEMCPY_DEVICE_TO_HOST,
    CUDA_MEMCPY_HOST_TO_DEVICE,
    CudaRuntime,
    load_cuda_runtime,
)

logger = logging.getLogger(__name__)


class CudaBackend(DeviceBackendBase):
    """
    Deferred-execution backend on a CUDA device.

    Parameters
    ----------
    device : str
        CUDA device identifier, e.g. "cuda:0".
    runtime_path : str, optional
        Explicit path of the CUDA runtime library.

    Raises
    ------
    OSError
        If the CUDA runtime cannot be loaded.
    ValueError
        If `device` does not name an available CUDA device.
    """

    framework = "torch"

    def __init__(self, device: str = "cuda:0", runtime_path: Optional[str] = None) -> None:
        dev = Device.parse(device)
        if not dev.is_cuda():
            raise ValueError(f"CudaBackend requires a CUDA device, got '{dev}'")
        super().__init__(dev)
        self.runtime = CudaRuntime(load_cuda_runtime(runtime_path))
        count = self.runtime.device_count()
        if int(dev.index or 0) >= count:
            raise ValueError(f"'{dev}' is not available; {count} CUDA device(s) found")
        self.runtime.set_device(int(dev.index or 0))
        self._issued = 0

    @property
    def pending(self) -> int:
        return self._issued

    def raw_allocate(self, nbytes: int, *, managed: bool = False) -> int:
        ptr = self.runtime.malloc(nbytes, managed=managed, device=str(self.device))
        # zero-byte requests yield NULL, which is never freed
        if ptr:
            self.stats.allocations += 1
        return ptr

    def free(self, ptr: int) -> None:
        if int(ptr) == 0:
            return
        self.runtime.free(ptr)
        self.stats.frees += 1

    def _enqueue_gather(self, dst, src, offset, stride, count, itemsize) -> None:
        self._retain(dst, src)
        self.runtime.memcpy_2d_async(
            dst.ptr,
            itemsize,
            src.ptr + offset * itemsize,
            stride * itemsize,
            itemsize,
            count,
            CUDA_MEMCPY_DEFAULT,
        )
        self._issued += 1

    def _enqueue_scatter(self, dst, src, offset, stride, count, itemsize) -> None:
        self._retain(dst, src)
        self.runtime.memcpy_2d_async(
            dst.ptr + offset * itemsize,
            stride * itemsize,
            src.ptr,
            itemsize,
            itemsize,
            count,
            CUDA_MEMCPY_DEFAULT,
        )
        self._issued += 1

    def upload(self, dst: DeviceBuffer, host: np.ndarray) -> None:
        host = np.ascontiguousarray(host)
        if host.nbytes != dst.nbytes:
            raise ValueError(f"nbytes mismatch: buffer={dst.nbytes}, host={host.nbytes}")
        self.runtime.memcpy(
            dst.ptr, host.ctypes.data, host.nbytes, CUDA_MEMCPY_HOST_TO_DEVICE
        )

    def download(self, host: np.ndarray, src: DeviceBuffer) -> None:
        if not host.flags["C_CONTIGUOUS"]:
            raise ValueError("download() requires a C-contiguous host array")
        if host.nbytes != src.nbytes:
            raise ValueError(f"nbytes mismatch: buffer={src.nbytes}, host={host.nbytes}")
        self.synchronize()
        self.runtime.memcpy(
            host.ctypes.data, src.ptr, host.nbytes, CUDA_MEMCPY_DEVICE_TO_HOST
        )

    def host_view(self, buffer: DeviceBuffer) -> np.ndarray:
        """
        Host view of a managed buffer.

        Raises
        ------
        ValueError
            If the buffer is plain device memory.
        """
        if not buffer.managed:
            raise ValueError("Only managed buffers are host-addressable on CUDA.")
        if buffer.nbytes == 0:
            return np.empty(0, dtype=np.uint8)
        raw = (ctypes.c_uint8 * buffer.nbytes).from_address(buffer.ptr)
        return np.frombuffer(raw, dtype=np.uint8)

    def _drain(self) -> None:
        self.runtime.synchronize()
        self._issued = 0
