"""
NumPy-backed host backend.

`HostBackend` emulates an accelerator on host memory so the whole interop
stack can run (and be tested) without a GPU, while keeping the execution
model of a real deferred engine:

- Memory is a set of NumPy byte arenas keyed by their address. An optional
  `capacity_bytes` bounds the total, and exceeding it raises
  `AllocationError` exactly as device exhaustion would.
- Bulk operations are recorded as closures in an in-order queue and only run
  when the queue is drained by `synchronize()` (or implicitly by a
  `download`). Reading foreign memory written by a still-pending scatter
  therefore observes the old contents, which is the behaviour callers must
  plan for on an asynchronous device.
- Foreign (borrowed) memory is accessed in place through its address, so
  gathers read and scatters write the caller's tensor directly.
"""

from __future__ import annotations

from collections import deque
import ctypes
import logging
from typing import Callable, Deque, Dict, Optional

import numpy as np

from ...domain._errors import AllocationError
from ...domain.device._device import Device
from ..storage._device_buffer import DeviceBuffer
from ._base import DeviceBackendBase

logger = logging.getLogger(__name__)


def _bytes_at(ptr: int, nbytes: int) -> np.ndarray:
    """Return a writable uint8 view of `nbytes` bytes starting at `ptr`."""
    if nbytes == 0:
        return np.empty(0, dtype=np.uint8)
    raw = (ctypes.c_uint8 * int(nbytes)).from_address(int(ptr))
    return np.frombuffer(raw, dtype=np.uint8)


class HostBackend(DeviceBackendBase):
    """
    Deferred-execution backend over host memory.

    Parameters
    ----------
    capacity_bytes : int, optional
        Upper bound on the bytes of owned memory alive at once. ``None``
        means unbounded.
    device : str
        Device identifier served by this backend. Defaults to "cpu".
    """

    framework = "numpy"

    def __init__(
        self, capacity_bytes: Optional[int] = None, device: str = "cpu"
    ) -> None:
        super().__init__(Device.parse(device))
        if capacity_bytes is not None and int(capacity_bytes) < 0:
            raise ValueError("capacity_bytes must be non-negative")
        self.capacity_bytes = None if capacity_bytes is None else int(capacity_bytes)
        self._arenas: Dict[int, np.ndarray] = {}
        self._queue: Deque[Callable[[], None]] = deque()

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def bytes_in_use(self) -> int:
        # arenas carry one spare byte each
        return sum(int(a.nbytes) - 1 for a in self._arenas.values())

    # -----------------------------------------------------------------
    # Memory
    # -----------------------------------------------------------------

    def raw_allocate(self, nbytes: int, *, managed: bool = False) -> int:
        nbytes = int(nbytes)
        if self.capacity_bytes is not None:
            if self.bytes_in_use + nbytes > self.capacity_bytes:
                raise AllocationError(
                    nbytes,
                    str(self.device),
                    f"Capacity of {self.capacity_bytes} bytes exhausted.",
                )
        # one spare byte keeps zero-sized allocations at distinct addresses
        try:
            arena = np.zeros(nbytes + 1, dtype=np.uint8)
        except MemoryError as e:
            raise AllocationError(nbytes, str(self.device), str(e)) from e
        ptr = int(arena.ctypes.data)
        self._arenas[ptr] = arena
        self.stats.allocations += 1
        return ptr

    def free(self, ptr: int) -> None:
        if int(ptr) == 0:
            return
        if self._arenas.pop(int(ptr), None) is None:
            raise RuntimeError(f"free() of unknown or already freed pointer 0x{ptr:x}")
        self.stats.frees += 1

    def _bytes(self, buffer: DeviceBuffer) -> np.ndarray:
        arena = self._arenas.get(int(buffer.ptr))
        if arena is not None:
            return arena[: buffer.nbytes]
        return _bytes_at(buffer.ptr, buffer.nbytes)

    # -----------------------------------------------------------------
    # Deferred work
    # -----------------------------------------------------------------

    def _enqueue_gather(self, dst, src, offset, stride, count, itemsize) -> None:
        self._retain(dst, src)

        def _gather() -> None:
            index = offset + np.arange(count, dtype=np.int64) * stride
            rows = self._bytes(src)
            rows = rows[: (rows.size // itemsize) * itemsize].reshape(-1, itemsize)
            out = self._bytes(dst)[: count * itemsize].reshape(count, itemsize)
            out[...] = rows[index]

        self._queue.append(_gather)

    def _enqueue_scatter(self, dst, src, offset, stride, count, itemsize) -> None:
        self._retain(dst, src)

        def _scatter() -> None:
            index = offset + np.arange(count, dtype=np.int64) * stride
            rows = self._bytes(dst)
            rows = rows[: (rows.size // itemsize) * itemsize].reshape(-1, itemsize)
            values = self._bytes(src)[: count * itemsize].reshape(count, itemsize)
            rows[index] = values

        self._queue.append(_scatter)

    def upload(self, dst: DeviceBuffer, host: np.ndarray) -> None:
        """Enqueue a copy of `host` (snapshotted now) into `dst`."""
        data = np.ascontiguousarray(host).view(np.uint8).reshape(-1).copy()
        if data.nbytes != dst.nbytes:
            raise ValueError(
                f"nbytes mismatch: buffer={dst.nbytes}, host={data.nbytes}"
            )
        self._retain(dst)

        def _upload() -> None:
            self._bytes(dst)[...] = data

        self._queue.append(_upload)

    def download(self, host: np.ndarray, src: DeviceBuffer) -> None:
        """Drain the queue, then copy `src` into the contiguous `host` array."""
        if not host.flags["C_CONTIGUOUS"]:
            raise ValueError("download() requires a C-contiguous host array")
        if host.nbytes != src.nbytes:
            raise ValueError(
                f"nbytes mismatch: buffer={src.nbytes}, host={host.nbytes}"
            )
        self.synchronize()
        host.reshape(-1).view(np.uint8)[...] = self._bytes(src)

    def host_view(self, buffer: DeviceBuffer) -> np.ndarray:
        """Every host-backend buffer is host-addressable."""
        return self._bytes(buffer)

    def _drain(self) -> None:
        n = len(self._queue)
        while self._queue:
            op = self._queue.popleft()
            op()
        if n:
            logger.debug("host backend executed %d deferred ops", n)
