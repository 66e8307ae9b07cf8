"""
Shared backend plumbing.

`DeviceBackendBase` implements the parts of `DeviceBackendLike` that do not
depend on where memory lives: buffer construction through the storage layer,
operation accounting, and keeping every buffer touched by an enqueued
operation alive until that operation is known to be complete.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List

import numpy as np

from ...domain._errors import ShapeMismatchError
from ...domain.device._device import Device
from ..storage._device_buffer import DeviceBuffer, allocate_buffer, map_external

logger = logging.getLogger(__name__)


@dataclass
class BackendStats:
    """
    Counters describing the work a backend has seen.

    Attributes
    ----------
    bulk_ops : int
        Strided gather/scatter operations enqueued.
    synchronizations : int
        Calls to `synchronize()` (explicit or implied by a download).
    allocations : int
        Owned allocations performed.
    frees : int
        Owned allocations released.
    """

    bulk_ops: int = 0
    synchronizations: int = 0
    allocations: int = 0
    frees: int = 0

    @property
    def live_allocations(self) -> int:
        return self.allocations - self.frees

    def reset(self) -> None:
        self.bulk_ops = 0
        self.synchronizations = 0
        self.allocations = 0
        self.frees = 0


class DeviceBackendBase:
    """
    Common base class of the concrete device backends.

    Subclasses provide `raw_allocate`, `free`, `_enqueue_gather`,
    `_enqueue_scatter`, `upload`, `download`, `host_view` and `_drain`.
    """

    framework = "numpy"

    def __init__(self, device: Device) -> None:
        self._device = device
        self.stats = BackendStats()
        self._retained: List[DeviceBuffer] = []

    @property
    def device(self) -> Device:
        return self._device

    @property
    def pending(self) -> int:
        raise NotImplementedError

    # -----------------------------------------------------------------
    # Memory
    # -----------------------------------------------------------------

    def raw_allocate(self, nbytes: int, *, managed: bool = False) -> int:
        raise NotImplementedError

    def free(self, ptr: int) -> None:
        raise NotImplementedError

    def allocate(self, nbytes: int, *, managed: bool = False) -> DeviceBuffer:
        """Allocate an owned `DeviceBuffer` of `nbytes` bytes."""
        if int(nbytes) < 0:
            raise ValueError(f"nbytes must be non-negative, got {nbytes}")
        return allocate_buffer(self, int(nbytes), managed=managed)

    def map_external(self, ptr: int, nbytes: int, owner: object) -> DeviceBuffer:
        """Wrap foreign memory as a borrowed `DeviceBuffer`."""
        return map_external(self, ptr, nbytes, owner)

    # -----------------------------------------------------------------
    # Bulk strided copies
    # -----------------------------------------------------------------

    def gather_strided(
        self,
        dst: DeviceBuffer,
        src: DeviceBuffer,
        *,
        offset: int,
        stride: int,
        count: int,
        itemsize: int,
    ) -> None:
        """
        Enqueue ``dst[i] = src[offset + i * stride]`` for ``i < count``.

        `dst` is dense; all quantities are in elements of `itemsize` bytes.
        """
        self._check_run(src, offset, stride, count, itemsize)
        self._check_run(dst, 0, 1, count, itemsize)
        self.stats.bulk_ops += 1
        if count == 0:
            return
        self._enqueue_gather(dst, src, offset, stride, count, itemsize)

    def scatter_strided(
        self,
        dst: DeviceBuffer,
        src: DeviceBuffer,
        *,
        offset: int,
        stride: int,
        count: int,
        itemsize: int,
    ) -> None:
        """
        Enqueue ``dst[offset + i * stride] = src[i]`` for ``i < count``.

        `src` is dense; all quantities are in elements of `itemsize` bytes.
        """
        self._check_run(dst, offset, stride, count, itemsize)
        self._check_run(src, 0, 1, count, itemsize)
        self.stats.bulk_ops += 1
        if count == 0:
            return
        self._enqueue_scatter(dst, src, offset, stride, count, itemsize)

    def _enqueue_gather(self, dst, src, offset, stride, count, itemsize) -> None:
        raise NotImplementedError

    def _enqueue_scatter(self, dst, src, offset, stride, count, itemsize) -> None:
        raise NotImplementedError

    @staticmethod
    def _check_run(
        buf: DeviceBuffer, offset: int, stride: int, count: int, itemsize: int
    ) -> None:
        if not buf.alive:
            raise RuntimeError("Bulk operation on a released DeviceBuffer.")
        if count == 0:
            return
        if offset < 0 or stride < 1:
            raise ShapeMismatchError(
                "offset >= 0 and stride >= 1",
                (offset, stride),
                "Strided runs must address non-negative, increasing offsets.",
            )
        end = (offset + (count - 1) * stride + 1) * itemsize
        if end > buf.nbytes:
            raise ShapeMismatchError(
                f"run within {buf.nbytes} bytes",
                end,
                "Strided run exceeds the buffer bounds.",
            )

    # -----------------------------------------------------------------
    # Host transfers and synchronization
    # -----------------------------------------------------------------

    def upload(self, dst: DeviceBuffer, host: np.ndarray) -> None:
        raise NotImplementedError

    def download(self, host: np.ndarray, src: DeviceBuffer) -> None:
        raise NotImplementedError

    def host_view(self, buffer: DeviceBuffer) -> np.ndarray:
        raise NotImplementedError

    def synchronize(self) -> None:
        """Block until every enqueued operation has completed."""
        self._drain()
        self.stats.synchronizations += 1
        retained, self._retained = self._retained, []
        for buf in retained:
            buf.decref()
        logger.debug("%s synchronized; released %d buffer refs", self.device, len(retained))

    def _drain(self) -> None:
        raise NotImplementedError

    def _retain(self, *buffers: DeviceBuffer) -> None:
        """Keep `buffers` alive until the next synchronization point."""
        for buf in buffers:
            buf.incref()
            self._retained.append(buf)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(device='{self.device}', pending={self.pending})"
