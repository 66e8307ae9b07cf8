"""
Ownership handle for managed-memory exports.

`export_to_managed_array` is the one export path where stridex itself owns
the exported memory. The memory is a managed (host- and device-addressable)
`DeviceBuffer`; the returned `ManagedBufferHandle` is its single owner and the
NumPy array returned alongside it is only a view.

Lifetime rules
--------------
- The buffer is freed when the handle is released: explicitly through
  `release()`, by leaving a ``with`` block, or when the handle is
  garbage-collected (safety net of the underlying buffer).
- Every view keeps its handle alive: the view's ``base`` is a small holder
  that references the handle, so dropping the handle while a view is still
  in use never frees the memory under it.
- `release()` is the explicit early-free path. Views taken before it must
  not be used afterwards.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from ..storage._device_buffer import DeviceBuffer

logger = logging.getLogger(__name__)


class ManagedBufferHandle:
    """
    Single owner of a managed export buffer.

    Parameters
    ----------
    buffer : DeviceBuffer
        Owned, managed buffer. The handle takes over the creator's reference.
    shape : Tuple[int, ...]
        Row-major shape of the exported tensor.
    dtype : np.dtype
        Element dtype of the view.
    """

    def __init__(self, buffer: DeviceBuffer, shape: Tuple[int, ...], dtype: np.dtype) -> None:
        if not buffer.owned or not buffer.managed:
            raise ValueError("ManagedBufferHandle requires an owned, managed buffer")
        self._buffer = buffer
        self.shape = tuple(shape)
        self.dtype = np.dtype(dtype)
        self._released = False

    @property
    def buffer(self) -> DeviceBuffer:
        return self._buffer

    @property
    def released(self) -> bool:
        return self._released

    @property
    def ptr(self) -> int:
        return self._buffer.ptr

    @property
    def nbytes(self) -> int:
        return self._buffer.nbytes

    def view(self) -> np.ndarray:
        """
        NumPy view of the buffer in row-major layout.

        Raises
        ------
        RuntimeError
            If the handle was already released.
        """
        if self._released:
            raise RuntimeError("ManagedBufferHandle was already released.")
        raw = self._buffer.backend.host_view(self._buffer)
        return np.asarray(_ViewBase(self, raw, self.shape, self.dtype))

    def release(self) -> None:
        """Free the buffer (once pending work on it has been retired)."""
        if self._released:
            return
        self._released = True
        logger.debug("releasing managed export buffer nbytes=%d", self._buffer.nbytes)
        self._buffer.decref()

    def __enter__(self) -> "ManagedBufferHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else f"nbytes={self.nbytes}"
        return f"ManagedBufferHandle(shape={self.shape}, dtype={self.dtype}, {state})"


class _ViewBase:
    """Array-interface exporter tying a view's lifetime to its handle."""

    def __init__(
        self, handle: ManagedBufferHandle, raw: np.ndarray,
        shape: Tuple[int, ...], dtype: np.dtype,
    ) -> None:
        self.handle = handle
        self._raw = raw
        self.__array_interface__ = {
            "shape": tuple(shape),
            "typestr": dtype.str,
            "strides": None,
            "data": (raw.__array_interface__["data"][0], False),
            "version": 3,
        }
