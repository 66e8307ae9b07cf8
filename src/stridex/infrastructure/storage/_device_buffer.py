"""
Device buffers and their lifetime management.

This module defines `DeviceBuffer`, a reference-counted handle to one region
of backend memory. It is the only place where device memory ownership is
decided; arrays, pending queue entries and managed-export handles all hold
references to a `DeviceBuffer` and never to raw pointers.

Ownership modes
---------------
- **Owned** buffers are created by `allocate_buffer`. The memory is released
  through the backend's `free` exactly once: when the reference count drops to
  zero, or, as a safety net, when the buffer object is garbage-collected.

- **Borrowed** buffers are created by `map_external`. They wrap memory owned
  by a foreign object (a NumPy array, a torch tensor, ...) and keep a strong
  reference to that `owner` so the foreign memory outlives every view and
  every pending operation derived from the buffer. Releasing a borrowed
  buffer only drops the owner reference; the pointer is never freed here.

Reference counting
------------------
- A fresh buffer starts with a count of 1, held by its creator.
- Backends `incref` every buffer an enqueued operation touches and `decref`
  it once the operation is known to be complete.
- Count updates are lock protected.

Notes
-----
- `DeviceBuffer` intentionally avoids defining `__del__`; cleanup runs through
  `weakref.finalize`, which never raises during interpreter shutdown.
- A buffer carries no shape, stride or dtype; those belong to the arrays and
  descriptors built on top of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import weakref
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class DeviceBuffer:
    """
    Reference-counted handle to a region of backend memory.

    Attributes
    ----------
    backend : object
        The backend that produced the buffer (used to free owned memory).
    ptr : int
        Start address of the region. Reset to 0 once the buffer is released.
    nbytes : int
        Size of the region in bytes. Reset to 0 once the buffer is released.
    owned : bool
        True if this system allocated the memory and must free it.
    managed : bool
        True if the memory is addressable from both host and device.
    owner : object, optional
        Foreign object kept alive by a borrowed buffer.
    """

    backend: Any
    ptr: int
    nbytes: int
    owned: bool
    managed: bool = False
    owner: Optional[object] = None

    _refcnt: int = 1
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _finalizer: Optional[weakref.finalize] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """
        Install the GC-time finalizer for owned memory.

        The finalizer captures only the backend and the plain pointer value,
        never `self`, so it cannot keep the buffer alive.
        """
        if not self.owned or int(self.ptr) == 0:
            return
        backend = self.backend
        ptr = int(self.ptr)

        def _free_ptr() -> None:
            # at interpreter shutdown modules may already be torn down
            try:
                backend.free(ptr)
            except Exception:
                pass

        self._finalizer = weakref.finalize(self, _free_ptr)

    @property
    def refcount(self) -> int:
        return self._refcnt

    @property
    def alive(self) -> bool:
        """True until the last reference has been released."""
        return self._refcnt > 0

    def incref(self) -> None:
        """
        Register one more user of this buffer.

        Raises
        ------
        RuntimeError
            If the buffer was already released.
        """
        with self._lock:
            if self._refcnt <= 0:
                raise RuntimeError("DeviceBuffer was already released.")
            self._refcnt += 1

    def decref(self) -> None:
        """
        Drop one reference; release the memory when none remain.

        Owned memory is freed immediately and exactly once. Borrowed buffers
        drop their owner reference. Calls after the release are no-ops.
        """
        with self._lock:
            if self._refcnt <= 0:
                return
            self._refcnt -= 1
            if self._refcnt > 0:
                return
            finalizer = self._finalizer
            ptr, nbytes = self.ptr, self.nbytes
            self.ptr = 0
            self.nbytes = 0
            self.owner = None

        if finalizer is not None and finalizer.alive:
            # detach first so a failing free surfaces to the caller
            finalizer.detach()
            logger.debug("freeing owned buffer ptr=0x%x nbytes=%d", ptr, nbytes)
            self.backend.free(ptr)
        else:
            logger.debug("released borrowed buffer ptr=0x%x nbytes=%d", ptr, nbytes)


def allocate_buffer(backend: Any, nbytes: int, *, managed: bool = False) -> DeviceBuffer:
    """
    Allocate an owned buffer on `backend`.

    A single allocation attempt is made; `AllocationError` from the backend
    propagates unchanged.
    """
    ptr = int(backend.raw_allocate(int(nbytes), managed=managed))
    logger.debug(
        "allocated buffer ptr=0x%x nbytes=%d managed=%s on %s",
        ptr, nbytes, managed, backend.device,
    )
    return DeviceBuffer(
        backend=backend, ptr=ptr, nbytes=int(nbytes), owned=True, managed=managed
    )


def map_external(backend: Any, ptr: int, nbytes: int, owner: object) -> DeviceBuffer:
    """
    Wrap foreign memory without taking ownership.

    `owner` is retained until the returned buffer is released, so the foreign
    memory stays valid for as long as any view or pending operation uses it.
    """
    logger.debug("mapped external ptr=0x%x nbytes=%d", int(ptr), int(nbytes))
    return DeviceBuffer(
        backend=backend,
        ptr=int(ptr),
        nbytes=int(nbytes),
        owned=False,
        managed=False,
        owner=owner,
    )
