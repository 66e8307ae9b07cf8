"""
Device and device-backend contracts for stridex.

This module defines duck-typed protocols for the two collaborators every
interop call depends on:

- `DeviceLike`: a device descriptor (CPU or CUDA) without coupling to the
  concrete `Device` class.
- `DeviceBackendLike`: the deferred-execution engine that owns device memory
  and an in-order work queue. The marshalling layer only talks to this
  contract, so the NumPy-backed host emulator and the CUDA runtime backend are
  interchangeable.

Design notes
------------
- Uses `typing.Protocol` and `@runtime_checkable` so backends can be checked
  structurally at context construction time.
- Offsets, strides and counts are expressed in *elements*; the backend scales
  them by `itemsize`. Bulk operations never convert values, they move
  `itemsize`-byte units verbatim.
- Every bulk operation is *enqueued*. Only `synchronize()` guarantees that
  previously enqueued work has completed.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class DeviceLike(Protocol):
    """
    Duck-typed device contract.

    Any object that provides these members can be used as a device descriptor.
    """

    type: object
    index: Optional[int]

    def is_cpu(self) -> bool: ...
    def is_cuda(self) -> bool: ...
    def __str__(self) -> str: ...


@runtime_checkable
class DeviceBackendLike(Protocol):
    """
    Deferred-execution backend contract.

    Memory
    ------
    `allocate` returns an *owned* buffer, freed exactly once through `free`
    when its last reference is released. `map_external` returns a *borrowed*
    buffer over foreign memory that is never freed here.

    Work queue
    ----------
    `gather_strided`, `scatter_strided` and `upload` enqueue work in program
    order. `download` and `synchronize` drain the queue first. `pending`
    reports how many enqueued operations have not yet been observed as
    complete.
    """

    @property
    def device(self) -> DeviceLike: ...

    @property
    def framework(self) -> str: ...

    @property
    def pending(self) -> int: ...

    def allocate(self, nbytes: int, *, managed: bool = False) -> Any: ...

    def free(self, ptr: int) -> None: ...

    def map_external(self, ptr: int, nbytes: int, owner: object) -> Any: ...

    def gather_strided(
        self, dst: Any, src: Any, *, offset: int, stride: int, count: int,
        itemsize: int,
    ) -> None: ...

    def scatter_strided(
        self, dst: Any, src: Any, *, offset: int, stride: int, count: int,
        itemsize: int,
    ) -> None: ...

    def upload(self, dst: Any, host: Any) -> None: ...

    def download(self, host: Any, src: Any) -> None: ...

    def host_view(self, buffer: Any) -> Any: ...

    def synchronize(self) -> None: ...
