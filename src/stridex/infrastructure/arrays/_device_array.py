"""
Dense one-dimensional device arrays.

`DeviceArray` is the leaf of every nested array: a run of `size` elements of a
single scalar kind stored contiguously in one owned `DeviceBuffer`. Arrays are
created only through explicit factories (`empty`, `zero`, `full`, `arange`,
`linspace`, `from_numpy`); there is no implicit promotion from Python scalars
or sequences.

Reading values back to the host (`numpy()`, indexing, equality) drains the
backend's work queue first, so reads always observe every enqueued write.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ...domain._errors import TypeMismatchError
from ...domain._scalar import ArrayVariant, Capability, ScalarKind
from ...domain.device._device_protocol import DeviceBackendLike
from ..dtypes._translator import itemsize, numpy_dtype
from ..storage._device_buffer import DeviceBuffer


def _backend_or_default(backend: Optional[DeviceBackendLike]) -> DeviceBackendLike:
    if backend is not None:
        return backend
    from .._context import get_default_context

    return get_default_context().backend


class DeviceArray:
    """
    Depth-1 device array.

    Parameters
    ----------
    kind : ScalarKind
        Element kind.
    size : int
        Number of elements.
    backend : DeviceBackendLike
        Backend owning the storage.
    buffer : DeviceBuffer
        Owned storage of exactly ``size * itemsize(kind)`` bytes.

    Notes
    -----
    Use the factories instead of calling the constructor directly.
    """

    depth = 1

    def __init__(
        self,
        kind: ScalarKind,
        size: int,
        backend: DeviceBackendLike,
        buffer: DeviceBuffer,
    ) -> None:
        if int(size) < 0:
            raise ValueError(f"size must be non-negative, got {size}")
        if buffer.nbytes != int(size) * itemsize(kind):
            raise ValueError(
                f"buffer holds {buffer.nbytes} bytes, expected {int(size) * itemsize(kind)}"
            )
        self.kind = kind
        self._size = int(size)
        self.backend = backend
        self.buffer = buffer

    # -----------------------------------------------------------------
    # Factories
    # -----------------------------------------------------------------

    @classmethod
    def empty(
        cls, kind: ScalarKind, size: int, backend: Optional[DeviceBackendLike] = None
    ) -> "DeviceArray":
        """Allocate an array whose contents are unspecified."""
        backend = _backend_or_default(backend)
        buf = backend.allocate(int(size) * itemsize(kind))
        return cls(kind, size, backend, buf)

    @classmethod
    def from_numpy(
        cls, values: np.ndarray, kind: ScalarKind,
        backend: Optional[DeviceBackendLike] = None,
    ) -> "DeviceArray":
        """
        Upload a one-dimensional host array.

        Raises
        ------
        ValueError
            If `values` is not one-dimensional.
        TypeError
            If `values` does not already have the NumPy dtype of `kind`.
        """
        values = np.asarray(values)
        if values.ndim != 1:
            raise ValueError(f"from_numpy() expects a 1-D array, got ndim={values.ndim}")
        if values.dtype != numpy_dtype(kind):
            raise TypeError(
                f"from_numpy() expects dtype {numpy_dtype(kind)}, got {values.dtype}"
            )
        arr = cls.empty(kind, values.shape[0], backend)
        arr.backend.upload(arr.buffer, values)
        return arr

    @classmethod
    def zero(
        cls, kind: ScalarKind, size: int, backend: Optional[DeviceBackendLike] = None
    ) -> "DeviceArray":
        return cls.from_numpy(np.zeros(int(size), dtype=numpy_dtype(kind)), kind, backend)

    @classmethod
    def full(
        cls, kind: ScalarKind, value, size: int,
        backend: Optional[DeviceBackendLike] = None,
    ) -> "DeviceArray":
        return cls.from_numpy(
            np.full(int(size), value, dtype=numpy_dtype(kind)), kind, backend
        )

    @classmethod
    def arange(
        cls, kind: ScalarKind, size: int, backend: Optional[DeviceBackendLike] = None
    ) -> "DeviceArray":
        """``[0, 1, ..., size - 1]``; not available for mask kinds."""
        if not ArrayVariant(kind).supports(Capability.ARITHMETIC):
            raise TypeMismatchError(kind, "arange() requires an arithmetic kind.")
        return cls.from_numpy(
            np.arange(int(size)).astype(numpy_dtype(kind)), kind, backend
        )

    @classmethod
    def linspace(
        cls, kind: ScalarKind, start: float, stop: float, size: int,
        backend: Optional[DeviceBackendLike] = None,
    ) -> "DeviceArray":
        """Evenly spaced values over ``[start, stop]``; floating kinds only."""
        if not ArrayVariant(kind).supports(Capability.FLOATING):
            raise TypeMismatchError(kind, "linspace() requires a floating-point kind.")
        return cls.from_numpy(
            np.linspace(start, stop, int(size)).astype(numpy_dtype(kind)), kind, backend
        )

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    @property
    def shape(self) -> tuple:
        return (self._size,)

    @property
    def external_shape(self) -> tuple:
        return (self._size,)

    @property
    def variant(self) -> ArrayVariant:
        return ArrayVariant(self.kind, 1)

    def leaves(self):
        yield self

    def __len__(self) -> int:
        return self._size

    def numpy(self) -> np.ndarray:
        """Synchronize, then copy the values into a new host array."""
        out = np.empty(self._size, dtype=numpy_dtype(self.kind))
        self.backend.download(out, self.buffer)
        return out

    def __getitem__(self, index: int):
        if not isinstance(index, (int, np.integer)):
            raise TypeError(f"indices must be integers, got {type(index).__name__}")
        if index < 0 or index >= self._size:
            raise IndexError(f"index {index} out of range for size {self._size}")
        return self.numpy()[int(index)].item()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceArray):
            return NotImplemented
        return (
            self.kind is other.kind
            and self._size == other._size
            and bool(np.array_equal(self.numpy(), other.numpy()))
        )

    def __ne__(self, other: object) -> bool:
        eq = self.__eq__(other)
        return eq if eq is NotImplemented else not eq

    __hash__ = None

    def release(self) -> None:
        """Drop this array's reference to its storage."""
        self.buffer.decref()

    def __repr__(self) -> str:
        if not self.buffer.alive:
            return f"DeviceArray(kind={self.kind}, size={self._size}, released)"
        return f"DeviceArray({self.numpy().tolist()!r}, kind={self.kind})"
