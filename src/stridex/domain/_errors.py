"""
Interop- and device-related exceptions for stridex.

This module defines the error taxonomy raised while exchanging data between
external tensors and nested device arrays. Every error is raised
synchronously by the operation that detected it, and validation errors are
always raised *before* any device memory is read or written.

All exceptions derive from :class:`InteropError` so callers can catch the whole
family at once, while each concrete class also inherits the closest built-in
exception (``TypeError``, ``ValueError``, ``RuntimeError``, ``MemoryError``)
so generic handlers keep working.
"""

from __future__ import annotations

from typing import Optional, Sequence


class InteropError(Exception):
    """Base class of every stridex interop error."""


class ShapeMismatchError(InteropError, ValueError):
    """
    Raised when a tensor's rank, extents or strides are incompatible with the
    requested nested array.

    Attributes
    ----------
    expected : object
        The expected rank or shape.
    actual : object
        The rank or shape found on the tensor.
    """

    def __init__(
        self, expected: object, actual: object, detail: Optional[str] = None
    ) -> None:
        """
        Initialize the ShapeMismatchError.

        Parameters
        ----------
        expected : object
            Expected rank (int) or shape (tuple).
        actual : object
            Rank or shape found on the offending tensor.
        detail : Optional[str]
            Extra context appended to the message (e.g. offending strides).
        """
        msg = f"Shape mismatch: expected {expected!r}, got {actual!r}."
        if detail:
            msg = f"{msg} {detail}"
        super().__init__(msg)
        self.expected = expected
        self.actual = actual


class DtypeMismatchError(InteropError, TypeError):
    """
    Raised when a tensor's dtype tag differs from the external analog of the
    requested scalar kind. No implicit conversion is ever attempted.
    """

    def __init__(self, expected: str, actual: object) -> None:
        super().__init__(f"Dtype mismatch: expected '{expected}', got '{actual}'.")
        self.expected = expected
        self.actual = actual


class DeviceMismatchError(InteropError, RuntimeError):
    """
    Raised when a tensor does not reside on the device served by the active
    backend.
    """

    def __init__(self, expected: str, actual: str) -> None:
        """
        Initialize the DeviceMismatchError.

        Parameters
        ----------
        expected : str
            Device identifier of the active backend (e.g. "cuda:0").
        actual : str
            Device identifier reported by the tensor.
        """
        super().__init__(f"Device mismatch: expected '{expected}', got '{actual}'.")
        self.expected = expected
        self.actual = actual


class TypeMismatchError(InteropError, TypeError):
    """
    Raised when an object does not expose a usable tensor introspection
    surface, or when a value cannot take part in an interop call at all.
    """

    def __init__(self, obj: object, reason: Optional[str] = None) -> None:
        name = type(obj).__name__
        msg = f"Object of type '{name}' is not a compatible tensor."
        if reason:
            msg = f"{msg} {reason}"
        super().__init__(msg)
        self.type_name = name


class AllocationError(InteropError, MemoryError):
    """
    Raised when device memory cannot be obtained.

    Allocation is attempted exactly once; this error is fatal for the call
    that raised it and is never retried internally.
    """

    def __init__(self, nbytes: int, device: str, reason: Optional[str] = None) -> None:
        msg = f"Failed to allocate {nbytes} bytes on '{device}'."
        if reason:
            msg = f"{msg} {reason}"
        super().__init__(msg)
        self.nbytes = int(nbytes)
        self.device = device


class UnsupportedTypeError(InteropError, TypeError):
    """
    Raised when a scalar kind (or external dtype tag) has no counterpart on
    the other side of the exchange.
    """

    def __init__(self, kind: object, supported: Sequence[str] = ()) -> None:
        msg = f"Unsupported type: {kind!s}."
        if supported:
            msg = f"{msg} Supported: {', '.join(supported)}."
        super().__init__(msg)
        self.kind = kind
