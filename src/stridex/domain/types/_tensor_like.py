"""
Domain-level structural typing for foreign tensors.

stridex never imports the frameworks it exchanges data with. Instead, a
foreign tensor is recognised by the introspection surface it exposes. This
module names those surfaces as Protocols so infrastructure code and type
checkers agree on what "tensor-like" means:

- :class:`ArrayInterfaceLike`: objects exporting the NumPy
  ``__array_interface__`` dictionary (host memory).
- :class:`CudaArrayInterfaceLike`: objects exporting
  ``__cuda_array_interface__`` (CuPy, Numba and friends; device memory).
- :class:`TorchTensorLike`: torch-style tensors exposing ``data_ptr()``,
  ``stride()``, ``dtype`` and ``device``.

Strides reported by the array-interface surfaces are in *bytes* (``None``
meaning C-contiguous); torch-style strides are in *elements*. Normalizing
these is the validator's job, not the protocol's.

The validator probes them with ``isinstance`` in a fixed order (torch, CUDA
array interface, NumPy array interface), so objects implementing several
surfaces are classified deterministically.
"""

from __future__ import annotations

from typing import Any, Dict, Protocol, Tuple, runtime_checkable


@runtime_checkable
class ArrayInterfaceLike(Protocol):
    """Host array exporting the NumPy array interface (version 3)."""

    @property
    def __array_interface__(self) -> Dict[str, Any]: ...


@runtime_checkable
class CudaArrayInterfaceLike(Protocol):
    """Device array exporting the CUDA array interface."""

    @property
    def __cuda_array_interface__(self) -> Dict[str, Any]: ...


@runtime_checkable
class TorchTensorLike(Protocol):
    """
    Torch-style tensor.

    Notes
    -----
    ``shape`` is a sequence of ints, ``dtype`` stringifies to e.g.
    ``"torch.float32"`` and ``device`` stringifies to ``"cpu"`` or
    ``"cuda:<index>"``.
    """

    @property
    def shape(self) -> Tuple[int, ...]: ...

    @property
    def dtype(self) -> Any: ...

    @property
    def device(self) -> Any: ...

    def data_ptr(self) -> int: ...

    def stride(self) -> Tuple[int, ...]: ...
