"""
Foreign tensor introspection and validation.

`describe` turns a foreign tensor into a `TensorDescriptor` (shape, element
strides, data pointer, dtype tag, device) after checking that it can be
exchanged with a nested array of the requested depth and scalar kind. It is
read-only and runs before any memory is mapped, allocated or copied, so a
failing check guarantees that nothing was touched.

Checks, in order
----------------
0. the requested kind has an external tag (`UnsupportedTypeError`)
1. the object exposes a recognised introspection surface (`TypeMismatchError`)
2. rank equals the expected depth (`ShapeMismatchError`)
3. dtype tag equals the external tag of the expected kind (`DtypeMismatchError`)
4. the memory lives on the backend's device (`DeviceMismatchError`)
5. strides are whole elements and positive on every axis longer than one
   (`ShapeMismatchError`)
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Optional, Tuple

import numpy as np

from ...domain._errors import (
    DeviceMismatchError,
    DtypeMismatchError,
    ShapeMismatchError,
    TypeMismatchError,
)
from ...domain._scalar import MAX_DEPTH, ArrayVariant, Capability, ScalarKind
from ...domain.device._device import Device
from ...domain.types._tensor_like import (
    ArrayInterfaceLike,
    CudaArrayInterfaceLike,
    TorchTensorLike,
)
from ..dtypes._translator import itemsize, normalize_tag, tag_from_typestr, to_external_tag


@dataclass(frozen=True)
class TensorDescriptor:
    """
    Validated layout of a foreign tensor.

    Attributes
    ----------
    shape : Tuple[int, ...]
        Extents in row-major (outer-to-inner) axis order.
    strides : Tuple[int, ...]
        Strides in elements, paired with `shape`.
    ptr : int
        Address of the element at index ``(0, ..., 0)``.
    tag : str
        External dtype tag.
    device : str
        Canonical device string.
    itemsize : int
        Bytes per element.
    readonly : bool
        True if the memory must not be written.
    """

    shape: Tuple[int, ...]
    strides: Tuple[int, ...]
    ptr: int
    tag: str
    device: str
    itemsize: int
    readonly: bool = False

    @property
    def size(self) -> int:
        return math.prod(self.shape)

    @property
    def span_bytes(self) -> int:
        """Bytes from the first to one past the last addressed element."""
        if self.size == 0:
            return 0
        last = sum((n - 1) * s for n, s in zip(self.shape, self.strides))
        return (last + 1) * self.itemsize


@dataclass(frozen=True)
class _RawTensor:
    shape: Tuple[int, ...]
    strides: Optional[Tuple[int, ...]]
    strides_in_bytes: bool
    ptr: int
    tag: Optional[str]
    tag_text: str
    device: str
    readonly: bool


def _canonical_device(value: Any) -> str:
    try:
        return str(Device.parse(value))
    except ValueError:
        return str(value)


def _from_torch(obj: Any) -> _RawTensor:
    return _RawTensor(
        shape=tuple(int(n) for n in obj.shape),
        strides=tuple(int(s) for s in obj.stride()),
        strides_in_bytes=False,
        ptr=int(obj.data_ptr()),
        tag=normalize_tag(obj.dtype),
        tag_text=str(obj.dtype),
        device=_canonical_device(obj.device),
        readonly=False,
    )


def _from_interface(obj: Any, iface: dict, device: str) -> _RawTensor:
    # the "stream" key of a v3 CUDA interface is not waited on; work on that
    # stream must be complete before the call (gathers use the default stream)
    data = iface.get("data")
    if not isinstance(data, tuple) or len(data) != 2:
        raise TypeMismatchError(obj, "Array interface without a (pointer, readonly) pair.")
    shape = iface.get("shape")
    if not isinstance(shape, (tuple, list)):
        raise TypeMismatchError(obj, "Array interface without a shape tuple.")
    strides = iface.get("strides")
    typestr = str(iface.get("typestr", ""))
    return _RawTensor(
        shape=tuple(int(n) for n in shape),
        strides=None if strides is None else tuple(int(s) for s in strides),
        strides_in_bytes=True,
        ptr=int(data[0] or 0),
        tag=tag_from_typestr(typestr),
        tag_text=typestr,
        device=device,
        readonly=bool(data[1]),
    )


def _introspect(obj: Any) -> _RawTensor:
    # torch first: its CPU tensors raise from __cuda_array_interface__
    if isinstance(obj, TorchTensorLike):
        return _from_torch(obj)

    if isinstance(obj, CudaArrayInterfaceLike):
        cai = obj.__cuda_array_interface__
        if isinstance(cai, dict):
            index = getattr(getattr(obj, "device", None), "id", 0)
            return _from_interface(obj, cai, f"cuda:{int(index or 0)}")

    if isinstance(obj, ArrayInterfaceLike):
        ai = obj.__array_interface__
        if isinstance(ai, dict):
            return _from_interface(obj, ai, "cpu")

    raise TypeMismatchError(obj, "No tensor introspection surface found.")


def _element_strides(raw: _RawTensor, size: int) -> Tuple[int, ...]:
    if raw.strides is None:
        # C-contiguous
        strides, step = [], 1
        for n in reversed(raw.shape):
            strides.append(step)
            step *= max(n, 1)
        elems = tuple(reversed(strides))
    elif raw.strides_in_bytes:
        if any(s % size for s in raw.strides):
            raise ShapeMismatchError(
                f"strides divisible by itemsize {size}",
                raw.strides,
                "Byte strides do not address whole elements.",
            )
        elems = tuple(s // size for s in raw.strides)
    else:
        elems = raw.strides

    out = []
    for n, s in zip(raw.shape, elems):
        if n <= 1:
            out.append(1)
        elif s < 1:
            raise ShapeMismatchError(
                "positive strides",
                elems,
                "Only positive strides are supported on axes longer than one.",
            )
        else:
            out.append(int(s))
    return tuple(out)


def describe(
    obj: Any, expected_depth: int, expected_kind: ScalarKind, device: object
) -> TensorDescriptor:
    """
    Validate `obj` and return its layout.

    Parameters
    ----------
    obj : Any
        Foreign tensor.
    expected_depth : int
        Required rank, 1 through 4.
    expected_kind : ScalarKind
        Required scalar kind; the tensor must carry its exact external tag.
    device : object
        Device the memory must reside on (typically ``backend.device``).

    Returns
    -------
    TensorDescriptor

    Raises
    ------
    UnsupportedTypeError
        If `expected_kind` has no external tag.
    TypeMismatchError, ShapeMismatchError, DtypeMismatchError, DeviceMismatchError
        As listed in the module docstring.
    """
    if not 1 <= int(expected_depth) <= MAX_DEPTH:
        raise ValueError(
            f"expected_depth must be between 1 and {MAX_DEPTH}, got {expected_depth}"
        )
    expected_tag = to_external_tag(expected_kind)
    raw = _introspect(obj)

    if len(raw.shape) != int(expected_depth):
        raise ShapeMismatchError(int(expected_depth), len(raw.shape), "Rank differs.")
    if raw.tag != expected_tag:
        raise DtypeMismatchError(expected_tag, raw.tag or raw.tag_text)
    expected_device = _canonical_device(device)
    if raw.device != expected_device:
        raise DeviceMismatchError(expected_device, raw.device)
    if any(n < 0 for n in raw.shape):
        raise ShapeMismatchError("non-negative extents", raw.shape)

    size = itemsize(expected_kind)
    return TensorDescriptor(
        shape=raw.shape,
        strides=_element_strides(raw, size),
        ptr=raw.ptr,
        tag=expected_tag,
        device=raw.device,
        itemsize=size,
        readonly=raw.readonly,
    )


def check_disjoint(desc: TensorDescriptor) -> None:
    """
    Ensure no two index tuples of `desc` address the same element.

    Required for scatter destinations; gathers may read overlapping layouts.
    Layouts whose strides nest (each stride clears the span of the smaller
    ones) are accepted without enumeration; any other layout is checked
    exactly by listing its element offsets.

    Raises
    ------
    ShapeMismatchError
        If two index tuples map to the same element.
    """
    axes = sorted(
        ((s, n) for n, s in zip(desc.shape, desc.strides) if n > 1),
        key=lambda a: a[0],
    )
    reach = 1
    for stride, extent in axes:
        if stride < reach:
            break
        reach += (extent - 1) * stride
    else:
        return

    offsets = np.zeros(1, dtype=np.int64)
    for stride, extent in axes:
        steps = np.arange(extent, dtype=np.int64) * stride
        offsets = (offsets[:, None] + steps[None, :]).ravel()
    if np.unique(offsets).size != offsets.size:
        raise ShapeMismatchError(
            "non-overlapping strides",
            desc.strides,
            "Destination layout maps several indices to one element.",
        )


def require_interop(variant: ArrayVariant, obj: object = None) -> None:
    """Reject array variants that do not declare the INTEROP capability."""
    if not variant.supports(Capability.INTEROP):
        raise TypeMismatchError(
            obj if obj is not None else variant,
            "Differentiable arrays must be detached before tensor exchange.",
        )
