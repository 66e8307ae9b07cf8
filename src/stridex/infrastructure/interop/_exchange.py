"""
Tensor exchange entry points.

These three functions are the whole surface the rest of the engine needs:

- `import_tensor`: foreign tensor -> nested array (gather)
- `export_to_tensor`: nested array -> foreign tensor (scatter)
- `export_to_managed_array`: nested array -> managed buffer + NumPy view

Callers never deal with stride reversal, buffer ownership modes or bulk-call
counts. Every call validates completely before it maps, allocates or copies
anything.

Synchronization
---------------
Imports return as soon as their gathers are enqueued; reading the array back
(e.g. ``array.numpy()``) waits for them. Exports honour the `eval` flag:
``eval=True`` synchronizes before returning so the result is immediately
readable, ``eval=False`` leaves the scatter pending and the caller must call
`synchronize()` before reading the destination.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional, Tuple

import numpy as np

from ...domain._errors import ShapeMismatchError, TypeMismatchError
from ...domain._scalar import ArrayVariant, ScalarKind
from .._context import InteropContext, resolve_backend
from ..arrays._device_array import DeviceArray
from ..arrays._nested_array import ArrayNode, NestedArray
from ..dtypes._translator import itemsize, numpy_dtype, to_external_tag
from ..marshal._strided import gather_nested, scatter_nested
from ..marshal._validator import check_disjoint, describe, require_interop
from ._frameworks import allocate_external
from ._managed import ManagedBufferHandle

logger = logging.getLogger(__name__)


def _require_array(array: Any) -> None:
    if not isinstance(array, (DeviceArray, NestedArray)):
        raise TypeMismatchError(array, "Expected a DeviceArray or NestedArray.")
    require_interop(array.variant, array)


def import_tensor(
    obj: Any,
    depth: int,
    kind: ScalarKind,
    *,
    context: Optional[InteropContext] = None,
) -> ArrayNode:
    """
    Copy a foreign tensor into a new nested array.

    Parameters
    ----------
    obj : Any
        Foreign tensor of rank `depth` with the external dtype of `kind`,
        resident on the context's device. Its strides are honoured as given.
    depth : int
        Nesting depth of the result (1 through 4).
    kind : ScalarKind
        Element kind of the result.
    context : InteropContext, optional
        Defaults to the process-default context.

    Returns
    -------
    ArrayNode
        A `DeviceArray` for depth 1, otherwise a `NestedArray` whose shape is
        the tensor shape reversed.

    Raises
    ------
    TypeMismatchError, ShapeMismatchError, DtypeMismatchError,
    DeviceMismatchError, UnsupportedTypeError, AllocationError

    Notes
    -----
    The caller must not modify `obj` until the import has been synchronized;
    the tensor itself is kept alive by the pending gathers.
    For `__cuda_array_interface__` producers, pending work on the stream they
    advertise must be finished before this call; that stream is not waited
    on.
    """
    backend = resolve_backend(context)
    require_interop(ArrayVariant(kind, depth), obj)
    desc = describe(obj, depth, kind, backend.device)

    source = backend.map_external(desc.ptr, desc.span_bytes, owner=obj)
    try:
        array, calls = gather_nested(source, desc.shape, desc.strides, kind, backend)
    finally:
        source.decref()
    logger.debug("imported %s tensor %s with %d bulk gathers", kind, desc.shape, calls)
    return array


def export_to_tensor(
    array: ArrayNode,
    eval: bool = True,
    *,
    out: Any = None,
    context: Optional[InteropContext] = None,
) -> Any:
    """
    Copy a nested array into a foreign tensor.

    Parameters
    ----------
    array : ArrayNode
        Source array.
    eval : bool
        Synchronize before returning (True) or leave the copy pending (False).
    out : Any, optional
        Destination tensor. Must have the array's external shape, its kind's
        dtype, live on the array's device, be writable and have a
        non-overlapping layout; any positive strides are honoured. When
        omitted, a fresh tensor is allocated by the backend's framework.
    context : InteropContext, optional
        Accepted for symmetry; the array's own backend performs the copy.

    Returns
    -------
    Any
        `out`, or the freshly allocated tensor.
    """
    _require_array(array)
    backend = array.backend
    if context is not None and context.backend is not backend:
        raise TypeMismatchError(array, "Array belongs to a different context.")
    shape = tuple(array.external_shape)
    to_external_tag(array.kind)

    if out is None:
        out = allocate_external(backend.framework, shape, array.kind, backend.device)
    desc = describe(out, array.depth, array.kind, backend.device)
    if desc.shape != shape:
        raise ShapeMismatchError(shape, desc.shape, "Destination shape differs.")
    if desc.readonly:
        raise TypeMismatchError(out, "Destination is read-only.")
    check_disjoint(desc)

    target = backend.map_external(desc.ptr, desc.span_bytes, owner=out)
    try:
        calls = scatter_nested(array, target, desc.strides)
    finally:
        target.decref()
    if eval:
        backend.synchronize()
    logger.debug("exported %s array to tensor %s with %d bulk scatters (eval=%s)",
                 array.kind, shape, calls, eval)
    return out


def export_to_managed_array(
    array: ArrayNode,
    eval: bool = True,
    *,
    context: Optional[InteropContext] = None,
) -> Tuple[ManagedBufferHandle, np.ndarray]:
    """
    Copy a nested array into a freshly allocated managed buffer.

    Returns
    -------
    (ManagedBufferHandle, numpy.ndarray)
        The handle owns the buffer; the array is a C-contiguous view of it in
        the external axis order. Keep the handle alive while using the view.
    """
    _require_array(array)
    backend = array.backend
    if context is not None and context.backend is not backend:
        raise TypeMismatchError(array, "Array belongs to a different context.")
    shape = tuple(array.external_shape)
    dtype = numpy_dtype(array.kind)

    strides, step = [], 1
    for n in reversed(shape):
        strides.append(step)
        step *= n
    strides = tuple(reversed(strides))

    buffer = backend.allocate(math.prod(shape) * itemsize(array.kind), managed=True)
    handle = ManagedBufferHandle(buffer, shape, dtype)
    try:
        scatter_nested(array, buffer, strides)
    except BaseException:
        handle.release()
        raise
    if eval:
        backend.synchronize()
    return handle, handle.view()
