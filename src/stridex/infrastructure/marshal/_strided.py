"""
Recursive strided marshalling between row-major tensors and nested arrays.

Both directions share one walk. The tensor's shape and strides are given in
row-major order (outer-to-inner); the nested array orders its levels the other
way round (outermost nesting level = last tensor axis). The layout is reversed
exactly once, up front, so that walk axis ``d`` addresses nesting level ``d``:

- for ``d < depth - 1`` the walk visits child ``i`` of the current node with
  the linear element offset advanced by ``i * stride[d]``;
- at the leaf level it issues **one** bulk strided operation covering the
  whole leaf: a gather (tensor -> leaf) on import, a scatter (leaf -> tensor)
  on export, over the element offsets ``offset + i * stride[depth - 1]``.

The host therefore issues ``prod(extent[:depth - 1])`` bulk operations, i.e.
the product of the tensor shape without its first axis, regardless of how
many elements each operation moves.

Preconditions
-------------
- Strides are positive (see the validator); the walk never assumes they equal
  the contiguous defaults.
- Source and destination memory do not alias. Overlap is not detected.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple

from ...domain._scalar import MAX_DEPTH, ScalarKind
from ...domain.device._device_protocol import DeviceBackendLike
from ..arrays._device_array import DeviceArray
from ..arrays._nested_array import ArrayNode, NestedArray
from ..dtypes._translator import itemsize
from ..storage._device_buffer import DeviceBuffer

logger = logging.getLogger(__name__)


def reverse_layout(
    shape: Sequence[int], strides: Sequence[int]
) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    """Convert a paired row-major layout into nesting order."""
    if len(shape) != len(strides):
        raise ValueError(
            f"shape and strides must have equal length, got {len(shape)} and {len(strides)}"
        )
    return tuple(reversed(tuple(shape))), tuple(reversed(tuple(strides)))


def bulk_op_count(shape: Sequence[int]) -> int:
    """Number of bulk operations needed for a row-major `shape`."""
    return math.prod(tuple(shape)[1:])


def _allocate_tree(
    extents: Tuple[int, ...], kind: ScalarKind, backend: DeviceBackendLike
) -> ArrayNode:
    """
    Allocate every leaf before any data moves.

    On failure the leaves allocated so far are released and the error is
    re-raised unchanged.
    """
    leaves: List[DeviceArray] = []

    def _node(level: int) -> ArrayNode:
        if level == len(extents) - 1:
            leaf = DeviceArray.empty(kind, extents[level], backend)
            leaves.append(leaf)
            return leaf
        children = [_node(level + 1) for _ in range(extents[level])]
        return NestedArray(
            children, kind=kind, inner_shape=extents[level + 1:], backend=backend
        )

    try:
        return _node(0)
    except BaseException:
        for leaf in leaves:
            leaf.release()
        raise


def gather_nested(
    source: DeviceBuffer,
    shape: Sequence[int],
    strides: Sequence[int],
    kind: ScalarKind,
    backend: DeviceBackendLike,
) -> Tuple[ArrayNode, int]:
    """
    Build a nested array from a strided row-major region.

    Parameters
    ----------
    source : DeviceBuffer
        Region whose element 0 is the tensor element ``(0, ..., 0)``.
    shape, strides : Sequence[int]
        Row-major extents and element strides of the tensor.
    kind : ScalarKind
        Element kind.
    backend : DeviceBackendLike
        Backend that owns the new array and executes the gathers.

    Returns
    -------
    (ArrayNode, int)
        The new array (depth ``len(shape)``) and the number of bulk gathers
        issued. The gathers are enqueued, not necessarily complete.
    """
    if not 1 <= len(shape) <= MAX_DEPTH:
        raise ValueError(f"rank must be between 1 and {MAX_DEPTH}, got {len(shape)}")
    extents, steps = reverse_layout(shape, strides)
    size = itemsize(kind)
    last = len(extents) - 1
    result = _allocate_tree(extents, kind, backend)
    calls = 0

    def _walk(node: ArrayNode, axis: int, offset: int) -> None:
        nonlocal calls
        if axis == last:
            backend.gather_strided(
                node.buffer, source,
                offset=offset, stride=steps[axis], count=extents[axis], itemsize=size,
            )
            calls += 1
            return
        for i, child in enumerate(node.children):
            _walk(child, axis + 1, offset + i * steps[axis])

    _walk(result, 0, 0)
    logger.debug("gathered shape=%s strides=%s in %d bulk ops", tuple(shape), tuple(strides), calls)
    return result, calls


def scatter_nested(
    array: ArrayNode,
    target: DeviceBuffer,
    strides: Sequence[int],
) -> int:
    """
    Write a nested array into a strided row-major region.

    Parameters
    ----------
    array : ArrayNode
        Source array; its external shape is the destination's shape.
    target : DeviceBuffer
        Region whose element 0 is the tensor element ``(0, ..., 0)``.
    strides : Sequence[int]
        Row-major element strides of the destination.

    Returns
    -------
    int
        Number of bulk scatters issued (enqueued on ``array.backend``).
    """
    # array.shape is already in nesting order; only the strides are reversed
    extents = tuple(array.shape)
    if len(strides) != len(extents):
        raise ValueError(
            f"expected {len(extents)} strides for depth {len(extents)}, got {len(strides)}"
        )
    steps = tuple(reversed(tuple(strides)))
    backend = array.backend
    size = itemsize(array.kind)
    last = len(extents) - 1
    calls = 0

    def _walk(node: ArrayNode, axis: int, offset: int) -> None:
        nonlocal calls
        if axis == last:
            backend.scatter_strided(
                target, node.buffer,
                offset=offset, stride=steps[axis], count=extents[axis], itemsize=size,
            )
            calls += 1
            return
        for i, child in enumerate(node.children):
            _walk(child, axis + 1, offset + i * steps[axis])

    _walk(array, 0, 0)
    logger.debug("scattered shape=%s strides=%s in %d bulk ops", extents, tuple(strides), calls)
    return calls
