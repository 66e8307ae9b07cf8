"""
Fixed-arity nested device arrays.

A `NestedArray` of depth ``D`` (2 <= D <= 4) is an ordered list of children of
depth ``D - 1``, all with the same shape; depth-1 arrays are plain
`DeviceArray` leaves. ``shape`` lists the extents from the outermost nesting
level to the leaf length.

Axis convention
---------------
The nesting order is the *reverse* of a row-major tensor's axis order: the
outermost nesting level corresponds to the tensor's last axis and the leaf
length to its first axis. A batch of ``N`` 3-vectors is a depth-2 array of
shape ``(3, N)`` and exchanges with an ``(N, 3)`` tensor. `external_shape`
returns the tensor-side shape.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ...domain._scalar import MAX_DEPTH, ArrayVariant, ScalarKind
from ...domain.device._device_protocol import DeviceBackendLike
from ..dtypes._translator import numpy_dtype
from ._device_array import DeviceArray, _backend_or_default

ArrayNode = Union[DeviceArray, "NestedArray"]

_COMPONENTS = ("x", "y", "z", "w")


class NestedArray:
    """
    Nested device array of depth 2 to 4.

    Parameters
    ----------
    children : Sequence[ArrayNode]
        Children of depth ``depth - 1``; all must share kind, shape and
        backend.
    kind, inner_shape, backend : optional
        Required only when `children` is empty, to pin down what the missing
        children would look like.

    Raises
    ------
    ValueError
        If the children disagree on shape, kind or backend, or the resulting
        depth exceeds 4.
    """

    def __init__(
        self,
        children: Sequence[ArrayNode],
        *,
        kind: Optional[ScalarKind] = None,
        inner_shape: Optional[Tuple[int, ...]] = None,
        backend: Optional[DeviceBackendLike] = None,
    ) -> None:
        children = list(children)
        if children:
            first = children[0]
            kind = first.kind if kind is None else kind
            inner_shape = first.shape if inner_shape is None else tuple(inner_shape)
            backend = first.backend if backend is None else backend
            for child in children:
                self._check_child(child, kind, inner_shape, backend)
        elif kind is None or inner_shape is None:
            raise ValueError("An empty NestedArray needs explicit kind and inner_shape.")
        else:
            backend = _backend_or_default(backend)

        inner_shape = tuple(int(s) for s in inner_shape)
        if not 1 <= len(inner_shape) < MAX_DEPTH:
            raise ValueError(
                f"NestedArray depth must be between 2 and {MAX_DEPTH}, "
                f"got {len(inner_shape) + 1}"
            )
        self.kind = kind
        self.backend = backend
        self._inner_shape = inner_shape
        self._children: List[ArrayNode] = children

    @staticmethod
    def _check_child(child, kind, inner_shape, backend) -> None:
        if not isinstance(child, (DeviceArray, NestedArray)):
            raise TypeError(
                f"children must be DeviceArray or NestedArray, got {type(child).__name__}"
            )
        if child.kind is not kind:
            raise ValueError(f"child kind {child.kind} differs from {kind}")
        if tuple(child.shape) != tuple(inner_shape):
            raise ValueError(f"child shape {child.shape} differs from {tuple(inner_shape)}")
        if child.backend is not backend:
            raise ValueError("children must live on the same backend")

    # -----------------------------------------------------------------
    # Factories
    # -----------------------------------------------------------------

    @classmethod
    def from_children(cls, children: Sequence[ArrayNode]) -> "NestedArray":
        return cls(children)

    @classmethod
    def zero(
        cls, kind: ScalarKind, shape: Sequence[int],
        backend: Optional[DeviceBackendLike] = None,
    ) -> "NestedArray":
        """Zero-filled array with the given internal `shape` (depth >= 2)."""
        return _build(
            tuple(int(s) for s in shape), kind, _backend_or_default(backend),
            lambda size, b: DeviceArray.zero(kind, size, b),
        )

    @classmethod
    def empty(
        cls, kind: ScalarKind, shape: Sequence[int],
        backend: Optional[DeviceBackendLike] = None,
    ) -> "NestedArray":
        return _build(
            tuple(int(s) for s in shape), kind, _backend_or_default(backend),
            lambda size, b: DeviceArray.empty(kind, size, b),
        )

    # -----------------------------------------------------------------
    # Structure
    # -----------------------------------------------------------------

    @property
    def depth(self) -> int:
        return len(self._inner_shape) + 1

    @property
    def shape(self) -> Tuple[int, ...]:
        return (len(self._children),) + self._inner_shape

    @property
    def external_shape(self) -> Tuple[int, ...]:
        return tuple(reversed(self.shape))

    @property
    def variant(self) -> ArrayVariant:
        return ArrayVariant(self.kind, self.depth)

    @property
    def children(self) -> Tuple[ArrayNode, ...]:
        return tuple(self._children)

    def __len__(self) -> int:
        return len(self._children)

    def __getitem__(self, index: int) -> ArrayNode:
        if index < 0 or index >= len(self._children):
            raise IndexError(f"index {index} out of range for arity {len(self._children)}")
        return self._children[index]

    def __setitem__(self, index: int, value: ArrayNode) -> None:
        if index < 0 or index >= len(self._children):
            raise IndexError(f"index {index} out of range for arity {len(self._children)}")
        self._check_child(value, self.kind, self._inner_shape, self.backend)
        self._children[index] = value

    def leaves(self) -> Iterator[DeviceArray]:
        """Leaf arrays in nesting order (outermost index varies slowest)."""
        for child in self._children:
            yield from child.leaves()

    def numpy(self) -> np.ndarray:
        """Host copy in the *external* (tensor) axis order."""
        if not self._children:
            return np.empty(self.external_shape, dtype=numpy_dtype(self.kind))
        return np.stack([child.numpy() for child in self._children], axis=-1)

    def release(self) -> None:
        for leaf in self.leaves():
            leaf.release()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NestedArray):
            return NotImplemented
        return (
            self.kind is other.kind
            and self.shape == other.shape
            and all(a == b for a, b in zip(self._children, other._children))
        )

    def __ne__(self, other: object) -> bool:
        eq = self.__eq__(other)
        return eq if eq is NotImplemented else not eq

    __hash__ = None

    def __repr__(self) -> str:
        return f"NestedArray(shape={self.shape}, kind={self.kind}, children={self._children!r})"


def _component(i: int):
    def _get(self: NestedArray) -> ArrayNode:
        return self[i]

    def _set(self: NestedArray, value: ArrayNode) -> None:
        self[i] = value

    return property(_get, _set, doc=f"Child {i} ('{_COMPONENTS[i]}' component).")


for _i, _name in enumerate(_COMPONENTS):
    setattr(NestedArray, _name, _component(_i))


def _build(shape, kind, backend, make_leaf) -> ArrayNode:
    if len(shape) < 2 or len(shape) > MAX_DEPTH:
        raise ValueError(
            f"NestedArray shape must have 2 to {MAX_DEPTH} entries, got {shape}"
        )
    return _build_node(shape, kind, backend, make_leaf)


def _build_node(shape, kind, backend, make_leaf) -> ArrayNode:
    if len(shape) == 1:
        return make_leaf(shape[0], backend)
    children = [_build_node(shape[1:], kind, backend, make_leaf) for _ in range(shape[0])]
    return NestedArray(children, kind=kind, inner_shape=shape[1:], backend=backend)
