"""
Scalar kinds and array capability variants.

The deferred engine stores one scalar kind per array. Which groups of
operations an array supports (arithmetic, floating-point math, mask logic,
gradients, tensor interop) is declared explicitly by an `ArrayVariant`
instead of being inferred from the scalar type at every call site: callers
ask ``variant.supports(Capability.X)`` and bind or reject accordingly.

Capability rules
----------------
- every non-boolean kind declares ARITHMETIC
- floating-point kinds additionally declare FLOATING
- the boolean kind declares MASK
- differentiable variants declare DIFFERENTIABLE and do **not** declare
  INTEROP; gradients must be detached before data leaves the engine
- every other variant declares INTEROP
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

MAX_DEPTH = 4


class ScalarKind(Enum):
    """
    Element kinds stored by device arrays.

    The enum value is the canonical lowercase name of the kind. Not every
    kind has an external dtype analog (see the dtype translator).
    """

    BOOL = "bool"
    INT8 = "int8"
    UINT8 = "uint8"
    INT16 = "int16"
    INT32 = "int32"
    UINT32 = "uint32"
    INT64 = "int64"
    UINT64 = "uint64"
    FLOAT16 = "float16"
    FLOAT32 = "float32"
    FLOAT64 = "float64"

    @property
    def is_floating(self) -> bool:
        return self in (ScalarKind.FLOAT16, ScalarKind.FLOAT32, ScalarKind.FLOAT64)

    @property
    def is_mask(self) -> bool:
        return self is ScalarKind.BOOL

    def __str__(self) -> str:
        return self.value


class Capability(Enum):
    """Operation groups an array variant may declare."""

    ARITHMETIC = "arithmetic"
    FLOATING = "floating"
    MASK = "mask"
    DIFFERENTIABLE = "differentiable"
    INTEROP = "interop"


@dataclass(frozen=True)
class ArrayVariant:
    """
    A concrete array kind: scalar kind, nesting depth and differentiability.

    Parameters
    ----------
    kind : ScalarKind
        Element kind.
    depth : int
        Number of nesting levels, 1 through 4.
    differentiable : bool
        Whether the variant participates in gradient tracking.

    Raises
    ------
    ValueError
        If `depth` is outside ``[1, 4]``.
    """

    kind: ScalarKind
    depth: int = 1
    differentiable: bool = False

    def __post_init__(self) -> None:
        if not 1 <= int(self.depth) <= MAX_DEPTH:
            raise ValueError(
                f"depth must be between 1 and {MAX_DEPTH}, got {self.depth}"
            )

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        caps = set()
        if self.kind.is_mask:
            caps.add(Capability.MASK)
        else:
            caps.add(Capability.ARITHMETIC)
        if self.kind.is_floating:
            caps.add(Capability.FLOATING)
        if self.differentiable:
            caps.add(Capability.DIFFERENTIABLE)
        else:
            caps.add(Capability.INTEROP)
        return frozenset(caps)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities
