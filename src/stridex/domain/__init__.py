"""Backend-agnostic contracts: errors, devices, scalar kinds and protocols."""

from ._errors import (
    AllocationError,
    DeviceMismatchError,
    DtypeMismatchError,
    InteropError,
    ShapeMismatchError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from ._scalar import MAX_DEPTH, ArrayVariant, Capability, ScalarKind
from .device import Device, DeviceBackendLike, DeviceLike, DeviceType
