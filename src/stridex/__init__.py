"""
stridex: strided tensor exchange for nested, device-resident lazy arrays.

Typical use::

    import numpy as np
    from stridex import ScalarKind, import_tensor, export_to_tensor

    points = np.random.rand(1024, 3).astype(np.float32)
    vec = import_tensor(points, 2, ScalarKind.FLOAT32)   # shape (3, 1024)
    back = export_to_tensor(vec, eval=True)              # (1024, 3) again
"""

from .domain._errors import (
    AllocationError,
    DeviceMismatchError,
    DtypeMismatchError,
    InteropError,
    ShapeMismatchError,
    TypeMismatchError,
    UnsupportedTypeError,
)
from .domain._scalar import ArrayVariant, Capability, ScalarKind
from .domain.device._device import Device, DeviceType
from .infrastructure._context import (
    InteropConfig,
    InteropContext,
    get_default_context,
    set_default_context,
    synchronize,
)
from .infrastructure._logging import setup_logging
from .infrastructure.arrays import DeviceArray, NestedArray
from .infrastructure.backends import CudaBackend, HostBackend
from .infrastructure.interop import (
    ManagedBufferHandle,
    export_to_managed_array,
    export_to_tensor,
    import_tensor,
)

__version__ = "0.1.0"

__all__ = [
    "AllocationError",
    "ArrayVariant",
    "Capability",
    "CudaBackend",
    "Device",
    "DeviceArray",
    "DeviceMismatchError",
    "DeviceType",
    "DtypeMismatchError",
    "HostBackend",
    "InteropConfig",
    "InteropContext",
    "InteropError",
    "ManagedBufferHandle",
    "NestedArray",
    "ScalarKind",
    "ShapeMismatchError",
    "TypeMismatchError",
    "UnsupportedTypeError",
    "export_to_managed_array",
    "export_to_tensor",
    "get_default_context",
    "import_tensor",
    "set_default_context",
    "setup_logging",
    "synchronize",
]
