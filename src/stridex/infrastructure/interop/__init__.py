from ._exchange import export_to_managed_array, export_to_tensor, import_tensor
from ._frameworks import HostDeviceTensor, allocate_external
from ._managed import ManagedBufferHandle

__all__ = [
    "HostDeviceTensor",
    "ManagedBufferHandle",
    "allocate_external",
    "export_to_managed_array",
    "export_to_tensor",
    "import_tensor",
]
