from ._base import BackendStats, DeviceBackendBase
from ._cuda_backend import CudaBackend
from ._host_backend import HostBackend

__all__ = ["BackendStats", "DeviceBackendBase", "CudaBackend", "HostBackend"]
