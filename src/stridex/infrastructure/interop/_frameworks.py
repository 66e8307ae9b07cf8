"""
Allocation of fresh external tensors.

When `export_to_tensor` is called without a destination, the tensor is created
by the external framework that matches the backend: NumPy for host memory,
torch for CUDA memory. torch is imported only when it is actually needed.

A host backend serving a ``cuda:N`` identifier emulates an accelerator. Its
fresh exports are NumPy arrays wrapped in `HostDeviceTensor`, which reports
that device through ``__cuda_array_interface__`` and converts back to NumPy
with ``numpy.asarray``.
"""

from __future__ import annotations

from typing import Any, Dict, Sequence

import numpy as np

from ...domain._scalar import ScalarKind
from ...domain.device._device import Device
from ..dtypes._translator import numpy_dtype, to_external_tag


class _DeviceId:
    """Minimal device attribute in the style of CuPy's ``array.device``."""

    def __init__(self, index: int) -> None:
        self.id = int(index)

    def __str__(self) -> str:
        return f"cuda:{self.id}"


class HostDeviceTensor:
    """
    Host array presented as resident on an emulated CUDA device.

    Parameters
    ----------
    data : np.ndarray
        Backing host array.
    device : Device
        CUDA device the array claims to live on.
    """

    def __init__(self, data: np.ndarray, device: Device) -> None:
        if not device.is_cuda():
            raise ValueError(f"HostDeviceTensor requires a CUDA device, got '{device}'")
        self.data = data
        self.device = _DeviceId(device.index or 0)

    @property
    def shape(self):
        return self.data.shape

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def __cuda_array_interface__(self) -> Dict[str, Any]:
        iface = self.data.__array_interface__
        return {
            "shape": iface["shape"],
            "strides": iface["strides"],
            "typestr": iface["typestr"],
            "data": iface["data"],
            "version": 3,
            "stream": None,
        }

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        if dtype is None or np.dtype(dtype) == self.data.dtype:
            return self.data.copy() if copy else self.data
        return self.data.astype(dtype)

    def __repr__(self) -> str:
        return f"HostDeviceTensor({self.data!r}, device='{self.device}')"


def allocate_external(
    framework: str, shape: Sequence[int], kind: ScalarKind, device: object
) -> object:
    """
    Create an uninitialized, C-contiguous external tensor on `device`.

    Raises
    ------
    ValueError
        If `framework` is unknown.
    ImportError
        If the framework is torch and torch is not installed.
    """
    shape = tuple(int(n) for n in shape)
    if framework == "numpy":
        data = np.empty(shape, dtype=numpy_dtype(kind))
        dev = Device.parse(device)
        return HostDeviceTensor(data, dev) if dev.is_cuda() else data
    if framework == "torch":
        import torch

        return torch.empty(
            shape, dtype=getattr(torch, to_external_tag(kind)), device=str(device)
        )
    raise ValueError(f"Unknown external framework '{framework}'")
