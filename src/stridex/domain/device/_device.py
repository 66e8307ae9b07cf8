"""
Device descriptors.

Every device backend serves exactly one device, and every foreign tensor
reports the device its memory lives on. Both sides are normalized into a
:class:`Device` so residency checks compare like with like:

- `DeviceType`: the device category (host CPU or CUDA accelerator)
- `Device`: a validated descriptor parsed from strings such as "cpu" or
  "cuda:0"

Foreign frameworks are not consistent about spelling ("cuda" without an index,
device objects instead of strings), so `Device.parse` accepts those forms as
well; the plain constructor stays strict.
"""

from __future__ import annotations

from enum import Enum
import re


class DeviceType(Enum):
    """
    Enumeration of supported device categories.

    Attributes
    ----------
    CPU : DeviceType
        Host memory.
    CUDA : DeviceType
        Memory of an NVIDIA CUDA accelerator.
    """

    CPU = "cpu"
    CUDA = "cuda"


class Device:
    """
    Concrete device descriptor.

    Parameters
    ----------
    device : str
        Device identifier string. Must be either:
        - "cpu"
        - "cuda:<index>", where <index> is a non-negative integer

    Raises
    ------
    ValueError
        If the provided device string does not match the supported formats.

    Notes
    -----
    Descriptors are immutable values: equal strings produce equal, hashable
    devices. They never allocate or hold backend resources.
    """

    __slots__ = ("type", "index")

    _CUDA_PATTERN = re.compile(r"^cuda:(\d+)$")

    def __init__(self, device: str):
        if device == "cpu":
            self.type = DeviceType.CPU
            self.index = None
        else:
            m = self._CUDA_PATTERN.match(device)
            if not m:
                raise ValueError(
                    f"Invalid device '{device}'. Expected 'cpu' or 'cuda:<index>'"
                )
            self.type = DeviceType.CUDA
            self.index = int(m.group(1))

    @classmethod
    def parse(cls, device: object) -> "Device":
        """
        Normalize a framework-provided device value into a `Device`.

        Accepts `Device` instances, canonical strings, a bare "cuda" (mapped
        to "cuda:0"), and objects whose `str()` yields one of those forms
        (e.g. ``torch.device``).

        Raises
        ------
        ValueError
            If the value does not name a CPU or CUDA device.
        """
        if isinstance(device, Device):
            return device
        text = str(device).strip().lower()
        if text == "cuda":
            text = "cuda:0"
        return cls(text)

    def __str__(self) -> str:
        return "cpu" if self.type is DeviceType.CPU else f"cuda:{self.index}"

    def __repr__(self) -> str:
        return f"Device('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Device):
            return NotImplemented
        return (self.type, self.index) == (other.type, other.index)

    def __hash__(self) -> int:
        return hash((self.type, self.index))

    def is_cpu(self) -> bool:
        """Return True if this descriptor names host memory."""
        return self.type is DeviceType.CPU

    def is_cuda(self) -> bool:
        """Return True if this descriptor names a CUDA accelerator."""
        return self.type is DeviceType.CUDA
