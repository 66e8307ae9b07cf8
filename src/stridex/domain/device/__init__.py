from ._device import Device, DeviceType
from ._device_protocol import DeviceBackendLike, DeviceLike

__all__ = ["Device", "DeviceType", "DeviceLike", "DeviceBackendLike"]
