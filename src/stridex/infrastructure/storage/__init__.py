from ._device_buffer import DeviceBuffer, allocate_buffer, map_external

__all__ = ["DeviceBuffer", "allocate_buffer", "map_external"]
