from ._device_array import DeviceArray
from ._nested_array import ArrayNode, NestedArray

__all__ = ["ArrayNode", "DeviceArray", "NestedArray"]
