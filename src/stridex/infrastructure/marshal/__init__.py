from ._strided import bulk_op_count, gather_nested, reverse_layout, scatter_nested
from ._validator import TensorDescriptor, check_disjoint, describe, require_interop

__all__ = [
    "TensorDescriptor",
    "bulk_op_count",
    "check_disjoint",
    "describe",
    "gather_nested",
    "require_interop",
    "reverse_layout",
    "scatter_nested",
]
