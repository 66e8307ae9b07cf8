from ._tensor_like import ArrayInterfaceLike, CudaArrayInterfaceLike, TorchTensorLike

__all__ = ["ArrayInterfaceLike", "CudaArrayInterfaceLike", "TorchTensorLike"]
