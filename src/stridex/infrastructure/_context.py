"""
Interop configuration and the process-default context.

An `InteropContext` binds the interop entry points to one device backend.
Most callers never build one explicitly: the entry points fall back to
`get_default_context()`, which is created lazily from environment variables.

Environment variables
---------------------
STRIDEX_BACKEND : "host" | "cuda"
    Backend implementation (default "host").
STRIDEX_DEVICE : str
    Device identifier (default "cpu" for host, "cuda:0" for cuda).
STRIDEX_HOST_CAPACITY : int
    Byte limit of the host backend's owned memory (default unbounded).
STRIDEX_CUDART : str
    Explicit path of the CUDA runtime library.
STRIDEX_LOG_LEVEL : str
    Log level applied when the default context is created.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import threading
from typing import Mapping, Optional

from ..domain.device._device_protocol import DeviceBackendLike
from ._logging import setup_logging
from .backends._cuda_backend import CudaBackend
from .backends._host_backend import HostBackend

logger = logging.getLogger(__name__)

_BACKENDS = ("host", "cuda")


@dataclass(frozen=True)
class InteropConfig:
    """
    Backend selection and tuning knobs.

    Attributes
    ----------
    backend : str
        "host" or "cuda".
    device : str, optional
        Device identifier; defaults depend on `backend`.
    host_capacity : int, optional
        Byte limit for the host backend.
    cudart_path : str, optional
        Explicit CUDA runtime path for the cuda backend.
    log_level : str, optional
        If set, applied through `setup_logging` when a context is created.
    """

    backend: str = "host"
    device: Optional[str] = None
    host_capacity: Optional[int] = None
    cudart_path: Optional[str] = None
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        if self.backend not in _BACKENDS:
            raise ValueError(
                f"Unknown backend '{self.backend}'. Expected one of {_BACKENDS}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InteropConfig":
        env = os.environ if environ is None else environ
        capacity = env.get("STRIDEX_HOST_CAPACITY") or None
        return cls(
            backend=(env.get("STRIDEX_BACKEND") or "host").strip().lower(),
            device=env.get("STRIDEX_DEVICE") or None,
            host_capacity=int(capacity) if capacity is not None else None,
            cudart_path=env.get("STRIDEX_CUDART") or None,
            log_level=env.get("STRIDEX_LOG_LEVEL") or None,
        )

    def create_backend(self) -> DeviceBackendLike:
        if self.backend == "cuda":
            return CudaBackend(self.device or "cuda:0", runtime_path=self.cudart_path)
        return HostBackend(self.host_capacity, device=self.device or "cpu")


class InteropContext:
    """
    A device backend plus the synchronization entry point bound to it.

    Parameters
    ----------
    backend : DeviceBackendLike
        Backend that owns device memory and the deferred work queue.
    """

    def __init__(self, backend: DeviceBackendLike) -> None:
        if not isinstance(backend, DeviceBackendLike):
            raise TypeError(
                f"backend must implement DeviceBackendLike, got {type(backend).__name__}"
            )
        self.backend = backend

    @classmethod
    def from_config(cls, config: InteropConfig) -> "InteropContext":
        if config.log_level:
            setup_logging(config.log_level)
        ctx = cls(config.create_backend())
        logger.info("created interop context on %s", ctx.device)
        return ctx

    @property
    def device(self):
        return self.backend.device

    def synchronize(self) -> None:
        """Block until all deferred work on this context's backend is done."""
        self.backend.synchronize()

    def __repr__(self) -> str:
        return f"InteropContext({self.backend!r})"


_default_lock = threading.Lock()
_default_context: Optional[InteropContext] = None


def get_default_context() -> InteropContext:
    """Return the process-default context, creating it from the environment."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = InteropContext.from_config(InteropConfig.from_env())
        return _default_context


def set_default_context(context: Optional[InteropContext]) -> None:
    """Replace the process-default context (``None`` resets it)."""
    global _default_context
    with _default_lock:
        _default_context = context


def resolve_backend(context: Optional[InteropContext] = None) -> DeviceBackendLike:
    return (context or get_default_context()).backend


def synchronize(context: Optional[InteropContext] = None) -> None:
    """Explicit synchronization barrier for deferred work."""
    resolve_backend(context).synchronize()
