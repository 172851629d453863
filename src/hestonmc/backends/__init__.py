"""
Execution backends for Heston block simulations.

This subpackage provides pluggable execution strategies:

CPU Backends
    :class:`SequentialBackend` — Single-threaded execution
    :class:`ThreadBackend` — Thread-based parallelism
    :class:`ProcessBackend` — Process-based parallelism

Torch Backend
    :class:`TorchBackend` — Tensor execution on CPU or CUDA

Utilities
    :func:`make_blocks` — Chunking helper for parallel work distribution
    :func:`spawn_block_seeds` — Per-block seed sequences
    :func:`block_rng` — Per-block Philox generator
    :func:`worker_run_blocks` — Top-level worker for process pools
    :func:`is_windows_platform` — Platform detection helper

Torch Utilities
    :func:`make_torch_generator` — Create explicit Torch RNG generators
    :func:`validate_torch_device` — Check Torch device availability
    :data:`VALID_TORCH_DEVICES` — Supported Torch device types

Protocol
    :class:`ExecutionBackend` — Interface for custom backends
"""

from .base import (
    ExecutionBackend,
    block_rng,
    is_windows_platform,
    make_blocks,
    spawn_block_seeds,
    worker_run_blocks,
)
from .parallel import ProcessBackend, ThreadBackend
from .sequential import SequentialBackend

# Torch-related names for lazy import
_TORCH_NAMES = (
    "TorchBackend",
    "import_torch",
    "make_torch_generator",
    "validate_torch_device",
    "VALID_TORCH_DEVICES",
)


def __getattr__(name: str):
    """Lazy import Torch backends and utilities to avoid hard torch dependency."""
    if name in _TORCH_NAMES:
        from . import torch as torch_backend  # pylint: disable=import-outside-toplevel
        return getattr(torch_backend, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# pylint: disable=undefined-all-variable
__all__ = [
    # Protocol
    "ExecutionBackend",
    # CPU Backends
    "SequentialBackend",
    "ThreadBackend",
    "ProcessBackend",
    # Torch Backend (lazily imported via __getattr__)
    "TorchBackend",
    # Utilities
    "make_blocks",
    "spawn_block_seeds",
    "block_rng",
    "worker_run_blocks",
    "is_windows_platform",
    # Torch utilities (lazily imported via __getattr__)
    "import_torch",
    "make_torch_generator",
    "validate_torch_device",
    "VALID_TORCH_DEVICES",
]
