r"""
Torch execution backend for Heston block simulations.

This module provides:

Classes
    :class:`TorchBackend` — Runs every block with PyTorch tensors on CPU or CUDA

Functions
    :func:`import_torch` — Import PyTorch with an install hint on failure
    :func:`make_torch_generator` — Explicit ``torch.Generator`` seeded from a SeedSequence
    :func:`validate_torch_device` — Check that a device type is usable

Notes
-----
**RNG discipline.** Each block gets its own ``torch.Generator`` seeded from
the block's child :class:`numpy.random.SeedSequence`. The global Torch RNG
(``torch.manual_seed``) is never touched. Torch and NumPy draw different
normal streams, so results agree with the CPU backends statistically, not
bit for bit.

**Dtype policy.** Blocks run in float64. Apple MPS has no float64 support and
is therefore not offered.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from ..exceptions import ConfigurationError
from .base import spawn_block_seeds

if TYPE_CHECKING:
    import torch

    from ..core import BlockOutput
    from ..simulation import HestonSimulation

logger = logging.getLogger(__name__)

__all__ = [
    "VALID_TORCH_DEVICES",
    "TorchBackend",
    "import_torch",
    "make_torch_generator",
    "validate_torch_device",
]

# Valid Torch device types
VALID_TORCH_DEVICES = ("cpu", "cuda")


def import_torch():
    """
    Import and return the torch module.

    Raises
    ------
    ImportError
        If PyTorch is not installed.
    """
    try:
        import torch as th  # pylint: disable=import-outside-toplevel
        return th
    except ImportError as e:
        raise ImportError(
            "Torch backend requires PyTorch. Install with: pip install hestonmc[gpu]"
        ) from e


def validate_torch_device(device_type: str) -> None:
    """
    Check that ``device_type`` is supported and available.

    Raises
    ------
    ConfigurationError
        If the device type is not one of :data:`VALID_TORCH_DEVICES`.
    RuntimeError
        If CUDA was requested but is not available.
    """
    if device_type not in VALID_TORCH_DEVICES:
        raise ConfigurationError(
            f"torch_device must be one of {VALID_TORCH_DEVICES}, got '{device_type}'"
        )
    th = import_torch()
    if device_type == "cuda" and not th.cuda.is_available():
        raise RuntimeError("CUDA device requested but torch.cuda.is_available() is False")


def make_torch_generator(
    device: "torch.device",
    seed_seq: np.random.SeedSequence,
) -> "torch.Generator":
    r"""
    Create an explicit Torch generator seeded from a SeedSequence.

    A child of ``seed_seq`` is spawned and its first 64-bit word seeds the
    generator, mirroring the hierarchical spawning of the NumPy backends.

    Examples
    --------
    >>> import torch
    >>> gen = make_torch_generator(torch.device("cpu"), np.random.SeedSequence(42))  # doctest: +SKIP
    """
    th = import_torch()
    generator = th.Generator(device=device)
    child_seed = seed_seq.spawn(1)[0]
    seed_int = int(child_seed.generate_state(1, dtype=np.uint64)[0])
    generator.manual_seed(seed_int)
    return generator


class TorchBackend:
    r"""
    Torch block execution backend.

    Blocks run one after another; within a block every path is advanced at
    once as a tensor operation, which is where a GPU pays off.

    Parameters
    ----------
    device : {"cpu", "cuda"}, default "cpu"
        Torch device type.

    Raises
    ------
    ImportError
        If PyTorch is not installed.
    ConfigurationError
        If the device type is not supported.

    Examples
    --------
    >>> backend = TorchBackend(device="cpu")  # doctest: +SKIP
    >>> outputs = backend.run(sim, n_blocks=20, seed_seq=seed_seq, progress_callback=None)  # doctest: +SKIP
    """

    def __init__(self, device: str = "cpu"):
        validate_torch_device(device)
        th = import_torch()
        self.device_type = device
        self.device = th.device(device)

    def run(
        self,
        sim: "HestonSimulation",
        n_blocks: int,
        seed_seq: np.random.SeedSequence,
        progress_callback: Optional[Callable[[int, int], None]],
        should_stop: Optional[Callable[[], bool]] = None,
        keep_paths: bool = False,
    ) -> list[Optional["BlockOutput"]]:
        r"""
        Run blocks with :meth:`HestonSimulation.torch_block`.

        Returns
        -------
        list of BlockOutput or None
            One slot per block; trailing slots are ``None`` if stopped early.
        """
        results: list[Optional["BlockOutput"]] = [None] * n_blocks
        keep_index = n_blocks - 1 if keep_paths else -1
        logger.info("Computing %d blocks using Torch on %s...", n_blocks, self.device_type)

        for i, ss in enumerate(spawn_block_seeds(seed_seq, n_blocks)):
            if should_stop is not None and should_stop():
                logger.warning("Stopping after %d of %d blocks", i, n_blocks)
                break
            generator = make_torch_generator(self.device, ss)
            results[i] = sim.torch_block(
                device=self.device, generator=generator, keep_paths=(i == keep_index)
            )
            if progress_callback:
                progress_callback(i + 1, n_blocks)

        return results
