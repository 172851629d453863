r"""
Base classes and utilities for execution backends.

This module provides:

Protocol
    :class:`ExecutionBackend` — Interface for block execution strategies

Functions
    :func:`make_blocks` — Chunking helper for parallel work distribution
    :func:`spawn_block_seeds` — One deterministic seed sequence per block
    :func:`block_rng` — Philox generator for one block
    :func:`worker_run_blocks` — Top-level worker for process-based parallelism

Helpers
    :func:`is_windows_platform` — Platform detection for backend selection
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Sequence

import numpy as np

if TYPE_CHECKING:
    from ..core import BlockOutput
    from ..simulation import HestonSimulation

__all__ = [
    "ExecutionBackend",
    "make_blocks",
    "spawn_block_seeds",
    "block_rng",
    "worker_run_blocks",
    "is_windows_platform",
]


def is_windows_platform() -> bool:
    """Return True when running on a Windows platform."""
    return sys.platform.startswith("win") or (sys.platform == "cli")


def make_blocks(n: int, block_size: int = 10_000) -> list[tuple[int, int]]:
    r"""
    Partition an integer range :math:`[0, n)` into half-open chunks :math:`(i, j)`.

    Parameters
    ----------
    n : int
        Total number of items.
    block_size : int, default: 10_000
        Target chunk length.

    Returns
    -------
    list of tuple[int, int]
        List of ``(i, j)`` index pairs covering ``[0, n)``.

    Examples
    --------
    >>> make_blocks(5, block_size=2)
    [(0, 2), (2, 4), (4, 5)]
    """
    chunks = []
    i = 0
    while i < n:
        j = min(i + block_size, n)
        chunks.append((i, j))
        i = j
    return chunks


def spawn_block_seeds(seed_seq: np.random.SeedSequence, n_blocks: int) -> list[np.random.SeedSequence]:
    r"""
    Derive one child :class:`~numpy.random.SeedSequence` per block.

    The children are exactly those a fresh ``seed_seq.spawn(n_blocks)`` would
    return, but they are built from the spawn key directly so repeated runs
    of the same simulation see the same streams regardless of how often the
    parent has already been spawned from.

    Examples
    --------
    >>> seeds = spawn_block_seeds(np.random.SeedSequence(7), 3)
    >>> [s.spawn_key for s in seeds]
    [(0,), (1,), (2,)]
    """
    return [
        np.random.SeedSequence(
            seed_seq.entropy,
            spawn_key=tuple(seed_seq.spawn_key) + (i,),
            pool_size=seed_seq.pool_size,
        )
        for i in range(n_blocks)
    ]


def block_rng(seed_seq: np.random.SeedSequence) -> np.random.Generator:
    """Independent :class:`numpy.random.Philox` stream for one block."""
    return np.random.Generator(np.random.Philox(seed_seq))


def worker_run_blocks(
    sim: "HestonSimulation",
    start: int,
    seed_seqs: Sequence[np.random.SeedSequence],
    keep_index: int,
) -> list["BlockOutput"]:
    r"""
    Execute a contiguous chunk of blocks in a **separate worker**.

    Parameters
    ----------
    sim : HestonSimulation
        Simulation to call. Must be pickleable when used with a process backend.
    start : int
        Global index of the first block in the chunk.
    seed_seqs : sequence of SeedSequence
        One seed sequence per block of the chunk.
    keep_index : int
        Global index of the block that exports its paths, ``-1`` for none.

    Returns
    -------
    list of BlockOutput
        Outputs in block order.
    """
    return [
        sim.simulate_block(_rng=block_rng(ss), keep_paths=(start + k == keep_index))
        for k, ss in enumerate(seed_seqs)
    ]


class ExecutionBackend(Protocol):
    r"""
    Protocol defining the interface for execution backends.

    A backend runs ``n_blocks`` independent blocks, each from its own seed
    stream, and returns one slot per block. Every slot is written by exactly
    one task. Slots of blocks that never started because ``should_stop``
    returned True stay ``None``.
    """

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
        Run the blocks and return their outputs in block order.

        Parameters
        ----------
        sim : HestonSimulation
            The simulation to run.
        n_blocks : int
            Number of independent blocks.
        seed_seq : SeedSequence
            Parent seed sequence; block ``i`` uses child ``i``.
        progress_callback : callable or None
            Optional callback ``f(completed, total)`` for progress reporting.
        should_stop : callable or None
            Cooperative cancellation check evaluated before each block starts.
        keep_paths : bool, default False
            Ask the last block (index ``n_blocks - 1``) to export its paths.
        """
