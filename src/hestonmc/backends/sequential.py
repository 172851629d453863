r"""
Sequential execution backend for Heston block simulations.

This module provides a single-threaded execution strategy that runs
blocks one after another with optional progress reporting.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from .base import block_rng, spawn_block_seeds

if TYPE_CHECKING:
    from ..core import BlockOutput
    from ..simulation import HestonSimulation

logger = logging.getLogger(__name__)

__all__ = ["SequentialBackend"]


class SequentialBackend:
    r"""
    Sequential (single-threaded) execution backend.

    Executes blocks one at a time on the main thread. Each block still uses
    its own child seed stream, so results match the parallel backends bit for
    bit.

    Examples
    --------
    >>> backend = SequentialBackend()
    >>> outputs = backend.run(sim, n_blocks=20, seed_seq=seed_seq, progress_callback=None)  # doctest: +SKIP
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
        Run blocks sequentially on a single thread.

        Returns
        -------
        list of BlockOutput or None
            One slot per block; trailing slots are ``None`` if stopped early.
        """
        results: list[Optional["BlockOutput"]] = [None] * n_blocks
        keep_index = n_blocks - 1 if keep_paths else -1

        for i, ss in enumerate(spawn_block_seeds(seed_seq, n_blocks)):
            if should_stop is not None and should_stop():
                logger.warning("Stopping after %d of %d blocks", i, n_blocks)
                break
            results[i] = sim.simulate_block(_rng=block_rng(ss), keep_paths=(i == keep_index))
            logger.debug("Block %d/%d done", i + 1, n_blocks)
            if progress_callback:
                progress_callback(i + 1, n_blocks)

        return results
