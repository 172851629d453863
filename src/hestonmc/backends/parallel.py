r"""
Parallel execution backends for Heston block simulations.

This module provides:

Classes
    :class:`ThreadBackend` — Thread-based parallelism using ThreadPoolExecutor
    :class:`ProcessBackend` — Process-based parallelism using ProcessPoolExecutor

Blocks are grouped into contiguous chunks; each chunk runs its blocks in
order, each from its own child seed stream, and writes only its own slots.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, ThreadPoolExecutor, as_completed, wait
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from .base import block_rng, make_blocks, spawn_block_seeds, worker_run_blocks

if TYPE_CHECKING:
    from ..core import BlockOutput
    from ..simulation import HestonSimulation

logger = logging.getLogger(__name__)

__all__ = [
    "ThreadBackend",
    "ProcessBackend",
]

# Default configuration constants
_CHUNKS_PER_WORKER = 4  # Number of chunks per worker for load balancing


def _chunk_layout(n_blocks: int, n_workers: int, chunks_per_worker: int) -> list[tuple[int, int]]:
    chunk_size = max(1, n_blocks // (n_workers * chunks_per_worker))
    return make_blocks(n_blocks, chunk_size)


class ThreadBackend:
    r"""
    Thread-based parallel execution backend.

    Uses :class:`concurrent.futures.ThreadPoolExecutor`. Effective because the
    per-step NumPy array operations release the GIL.

    Parameters
    ----------
    n_workers : int
        Number of worker threads to use.
    chunks_per_worker : int, default 4
        Number of work chunks per worker for load balancing.

    Examples
    --------
    >>> backend = ThreadBackend(n_workers=4)
    >>> outputs = backend.run(sim, n_blocks=64, seed_seq=seed_seq, progress_callback=None)  # doctest: +SKIP
    """

    def __init__(self, n_workers: int, chunks_per_worker: int = _CHUNKS_PER_WORKER):
        self.n_workers = n_workers
        self.chunks_per_worker = chunks_per_worker

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
        Run blocks in parallel using threads.

        ``should_stop`` is checked by each thread before it starts a block.

        Returns
        -------
        list of BlockOutput or None
            One slot per block in block order.
        """
        chunks = _chunk_layout(n_blocks, self.n_workers, self.chunks_per_worker)
        seeds = spawn_block_seeds(seed_seq, n_blocks)
        keep_index = n_blocks - 1 if keep_paths else -1
        results: list[Optional["BlockOutput"]] = [None] * n_blocks
        completed = 0
        max_workers = min(self.n_workers, len(chunks))

        def _work(chunk):
            a, b = chunk
            out: list[Optional["BlockOutput"]] = []
            for k in range(a, b):
                if should_stop is not None and should_stop():
                    break
                out.append(sim.simulate_block(_rng=block_rng(seeds[k]), keep_paths=(k == keep_index)))
            return a, out

        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futs = [ex.submit(_work, chunk) for chunk in chunks]
            for f in as_completed(futs):
                a, out = f.result()
                results[a:a + len(out)] = out
                completed += len(out)
                logger.debug("Chunk starting at block %d finished %d blocks", a, len(out))
                if progress_callback:
                    progress_callback(completed, n_blocks)  # pragma: no cover

        return results


class ProcessBackend:
    r"""
    Process-based parallel execution backend.

    Uses :class:`concurrent.futures.ProcessPoolExecutor` with the spawn context.
    Required on Windows for true parallelism.

    Parameters
    ----------
    n_workers : int
        Number of worker processes to use.
    chunks_per_worker : int, default 4
        Number of work chunks per worker for load balancing.

    Notes
    -----
    The simulation must be pickleable. At most ``n_workers`` chunks are in
    flight at once and ``should_stop`` is evaluated in the parent before each
    chunk is submitted, so a stop leaves at most the running chunks to finish.
    Their blocks are kept.
    """

    def __init__(self, n_workers: int, chunks_per_worker: int = _CHUNKS_PER_WORKER):
        self.n_workers = n_workers
        self.chunks_per_worker = chunks_per_worker

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
        Run blocks in parallel using processes.

        Returns
        -------
        list of BlockOutput or None
            One slot per block in block order.
        """
        chunks = deque(_chunk_layout(n_blocks, self.n_workers, self.chunks_per_worker))
        seeds = spawn_block_seeds(seed_seq, n_blocks)
        keep_index = n_blocks - 1 if keep_paths else -1
        results: list[Optional["BlockOutput"]] = [None] * n_blocks
        completed = 0
        max_workers = min(self.n_workers, len(chunks))
        in_flight: set = set()

        with ProcessPoolExecutor(
            max_workers=max_workers,
            mp_context=mp.get_context("spawn"),
        ) as ex:
            try:
                while chunks or in_flight:
                    while chunks and len(in_flight) < max_workers:
                        if should_stop is not None and should_stop():
                            logger.warning("Stop requested; %d chunks not started", len(chunks))
                            chunks.clear()
                            break
                        a, b = chunks.popleft()
                        f = ex.submit(worker_run_blocks, sim, a, seeds[a:b], keep_index)
                        f.blk = (a, b)  # type: ignore[attr-defined]
                        in_flight.add(f)
                    if not in_flight:
                        break
                    done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                    for f in done:
                        a, b = f.blk  # type: ignore[attr-defined]
                        results[a:b] = f.result()
                        completed += b - a
                        if progress_callback:
                            progress_callback(completed, n_blocks)  # pragma: no cover
            except KeyboardInterrupt:  # pragma: no cover
                for f in in_flight:
                    f.cancel()
                raise

        return results
