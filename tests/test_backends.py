import threading

import numpy as np
import pytest

from hestonmc import HestonSimulation, SimulationCancelledError
from hestonmc.backends import (
    ProcessBackend,
    SequentialBackend,
    ThreadBackend,
    block_rng,
    make_blocks,
    spawn_block_seeds,
    worker_run_blocks,
)


class TestMakeBlocks:
    """Test make_blocks utility function"""

    def test_make_blocks_exact_division(self):
        """Blocks divide evenly"""
        assert make_blocks(100, block_size=25) == [(0, 25), (25, 50), (50, 75), (75, 100)]

    def test_make_blocks_with_remainder(self):
        """Last block carries the remainder"""
        assert make_blocks(10, block_size=4) == [(0, 4), (4, 8), (8, 10)]

    def test_make_blocks_small_n(self):
        """n smaller than the block size gives one block"""
        assert make_blocks(3, block_size=10) == [(0, 3)]

    def test_make_blocks_coverage(self):
        """Blocks cover the range exactly once"""
        blocks = make_blocks(1003, block_size=100)
        covered = [i for a, b in blocks for i in range(a, b)]
        assert covered == list(range(1003))


class TestBlockSeeds:
    """Per-block seed derivation"""

    def test_matches_spawn(self):
        """Children equal those of a fresh SeedSequence.spawn"""
        ours = spawn_block_seeds(np.random.SeedSequence(7), 4)
        theirs = np.random.SeedSequence(7).spawn(4)
        for a, b in zip(ours, theirs):
            np.testing.assert_array_equal(a.generate_state(4), b.generate_state(4))

    def test_stateless(self):
        """Repeated derivation from one parent gives the same children"""
        parent = np.random.SeedSequence(99)
        first = [s.generate_state(2) for s in spawn_block_seeds(parent, 3)]
        parent.spawn(5)
        second = [s.generate_state(2) for s in spawn_block_seeds(parent, 3)]
        np.testing.assert_array_equal(first, second)

    def test_distinct_streams(self):
        """Blocks draw different numbers"""
        a, b = (block_rng(s).standard_normal(5) for s in spawn_block_seeds(np.random.SeedSequence(1), 2))
        assert not np.array_equal(a, b)


class TestBackendParity:
    """Every CPU backend produces identical block estimates"""

    def _blocks(self, sim, backend):
        outputs = backend.run(sim, sim.config.nblocks, sim.seed_seq, None)
        return np.array([[o.estimate.call, o.estimate.put] for o in outputs])

    def test_thread_matches_sequential(self, simulation):
        """Threads reproduce the sequential result bit for bit"""
        seq = self._blocks(simulation, SequentialBackend())
        thr = self._blocks(simulation, ThreadBackend(n_workers=3))
        np.testing.assert_array_equal(seq, thr)

    def test_process_matches_sequential(self, simulation):
        """Processes reproduce the sequential result bit for bit"""
        seq = self._blocks(simulation, SequentialBackend())
        proc = self._blocks(simulation, ProcessBackend(n_workers=2))
        np.testing.assert_array_equal(seq, proc)

    def test_worker_matches_sequential(self, simulation):
        """The process worker computes the same blocks"""
        n = simulation.config.nblocks
        seeds = spawn_block_seeds(simulation.seed_seq, n)
        chunk = worker_run_blocks(simulation, 2, seeds[2:5], keep_index=-1)
        outputs = SequentialBackend().run(simulation, n, simulation.seed_seq, None)
        assert [o.estimate for o in chunk] == [o.estimate for o in outputs[2:5]]

    def test_run_level_parity(self, simulation):
        """run() gives equal prices on every CPU backend"""
        results = [
            simulation.run(backend=b, n_workers=2, compute_stats=False)
            for b in ("sequential", "thread", "process")
        ]
        for res in results[1:]:
            np.testing.assert_array_equal(res.block_calls, results[0].block_calls)
            np.testing.assert_array_equal(res.block_puts, results[0].block_puts)
            assert res.call_price == results[0].call_price
            assert res.put_stderr == results[0].put_stderr


class TestProgressAndPaths:
    """Progress reporting and path export through backends"""

    def test_sequential_progress(self, simulation):
        """Callback fires once per block"""
        calls = []
        SequentialBackend().run(
            simulation, 5, simulation.seed_seq, lambda done, total: calls.append((done, total))
        )
        assert calls == [(i, 5) for i in range(1, 6)]

    def test_thread_progress_reaches_total(self, simulation):
        """Thread backend reports all blocks"""
        calls = []
        ThreadBackend(n_workers=2).run(
            simulation, 8, simulation.seed_seq, lambda done, total: calls.append(done)
        )
        assert calls[-1] == 8

    @pytest.mark.parametrize("backend", [SequentialBackend(), ThreadBackend(n_workers=2)])
    def test_only_last_block_keeps_paths(self, simulation, backend):
        """keep_paths exports the highest-index block only"""
        outputs = backend.run(simulation, 4, simulation.seed_seq, None, keep_paths=True)
        assert [o.paths is not None for o in outputs] == [False, False, False, True]


class TestCancellation:
    """Cooperative cancellation between blocks"""

    def test_sequential_stops_between_blocks(self, simulation):
        """Blocks after the stop signal are never started"""
        flags = iter([False, False, False])
        outputs = SequentialBackend().run(
            simulation, 6, simulation.seed_seq, None, should_stop=lambda: next(flags, True)
        )
        assert [o is not None for o in outputs] == [True, True, True, False, False, False]

    def test_completed_blocks_are_unchanged(self, simulation):
        """Blocks finished before cancellation equal the full run's"""
        flags = iter([False, False])
        partial = SequentialBackend().run(
            simulation, 6, simulation.seed_seq, None, should_stop=lambda: next(flags, True)
        )
        full = SequentialBackend().run(simulation, 6, simulation.seed_seq, None)
        assert [o.estimate for o in partial[:2]] == [o.estimate for o in full[:2]]

    @pytest.mark.parametrize("backend", ["sequential", "thread", "process"])
    def test_preset_cancel_event(self, simulation, backend):
        """A set event cancels the run before any block"""
        event = threading.Event()
        event.set()
        with pytest.raises(SimulationCancelledError) as info:
            simulation.run(backend=backend, n_workers=2, cancel_event=event)
        assert info.value.requested == simulation.config.nblocks
        assert info.value.completed == ()

    def test_process_stop_between_chunks(self, simulation):
        """A stop after the first submission leaves only that chunk finished"""
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 1

        backend = ProcessBackend(n_workers=1, chunks_per_worker=4)
        outputs = backend.run(
            simulation, n_blocks=40, seed_seq=np.random.SeedSequence(5),
            progress_callback=None, should_stop=should_stop,
        )
        finished = [i for i, out in enumerate(outputs) if out is not None]
        assert finished == list(range(10))

    def test_process_in_flight_bounded_by_workers(self, simulation):
        """No more than n_workers chunks run past a stop"""
        calls = []

        def should_stop():
            calls.append(1)
            return len(calls) > 2

        backend = ProcessBackend(n_workers=2, chunks_per_worker=4)
        outputs = backend.run(
            simulation, n_blocks=40, seed_seq=np.random.SeedSequence(5),
            progress_callback=None, should_stop=should_stop,
        )
        assert sum(out is not None for out in outputs) == 10

    def test_timeout(self, small_config):
        """An expired deadline stops the run and keeps finished blocks"""
        sim = HestonSimulation(small_config.with_overrides(nblocks=200, npaths=2000, nsteps=200))
        sim.set_seed(3)
        with pytest.raises(SimulationCancelledError) as info:
            sim.run(backend="sequential", timeout=1e-6)
        assert info.value.requested == 200
        assert len(info.value.completed) < 200
