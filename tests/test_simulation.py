import math
import pickle
import warnings

import numpy as np
import pytest

from hestonmc import (
    ConfigurationError,
    HestonSimulation,
    NumericInstabilityWarning,
    PayoffAggregator,
    sample_config,
    simulate,
)


class TestHestonSimulation:
    """Engine construction, seeding and single blocks"""

    def test_initialization(self, small_config):
        """Components are bound to the config"""
        sim = HestonSimulation(small_config)
        assert sim.name == "Heston Monte Carlo"
        assert sim.seed_seq is None
        assert sim.variance.config is small_config

    def test_rejects_non_config(self):
        """Only SimulationConfig is accepted"""
        with pytest.raises(ConfigurationError):
            HestonSimulation({"kappa": 3.0})

    def test_set_seed(self, simulation):
        """set_seed stores a SeedSequence"""
        simulation.set_seed(7)
        assert simulation.seed_seq.entropy == 7

    def test_simulate_block_deterministic(self, simulation):
        """Same generator state gives the same block"""
        a = simulation.simulate_block(_rng=np.random.default_rng(5))
        b = simulation.simulate_block(_rng=np.random.default_rng(5))
        assert a.estimate == b.estimate
        assert a.clamp_count == b.clamp_count
        assert a.paths is None

    def test_block_counters(self, simulation):
        """Variance entry count is nsteps * npaths"""
        cfg = simulation.config
        out = simulation.simulate_block(_rng=np.random.default_rng(0))
        assert out.n_variance_entries == cfg.nsteps * cfg.npaths
        assert out.estimate.n_paths == cfg.npaths

    def test_serialization(self, simulation):
        """Pickling drops and rebuilds the generator"""
        clone = pickle.loads(pickle.dumps(simulation))
        assert clone.rng is not None
        assert clone.config == simulation.config
        a = clone.simulate_block(_rng=np.random.default_rng(1))
        b = simulation.simulate_block(_rng=np.random.default_rng(1))
        assert a.estimate == b.estimate


class TestRun:
    """Full runs"""

    def test_reproducible(self, small_config):
        """Same seed and config give identical results"""
        a = simulate(small_config, seed=11, backend="sequential")
        b = simulate(small_config, seed=11, backend="sequential")
        np.testing.assert_array_equal(a.block_calls, b.block_calls)
        assert (a.call_price, a.put_price, a.call_stderr, a.put_stderr) == (
            b.call_price, b.put_price, b.call_stderr, b.put_stderr
        )

    def test_repeated_runs_on_one_instance(self, simulation):
        """Running twice reuses the same block streams"""
        a = simulation.run(backend="sequential")
        b = simulation.run(backend="sequential")
        np.testing.assert_array_equal(a.block_puts, b.block_puts)

    def test_different_seeds_differ(self, small_config):
        """Different seeds give different prices"""
        a = simulate(small_config, seed=1, backend="sequential")
        b = simulate(small_config, seed=2, backend="sequential")
        assert a.call_price != b.call_price

    def test_unseeded_run_records_entropy(self, small_config):
        """An unseeded run still reports the entropy it used"""
        res = HestonSimulation(small_config).run(backend="sequential")
        assert res.metadata["seed_entropy"] is not None

    def test_result_fields(self, simulation):
        """Prices, errors, intervals and metadata"""
        res = simulation.run(backend="sequential")
        cfg = simulation.config
        assert res.nblocks == cfg.nblocks
        assert res.call_price == pytest.approx(np.mean(res.block_calls))
        assert res.put_stderr == pytest.approx(np.std(res.block_puts, ddof=1) / math.sqrt(cfg.nblocks))
        assert res.call_ci["low"] <= res.call_price <= res.call_ci["high"]
        assert res.call_ci["method"] == "t"
        assert res.paths is None
        assert set(res.stats) == {"call", "put"}
        md = res.metadata
        assert md["simulation_name"] == "TestHeston"
        assert md["seed_entropy"] == 42
        assert md["backend"] == "sequential"
        assert md["execution_time"] >= 0.0
        assert (md["nblocks"], md["npaths"], md["nsteps"]) == (cfg.nblocks, cfg.npaths, cfg.nsteps)

    def test_result_is_read_only(self, simulation):
        """Block arrays and mappings of a result cannot be modified"""
        res = simulation.run(backend="sequential")
        with pytest.raises(ValueError):
            res.block_calls[0] = 0.0
        with pytest.raises(ValueError):
            res.block_puts[:] = 1.0
        with pytest.raises(TypeError):
            res.call_ci["low"] = 0.0
        with pytest.raises(TypeError):
            res.stats["put"]["mean"] = 0.0
        with pytest.raises(TypeError):
            res.metadata["backend"] = "thread"

    def test_auto_small_job_runs_sequentially(self, simulation):
        """auto falls back to sequential below the parallel threshold"""
        assert simulation.run().metadata["backend"] == "sequential"

    def test_progress_callback(self, simulation):
        """run() forwards progress per block"""
        seen = []
        simulation.run(backend="sequential", progress_callback=lambda d, t: seen.append((d, t)))
        assert seen[-1] == (simulation.config.nblocks, simulation.config.nblocks)

    def test_compute_stats_off(self, simulation):
        """Extra stats can be skipped"""
        assert simulation.run(backend="sequential", compute_stats=False).stats == {}

    def test_put_call_parity(self):
        """C - P matches S0 e^{-qT} - K e^{-rT} within a few standard errors"""
        cfg = sample_config().with_overrides(npaths=2000, nblocks=20, nsteps=20)
        res = simulate(cfg, seed=2024, backend="sequential")
        assert abs(res.parity_gap(cfg)) <= 5.0 * (res.call_stderr + res.put_stderr)

    def test_stderr_shrinks_with_blocks(self):
        """Standard errors scale roughly as 1/sqrt(nblocks)"""
        base = sample_config().with_overrides(npaths=200, nsteps=10)
        few = simulate(base.with_overrides(nblocks=16), seed=5, backend="sequential")
        many = simulate(base.with_overrides(nblocks=256), seed=6, backend="sequential")
        for se_few, se_many in ((few.call_stderr, many.call_stderr), (few.put_stderr, many.put_stderr)):
            assert 1.5 < se_few / se_many < 10.0

    def test_minimal_sizes(self):
        """npaths=1, nblocks=2, nsteps=1 gives finite outputs"""
        cfg = sample_config().with_overrides(npaths=1, nblocks=2, nsteps=1)
        res = simulate(cfg, seed=0, backend="sequential")
        for value in (res.call_price, res.put_price, res.call_stderr, res.put_stderr):
            assert math.isfinite(value)


class TestPathExport:
    """Diagnostic export of the last block"""

    def test_paths_shapes_and_consistency(self, simulation):
        """Exported paths belong to the last block"""
        res = simulation.run(backend="sequential", keep_paths=True)
        cfg = simulation.config
        p = res.paths
        assert p.variance_path.shape == (cfg.nsteps + 1, cfg.npaths)
        assert p.log_price_path.shape == (cfg.nsteps + 1, cfg.npaths)
        np.testing.assert_allclose(p.time_grid, cfg.time_grid)
        assert np.all(p.variance_path >= 0.0)
        assert np.all(p.variance_path[0] == cfg.V0)
        assert np.all(p.log_price_path[0] == 0.0)
        np.testing.assert_allclose(p.price_path[-1], p.terminal_prices)
        est = PayoffAggregator(cfg).estimate(p.terminal_prices)
        assert est.call == res.block_calls[-1]
        assert est.put == res.block_puts[-1]

    def test_prices_at(self, simulation):
        """prices_at picks the nearest grid row"""
        p = simulation.run(backend="sequential", keep_paths=True).paths
        np.testing.assert_array_equal(p.prices_at(0.0), p.price_path[0])
        np.testing.assert_array_equal(p.prices_at(10.0), p.price_path[-1])

    def test_export_does_not_change_prices(self, simulation):
        """Keeping paths leaves the estimates untouched"""
        a = simulation.run(backend="sequential")
        b = simulation.run(backend="sequential", keep_paths=True)
        np.testing.assert_array_equal(a.block_calls, b.block_calls)


class TestDiagnostics:
    """Numeric-health reporting"""

    def test_clean_run_has_no_warnings(self, simulation):
        """Sample parameters do not trip the floor"""
        with warnings.catch_warnings():
            warnings.simplefilter("error", NumericInstabilityWarning)
            res = simulation.run(backend="sequential")
        assert res.diagnostics.warnings == ()
        assert res.diagnostics.feller_satisfied
        assert res.diagnostics.nonfinite_terminal_count == 0

    def test_clamp_warning(self, feller_violating_config, caplog):
        """Frequent flooring warns and is recorded"""
        sim = HestonSimulation(feller_violating_config)
        sim.set_seed(1)
        with pytest.warns(NumericInstabilityWarning, match="Variance floor"):
            res = sim.run(backend="sequential")
        diag = res.diagnostics
        assert diag.clamp_count > 0
        assert diag.clamp_ratio > 0.01
        assert diag.n_variance_entries == 4 * 500 * 10
        assert not diag.feller_satisfied
        assert any("Variance floor" in w for w in diag.warnings)
        assert "Feller condition violated" in caplog.text

    def test_clamp_threshold_is_configurable(self, feller_violating_config):
        """A threshold of 1 silences the clamp warning"""
        sim = HestonSimulation(feller_violating_config)
        sim.set_seed(1)
        with warnings.catch_warnings():
            warnings.simplefilter("error", NumericInstabilityWarning)
            res = sim.run(backend="sequential", clamp_warning_ratio=1.0)
        assert res.diagnostics.clamp_count > 0

    def test_error_filter_keeps_result(self, feller_violating_config):
        """An error filter on the warning still returns the priced result"""
        sim = HestonSimulation(feller_violating_config)
        sim.set_seed(1)
        with warnings.catch_warnings():
            warnings.simplefilter("error", NumericInstabilityWarning)
            res = sim.run(backend="sequential")
        assert any("Variance floor" in w for w in res.diagnostics.warnings)
        assert math.isfinite(res.call_price)

    def test_overflow_warning(self):
        """Overflowing terminal prices are excluded, counted and reported"""
        cfg = sample_config().with_overrides(r=800.0, npaths=10, nblocks=2, nsteps=2)
        with pytest.warns(NumericInstabilityWarning, match="overflowed"):
            res = simulate(cfg, seed=0, backend="sequential", compute_stats=False)
        assert res.diagnostics.nonfinite_terminal_count == 20
        assert math.isnan(res.call_price)


class TestRunValidation:
    """Invalid run options fail before any block"""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"backend": "gpu"},
            {"n_workers": 0},
            {"confidence": 1.5},
            {"ci_method": "bootstrap"},
            {"timeout": 0.0},
            {"clamp_warning_ratio": 2.0},
        ],
    )
    def test_rejects(self, simulation, kwargs):
        """ConfigurationError and no progress"""
        seen = []
        with pytest.raises(ConfigurationError):
            simulation.run(progress_callback=lambda d, t: seen.append(d), **kwargs)
        assert seen == []


@pytest.mark.slow
class TestEndToEnd:
    """Sample scenario against the semi-analytic price"""

    def test_sample_configuration(self):
        """Out-of-the-money call, put above call, prices near the Fourier value"""
        from heston_reference import heston_prices

        cfg = sample_config()
        res = simulate(cfg, seed=20240601, n_workers=4)
        call_ref, put_ref = heston_prices(cfg)

        assert res.call_price < res.put_price
        assert res.call_stderr <= 1.5e-3
        assert res.put_stderr <= 1.5e-3
        assert abs(res.call_price - call_ref) <= 3.0 * res.call_stderr
        assert abs(res.put_price - put_ref) <= 3.0 * res.put_stderr
