import math
import warnings

import numpy as np
import pytest

from hestonmc import LogPriceIntegrator, sample_config


@pytest.fixture
def cfg():
    return sample_config().with_overrides(nsteps=10, npaths=6, T=1.0, S0=2.0)


class TestLogPriceIntegrator:
    """Log-Euler price integration"""

    def test_zero_variance_is_pure_drift(self, cfg, rng):
        """With V = 0 the log price grows by mu*dt per step"""
        v = np.zeros((cfg.nsteps + 1, cfg.npaths))
        log_path, terminal = LogPriceIntegrator(cfg).integrate(v, rng.standard_normal((cfg.nsteps, cfg.npaths)))
        expected = cfg.mu * cfg.dt * np.arange(cfg.nsteps + 1)[:, None]
        np.testing.assert_allclose(log_path, np.broadcast_to(expected, log_path.shape), atol=1e-15)
        np.testing.assert_allclose(terminal, cfg.S0 * math.exp(cfg.mu * cfg.T))

    def test_first_row_zero_and_terminal(self, cfg, rng):
        """Row 0 is zero and terminal is S0 exp(X_n)"""
        v = np.full((cfg.nsteps + 1, cfg.npaths), 0.04)
        integ = LogPriceIntegrator(cfg)
        log_path, terminal = integ.integrate(v, rng.standard_normal((cfg.nsteps, cfg.npaths)))
        assert log_path.shape == (cfg.nsteps + 1, cfg.npaths)
        assert np.all(log_path[0] == 0.0)
        np.testing.assert_allclose(terminal, cfg.S0 * np.exp(log_path[-1]))
        np.testing.assert_allclose(integ.price_path(log_path)[-1], terminal)

    def test_last_variance_row_unused(self, cfg, rng):
        """Increments only use rows 0..nsteps-1 of V"""
        v = np.zeros((cfg.nsteps + 1, cfg.npaths))
        v[-1] = 1e6
        dx = LogPriceIntegrator(cfg).increments(v, rng.standard_normal((cfg.nsteps, cfg.npaths)))
        np.testing.assert_allclose(dx, cfg.mu * cfg.dt)

    def test_martingale(self, rng):
        """E[S_T] = S0 exp(mu T) for the discrete scheme"""
        cfg = sample_config().with_overrides(nsteps=10, npaths=200_000)
        v = np.full((cfg.nsteps + 1, cfg.npaths), 0.04)
        _, terminal = LogPriceIntegrator(cfg).integrate(v, rng.standard_normal((cfg.nsteps, cfg.npaths)))
        assert np.mean(terminal) == pytest.approx(cfg.S0 * math.exp(cfg.mu * cfg.T), abs=3e-3)

    def test_overflow_is_silent_inf(self, cfg):
        """exp overflow yields inf without a RuntimeWarning"""
        v = np.full((cfg.nsteps + 1, cfg.npaths), 100.0)
        x1 = np.full((cfg.nsteps, cfg.npaths), 100.0)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            _, terminal = LogPriceIntegrator(cfg).integrate(v, x1)
        assert np.all(np.isinf(terminal))
