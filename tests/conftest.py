import multiprocessing as mp

import numpy as np
import pytest

from hestonmc import HestonSimulation, sample_config


@pytest.fixture(scope="session", autouse=True)
def _set_spawn_start_method():
    try:
        mp.set_start_method("spawn")
    except RuntimeError:
        pass  # already set


@pytest.fixture
def rng():
    """Explicit generator for component-level tests."""
    return np.random.default_rng(12345)


@pytest.fixture
def small_config():
    """Sample parameters with sizes small enough for fast runs."""
    return sample_config().with_overrides(npaths=500, nblocks=8, nsteps=20)


@pytest.fixture
def feller_violating_config():
    """2*kappa*theta << epsilon^2 on a coarse grid, so the floor is hit often."""
    return sample_config().with_overrides(
        kappa=0.5, theta=0.04, epsilon=1.0, V0=0.04, npaths=500, nblocks=4, nsteps=10
    )


@pytest.fixture
def simulation(small_config):
    """Seeded simulation over :func:`small_config`."""
    sim = HestonSimulation(small_config, name="TestHeston")
    sim.set_seed(42)
    return sim
