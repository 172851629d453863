r"""
Correlated standard-normal variates for the price and variance drivers.

For every (step, path) cell the pair

.. math::

   X_1 = Z_1, \qquad X_2 = \rho Z_1 + \sqrt{1 - \rho^2}\, Z_2,
   \qquad Z_1, Z_2 \overset{iid}{\sim} \mathcal{N}(0, 1),

is jointly normal with correlation :math:`\rho`; cells are independent.
"""

from __future__ import annotations

import math

import numpy as np

from .config import SimulationConfig
from .exceptions import ConfigurationError

__all__ = ["correlated_normals", "RandomVariateGenerator"]


def correlated_normals(
    nsteps: int,
    npaths: int,
    rho: float,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    r"""
    Draw the two ``(nsteps, npaths)`` driver matrices of one block.

    Parameters
    ----------
    nsteps, npaths : int
        Matrix shape.
    rho : float
        Target correlation, :math:`|\rho| \le 1`.
    rng : numpy.random.Generator
        Explicit generator owned by the calling block.

    Returns
    -------
    tuple of ndarray
        ``(X1, X2)``. ``X1`` drives the log price, ``X2`` the variance.

    Raises
    ------
    ConfigurationError
        If :math:`|\rho| > 1` or a dimension is not positive.

    Notes
    -----
    ``X1`` is drawn before the independent complement, so a generator in a
    given state always yields the same pair.
    """
    if abs(rho) > 1.0:
        raise ConfigurationError(f"rho must be in [-1, 1], got {rho}")
    if nsteps <= 0 or npaths <= 0:
        raise ConfigurationError(f"variate shape must be positive, got ({nsteps}, {npaths})")
    x1 = rng.standard_normal((nsteps, npaths))
    z = rng.standard_normal((nsteps, npaths))
    x2 = rho * x1 + math.sqrt(1.0 - rho * rho) * z
    return x1, x2


class RandomVariateGenerator:
    """Binds :func:`correlated_normals` to the shape and correlation of a config."""

    def __init__(self, config: SimulationConfig):
        self.config = config

    def draw(self, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
        cfg = self.config
        return correlated_normals(cfg.nsteps, cfg.npaths, cfg.rho, rng)
