r"""
Log-Euler integration of the price driven by a simulated variance path.

With :math:`X = \ln(S/S_0)` and the left-point variance :math:`V_i`,

.. math::

   \Delta X_i = \left(\mu - \tfrac{1}{2} V_i\right)\Delta t + \sqrt{V_i}\, X_{1,i} \sqrt{\Delta t},
   \qquad X_k = \sum_{i<k} \Delta X_i,

and :math:`S_T = S_0 e^{X_n}`. Because :math:`V_i` only depends on the
variance drivers of earlier steps, :math:`\mathbb{E}[S_T] = S_0 e^{\mu T}`
holds exactly for the discrete scheme.
"""

from __future__ import annotations

import math

import numpy as np

from .config import SimulationConfig

__all__ = ["LogPriceIntegrator"]


class LogPriceIntegrator:
    """Turns a variance path and price drivers into log-price paths and terminal prices."""

    def __init__(self, config: SimulationConfig):
        self.config = config

    def increments(self, variance_path: np.ndarray, x1: np.ndarray) -> np.ndarray:
        """
        Per-step log-price increments, shape ``(nsteps, npaths)``.

        Only rows ``0..nsteps-1`` of ``variance_path`` are used.
        """
        cfg = self.config
        v = np.asarray(variance_path, dtype=float)[:-1]
        return (cfg.mu - 0.5 * v) * cfg.dt + np.sqrt(v) * np.asarray(x1, dtype=float) * math.sqrt(cfg.dt)

    def integrate(self, variance_path: np.ndarray, x1: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        r"""
        Prefix-sum the increments along the time axis.

        Parameters
        ----------
        variance_path : ndarray, shape ``(nsteps + 1, npaths)``
            Non-negative variance path.
        x1 : ndarray, shape ``(nsteps, npaths)``
            Standard-normal price drivers.

        Returns
        -------
        tuple of ndarray
            ``(log_path, terminal)`` where ``log_path`` has shape
            ``(nsteps + 1, npaths)`` with a zero first row and ``terminal`` is
            :math:`S_0 e^{X_n}`. Overflow in the exponential is left as ``inf``.
        """
        dx = self.increments(variance_path, x1)
        log_path = np.empty((dx.shape[0] + 1, dx.shape[1]), dtype=float)
        log_path[0] = 0.0
        np.cumsum(dx, axis=0, out=log_path[1:])
        with np.errstate(over="ignore"):
            terminal = self.config.S0 * np.exp(log_path[-1])
        return log_path, terminal

    def price_path(self, log_path: np.ndarray) -> np.ndarray:
        """``S0 * exp(log_path)`` for every observation time."""
        with np.errstate(over="ignore"):
            return self.config.S0 * np.exp(log_path)
