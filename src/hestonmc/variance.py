r"""
Moment-matched simulation of the Feller square-root variance process.

Over one step of length :math:`\Delta t` the CIR process
:math:`dV = \kappa(\theta - V)dt + \epsilon\sqrt{V}dW` has conditional moments

.. math::

   \mathbb{E}[V_{i+1} \mid V_i] &= \theta + (V_i - \theta) e^{-\kappa \Delta t}, \\
   \operatorname{Var}[V_{i+1} \mid V_i] &= a V_i + b, \\
   a &= \frac{\epsilon^2}{\kappa}\left(e^{-\kappa\Delta t} - e^{-2\kappa\Delta t}\right), \qquad
   b = \frac{\theta\epsilon^2}{2\kappa}\left(1 - e^{-\kappa\Delta t}\right)^2.

The scheme draws a Gaussian with exactly these two moments and floors the
result at zero:

.. math::

   V_{i+1} = \max\!\left(0,\; \theta + (V_i - \theta)e^{-\kappa\Delta t}
             + \sqrt{\max(a V_i + b, 0)}\; X_{2,i}\right).

The floor is a discretization policy, not a property of the continuous
process. It biases the variance upwards by an amount that vanishes with
:math:`\Delta t`, and its trigger count is reported as a diagnostic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from .config import SimulationConfig

__all__ = ["VarianceSimulation", "VarianceProcessSimulator"]


@dataclass(frozen=True)
class VarianceSimulation:
    """
    Floored variance path of one block.

    Attributes
    ----------
    path : ndarray, shape ``(nsteps + 1, npaths)``
        Row 0 is ``V0``; every entry is non-negative.
    clamp_count : int
        Entries where the floor replaced a negative value.
    """

    path: np.ndarray
    clamp_count: int


class VarianceProcessSimulator:
    r"""
    Step the variance recurrence for every path of a block at once.

    Parameters
    ----------
    config : SimulationConfig
        Supplies :math:`\kappa, \theta, \epsilon, V_0` and :math:`\Delta t`.

    Notes
    -----
    ``a``, ``b`` and :math:`e^{-\kappa\Delta t}` depend only on the model and the
    step size, so they are computed once here. The recurrence is sequential in
    time and vectorised over paths.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config
        kappa, theta, eps, dt = config.kappa, config.theta, config.epsilon, config.dt
        self.decay = math.exp(-kappa * dt)
        self.a = eps**2 / kappa * (self.decay - math.exp(-2.0 * kappa * dt))
        self.b = theta * eps**2 / (2.0 * kappa) * (1.0 - self.decay) ** 2

    def conditional_mean(self, v: np.ndarray) -> np.ndarray:
        """Exact one-step conditional mean of the CIR process."""
        theta = self.config.theta
        return theta + (np.asarray(v, dtype=float) - theta) * self.decay

    def conditional_variance(self, v: np.ndarray) -> np.ndarray:
        """Exact one-step conditional variance ``a*V + b``, clamped at zero."""
        return np.maximum(self.a * np.asarray(v, dtype=float) + self.b, 0.0)

    def simulate(self, x2: np.ndarray) -> VarianceSimulation:
        r"""
        Build the variance path driven by ``x2``.

        Parameters
        ----------
        x2 : ndarray, shape ``(nsteps, npaths)``
            Standard-normal variance drivers.

        Returns
        -------
        VarianceSimulation
            The ``(nsteps + 1, npaths)`` path and the floor trigger count.
        """
        x2 = np.asarray(x2, dtype=float)
        nsteps, npaths = x2.shape
        path = np.empty((nsteps + 1, npaths), dtype=float)
        path[0] = self.config.V0
        clamps = 0
        for i in range(nsteps):
            v = path[i]
            nxt = self.conditional_mean(v) + np.sqrt(self.conditional_variance(v)) * x2[i]
            negative = nxt < 0.0
            clamps += int(np.count_nonzero(negative))
            nxt[negative] = 0.0
            path[i + 1] = nxt
        return VarianceSimulation(path=path, clamp_count=clamps)
