r"""
Discounted European payoffs over one block of terminal prices.

.. math::

   C_b = e^{-rT} \frac{1}{n} \sum_j (S_j - K)^+, \qquad
   P_b = e^{-rT} \frac{1}{n} \sum_j (K - S_j)^+.
"""

from __future__ import annotations

import logging

import numpy as np

from .config import SimulationConfig
from .core import BlockEstimate

logger = logging.getLogger(__name__)

__all__ = ["PayoffAggregator"]


class PayoffAggregator:
    """
    Reduce a terminal-price vector to one :class:`~hestonmc.core.BlockEstimate`.

    Non-finite terminal prices (overflow of ``exp`` under pathological
    parameters) are left out of both means and counted in
    :attr:`BlockEstimate.n_nonfinite`.
    """

    def __init__(self, config: SimulationConfig):
        self.config = config

    def estimate(self, terminal: np.ndarray) -> BlockEstimate:
        cfg = self.config
        s = np.asarray(terminal, dtype=float).ravel()
        finite = np.isfinite(s)
        n_bad = int(s.size - np.count_nonzero(finite))
        if n_bad:
            logger.debug("Excluding %d non-finite terminal prices from block means", n_bad)
            s = s[finite]
        if s.size == 0:
            return BlockEstimate(call=float("nan"), put=float("nan"), n_paths=int(finite.size), n_nonfinite=n_bad)
        call = cfg.discount * float(np.mean(np.maximum(s - cfg.K, 0.0)))
        put = cfg.discount * float(np.mean(np.maximum(cfg.K - s, 0.0)))
        return BlockEstimate(call=call, put=put, n_paths=int(finite.size), n_nonfinite=n_bad)
