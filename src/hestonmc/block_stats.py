r"""
Batched-means reduction of independent block estimates.

Each block is one i.i.d. draw of a Monte Carlo estimator averaged over
``npaths`` inner paths. With :math:`n_b` blocks,

.. math::

   \hat C = \frac{1}{n_b}\sum_b C_b, \qquad
   SE_C = \sqrt{\frac{s_C^2}{n_b}}, \qquad
   s_C^2 = \frac{1}{n_b - 1}\sum_b (C_b - \hat C)^2,

and likewise for puts. The between-block variance gives a normal (or
Student-t for few blocks) confidence interval without assuming anything
about the paths inside a block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import numpy as np

from .core import BlockEstimate
from .exceptions import ConfigurationError
from .stats_engine import DEFAULT_ENGINE, CIMethod, StatsContext, StatsEngine, ci_mean, mean, stderr

__all__ = ["BlockSummary", "BlockStatistics"]


@dataclass(frozen=True)
class BlockSummary:
    """Prices, standard errors and intervals reduced from block estimates."""

    call_price: float
    put_price: float
    call_stderr: float
    put_stderr: float
    call_ci: dict[str, Any]
    put_ci: dict[str, Any]
    block_calls: np.ndarray
    block_puts: np.ndarray
    stats: dict[str, Any] = field(default_factory=dict)


class BlockStatistics:
    r"""
    Reduce per-block (call, put) estimates to prices with standard errors.

    Parameters
    ----------
    confidence : float, default 0.95
        Confidence level of the reported intervals.
    ci_method : {"auto", "z", "t"}, default "auto"
        Critical-value strategy, see :func:`hestonmc.utils.autocrit`.
    stats_engine : StatsEngine, optional
        Engine for the extra per-leg metrics. Defaults to
        :data:`~hestonmc.stats_engine.DEFAULT_ENGINE`.
    extra_stats : bool, default True
        Whether to evaluate ``stats_engine`` at all.

    Raises
    ------
    ConfigurationError
        If ``confidence`` or ``ci_method`` is invalid.
    """

    def __init__(
        self,
        confidence: float = 0.95,
        ci_method: str = "auto",
        stats_engine: Optional[StatsEngine] = None,
        extra_stats: bool = True,
    ):
        if not 0.0 < confidence < 1.0:
            raise ConfigurationError("confidence must be in the interval (0, 1)")
        try:
            self.ci_method = CIMethod(ci_method)
        except ValueError as e:
            raise ConfigurationError(f"ci_method must be one of 'auto', 'z', 't', got '{ci_method}'") from e
        self.confidence = confidence
        self.stats_engine = stats_engine or DEFAULT_ENGINE
        self.extra_stats = extra_stats

    def _context(self, n: int) -> StatsContext:
        return StatsContext(n=n, confidence=self.confidence, ci_method=self.ci_method)

    def summarize(self, call_estimates: Iterable[float], put_estimates: Iterable[float]) -> BlockSummary:
        r"""
        Reduce aligned sequences of block call and put estimates.

        Raises
        ------
        ConfigurationError
            If fewer than two blocks are given or the lengths differ.
        """
        calls = np.asarray(list(call_estimates), dtype=float)
        puts = np.asarray(list(put_estimates), dtype=float)
        if calls.shape != puts.shape:
            raise ConfigurationError(
                f"call and put estimates must align, got {calls.size} and {puts.size}"
            )
        if calls.size < 2:
            raise ConfigurationError(
                f"at least 2 blocks are needed for a sample variance, got {calls.size}"
            )

        ctx = self._context(int(calls.size))
        stats: dict[str, Any] = {}
        if self.extra_stats:
            stats = {
                "call": self.stats_engine.compute(calls, ctx),
                "put": self.stats_engine.compute(puts, ctx),
            }

        return BlockSummary(
            call_price=mean(calls, ctx),
            put_price=mean(puts, ctx),
            call_stderr=stderr(calls, ctx),
            put_stderr=stderr(puts, ctx),
            call_ci=ci_mean(calls, ctx),
            put_ci=ci_mean(puts, ctx),
            block_calls=calls,
            block_puts=puts,
            stats=stats,
        )

    def summarize_estimates(self, estimates: Iterable[BlockEstimate]) -> BlockSummary:
        """Same as :meth:`summarize` for a sequence of :class:`BlockEstimate`."""
        items = list(estimates)
        return self.summarize((e.call for e in items), (e.put for e in items))
