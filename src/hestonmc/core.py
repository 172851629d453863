r"""

hestonmc.core
=============

Result containers shared by the engine, the backends and the statistics layer.

This module provides:

* :class:`~hestonmc.core.BlockEstimate` – discounted call/put values of one block.
* :class:`~hestonmc.core.PathExport` – one block's paths, for diagnostics only.
* :class:`~hestonmc.core.BlockOutput` – everything a backend returns per block.
* :class:`~hestonmc.core.SimulationDiagnostics` – clamp and overflow counters.
* :class:`~hestonmc.core.AggregateResult` – the final priced result.

Ownership
---------

A block owns its variates, variance path and log-price path. Only the
:class:`BlockOutput` leaves the block; the matrices are dropped unless the
caller asked for a path export of the last block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Optional

import numpy as np

if TYPE_CHECKING:
    from .config import SimulationConfig

__all__ = [
    "BlockEstimate",
    "PathExport",
    "BlockOutput",
    "SimulationDiagnostics",
    "AggregateResult",
]


@dataclass(frozen=True)
class BlockEstimate:
    r"""
    Discounted expected payoffs of one block.

    Attributes
    ----------
    call : float
        :math:`e^{-rT}\,\overline{(S_T - K)^+}` over the block's finite terminal prices.
    put : float
        :math:`e^{-rT}\,\overline{(K - S_T)^+}` over the block's finite terminal prices.
    n_paths : int
        Number of simulated paths in the block.
    n_nonfinite : int
        Terminal prices excluded from the means because they overflowed.
    """

    call: float
    put: float
    n_paths: int
    n_nonfinite: int = 0


@dataclass(frozen=True)
class PathExport:
    r"""
    Path matrices of a single block, exported for plotting collaborators.

    Attributes
    ----------
    time_grid : ndarray, shape ``(nsteps + 1,)``
        Observation times.
    variance_path : ndarray, shape ``(nsteps + 1, npaths)``
        Floored variance path, row 0 equal to :math:`V_0`.
    log_price_path : ndarray, shape ``(nsteps + 1, npaths)``
        :math:`X_t = \ln(S_t / S_0)`, row 0 identically zero.
    price_path : ndarray, shape ``(nsteps + 1, npaths)``
        :math:`S_0 e^{X_t}`.
    terminal_prices : ndarray, shape ``(npaths,)``
        Last row of :attr:`price_path`.
    """

    time_grid: np.ndarray
    variance_path: np.ndarray
    log_price_path: np.ndarray
    price_path: np.ndarray
    terminal_prices: np.ndarray

    def prices_at(self, t: float) -> np.ndarray:
        """Price cross-section at the grid time nearest to ``t``."""
        idx = int(np.argmin(np.abs(self.time_grid - float(t))))
        return self.price_path[idx]


@dataclass(frozen=True)
class BlockOutput:
    """
    Outcome of one block as produced by :meth:`HestonSimulation.simulate_block`.

    Attributes
    ----------
    estimate : BlockEstimate
        Discounted call and put values.
    clamp_count : int
        Variance entries the non-negativity floor changed.
    n_variance_entries : int
        Floored entries considered (``nsteps * npaths``).
    paths : PathExport or None
        Present only when the block was asked to keep its paths.
    """

    estimate: BlockEstimate
    clamp_count: int
    n_variance_entries: int
    paths: Optional[PathExport] = None


@dataclass(frozen=True)
class SimulationDiagnostics:
    r"""
    Numeric-health counters aggregated over every block of a run.

    Attributes
    ----------
    clamp_count : int
        Total variance entries floored at zero.
    n_variance_entries : int
        Total variance entries produced by the recurrence.
    nonfinite_terminal_count : int
        Terminal prices that overflowed and were excluded from the means.
    feller_satisfied : bool
        Whether :math:`2\kappa\theta \ge \epsilon^2` held for the configuration.
    warnings : tuple of str
        Messages of every :class:`~hestonmc.exceptions.NumericInstabilityWarning`
        recorded during the run.
    """

    clamp_count: int
    n_variance_entries: int
    nonfinite_terminal_count: int
    feller_satisfied: bool
    warnings: tuple[str, ...] = ()

    @property
    def clamp_ratio(self) -> float:
        """Fraction of variance entries the floor changed."""
        if self.n_variance_entries == 0:
            return 0.0
        return self.clamp_count / self.n_variance_entries


@dataclass(frozen=True)
class AggregateResult:
    r"""
    Prices and standard errors reduced from every block of a run.

    Attributes
    ----------
    call_price, put_price : float
        Means of the block estimates.
    call_stderr, put_stderr : float
        :math:`\sqrt{s^2 / n_\text{blocks}}` with the ``ddof=1`` sample variance.
    call_ci, put_ci : dict
        Confidence intervals from :func:`~hestonmc.stats_engine.ci_mean`.
    block_calls, block_puts : ndarray
        Per-block estimates, in block order.
    diagnostics : SimulationDiagnostics
        Clamp and overflow counters.
    paths : PathExport or None
        Paths of the last block when ``keep_paths=True`` was requested.
    stats : dict
        Extra engine metrics per leg, ``{"call": {...}, "put": {...}}``.
    metadata : dict
        Freeform metadata. Includes ``"simulation_name"``, ``"seed_entropy"``,
        ``"backend"``, ``"execution_time"`` and the sample sizes.

    Notes
    -----
    The result is read-only throughout: the block arrays are non-writeable
    copies and every mapping, nested ones included, is a
    :class:`types.MappingProxyType`.
    """

    call_price: float
    put_price: float
    call_stderr: float
    put_stderr: float
    call_ci: Mapping[str, Any]
    put_ci: Mapping[str, Any]
    block_calls: np.ndarray
    block_puts: np.ndarray
    diagnostics: SimulationDiagnostics
    paths: Optional[PathExport] = None
    stats: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("block_calls", "block_puts"):
            arr = np.array(getattr(self, name), dtype=float)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)
        for name in ("call_ci", "put_ci", "stats", "metadata"):
            object.__setattr__(self, name, _read_only(getattr(self, name)))

    @property
    def nblocks(self) -> int:
        return int(self.block_calls.size)

    def parity_gap(self, config: "SimulationConfig") -> float:
        r"""
        Deviation from put-call parity, :math:`C - P - (S_0 e^{-qT} - K e^{-rT})`.
        """
        return self.call_price - self.put_price - config.forward()


def _read_only(value: Any) -> Any:
    """Wrap mappings, recursively, in :class:`types.MappingProxyType`."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _read_only(v) for k, v in value.items()})
    return value
