r"""
hestonmc.stats_engine
=====================
Metrics evaluated over the per-block price estimates of one option leg.

A run produces one estimate per block for the call and one for the put.
The block means and batched-means errors are the headline numbers; the
engine here adds the distributional summary of the blocks themselves
(spread, percentiles, shape), which is how a skewed or heavy-tailed block
distribution, and hence a doubtful normal interval, shows up.

Building blocks:

- :class:`StatsContext` carries the sample size and interval settings.
- :class:`FnMetric` gives a metric function a name.
- :class:`StatsEngine` evaluates a list of metrics and collects the results.

See Also
--------
hestonmc.block_stats.BlockStatistics
    Uses :func:`mean`, :func:`stderr` and :func:`ci_mean` for the prices.
hestonmc.utils.autocrit
    z/t critical values behind :func:`ci_mean`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Iterable, Optional, Protocol, Sequence, TypeVar

import numpy as np
from scipy import stats as sp_stats

from .utils import autocrit

logger = logging.getLogger(__name__)

__all__ = [
    "CIMethod",
    "StatsContext",
    "Metric",
    "FnMetric",
    "StatsEngine",
    "mean",
    "std",
    "stderr",
    "percentiles",
    "skew",
    "kurtosis",
    "ci_mean",
    "build_default_engine",
    "DEFAULT_ENGINE",
]

_BLOCK_PCTS = (5, 25, 50, 75, 95)
_NAN_POLICIES = ("propagate", "omit")


class CIMethod(str, Enum):
    r"""
    Critical-value choice for :func:`ci_mean`.

    ``auto`` takes Student-t below 30 blocks and the normal value above.
    """

    auto = "auto"
    z = "z"
    t = "t"


@dataclass(slots=True)
class StatsContext:
    r"""
    Settings shared by every metric of one evaluation.

    Attributes
    ----------
    n : int
        Number of blocks the estimates came from.
    confidence : float, default 0.95
        Two-sided interval level in :math:`(0, 1)`.
    ci_method : {"auto", "z", "t"}, default "auto"
        See :class:`CIMethod`.
    percentiles : tuple of int, default ``(5, 25, 50, 75, 95)``
        Levels reported by :func:`percentiles`.
    nan_policy : {"propagate", "omit"}, default "propagate"
        ``"omit"`` removes non-finite block estimates first; ``n`` then
        becomes the number of finite ones.
    ddof : int, default 1
        Delta degrees of freedom of the block variance.

    Examples
    --------
    >>> round(StatsContext(n=20, confidence=0.9).alpha, 2)
    0.1
    """

    n: int
    confidence: float = 0.95
    ci_method: CIMethod | str = "auto"
    percentiles: tuple[int, ...] = _BLOCK_PCTS
    nan_policy: str = "propagate"
    ddof: int = 1

    def __post_init__(self) -> None:
        if not 0.0 < self.confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {self.confidence}")
        if str(getattr(self.ci_method, "value", self.ci_method)) not in ("auto", "z", "t"):
            raise ValueError(f"ci_method must be one of 'auto', 'z', 't', got '{self.ci_method}'")
        if self.nan_policy not in _NAN_POLICIES:
            raise ValueError(f"nan_policy must be one of {_NAN_POLICIES}, got '{self.nan_policy}'")
        if not all(0 <= p <= 100 for p in self.percentiles):
            raise ValueError("percentiles must lie in [0, 100]")
        if self.ddof < 0:
            raise ValueError("ddof must be non-negative")

    @property
    def alpha(self) -> float:
        """Tail mass ``1 - confidence``."""
        return 1.0 - self.confidence


class Metric(Protocol):
    """Anything with a ``name`` callable as ``metric(x, ctx)``."""

    name: str

    def __call__(self, x: np.ndarray, ctx: StatsContext, /) -> Any: ...


T = TypeVar("T")


@dataclass(frozen=True)
class FnMetric(Generic[T]):
    r"""
    Named wrapper around a plain ``fn(x, ctx)`` metric function.

    Examples
    --------
    >>> FnMetric("range", lambda a, ctx: float(np.ptp(a)))(np.array([1.0, 4.0]), None)
    3.0
    """

    name: str
    fn: Callable[[np.ndarray, StatsContext], T]
    doc: str = ""

    def __call__(self, x: np.ndarray, ctx: StatsContext) -> T:
        return self.fn(x, ctx)


class StatsEngine:
    r"""
    Evaluate a fixed list of metrics over one array of block estimates.

    Parameters
    ----------
    metrics : iterable of Metric
        Evaluated in the given order.

    Examples
    --------
    >>> eng = StatsEngine([FnMetric("mean", mean), FnMetric("std", std)])
    >>> eng.compute(np.array([1.0, 2.0, 3.0]))
    {'mean': 2.0, 'std': 1.0}
    """

    def __init__(self, metrics: Iterable[Metric]):
        self._metrics = tuple(metrics)

    def available(self) -> tuple[str, ...]:
        """Metric names in evaluation order."""
        return tuple(m.name for m in self._metrics)

    def compute(
        self,
        x: np.ndarray,
        ctx: Optional[StatsContext] = None,
        select: Sequence[str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        r"""
        Evaluate the metrics on ``x``.

        Parameters
        ----------
        x : ndarray
            Block estimates.
        ctx : StatsContext, optional
            Evaluation settings. When omitted, ``**kwargs`` build one with
            ``n`` defaulting to ``x.size``.
        select : sequence of str, optional
            Restrict the evaluation to these metric names.

        Returns
        -------
        dict
            ``{name: value}``. A metric that raises is logged with its
            traceback and left out of the mapping.
        """
        ctx = _ensure_ctx(ctx if ctx is not None else dict(kwargs), x)
        wanted = None if select is None else set(select)

        out: dict[str, Any] = {}
        for metric in self._metrics:
            if wanted is not None and metric.name not in wanted:
                continue
            try:
                out[metric.name] = metric(x, ctx)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Error computing metric %s", metric.name)
        return out


def _ensure_ctx(ctx: Any, x: np.ndarray) -> StatsContext:
    """Accept ``None``, a dict of fields or a :class:`StatsContext`."""
    if isinstance(ctx, StatsContext):
        return ctx
    if ctx is None:
        ctx = {}
    if not isinstance(ctx, dict):
        raise TypeError("ctx must be a StatsContext, dict, or None")
    fields = {"n": int(np.asarray(x).size), **ctx}
    return StatsContext(**fields)


def _prepared(x: np.ndarray, ctx: StatsContext) -> tuple[np.ndarray, int]:
    """Flattened float sample after the NaN policy, and the effective block count."""
    arr = np.asarray(x, dtype=float).ravel()
    if ctx.nan_policy == "omit":
        arr = arr[np.isfinite(arr)]
        return arr, int(arr.size)
    return arr, int(ctx.n or arr.size)


def mean(x: np.ndarray, ctx: StatsContext) -> float:
    r"""
    Average of the block estimates, the price itself.

    Examples
    --------
    >>> mean(np.array([1, 2, 3]), None)
    2.0
    """
    arr, _ = _prepared(x, _ensure_ctx(ctx, x))
    if arr.size == 0:
        return float("nan")
    return float(arr.mean())


def std(x: np.ndarray, ctx: StatsContext) -> float:
    """Between-block standard deviation; ``0.0`` for a single block."""
    ctx = _ensure_ctx(ctx, x)
    arr, _ = _prepared(x, ctx)
    if arr.size < 2:
        return 0.0
    return float(arr.std(ddof=ctx.ddof))


def stderr(x: np.ndarray, ctx: StatsContext) -> float:
    r"""
    Batched-means standard error :math:`\sqrt{s^2 / n_\text{blocks}}`.

    ``nan`` with fewer than two blocks, where no variance exists.
    """
    ctx = _ensure_ctx(ctx, x)
    _, n = _prepared(x, ctx)
    if n < 2:
        return float("nan")
    return std(x, ctx) / float(np.sqrt(n))


def percentiles(x: np.ndarray, ctx: StatsContext) -> dict[int, float]:
    r"""
    Percentiles of the block estimates at :attr:`StatsContext.percentiles`.

    Examples
    --------
    >>> percentiles(np.array([0.0, 1.0, 2.0, 3.0]), {"percentiles": (50,)})
    {50: 1.5}
    """
    ctx = _ensure_ctx(ctx, x)
    arr, _ = _prepared(x, ctx)
    if arr.size == 0:
        return dict.fromkeys(ctx.percentiles, float("nan"))
    values = np.percentile(arr, ctx.percentiles)
    return {int(p): float(v) for p, v in zip(ctx.percentiles, values)}


def skew(x: np.ndarray, ctx: StatsContext) -> float:
    """Bias-corrected skewness of the blocks (``0.0`` below three blocks)."""
    arr, _ = _prepared(x, _ensure_ctx(ctx, x))
    if arr.size < 3:
        return 0.0
    return float(sp_stats.skew(arr, bias=False))


def kurtosis(x: np.ndarray, ctx: StatsContext) -> float:
    """Bias-corrected excess kurtosis of the blocks (``0.0`` below four blocks)."""
    arr, _ = _prepared(x, _ensure_ctx(ctx, x))
    if arr.size < 4:
        return 0.0
    return float(sp_stats.kurtosis(arr, fisher=True, bias=False))


def ci_mean(x: np.ndarray, ctx: StatsContext) -> dict[str, float | str]:
    r"""
    Normal-theory interval for the price, :math:`\bar X \pm c\, SE`.

    The critical value :math:`c` comes from :func:`hestonmc.utils.autocrit`
    for the effective number of blocks.

    Returns
    -------
    dict
        ``confidence``, ``method``, ``se``, ``crit``, ``low`` and ``high``.
        Every number is NaN when fewer than two blocks remain.
    """
    ctx = _ensure_ctx(ctx, x)
    arr, n = _prepared(x, ctx)
    if arr.size < 2 or n < 2:
        nan = float("nan")
        method = str(getattr(ctx.ci_method, "value", ctx.ci_method))
        return {"confidence": ctx.confidence, "method": method, "se": nan, "crit": nan, "low": nan, "high": nan}

    center = float(arr.mean())
    se = float(arr.std(ddof=ctx.ddof)) / float(np.sqrt(n))
    crit, method = autocrit(ctx.confidence, n, ctx.ci_method)
    return {
        "confidence": ctx.confidence,
        "method": method,
        "se": se,
        "crit": float(crit),
        "low": center - crit * se,
        "high": center + crit * se,
    }


def build_default_engine(include_shape: bool = True) -> StatsEngine:
    r"""
    Engine with the per-leg block summary attached to every result.

    Parameters
    ----------
    include_shape : bool, default True
        Add :func:`percentiles`, :func:`skew` and :func:`kurtosis`.
    """
    metrics: list[Metric] = [
        FnMetric[float]("mean", mean, "Price estimate"),
        FnMetric[float]("std", std, "Between-block standard deviation"),
        FnMetric[float]("stderr", stderr, "Batched-means standard error"),
        FnMetric[dict[str, float | str]]("ci_mean", ci_mean, "Interval for the price"),
    ]
    if include_shape:
        metrics += [
            FnMetric[dict[int, float]]("percentiles", percentiles, "Block percentiles"),
            FnMetric[float]("skew", skew, "Block skewness"),
            FnMetric[float]("kurtosis", kurtosis, "Block excess kurtosis"),
        ]
    return StatsEngine(metrics)


DEFAULT_ENGINE = build_default_engine()
