r"""
Block-parallel Heston Monte Carlo engine.

:class:`HestonSimulation` owns a :class:`~hestonmc.config.SimulationConfig`
and a seed, runs ``nblocks`` independent blocks on an execution backend and
reduces them with :class:`~hestonmc.block_stats.BlockStatistics`.

One block is the pipeline

    RandomVariateGenerator -> VarianceProcessSimulator -> LogPriceIntegrator -> PayoffAggregator

applied to ``npaths`` paths of ``nsteps`` steps, with its own
:class:`numpy.random.Philox` stream derived from the run's
:class:`numpy.random.SeedSequence`. Because block ``i`` always uses child
``i`` of the seed, sequential, thread and process runs give identical
results for the same seed.

Example
-------
>>> from hestonmc import HestonSimulation, sample_config
>>> sim = HestonSimulation(sample_config().with_overrides(npaths=1000))
>>> sim.set_seed(42)
>>> res = sim.run(backend="sequential")  # doctest: +SKIP
>>> res.call_price < res.put_price  # doctest: +SKIP
True
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import threading
import time
import warnings
from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np

from .backends import ProcessBackend, SequentialBackend, ThreadBackend, is_windows_platform
from .block_stats import BlockStatistics
from .config import SimulationConfig
from .core import AggregateResult, BlockOutput, PathExport, SimulationDiagnostics
from .exceptions import ConfigurationError, NumericInstabilityWarning, SimulationCancelledError
from .log_price import LogPriceIntegrator
from .payoff import PayoffAggregator
from .stats_engine import StatsEngine
from .variance import VarianceProcessSimulator
from .variates import RandomVariateGenerator

if TYPE_CHECKING:
    import torch

logger = logging.getLogger(__name__)  # pragma: no cover
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

__all__ = ["HestonSimulation", "simulate"]


class HestonSimulation:
    r"""
    Price a European call and put under the Heston model by block Monte Carlo.

    Parameters
    ----------
    config : SimulationConfig
        Validated model parameters and sample sizes.
    name : str, default "Heston Monte Carlo"
        Label stored in the result metadata.

    Attributes
    ----------
    seed_seq : SeedSequence or None
        Root of the per-block seed tree, set by :meth:`set_seed`.
    rng : numpy.random.Generator
        Fallback generator for direct :meth:`simulate_block` calls.

    Notes
    -----
    The component objects are built once from the configuration and shared
    read-only by every block. Instances are pickleable so that the process
    backend can ship them to workers; the generator is rebuilt on unpickling.
    """

    # Minimum variance cells (nblocks * npaths * nsteps) before "auto" goes parallel
    _PARALLEL_THRESHOLD = 2_000_000
    _VALID_BACKENDS = ("auto", "sequential", "thread", "process", "torch")

    @staticmethod
    def _rng(
        rng: np.random.Generator | None,
        default: np.random.Generator | None = None,
    ) -> np.random.Generator:
        """Use the block's generator when given, otherwise ``default``."""
        return rng if rng is not None else default  # type: ignore[return-value]

    def __init__(self, config: SimulationConfig, name: str = "Heston Monte Carlo"):
        if not isinstance(config, SimulationConfig):
            raise ConfigurationError(
                f"config must be a SimulationConfig, got {type(config).__name__}"
            )
        self.config = config
        self.name = name
        self.seed_seq: np.random.SeedSequence | None = None
        self.rng = np.random.default_rng()
        self.variates = RandomVariateGenerator(config)
        self.variance = VarianceProcessSimulator(config)
        self.integrator = LogPriceIntegrator(config)
        self.payoff = PayoffAggregator(config)

    def __getstate__(self):
        """Avoid pickling the RNG."""
        state = self.__dict__.copy()
        state["rng"] = None
        return state

    def __setstate__(self, state):
        """Recreate the RNG after unpickling."""
        self.__dict__.update(state)
        if self.seed_seq is not None:
            self.rng = np.random.default_rng(self.seed_seq)
        else:
            self.rng = np.random.default_rng()

    def set_seed(self, seed: int | None) -> None:
        r"""
        Set the random seed for reproducible runs.

        Parameters
        ----------
        seed : int or None
            Seed for :class:`numpy.random.SeedSequence`. :data:`None` chooses
            entropy from the OS.
        """
        self.seed_seq = np.random.SeedSequence(seed)
        self.rng = np.random.default_rng(self.seed_seq)

    def simulate_block(self, _rng: np.random.Generator | None = None, keep_paths: bool = False) -> BlockOutput:
        r"""
        Run the full pipeline for one block of ``npaths`` paths.

        Parameters
        ----------
        _rng : numpy.random.Generator, optional
            The block's generator. Falls back to :attr:`rng`.
        keep_paths : bool, default False
            Attach a :class:`~hestonmc.core.PathExport` of this block.

        Returns
        -------
        BlockOutput
        """
        rng = self._rng(_rng, self.rng)
        cfg = self.config
        x1, x2 = self.variates.draw(rng)
        variance = self.variance.simulate(x2)
        log_path, terminal = self.integrator.integrate(variance.path, x1)
        paths = None
        if keep_paths:
            paths = PathExport(
                time_grid=cfg.time_grid,
                variance_path=variance.path,
                log_price_path=log_path,
                price_path=self.integrator.price_path(log_path),
                terminal_prices=terminal,
            )
        return BlockOutput(
            estimate=self.payoff.estimate(terminal),
            clamp_count=variance.clamp_count,
            n_variance_entries=cfg.nsteps * cfg.npaths,
            paths=paths,
        )

    def torch_block(
        self,
        *,
        device: "torch.device",
        generator: "torch.Generator",
        keep_paths: bool = False,
    ) -> BlockOutput:
        r"""
        Tensor version of :meth:`simulate_block`.

        Uses the same recurrence constants as :class:`VarianceProcessSimulator`.
        The terminal prices are moved to NumPy and priced by the shared
        :class:`PayoffAggregator`.

        Parameters
        ----------
        device : torch.device
            Device holding the block's tensors.
        generator : torch.Generator
            Explicit generator for the block. The global Torch RNG is not used.
        keep_paths : bool, default False
            Attach a :class:`~hestonmc.core.PathExport` of this block.
        """
        from .backends.torch import import_torch  # pylint: disable=import-outside-toplevel

        th = import_torch()
        cfg = self.config
        shape = (cfg.nsteps, cfg.npaths)
        opts = {"device": device, "dtype": th.float64}

        x1 = th.randn(shape, generator=generator, **opts)
        z = th.randn(shape, generator=generator, **opts)
        x2 = cfg.rho * x1 + float(np.sqrt(1.0 - cfg.rho * cfg.rho)) * z

        vs = self.variance
        v = th.empty((cfg.nsteps + 1, cfg.npaths), **opts)
        v[0] = cfg.V0
        clamps = 0
        for i in range(cfg.nsteps):
            nxt = cfg.theta + (v[i] - cfg.theta) * vs.decay
            nxt = nxt + th.sqrt(th.clamp(vs.a * v[i] + vs.b, min=0.0)) * x2[i]
            clamps += int((nxt < 0.0).sum().item())
            v[i + 1] = th.clamp(nxt, min=0.0)

        dt = cfg.dt
        dx = (cfg.mu - 0.5 * v[:-1]) * dt + th.sqrt(v[:-1]) * x1 * float(np.sqrt(dt))
        log_path = th.zeros((cfg.nsteps + 1, cfg.npaths), **opts)
        log_path[1:] = th.cumsum(dx, dim=0)

        log_np = log_path.detach().cpu().numpy()
        with np.errstate(over="ignore"):
            terminal = cfg.S0 * np.exp(log_np[-1])
        paths = None
        if keep_paths:
            paths = PathExport(
                time_grid=cfg.time_grid,
                variance_path=v.detach().cpu().numpy(),
                log_price_path=log_np,
                price_path=self.integrator.price_path(log_np),
                terminal_prices=terminal,
            )
        return BlockOutput(
            estimate=self.payoff.estimate(terminal),
            clamp_count=clamps,
            n_variance_entries=cfg.nsteps * cfg.npaths,
            paths=paths,
        )

    def _validate_run_params(
        self,
        backend: str,
        n_workers: int | None,
        confidence: float,
        ci_method: str,
        timeout: float | None,
        clamp_warning_ratio: float,
    ) -> None:
        """Validate parameters for run() method."""
        if backend not in self._VALID_BACKENDS:
            raise ConfigurationError(f"backend must be one of {self._VALID_BACKENDS}, got '{backend}'")
        if n_workers is not None and n_workers <= 0:
            raise ConfigurationError("n_workers must be positive")
        if not 0.0 < confidence < 1.0:
            raise ConfigurationError("confidence must be in the interval (0, 1)")
        if ci_method not in ("auto", "z", "t"):
            raise ConfigurationError(f"ci_method must be one of 'auto', 'z', 't', got '{ci_method}'")
        if timeout is not None and timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        if not 0.0 <= clamp_warning_ratio <= 1.0:
            raise ConfigurationError("clamp_warning_ratio must be in [0, 1]")

    @staticmethod
    def _stop_check(
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> Optional[Callable[[], bool]]:
        """Build the cooperative cancellation predicate polled between blocks."""
        if timeout is None and cancel_event is None:
            return None
        deadline = None if timeout is None else time.monotonic() + timeout

        def should_stop() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        return should_stop

    def run(
        self,
        *,
        backend: str = "auto",
        torch_device: str = "cpu",
        n_workers: int | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
        confidence: float = 0.95,
        ci_method: str = "auto",
        keep_paths: bool = False,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        clamp_warning_ratio: float = 0.01,
        compute_stats: bool = True,
        stats_engine: StatsEngine | None = None,
    ) -> AggregateResult:
        r"""
        Simulate every block and reduce them to prices with standard errors.

        Parameters
        ----------
        backend : {"auto", "sequential", "thread", "process", "torch"}, default ``"auto"``
            Execution backend to use:

            - ``"auto"`` — Sequential for small jobs, thread/process for large jobs
            - ``"sequential"`` — Single-threaded execution
            - ``"thread"`` — Thread-based parallelism (NumPy releases the GIL)
            - ``"process"`` — Process-based parallelism
            - ``"torch"`` — Tensor execution, see :class:`~hestonmc.backends.TorchBackend`

        torch_device : {"cpu", "cuda"}, default ``"cpu"``
            Torch device for ``backend="torch"``. Ignored otherwise.
        n_workers : int, optional
            Worker count for parallel backends. Defaults to CPU count.
        progress_callback : callable, optional
            A function ``f(completed_blocks: int, total_blocks: int)``.
        confidence : float, default ``0.95``
            Confidence level of the price intervals.
        ci_method : {"auto", "z", "t"}, default ``"auto"``
            Critical-value strategy for the intervals.
        keep_paths : bool, default False
            Export the paths of the last block in :attr:`AggregateResult.paths`.
        timeout : float, optional
            Seconds after which no new block is started.
        cancel_event : threading.Event, optional
            Once set, no new block is started.
        clamp_warning_ratio : float, default 0.01
            Emit :class:`NumericInstabilityWarning` when the fraction of floored
            variance entries exceeds this value.
        compute_stats : bool, default True
            Evaluate the extra per-leg metrics of ``stats_engine``.
        stats_engine : StatsEngine, optional
            Custom engine (defaults to ``hestonmc.stats_engine.DEFAULT_ENGINE``).

        Returns
        -------
        AggregateResult

        Raises
        ------
        ConfigurationError
            If a run option is invalid. Raised before any block starts.
        SimulationCancelledError
            If the timeout or cancel event stopped the run before every block
            finished. The error carries the completed blocks.

        Warns
        -----
        NumericInstabilityWarning
            Issued after the result is built, once per message in
            ``result.diagnostics.warnings``. A filter that turns it into an
            error is absorbed so the finished run is still returned.
        """
        self._validate_run_params(backend, n_workers, confidence, ci_method, timeout, clamp_warning_ratio)
        cfg = self.config

        if not cfg.feller_satisfied:
            logger.warning(
                "Feller condition violated (2*kappa*theta/epsilon^2 = %.4g < 1); "
                "the variance floor will be hit more often.",
                cfg.feller_ratio,
            )

        seed_seq = self.seed_seq if self.seed_seq is not None else np.random.SeedSequence()
        should_stop = self._stop_check(timeout, cancel_event)

        t0 = time.time()
        outputs, backend_used = self._execute_with_backend(
            backend, n_workers, seed_seq, progress_callback, should_stop, keep_paths,
            torch_device=torch_device,
        )
        exec_time = time.time() - t0

        completed = tuple(o for o in outputs if o is not None)
        logger.info("Finished %d of %d blocks in %.3f s", len(completed), cfg.nblocks, exec_time)
        if len(completed) < cfg.nblocks:
            raise SimulationCancelledError(
                f"Run stopped after {len(completed)} of {cfg.nblocks} blocks",
                completed=completed,
                requested=cfg.nblocks,
            )

        diagnostics = self._diagnostics(completed, clamp_warning_ratio)
        summary = BlockStatistics(
            confidence=confidence,
            ci_method=ci_method,
            stats_engine=stats_engine,
            extra_stats=compute_stats,
        ).summarize_estimates(o.estimate for o in completed)

        result = AggregateResult(
            call_price=summary.call_price,
            put_price=summary.put_price,
            call_stderr=summary.call_stderr,
            put_stderr=summary.put_stderr,
            call_ci=summary.call_ci,
            put_ci=summary.put_ci,
            block_calls=summary.block_calls,
            block_puts=summary.block_puts,
            diagnostics=diagnostics,
            paths=completed[-1].paths if keep_paths else None,
            stats=summary.stats,
            metadata={
                "simulation_name": self.name,
                "seed_entropy": seed_seq.entropy,
                "backend": backend_used,
                "execution_time": exec_time,
                "nblocks": cfg.nblocks,
                "npaths": cfg.npaths,
                "nsteps": cfg.nsteps,
                "confidence": confidence,
            },
        )
        self._emit_warnings(diagnostics.warnings)
        return result

    def _diagnostics(self, outputs: tuple[BlockOutput, ...], clamp_warning_ratio: float) -> SimulationDiagnostics:
        """Sum block counters and record the instability messages."""
        clamps = sum(o.clamp_count for o in outputs)
        entries = sum(o.n_variance_entries for o in outputs)
        nonfinite = sum(o.estimate.n_nonfinite for o in outputs)
        messages = []

        ratio = clamps / entries if entries else 0.0
        if ratio > clamp_warning_ratio:
            messages.append(
                f"Variance floor triggered on {clamps} of {entries} entries ({ratio:.2%}); "
                "consider more time steps"
            )
        if nonfinite:
            messages.append(
                f"{nonfinite} terminal prices overflowed and were excluded from the payoff means"
            )
        for msg in messages:
            logger.warning(msg)

        return SimulationDiagnostics(
            clamp_count=clamps,
            n_variance_entries=entries,
            nonfinite_terminal_count=nonfinite,
            feller_satisfied=self.config.feller_satisfied,
            warnings=tuple(messages),
        )

    @staticmethod
    def _emit_warnings(messages: tuple[str, ...]) -> None:
        """Issue one :class:`NumericInstabilityWarning` per recorded message."""
        for msg in messages:
            try:
                warnings.warn(msg, NumericInstabilityWarning, stacklevel=3)
            except NumericInstabilityWarning:
                # An "error" filter must not discard a finished run; the
                # message stays in result.diagnostics.warnings.
                logger.debug("NumericInstabilityWarning escalated by a filter: %s", msg)

    def _resolve_backend_type(self, n_workers: int) -> str:
        """
        Pick the backend for ``"auto"``.

        Sequential for small jobs or a single worker; otherwise ``"thread"``
        on POSIX and ``"process"`` on Windows, where threads tend to serialize.
        """
        cfg = self.config
        work = cfg.nblocks * cfg.npaths * cfg.nsteps
        if n_workers <= 1 or work < self._PARALLEL_THRESHOLD:
            return "sequential"
        if is_windows_platform():
            logger.info("Backend 'auto' resolved to 'process' on Windows platform.")
            return "process"
        return "thread"

    def _create_backend(self, backend: str, n_workers: int, torch_device: str):
        r"""
        Instantiate the execution backend for a resolved backend name.

        Returns
        -------
        SequentialBackend, ThreadBackend, ProcessBackend or TorchBackend
        """
        if backend == "sequential":
            return SequentialBackend()
        if backend == "thread":
            return ThreadBackend(n_workers=n_workers)
        if backend == "process":
            return ProcessBackend(n_workers=n_workers)
        from .backends import TorchBackend  # pylint: disable=import-outside-toplevel
        return TorchBackend(device=torch_device)

    def _execute_with_backend(
        self,
        backend: str,
        n_workers: int | None,
        seed_seq: np.random.SeedSequence,
        progress_callback: Callable[[int, int], None] | None,
        should_stop: Optional[Callable[[], bool]],
        keep_paths: bool,
        *,
        torch_device: str = "cpu",
    ) -> tuple[list[Optional[BlockOutput]], str]:
        """Resolve ``backend``, run every block and return the slots with the backend name."""
        if n_workers is None:
            n_workers = mp.cpu_count()  # pragma: no cover
        if backend == "auto":
            backend = self._resolve_backend_type(n_workers)

        nblocks = self.config.nblocks
        if backend in ("thread", "process"):
            logger.info(
                "Computing %d blocks in parallel using %s backend with %d workers...",
                nblocks, backend, n_workers,
            )
        elif backend == "sequential":
            logger.info("Computing %d blocks sequentially...", nblocks)

        backend_instance = self._create_backend(backend, n_workers, torch_device)
        outputs = backend_instance.run(
            self, nblocks, seed_seq, progress_callback, should_stop=should_stop, keep_paths=keep_paths
        )
        return outputs, backend


def simulate(config: SimulationConfig, seed: int | None = None, **run_kwargs: Any) -> AggregateResult:
    r"""
    Price one configuration in a single call.

    Parameters
    ----------
    config : SimulationConfig
        Model parameters and sample sizes.
    seed : int, optional
        Seed for reproducible results.
    **run_kwargs :
        Forwarded to :meth:`HestonSimulation.run`.

    Examples
    --------
    >>> from hestonmc import sample_config, simulate
    >>> res = simulate(sample_config(), seed=1, backend="sequential")  # doctest: +SKIP
    """
    sim = HestonSimulation(config)
    sim.set_seed(seed)
    return sim.run(**run_kwargs)
