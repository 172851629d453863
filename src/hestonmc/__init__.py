"""hestonmc package public API."""

from .block_stats import BlockStatistics, BlockSummary
from .config import SimulationConfig, sample_config
from .core import (
    AggregateResult,
    BlockEstimate,
    BlockOutput,
    PathExport,
    SimulationDiagnostics,
)
from .exceptions import (
    ConfigurationError,
    NumericInstabilityWarning,
    SimulationCancelledError,
)
from .log_price import LogPriceIntegrator
from .payoff import PayoffAggregator
from .simulation import HestonSimulation, simulate
from .stats_engine import (
    DEFAULT_ENGINE,
    FnMetric,
    StatsEngine,
    StatsContext
)
from .utils import autocrit, t_crit, z_crit
from .variance import VarianceProcessSimulator, VarianceSimulation
from .variates import RandomVariateGenerator, correlated_normals

__all__ = [
    "SimulationConfig",
    "sample_config",
    "HestonSimulation",
    "simulate",
    "AggregateResult",
    "BlockEstimate",
    "BlockOutput",
    "PathExport",
    "SimulationDiagnostics",
    "RandomVariateGenerator",
    "correlated_normals",
    "VarianceProcessSimulator",
    "VarianceSimulation",
    "LogPriceIntegrator",
    "PayoffAggregator",
    "BlockStatistics",
    "BlockSummary",
    "ConfigurationError",
    "NumericInstabilityWarning",
    "SimulationCancelledError",
    "StatsEngine",
    "StatsContext",
    "FnMetric",
    "DEFAULT_ENGINE",
    "z_crit",
    "t_crit",
    "autocrit",
]

__version__ = "0.1.0"
