r"""
Immutable simulation configuration for the Heston Monte Carlo engine.

The model under the risk-neutral measure is

.. math::

   dX_t &= \left(r - q - \tfrac{1}{2} V_t\right) dt + \sqrt{V_t}\, dW^1_t, \\
   dV_t &= \kappa(\theta - V_t)\, dt + \epsilon \sqrt{V_t}\, dW^2_t, \\
   d\langle W^1, W^2 \rangle_t &= \rho\, dt,

with :math:`X_t = \ln(S_t / S_0)`.

:class:`SimulationConfig` holds both the model parameters and the sampling
sizes. It validates itself on construction and is shared read-only by every
component of a run.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from numbers import Integral, Real
from typing import Any, Mapping

import numpy as np

from .exceptions import ConfigurationError

__all__ = ["SimulationConfig", "sample_config"]

_INT_FIELDS = ("npaths", "nblocks", "nsteps")


@dataclass(frozen=True)
class SimulationConfig:
    r"""
    Model parameters and sample sizes for one Heston Monte Carlo run.

    Attributes
    ----------
    kappa : float
        Mean-reversion rate :math:`\kappa > 0`.
    theta : float
        Long-run variance :math:`\theta \ge 0`.
    epsilon : float
        Volatility of variance :math:`\epsilon \ge 0`.
    V0 : float
        Initial variance :math:`V_0 \ge 0`.
    rho : float
        Correlation between the price and variance drivers, in :math:`[-1, 1]`.
    S0 : float
        Initial spot, :math:`S_0 > 0`.
    K : float
        Strike, :math:`K > 0`.
    r : float
        Continuously compounded risk-free rate.
    q : float
        Continuous dividend yield.
    npaths : int
        Paths per block.
    nblocks : int
        Independent blocks, at least 2 so the between-block variance exists.
    nsteps : int
        Time steps per path.
    T : float
        Maturity (simulation horizon), :math:`T > 0`.

    Raises
    ------
    ConfigurationError
        If any field is outside its allowed range.

    Examples
    --------
    >>> cfg = sample_config()
    >>> cfg.dt
    0.005
    >>> cfg.with_overrides(nblocks=40).nblocks
    40
    """

    kappa: float
    theta: float
    epsilon: float
    V0: float
    rho: float
    S0: float
    K: float
    r: float
    q: float
    npaths: int
    nblocks: int
    nsteps: int
    T: float

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, Integral):
                    raise ConfigurationError(f"{f.name} must be an integer, got {value!r}")
                object.__setattr__(self, f.name, int(value))
            else:
                if isinstance(value, bool) or not isinstance(value, Real):
                    raise ConfigurationError(f"{f.name} must be a real number, got {value!r}")
                if not math.isfinite(value):
                    raise ConfigurationError(f"{f.name} must be finite, got {value!r}")
                object.__setattr__(self, f.name, float(value))

        if abs(self.rho) > 1.0:
            raise ConfigurationError(f"rho must be in [-1, 1], got {self.rho}")
        if self.kappa <= 0.0:
            raise ConfigurationError(f"kappa must be positive, got {self.kappa}")
        if self.theta < 0.0:
            raise ConfigurationError(f"theta must be non-negative, got {self.theta}")
        if self.epsilon < 0.0:
            raise ConfigurationError(f"epsilon must be non-negative, got {self.epsilon}")
        if self.V0 < 0.0:
            raise ConfigurationError(f"V0 must be non-negative, got {self.V0}")
        if self.S0 <= 0.0:
            raise ConfigurationError(f"S0 must be positive, got {self.S0}")
        if self.K <= 0.0:
            raise ConfigurationError(f"K must be positive, got {self.K}")
        if self.T <= 0.0:
            raise ConfigurationError(f"T must be positive, got {self.T}")
        if self.npaths <= 0:
            raise ConfigurationError(f"npaths must be positive, got {self.npaths}")
        if self.nsteps <= 0:
            raise ConfigurationError(f"nsteps must be positive, got {self.nsteps}")
        if self.nblocks < 2:
            raise ConfigurationError(
                f"nblocks must be at least 2 to estimate a standard error, got {self.nblocks}"
            )

    @property
    def dt(self) -> float:
        """Time step ``T / nsteps``."""
        return self.T / self.nsteps

    @property
    def mu(self) -> float:
        """Risk-neutral drift ``r - q``."""
        return self.r - self.q

    @property
    def discount(self) -> float:
        """Discount factor ``exp(-r T)``."""
        return math.exp(-self.r * self.T)

    @property
    def time_grid(self) -> np.ndarray:
        """Observation times ``0, dt, ..., T`` (length ``nsteps + 1``)."""
        return np.linspace(0.0, self.T, self.nsteps + 1)

    @property
    def feller_ratio(self) -> float:
        r"""
        Feller ratio :math:`2\kappa\theta / \epsilon^2`.

        ``inf`` when :math:`\epsilon = 0` (deterministic variance).
        """
        if self.epsilon == 0.0:
            return math.inf
        return 2.0 * self.kappa * self.theta / self.epsilon**2

    @property
    def feller_satisfied(self) -> bool:
        r"""Whether :math:`2\kappa\theta \ge \epsilon^2`."""
        return self.feller_ratio >= 1.0

    def forward(self) -> float:
        r"""Discounted forward leg :math:`S_0 e^{-qT} - K e^{-rT}` of put-call parity."""
        return self.S0 * math.exp(-self.q * self.T) - self.K * self.discount

    def with_overrides(self, **changes: Any) -> "SimulationConfig":
        r"""
        Return a validated copy with selected fields replaced.

        Parameters
        ----------
        **changes :
            Field overrides passed to :func:`dataclasses.replace`.

        Raises
        ------
        ConfigurationError
            If a field name is unknown or a new value is invalid.
        """
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "SimulationConfig":
        r"""
        Build a configuration from a plain mapping (e.g. parsed JSON/TOML).

        Raises
        ------
        ConfigurationError
            If keys are missing or unknown, or a value is invalid.
        """
        names = {f.name for f in fields(cls)}
        data = dict(mapping)
        unknown = set(data) - names
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        missing = names - set(data)
        if missing:
            raise ConfigurationError(f"Missing configuration fields: {sorted(missing)}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Plain ``dict`` of the fields (inverse of :meth:`from_mapping`)."""
        return asdict(self)


def sample_config() -> SimulationConfig:
    """Reference parameter set (Cui et al.): an out-of-the-money call, ``K > S0``."""
    return SimulationConfig(
        kappa=3.0,
        theta=0.1,
        epsilon=0.25,
        V0=0.08,
        rho=-0.8,
        S0=1.0,
        K=1.1,
        r=0.02,
        q=0.0,
        npaths=10_000,
        nblocks=20,
        nsteps=200,
        T=1.0,
    )
