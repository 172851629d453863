r"""
Exception and warning types raised by :mod:`hestonmc`.

Classes
    :class:`ConfigurationError` — invalid model parameters or run options
    :class:`NumericInstabilityWarning` — non-fatal discretization diagnostics
    :class:`SimulationCancelledError` — run stopped before every block finished
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .core import BlockOutput

__all__ = [
    "ConfigurationError",
    "NumericInstabilityWarning",
    "SimulationCancelledError",
]


class ConfigurationError(ValueError):
    """Raised before any simulation work when a parameter is out of range."""


class NumericInstabilityWarning(RuntimeWarning):
    r"""
    Emitted when the variance floor triggers often or terminal prices overflow.

    A high clamp ratio usually means ``dt`` is too coarse for the parameters,
    typically when the Feller condition :math:`2\kappa\theta \ge \epsilon^2`
    is violated.
    """


class SimulationCancelledError(RuntimeError):
    r"""
    Raised when a timeout or cancel event stops a run between blocks.

    Parameters
    ----------
    message : str
        Human-readable reason.
    completed : tuple of BlockOutput
        Blocks that finished before cancellation, in block order. Each is a
        valid independent sample and may still be reduced with
        :class:`~hestonmc.block_stats.BlockStatistics`.
    requested : int
        Number of blocks the run asked for.
    """

    def __init__(self, message: str, completed: tuple["BlockOutput", ...] = (), requested: int = 0):
        super().__init__(message)
        self.completed = tuple(completed)
        self.requested = int(requested)
