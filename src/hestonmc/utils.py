r"""
Critical values for normal-approximation and Student-t confidence intervals.

Functions
    :func:`z_crit` — two-sided normal critical value
    :func:`t_crit` — two-sided Student-t critical value
    :func:`autocrit` — pick z or t from the method and sample size
"""

from __future__ import annotations

from scipy.stats import norm
from scipy.stats import t as student_t

__all__ = ["z_crit", "t_crit", "autocrit"]

# Below this many samples "auto" switches to Student-t
_T_THRESHOLD = 30


def z_crit(confidence: float) -> float:
    r"""
    Two-sided normal critical value :math:`z_{1-\alpha/2}`.

    Examples
    --------
    >>> round(z_crit(0.95), 3)
    1.96
    """
    if not 0.0 < confidence < 1.0:
        raise ValueError("confidence must be in (0,1)")
    return float(norm.ppf(0.5 + confidence / 2.0))


def t_crit(confidence: float, df: int) -> float:
    r"""
    Two-sided Student-t critical value :math:`t_{1-\alpha/2,\,\nu}`.

    Parameters
    ----------
    confidence : float
        Confidence level in :math:`(0, 1)`.
    df : int
        Degrees of freedom, :math:`\nu \ge 1`.
    """
    if not 0.0 < confidence < 1.0:
        raise ValueError("confidence must be in (0,1)")
    if df < 1:
        raise ValueError("df must be >= 1")
    return float(student_t.ppf(0.5 + confidence / 2.0, df))


def autocrit(confidence: float, n: int, method: str = "auto") -> tuple[float, str]:
    r"""
    Select a critical value for a CI on the mean of ``n`` samples.

    Parameters
    ----------
    confidence : float
        Confidence level in :math:`(0, 1)`.
    n : int
        Effective sample size.
    method : {"auto", "z", "t"}
        ``"auto"`` uses Student-t with ``n - 1`` degrees of freedom when
        ``n < 30`` and the normal value otherwise.

    Returns
    -------
    tuple of (float, str)
        Critical value and the resolved method (``"z"`` or ``"t"``).
    """
    method = str(getattr(method, "value", method))
    if method not in ("auto", "z", "t"):
        raise ValueError(f"Unknown CI method: {method}")
    if method == "z" or (method == "auto" and n >= _T_THRESHOLD):
        return z_crit(confidence), "z"
    return t_crit(confidence, max(1, int(n) - 1)), "t"
