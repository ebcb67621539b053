"""
Local mode finding on the log-posterior.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import optimize

from .constants import DEFAULT_MAX_OPTIMIZATION_ITERATIONS


@dataclass
class ModeResult:
    """
    Outcome of a local optimization.

    Attributes
    ----------
    point : numpy.ndarray
        Best point found.
    log_posterior : float
        Log-posterior at ``point``.
    covariance : numpy.ndarray or None
        Inverse-Hessian estimate of the posterior covariance around ``point``.
    success : bool
        Whether the optimizer reported convergence.
    message : str
        Optimizer status message.
    """

    point: np.ndarray
    log_posterior: float
    covariance: Optional[np.ndarray]
    success: bool
    message: str


# Finite penalty for -inf posteriors, keeps the optimizer's line search well defined
_PENALTY = 1e300


def find_mode(posterior, start, max_iterations: int = DEFAULT_MAX_OPTIMIZATION_ITERATIONS) -> ModeResult:
    """
    Maximise the log-posterior starting from ``start``.

    Uses L-BFGS-B with the parameter ranges as bounds. Discrete parameters
    are held at their starting value.

    Parameters
    ----------
    posterior : Posterior
        Target.
    start : array_like
        Starting point inside the support.
    max_iterations : int
        Iteration limit.

    Returns
    -------
    ModeResult
    """
    from ..parameters.priors import DiscretePrior

    start = np.array(start, dtype=float)
    free = np.array([not isinstance(p, DiscretePrior) for p in posterior.priors])
    if not np.any(free):
        value = posterior.evaluate(start)
        return ModeResult(start, value, None, True, "no continuous parameters")

    def full_point(x):
        point = start.copy()
        point[free] = x
        return point

    def objective(x):
        value = posterior.evaluate(full_point(x))
        return -value if math.isfinite(value) else _PENALTY

    bounds = [
        (None if math.isinf(lo) else lo, None if math.isinf(hi) else hi)
        for (lo, hi), is_free in zip(posterior.ranges, free) if is_free
    ]
    result = optimize.minimize(
        objective,
        start[free],
        method="L-BFGS-B",
        bounds=bounds,
        options={"maxiter": int(max_iterations)},
    )

    point = full_point(result.x)
    log_posterior = posterior.evaluate(point)
    if not math.isfinite(log_posterior) or log_posterior < posterior.evaluate(start):
        point = start
        log_posterior = posterior.evaluate(start)

    covariance = None
    if hasattr(result, "hess_inv"):
        estimate = np.atleast_2d(result.hess_inv.todense())
        if np.all(np.isfinite(estimate)):
            covariance = np.zeros((start.size, start.size))
            covariance[np.ix_(free, free)] = estimate

    return ModeResult(
        point=point,
        log_posterior=float(log_posterior),
        covariance=covariance,
        success=bool(result.success),
        message=str(result.message),
    )
