"""
Log-posterior evaluation over a parameter vector.
"""

import math
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np

from .exceptions import ConfigurationError


class Posterior:
    """
    Sum of a log-likelihood and the log-priors of every parameter.

    The likelihood is an opaque callable mapping the parameter vector to a
    scalar. It is only called for points inside every prior's support, and a
    NaN result counts as zero probability. Instances hold no mutable state and
    can be shared between chains running on different threads.

    Parameters
    ----------
    log_likelihood : callable
        ``f(vector) -> float``.
    priors : sequence of LogPrior
        One prior per vector component, in order.
    """

    def __init__(self, log_likelihood: Callable[[np.ndarray], float], priors: Sequence):
        if not callable(log_likelihood):
            raise ConfigurationError("log_likelihood must be callable")
        names = [p.name for p in priors]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate parameter names in {names}")
        if not names:
            raise ConfigurationError("Posterior needs at least one parameter")
        self._log_likelihood = log_likelihood
        self._priors = tuple(priors)
        self._index = {name: i for i, name in enumerate(names)}

    @property
    def priors(self) -> Tuple:
        return self._priors

    @property
    def names(self) -> List[str]:
        return [p.name for p in self._priors]

    @property
    def dimension(self) -> int:
        return len(self._priors)

    @property
    def ranges(self) -> List[Tuple[float, float]]:
        return [p.range for p in self._priors]

    def index(self, name: str) -> int:
        if name not in self._index:
            raise ConfigurationError(f"Unknown parameter '{name}'")
        return self._index[name]

    def log_prior(self, vector) -> float:
        total = 0.0
        for prior, value in zip(self._priors, vector):
            term = prior.log_density(float(value))
            if term == -math.inf:
                return -math.inf
            total += term
        return total

    def log_likelihood(self, vector) -> float:
        value = float(self._log_likelihood(np.asarray(vector, dtype=float)))
        if math.isnan(value):
            return -math.inf
        return value

    def evaluate(self, vector) -> float:
        """Log-posterior at ``vector``; ``-inf`` outside the support, never NaN."""
        vector = np.asarray(vector, dtype=float)
        if vector.shape != (self.dimension,):
            raise ValueError(f"Expected a vector of dimension {self.dimension}, got shape {vector.shape}")
        lp = self.log_prior(vector)
        if lp == -math.inf:
            return -math.inf
        total = lp + self.log_likelihood(vector)
        if math.isnan(total):
            return -math.inf
        return total

    __call__ = evaluate

    def narrowed(self, partition: Sequence[Tuple[str, float, float]]) -> "Posterior":
        """
        Posterior restricted to ``partition``.

        Each ``(name, min, max)`` triple intersects the range of the named
        prior; ranges are never widened.
        """
        bounds: Dict[str, Tuple[float, float]] = {}
        for name, lo, hi in partition:
            self.index(name)
            if name in bounds:
                lo, hi = max(lo, bounds[name][0]), min(hi, bounds[name][1])
            bounds[name] = (lo, hi)
        priors = [
            p.narrowed(*bounds[p.name]) if p.name in bounds else p
            for p in self._priors
        ]
        return Posterior(self._log_likelihood, priors)

    def __repr__(self) -> str:
        return f"Posterior(names={self.names})"
