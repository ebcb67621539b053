#!/usr/bin/env python3
"""
Proposal distributions for the Metropolis-Hastings step.

Every proposal governs a subset of the components of the parameter vector
(all of them unless ``indices`` is given) and leaves the remaining
components untouched. A :class:`CompositeProposal` joins disjoint blocks
into one proposal over the full vector.

Adaptive proposals keep the covariance estimate and the scale apart: draws
use ``cholesky(scale * covariance)``. Adaptation rescales by
``SCALE_ADJUSTMENT_FACTOR`` whenever the acceptance rate leaves the
acceptance band and replaces the covariance estimate by the empirical
covariance of the latest samples, unless that estimate is degenerate.
"""

import math
import warnings
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .constants import (
    DEFAULT_ACCEPTANCE_BAND,
    SCALE_ADJUSTMENT_FACTOR,
    INITIAL_COVARIANCE_FRACTION,
    MIN_RECIPROCAL_CONDITION,
    optimal_scale,
)
from .exceptions import ConfigurationError, NumericDegeneracyWarning


class Proposal(ABC):
    """
    Abstract proposal over a block of parameter components.

    Parameters
    ----------
    indices : sequence of int
        Components of the parameter vector this proposal changes.
    """

    kind = ""
    symmetric = True

    def __init__(self, indices: Sequence[int]):
        self.indices = np.asarray(indices, dtype=int)
        if self.indices.ndim != 1 or self.indices.size == 0:
            raise ConfigurationError(f"{type(self).__name__} needs at least one component")

    @abstractmethod
    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Candidate vector; components outside ``indices`` equal ``current``."""

    def log_ratio(self, current: np.ndarray, candidate: np.ndarray) -> float:
        """``log q(current|candidate) - log q(candidate|current)``."""
        return 0.0

    def adapt(self, samples: np.ndarray, acceptance_rate: float) -> None:
        """Tune the proposal from an interval of samples (full vectors)."""

    def state(self) -> Dict[str, Any]:
        return {"kind": self.kind}

    def load_state(self, state: Dict[str, Any]) -> None:
        if state.get("kind") != self.kind:
            raise ConfigurationError(
                f"Cannot load '{state.get('kind')}' proposal state into a '{self.kind}' proposal"
            )


def _check_covariance(covariance: np.ndarray) -> Optional[str]:
    """
    Reason why ``covariance`` is unusable, or None.

    The conditioning test runs on the correlation matrix so that parameters
    of very different magnitude do not count as degenerate.
    """
    if not np.all(np.isfinite(covariance)):
        return "non-finite entries"
    variances = np.diag(covariance)
    if not np.all(variances > 0.0):
        return "non-positive variance"
    correlation = covariance / np.sqrt(np.outer(variances, variances))
    eigenvalues = np.linalg.eigvalsh(correlation)
    if eigenvalues[0] <= 0.0:
        return "not positive definite"
    if eigenvalues[0] / eigenvalues[-1] < MIN_RECIPROCAL_CONDITION:
        return f"reciprocal condition number {eigenvalues[0] / eigenvalues[-1]:.3g} too small"
    try:
        np.linalg.cholesky(covariance)
    except np.linalg.LinAlgError:
        return "Cholesky decomposition failed"
    return None


class AdaptiveGaussianProposal(Proposal):
    """
    Random-walk proposal ``current + L z`` with ``z`` standard normal.

    Parameters
    ----------
    covariance : array_like
        Initial covariance estimate of the governed block.
    indices : sequence of int, optional
        Governed components, defaults to all.
    scale : float, optional
        Initial scale, defaults to ``2.38**2 / d``.
    acceptance_band : tuple of float
        Acceptance rates outside ``(low, high)`` rescale the proposal.
    """

    kind = "gaussian"

    def __init__(self, covariance, indices: Optional[Sequence[int]] = None,
                 scale: Optional[float] = None,
                 acceptance_band: Tuple[float, float] = DEFAULT_ACCEPTANCE_BAND):
        covariance = np.atleast_2d(np.asarray(covariance, dtype=float))
        if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
            raise ConfigurationError(f"Covariance must be a square matrix, got shape {covariance.shape}")
        if indices is None:
            indices = range(covariance.shape[0])
        super().__init__(indices)
        if covariance.shape[0] != self.indices.size:
            raise ConfigurationError(
                f"Covariance of shape {covariance.shape} does not match {self.indices.size} components"
            )
        problem = _check_covariance(covariance)
        if problem is not None:
            raise ConfigurationError(f"Initial proposal covariance is unusable: {problem}")

        self.covariance = covariance
        self.scale = optimal_scale(self.indices.size) if scale is None else float(scale)
        if not self.scale > 0.0:
            raise ConfigurationError(f"Proposal scale must be positive, got {scale}")
        self.acceptance_band = tuple(acceptance_band)
        self._update_factor()

    @property
    def dimension(self) -> int:
        return int(self.indices.size)

    def _update_factor(self):
        self._factor = np.linalg.cholesky(self.scale * self.covariance)

    def _step(self, rng: np.random.Generator) -> np.ndarray:
        return self._factor @ rng.standard_normal(self.dimension)

    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        candidate = np.array(current, dtype=float)
        candidate[self.indices] += self._step(rng)
        return candidate

    def adapt(self, samples: np.ndarray, acceptance_rate: float) -> None:
        low, high = self.acceptance_band
        if acceptance_rate > high:
            self.scale *= SCALE_ADJUSTMENT_FACTOR
        elif acceptance_rate < low:
            self.scale /= SCALE_ADJUSTMENT_FACTOR

        block = np.asarray(samples, dtype=float)[:, self.indices]
        if block.shape[0] < 2:
            problem = f"only {block.shape[0]} sample(s)"
        else:
            estimate = np.atleast_2d(np.cov(block, rowvar=False))
            problem = _check_covariance(estimate)
        if problem is None:
            self.covariance = estimate
        else:
            warnings.warn(
                f"Covariance update rejected ({problem}); keeping the previous covariance",
                NumericDegeneracyWarning,
                stacklevel=2,
            )
        self._update_factor()

    def state(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "indices": self.indices.tolist(),
            "covariance": self.covariance.tolist(),
            "scale": self.scale,
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        super().load_state(state)
        covariance = np.atleast_2d(np.asarray(state["covariance"], dtype=float))
        if covariance.shape != self.covariance.shape:
            raise ConfigurationError(
                f"Stored covariance of shape {covariance.shape} does not match {self.covariance.shape}"
            )
        self.covariance = covariance
        self.scale = float(state["scale"])
        self._update_factor()


class StudentTProposal(AdaptiveGaussianProposal):
    """
    Multivariate Student-t random walk ``current + L z / sqrt(w)`` with
    ``w ~ chi2(dof) / dof``.
    """

    kind = "student_t"

    def __init__(self, covariance, degrees_of_freedom: float,
                 indices: Optional[Sequence[int]] = None,
                 scale: Optional[float] = None,
                 acceptance_band: Tuple[float, float] = DEFAULT_ACCEPTANCE_BAND):
        if degrees_of_freedom is None or not float(degrees_of_freedom) > 0.0:
            raise ConfigurationError(
                f"Student-t proposal needs positive degrees of freedom, got {degrees_of_freedom}"
            )
        self.degrees_of_freedom = float(degrees_of_freedom)
        super().__init__(covariance, indices=indices, scale=scale, acceptance_band=acceptance_band)

    def _step(self, rng: np.random.Generator) -> np.ndarray:
        z = rng.standard_normal(self.dimension)
        w = rng.chisquare(self.degrees_of_freedom) / self.degrees_of_freedom
        return self._factor @ z / math.sqrt(w)

    def state(self) -> Dict[str, Any]:
        state = super().state()
        state["degrees_of_freedom"] = self.degrees_of_freedom
        return state


class DiscreteProposal(Proposal):
    """Uniform choice among the finite support of one parameter."""

    kind = "discrete"

    def __init__(self, index: int, values: Sequence[float]):
        super().__init__([index])
        self.values = tuple(float(v) for v in values)
        if not self.values:
            raise ConfigurationError("Discrete proposal needs at least one value")

    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        candidate = np.array(current, dtype=float)
        candidate[self.indices[0]] = self.values[int(rng.integers(len(self.values)))]
        return candidate


class PriorProposal(Proposal):
    """
    Independence proposal drawing one parameter from its prior.

    Not symmetric: the correction is ``log p(current) - log p(candidate)``.
    """

    kind = "prior"
    symmetric = False

    def __init__(self, index: int, prior):
        super().__init__([index])
        self.prior = prior

    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        candidate = np.array(current, dtype=float)
        candidate[self.indices[0]] = self.prior.sample(rng)
        return candidate

    def log_ratio(self, current: np.ndarray, candidate: np.ndarray) -> float:
        i = self.indices[0]
        return self.prior.log_density(float(current[i])) - self.prior.log_density(float(candidate[i]))


class CompositeProposal(Proposal):
    """Joint proposal made of blocks acting on disjoint components."""

    kind = "composite"

    def __init__(self, blocks: Sequence[Proposal]):
        if not blocks:
            raise ConfigurationError("Composite proposal needs at least one block")
        indices = np.concatenate([b.indices for b in blocks])
        if len(set(indices.tolist())) != indices.size:
            raise ConfigurationError("Proposal blocks must govern disjoint components")
        super().__init__(indices)
        self.blocks: List[Proposal] = list(blocks)
        self.symmetric = all(b.symmetric for b in self.blocks)

    def propose(self, current: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        candidate = np.array(current, dtype=float)
        for block in self.blocks:
            candidate = block.propose(candidate, rng)
        return candidate

    def log_ratio(self, current: np.ndarray, candidate: np.ndarray) -> float:
        if self.symmetric:
            return 0.0
        return float(sum(b.log_ratio(current, candidate) for b in self.blocks))

    def adapt(self, samples: np.ndarray, acceptance_rate: float) -> None:
        for block in self.blocks:
            block.adapt(samples, acceptance_rate)

    def state(self) -> Dict[str, Any]:
        return {"kind": self.kind, "blocks": [b.state() for b in self.blocks]}

    def load_state(self, state: Dict[str, Any]) -> None:
        super().load_state(state)
        if len(state["blocks"]) != len(self.blocks):
            raise ConfigurationError(
                f"Stored proposal has {len(state['blocks'])} blocks, expected {len(self.blocks)}"
            )
        for block, block_state in zip(self.blocks, state["blocks"]):
            block.load_state(block_state)


def build_proposal(posterior, config) -> CompositeProposal:
    """
    Assemble the proposal of one chain.

    Parameters named in ``config.block_proposal_parameters`` are drawn from
    their prior, other discrete parameters get a :class:`DiscreteProposal`
    and all remaining parameters share one adaptive Gaussian or Student-t
    block whose initial covariance is a fraction of the prior variances.
    """
    from ..parameters.priors import DiscretePrior

    blocked = set(config.block_proposal_parameters)
    unknown = sorted(blocked - set(posterior.names))
    if unknown:
        raise ConfigurationError(f"Cannot block proposals of undeclared parameters {unknown}")

    blocks: List[Proposal] = []
    adaptive: List[int] = []
    for i, prior in enumerate(posterior.priors):
        if prior.name in blocked:
            blocks.append(PriorProposal(i, prior))
        elif isinstance(prior, DiscretePrior):
            blocks.append(DiscreteProposal(i, prior.values))
        else:
            adaptive.append(i)

    if adaptive:
        variances = np.array([posterior.priors[i].variance() for i in adaptive])
        covariance = np.diag(INITIAL_COVARIANCE_FRACTION * variances)
        if config.proposal == "student_t":
            block = StudentTProposal(covariance, config.student_t_degrees_of_freedom,
                                     indices=adaptive, acceptance_band=config.acceptance_band)
        else:
            block = AdaptiveGaussianProposal(covariance, indices=adaptive,
                                             acceptance_band=config.acceptance_band)
        blocks.insert(0, block)

    return CompositeProposal(blocks)
