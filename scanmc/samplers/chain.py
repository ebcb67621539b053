"""
A single Markov chain: Metropolis-Hastings steps, statistics and state.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass
class ChainState:
    """
    Everything needed to continue a chain exactly where it stopped.

    All fields are JSON-serialisable.
    """

    point: List[float]
    log_posterior: float
    accepted: int = 0
    rejected: int = 0
    iterations: int = 0
    rng_state: Dict[str, Any] = field(default_factory=dict)
    proposal_state: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChainState':
        data = dict(data)
        data["log_posterior"] = float(data["log_posterior"])
        return cls(**data)


@dataclass
class ChainHistory:
    """Samples produced by :meth:`Chain.run`."""

    points: np.ndarray
    log_posterior: np.ndarray
    accepted: np.ndarray
    candidates: Optional[np.ndarray] = None
    candidate_log_posterior: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def acceptance_rate(self) -> float:
        if len(self) == 0:
            return 0.0
        return float(np.mean(self.accepted))


class Chain:
    """
    One random walk over the posterior.

    Parameters
    ----------
    posterior : Posterior
        Shared, read-only target.
    proposal : Proposal
        Proposal owned by this chain.
    rng : numpy.random.Generator
        Generator owned by this chain.
    point : array_like
        Starting point.
    index : int
        Position of the chain in the ensemble.
    """

    def __init__(self, posterior, proposal, rng: np.random.Generator, point, index: int = 0):
        self.posterior = posterior
        self.proposal = proposal
        self.rng = rng
        self.index = index
        self.point = np.array(point, dtype=float)
        self.log_posterior = posterior.evaluate(self.point)
        self.accepted = 0
        self.rejected = 0
        self.iterations = 0

    @property
    def acceptance_rate(self) -> float:
        total = self.accepted + self.rejected
        if total == 0:
            return 0.0
        return self.accepted / total

    def move_to(self, point) -> None:
        """Jump to ``point`` without counting a step."""
        point = np.array(point, dtype=float)
        if point.shape != self.point.shape:
            raise ValueError(f"Point has shape {point.shape}, expected {self.point.shape}")
        self.point = point
        self.log_posterior = self.posterior.evaluate(point)

    def reset_statistics(self) -> None:
        self.accepted = 0
        self.rejected = 0

    def _step(self):
        candidate = self.proposal.propose(self.point, self.rng)
        candidate_log_posterior = self.posterior.evaluate(candidate)

        if candidate_log_posterior == -math.inf:
            delta = -math.inf
        elif self.log_posterior == -math.inf:
            delta = math.inf
        else:
            delta = candidate_log_posterior - self.log_posterior
            if not self.proposal.symmetric:
                delta += self.proposal.log_ratio(self.point, candidate)

        u = self.rng.random()
        log_u = math.log(u) if u > 0.0 else -math.inf
        accept = log_u < delta

        if accept:
            self.point = candidate
            self.log_posterior = candidate_log_posterior
            self.accepted += 1
        else:
            self.rejected += 1
        self.iterations += 1
        return accept, candidate, candidate_log_posterior

    def step(self) -> bool:
        """Perform one Metropolis-Hastings step; return whether it was accepted."""
        return self._step()[0]

    def run(self, steps: int, record_candidates: bool = False) -> ChainHistory:
        """Perform ``steps`` steps and return the visited points."""
        dimension = self.point.size
        points = np.empty((steps, dimension))
        log_posterior = np.empty(steps)
        accepted = np.zeros(steps, dtype=bool)
        candidates = np.empty((steps, dimension)) if record_candidates else None
        candidate_log_posterior = np.empty(steps) if record_candidates else None

        for i in range(steps):
            accepted[i], candidate, candidate_lp = self._step()
            points[i] = self.point
            log_posterior[i] = self.log_posterior
            if record_candidates:
                candidates[i] = candidate
                candidate_log_posterior[i] = candidate_lp

        return ChainHistory(points, log_posterior, accepted, candidates, candidate_log_posterior)

    def snapshot(self) -> ChainState:
        return ChainState(
            point=self.point.tolist(),
            log_posterior=float(self.log_posterior),
            accepted=self.accepted,
            rejected=self.rejected,
            iterations=self.iterations,
            rng_state=self.rng.bit_generator.state,
            proposal_state=self.proposal.state(),
        )

    def restore(self, state: ChainState) -> None:
        point = np.array(state.point, dtype=float)
        if point.shape != self.point.shape:
            raise ValueError(f"Stored point has shape {point.shape}, expected {self.point.shape}")
        self.point = point
        self.log_posterior = float(state.log_posterior)
        self.accepted = int(state.accepted)
        self.rejected = int(state.rejected)
        self.iterations = int(state.iterations)
        if state.rng_state:
            self.rng.bit_generator.state = state.rng_state
        if state.proposal_state:
            self.proposal.load_state(state.proposal_state)

    def __repr__(self) -> str:
        return (f"Chain(index={self.index}, iterations={self.iterations}, "
                f"acceptance_rate={self.acceptance_rate:.3f})")
