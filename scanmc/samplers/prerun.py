#!/usr/bin/env python3
"""
Burn-in coordination.

The prerun advances all chains in lockstep by ``prerun_iterations_update``
steps at a time. After each interval the proposals are adapted from the
interval's samples and the scale reduction is computed on them. The prerun
stops once converged with at least ``prerun_iterations_min`` iterations
done, or unconditionally after ``prerun_iterations_max`` iterations.
"""

import math
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .chain import Chain
from .diagnostics import ConvergenceDiagnostic
from .exceptions import NonConvergenceWarning
from .multicore import ChainExecutor
from .optimize import find_mode
from .persistence import ChainRecord


@dataclass
class PrerunResult:
    """Outcome of the burn-in phase."""

    iterations: int = 0
    converged: bool = False
    r_hat_history: List[List[float]] = field(default_factory=list)
    acceptance_rates: List[float] = field(default_factory=list)
    skipped: bool = False

    @property
    def final_r_hat(self) -> Optional[List[float]]:
        return self.r_hat_history[-1] if self.r_hat_history else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "converged": self.converged,
            "r_hat_history": [[r if math.isfinite(r) else None for r in row] for row in self.r_hat_history],
            "acceptance_rates": list(self.acceptance_rates),
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PrerunResult':
        return cls(
            iterations=int(data.get("iterations", 0)),
            converged=bool(data.get("converged", False)),
            r_hat_history=[[math.inf if r is None else float(r) for r in row]
                           for row in data.get("r_hat_history", [])],
            acceptance_rates=list(data.get("acceptance_rates", [])),
            skipped=bool(data.get("skipped", False)),
        )


class PrerunCoordinator:
    """
    Drives the burn-in of a chain ensemble.

    Parameters
    ----------
    chains : sequence of Chain
        The ensemble, advanced in place.
    config : SamplerConfig
        Prerun policy and proposal adaptation switch.
    executor : ChainExecutor, optional
        Runs the chains; sequential when omitted.
    store : ChunkStore, optional
        Receives one prerun chunk per interval when ``config.store_prerun``.
    tracked : sequence of int, optional
        Components entering the convergence test, defaults to all.
    console : rich.console.Console, optional
        Progress output.
    """

    def __init__(self, chains: Sequence[Chain], config, executor: Optional[ChainExecutor] = None,
                 store=None, tracked: Optional[Sequence[int]] = None, console=None):
        self.chains = list(chains)
        self.config = config
        self.executor = executor or ChainExecutor(parallelize=False)
        self.store = store
        self.console = console
        dimension = self.chains[0].point.size if self.chains else 0
        self.tracked = np.arange(dimension) if tracked is None else np.asarray(tracked, dtype=int)
        names = None
        if self.chains:
            all_names = self.chains[0].posterior.names
            names = [all_names[i] for i in self.tracked]
        self.diagnostic = ConvergenceDiagnostic(config.scale_reduction, names)

    def find_modes(self) -> None:
        """Move every chain to the local mode found from its current point."""
        for chain in self.chains:
            result = find_mode(chain.posterior, chain.point, self.config.mode_finding_iterations)
            if math.isfinite(result.log_posterior):
                chain.move_to(result.point)
            if self.console is not None:
                self.console.print(
                    f"[cyan]Chain {chain.index}[/cyan] mode search: "
                    f"log posterior {result.log_posterior:.4g} ({result.message})"
                )

    def run(self) -> PrerunResult:
        config = self.config
        result = PrerunResult()
        update = config.prerun_iterations_update
        total_accepted = np.zeros(len(self.chains))
        chunk_index = 0

        while result.iterations < config.prerun_iterations_max:
            steps = min(update, config.prerun_iterations_max - result.iterations)
            histories = self.executor.run(self.chains, steps)

            if self.store is not None and config.store_prerun:
                records = [
                    ChainRecord.from_history(chain.index, result.iterations, history)
                    for chain, history in zip(self.chains, histories)
                ]
                self.store.append_chunk("prerun", chunk_index, records)
            chunk_index += 1
            result.iterations += steps

            for i, history in enumerate(histories):
                total_accepted[i] += np.count_nonzero(history.accepted)

            if config.adapt_proposals:
                for chain, history in zip(self.chains, histories):
                    chain.proposal.adapt(history.points, history.acceptance_rate)

            if self.tracked.size:
                samples = np.stack([h.points[:, self.tracked] for h in histories])
                report = self.diagnostic.compute(samples)
                result.r_hat_history.append(report.r_hat.tolist())
                converged = report.converged
                max_r_hat = report.max_r_hat
            else:
                converged, max_r_hat = len(self.chains) > 1, 1.0

            if self.console is not None:
                rates = ", ".join(f"{h.acceptance_rate:.2f}" for h in histories)
                self.console.print(
                    f"Prerun {result.iterations:>7d}: max R-hat {max_r_hat:.4f}, acceptance [{rates}]"
                )

            if converged and result.iterations >= config.prerun_iterations_min:
                result.converged = True
                break

        if result.iterations:
            result.acceptance_rates = (total_accepted / result.iterations).tolist()

        if not result.converged:
            warnings.warn(
                f"Prerun did not converge within {result.iterations} iterations "
                f"(R-hat threshold {config.scale_reduction}); continuing with the main run",
                NonConvergenceWarning,
                stacklevel=2,
            )

        for chain in self.chains:
            chain.reset_statistics()
        return result
