"""
Adaptive multi-chain Metropolis-Hastings sampler.

The sampler owns an ensemble of chains over one posterior. A run consists
of an optional burn-in (prerun) that adapts the proposals until the chains
agree, followed by the main run of ``chunks`` chunks of ``chunk_size``
steps per chain. A checkpoint is written to the output store when the
prerun ends and after every main-run chunk, and a later run can resume
from the last checkpoint and continue exactly where the first one stopped.

Key Features:
- Per-chain random generators derived from one global seed
- Restriction to one of several declared parameter-space partitions
- Gaussian or Student-t adaptive proposals, prior and discrete proposals
- Gelman-Rubin convergence test during the prerun
- Summary statistics through numpyro, export through arviz
"""

import math
import time
from datetime import datetime
from typing import Dict, List, Optional, Callable, Sequence

import numpy as np
import arviz as az
from numpyro.diagnostics import summary
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from .chain import Chain
from .config import SamplerConfig
from .constants import MAX_STARTING_POINT_ATTEMPTS, RNG_SEED_MODULO
from .diagnostics import scale_reduction, effective_sample_size
from .exceptions import ConfigurationError
from .multicore import ChainExecutor
from .optimize import ModeResult, find_mode
from .persistence import ChunkStore, ChainRecord, Checkpoint
from .posterior import Posterior
from .prerun import PrerunCoordinator, PrerunResult
from .proposals import build_proposal


def chain_rng(seed: int, index: int) -> np.random.Generator:
    """Generator of chain ``index`` for global ``seed``."""
    sequence = np.random.SeedSequence(int(seed) % RNG_SEED_MODULO, spawn_key=(int(index),))
    return np.random.default_rng(sequence)


class SamplerResult:
    """
    Main-run samples of a chain ensemble.

    Parameters
    ----------
    names : list of str
        Parameter names, in vector order.
    samples : numpy.ndarray
        Shape ``(chains, draws, parameters)``.
    log_posterior, accepted : numpy.ndarray
        Shape ``(chains, draws)``.
    acceptance_rates : list of float
        Main-run acceptance rate of every chain.
    prerun : PrerunResult
        Outcome of the burn-in.
    candidates, candidate_log_posterior : numpy.ndarray, optional
        Proposed points and their log-posterior, when stored.
    """

    def __init__(self, names: Sequence[str], samples: np.ndarray, log_posterior: np.ndarray,
                 accepted: np.ndarray, acceptance_rates: Sequence[float], prerun: PrerunResult,
                 candidates: Optional[np.ndarray] = None,
                 candidate_log_posterior: Optional[np.ndarray] = None,
                 run_time: float = 0.0):
        self.names = list(names)
        self.samples = samples
        self.log_posterior = log_posterior
        self.accepted = accepted
        self.acceptance_rates = list(acceptance_rates)
        self.prerun = prerun
        self.candidates = candidates
        self.candidate_log_posterior = candidate_log_posterior
        self.run_time = run_time

    @property
    def num_chains(self) -> int:
        return int(self.samples.shape[0])

    @property
    def num_draws(self) -> int:
        return int(self.samples.shape[1])

    def _require_samples(self):
        if self.num_draws == 0:
            raise RuntimeError("No samples available. Run the main phase first.")

    def get_samples(self, group_by_chain: bool = False) -> Dict[str, np.ndarray]:
        """
        Samples per parameter.

        Parameters
        ----------
        group_by_chain : bool
            If True, arrays have shape ``(chains, draws)``, otherwise the
            chains are concatenated into ``(chains * draws,)``.
        """
        result = {}
        for i, name in enumerate(self.names):
            values = self.samples[:, :, i]
            result[name] = values if group_by_chain else values.reshape(-1)
        return result

    def r_hat(self) -> Dict[str, float]:
        return dict(zip(self.names, scale_reduction(self.samples).tolist()))

    def effective_sample_size(self) -> Dict[str, float]:
        self._require_samples()
        return dict(zip(self.names, effective_sample_size(self.samples).tolist()))

    def summary(self, prob: float = 0.9) -> Dict[str, Dict[str, float]]:
        """Mean, std, median, credible interval, n_eff and r_hat per parameter (numpyro)."""
        self._require_samples()
        return summary(self.get_samples(group_by_chain=True), prob=prob, group_by_chain=True)

    def print_summary(self, prob: float = 0.9, console: Optional[Console] = None) -> None:
        """
        Print a summary table of the main-run samples.

        Parameters
        ----------
        prob : float
            Probability for credible intervals
        console : rich.console.Console, optional
            Target console, a new one when omitted
        """
        summary_dict = self.summary(prob=prob)

        table = Table(title="MCMC Summary Statistics")
        table.add_column("Parameter", style="cyan", no_wrap=True)
        table.add_column("Mean", justify="right")
        table.add_column("Std", justify="right")
        table.add_column(f"{int(prob*100)}% CI", justify="center")
        table.add_column("n_eff", justify="right")
        table.add_column("r_hat", justify="right")

        for name in self.names:
            stats = summary_dict[name]
            alpha = (1 - prob) / 2
            ci_low = stats[f'{alpha*100:.1f}%']
            ci_high = stats[f'{(1-alpha)*100:.1f}%']
            r_hat = float(stats['r_hat'])

            if r_hat < 1.01:
                r_hat_str = f"[green]{r_hat:.3f}[/green]"
            elif r_hat < 1.1:
                r_hat_str = f"[yellow]{r_hat:.3f}[/yellow]"
            else:
                r_hat_str = f"[red]{r_hat:.3f}[/red]"

            table.add_row(
                name,
                f"{float(stats['mean']):.4f}",
                f"{float(stats['std']):.4f}",
                f"[{float(ci_low):.4f}, {float(ci_high):.4f}]",
                f"{float(stats['n_eff']):.0f}",
                r_hat_str,
            )

        (console or Console()).print(table)

    def to_arviz(self) -> az.InferenceData:
        """
        Convert samples to ArviZ InferenceData for analysis.

        The log-posterior and acceptance flags go to ``sample_stats``.
        """
        self._require_samples()
        return az.from_dict(
            posterior=self.get_samples(group_by_chain=True),
            sample_stats={"lp": self.log_posterior, "accepted": self.accepted},
        )

    def __repr__(self) -> str:
        return f"SamplerResult(chains={self.num_chains}, draws={self.num_draws}, names={self.names})"


class MarkovChainSampler:
    """
    Adaptive Metropolis-Hastings sampler over a chain ensemble.

    Parameters
    ----------
    posterior : Posterior
        Target distribution.
    config : SamplerConfig, optional
        Run options, defaults to ``SamplerConfig()``.
    verbose : bool
        Print configuration, progress and a summary with rich.

    Example
    -------
    >>> manager = ParameterManager()
    >>> manager.add_scan("x", {"type": "flat", "min": -5.0, "max": 5.0})
    >>> posterior = manager.build_posterior(lambda v: -0.5 * v[0] ** 2)
    >>> sampler = MarkovChainSampler(posterior, SamplerConfig.quick(seed=1))
    >>> result = sampler.run()
    >>> result.samples.shape
    (2, 400, 1)
    """

    def __init__(self, posterior: Posterior, config: Optional[SamplerConfig] = None,
                 verbose: bool = False):
        self.config = config if config is not None else SamplerConfig()
        self.verbose = verbose
        self.console = Console() if verbose else None

        self._validate_partitions(posterior)
        partition = self.config.selected_partition
        self.posterior = posterior.narrowed(partition) if partition is not None else posterior

        self.chains: List[Chain] = []
        for index in range(self.config.number_of_chains):
            rng = chain_rng(self.config.seed, index)
            proposal = build_proposal(self.posterior, self.config)
            point = self._starting_point(rng)
            self.chains.append(Chain(self.posterior, proposal, rng, point, index=index))

        from ..parameters.priors import DiscretePrior
        self.tracked = [i for i, p in enumerate(self.posterior.priors) if not isinstance(p, DiscretePrior)]

        self.store = ChunkStore(self._output_path()) if self._output_path() else None
        self.prerun_result: Optional[PrerunResult] = None
        self.chunks_completed = 0
        self.iterations = 0

    @classmethod
    def from_parameters(cls, parameters, log_likelihood: Callable, config: Optional[SamplerConfig] = None,
                        verbose: bool = False) -> 'MarkovChainSampler':
        """Build the posterior of a :class:`ParameterManager` and a sampler over it."""
        return cls(parameters.build_posterior(log_likelihood), config, verbose)

    @property
    def names(self) -> List[str]:
        return self.posterior.names

    def _validate_partitions(self, posterior: Posterior):
        for index, partition in enumerate(self.config.partitions):
            for name, _, _ in partition:
                if name not in posterior.names:
                    raise ConfigurationError(f"Partition {index} names unknown parameter '{name}'")

    def _output_path(self) -> Optional[str]:
        if self.config.output_file is not None:
            return self.config.output_file
        return self.config.resume_file

    def _starting_point(self, rng: np.random.Generator) -> np.ndarray:
        for _ in range(MAX_STARTING_POINT_ATTEMPTS):
            point = np.array([prior.sample(rng) for prior in self.posterior.priors])
            if math.isfinite(self.posterior.evaluate(point)):
                return point
        raise ConfigurationError(
            f"No starting point with finite posterior found in {MAX_STARTING_POINT_ATTEMPTS} prior draws"
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self) -> Checkpoint:
        """Current state of the ensemble."""
        return Checkpoint(
            chains=[chain.snapshot() for chain in self.chains],
            chunks_completed=self.chunks_completed,
            iterations=self.iterations,
            parameter_names=self.names,
            prerun=self.prerun_result.to_dict() if self.prerun_result is not None else {},
        )

    def restore(self, checkpoint: Checkpoint) -> None:
        """Continue from ``checkpoint``; chain count and parameters must match."""
        if checkpoint.number_of_chains != len(self.chains):
            raise ConfigurationError(
                f"Checkpoint holds {checkpoint.number_of_chains} chains, "
                f"configuration requests {len(self.chains)}"
            )
        if list(checkpoint.parameter_names) != self.names:
            raise ConfigurationError(
                f"Checkpoint parameters {checkpoint.parameter_names} do not match {self.names}"
            )
        for chain, state in zip(self.chains, checkpoint.chains):
            chain.restore(state)
        self.chunks_completed = checkpoint.chunks_completed
        self.iterations = checkpoint.iterations
        self.prerun_result = PrerunResult.from_dict(checkpoint.prerun)

    def _resume(self) -> Dict[str, np.ndarray]:
        resume_store = ChunkStore(self.config.resume_file)
        if not resume_store.exists():
            raise ConfigurationError(f"Resume file not found: {self.config.resume_file}")
        checkpoint = resume_store.read_checkpoint()
        if checkpoint is None:
            raise ConfigurationError(f"Resume file {self.config.resume_file} holds no checkpoint")
        self.restore(checkpoint)

        if self.store is not None and self.store.path.resolve() == resume_store.path.resolve():
            removed = resume_store.discard_incomplete()
            removed += resume_store.truncate("main", checkpoint.chunks_completed)
            if removed and self.console:
                self.console.print(f"[yellow]Discarded {removed} incomplete entries[/yellow]")
        elif self.store is not None:
            self._initialize_store()

        if self.console:
            self.console.print(
                f"[green]Resuming after chunk {checkpoint.chunks_completed} "
                f"({checkpoint.iterations} iterations per chain)[/green]"
            )
        return resume_store.read_samples("main", chunks=checkpoint.chunks_completed)

    def _initialize_store(self):
        self.store.reset()
        self.store.write_metadata(self.names, self.config.to_dict(),
                                  extra={'number_of_chains': len(self.chains)})

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run(self) -> SamplerResult:
        """
        Run the prerun (unless disabled or resuming) and the main run.

        Returns
        -------
        SamplerResult
        """
        config = self.config
        start = time.time()
        if self.verbose:
            self._print_config()

        previous: Dict[str, np.ndarray] = {}
        with ChainExecutor(config.parallelize) as executor:
            if config.resuming:
                previous = self._resume()
            else:
                if self.store is not None:
                    self._initialize_store()
                self.prerun_result = self._run_prerun(executor)
                if self.store is not None:
                    self.store.write_checkpoint(self.checkpoint())

            collected = self._run_main(executor) if config.need_main_run else []

        result = self._collect(previous, collected, time.time() - start)
        if self.verbose:
            self._print_summary(result)
        return result

    def _run_prerun(self, executor: ChainExecutor) -> PrerunResult:
        coordinator = PrerunCoordinator(
            self.chains, self.config, executor=executor, store=self.store,
            tracked=self.tracked, console=self.console,
        )
        if self.config.find_modes:
            coordinator.find_modes()
        if not self.config.need_prerun:
            return PrerunResult(skipped=True)
        return coordinator.run()

    def _run_main(self, executor: ChainExecutor) -> list:
        config = self.config
        record = config.store_observables_and_proposals
        collected = []
        for chunk_index in range(self.chunks_completed, config.chunks):
            histories = executor.run(self.chains, config.chunk_size, record_candidates=record)
            records = [
                ChainRecord.from_history(chain.index, self.iterations, history)
                for chain, history in zip(self.chains, histories)
            ]
            if self.store is not None:
                self.store.append_chunk("main", chunk_index, records)
            self.iterations += config.chunk_size
            self.chunks_completed = chunk_index + 1
            if self.store is not None:
                self.store.write_checkpoint(self.checkpoint())
            collected.append(records)

            if self.console:
                rates = ", ".join(f"{chain.acceptance_rate:.2f}" for chain in self.chains)
                self.console.print(
                    f"Chunk {chunk_index + 1:>4d}/{config.chunks}: acceptance [{rates}]"
                )
        return collected

    def _collect(self, previous: Dict[str, np.ndarray], collected: list, run_time: float) -> SamplerResult:
        num_chains = len(self.chains)
        arrays = {
            'samples': np.empty((num_chains, 0, self.posterior.dimension)),
            'log_posterior': np.empty((num_chains, 0)),
            'accepted': np.empty((num_chains, 0), dtype=bool),
        }
        expected = (1 if previous else 0) + len(collected)
        for key in ('samples', 'log_posterior', 'accepted', 'candidates', 'candidate_log_posterior'):
            parts = [previous[key]] if key in previous else []
            for records in collected:
                values = [getattr(r, key) for r in records]
                if values[0] is not None:
                    parts.append(np.stack(values))
            # Candidates are only reported when every chunk carries them
            if parts and len(parts) == expected:
                arrays[key] = np.concatenate(parts, axis=1)

        return SamplerResult(
            names=self.names,
            samples=arrays['samples'],
            log_posterior=arrays['log_posterior'],
            accepted=arrays['accepted'],
            acceptance_rates=[chain.acceptance_rate for chain in self.chains],
            prerun=self.prerun_result if self.prerun_result is not None else PrerunResult(skipped=True),
            candidates=arrays.get('candidates'),
            candidate_log_posterior=arrays.get('candidate_log_posterior'),
            run_time=run_time,
        )

    # ------------------------------------------------------------------
    # Point estimation
    # ------------------------------------------------------------------

    def optimize(self, start=None) -> ModeResult:
        """
        Local mode of the posterior.

        Parameters
        ----------
        start : array_like, optional
            Starting point, defaults to the current point of the first chain.
        """
        start = self.chains[0].point if start is None else start
        result = find_mode(self.posterior, start, self.config.mode_finding_iterations)
        if self.console:
            self.console.print(
                f"[cyan]Mode:[/cyan] {dict(zip(self.names, np.round(result.point, 6).tolist()))}, "
                f"log posterior {result.log_posterior:.6g}"
            )
        return result

    def massive_mode_finding(self, starting_points: Optional[Sequence] = None) -> List[ModeResult]:
        """
        Local optimizations from many starting points.

        Starts from the current point of every chain unless
        ``starting_points`` is given. Results are sorted by decreasing
        log-posterior.
        """
        if starting_points is None:
            starting_points = [chain.point for chain in self.chains]
        results = [
            find_mode(self.posterior, point, self.config.mode_finding_iterations)
            for point in starting_points
        ]
        results.sort(key=lambda r: r.log_posterior, reverse=True)
        return results

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print_config(self) -> None:
        lines = [f"[cyan]{key}:[/cyan] {value}" for key, value in self.config.describe()]
        lines.append(f"[cyan]parameters:[/cyan] {', '.join(self.names)}")
        self.console.print(Panel.fit("\n".join(lines), title="MCMC Configuration", border_style="blue"))
        self.console.print(f"[bold]MCMC Started:[/bold] {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    def _print_summary(self, result: SamplerResult) -> None:
        self.console.print(f"\n[green]MCMC completed in {result.run_time:.2f} seconds[/green]")
        prerun = result.prerun
        if not prerun.skipped:
            status = "[green]converged[/green]" if prerun.converged else "[yellow]not converged[/yellow]"
            self.console.print(f"Prerun: {prerun.iterations} iterations, {status}")
        if result.num_draws > 1:
            result.print_summary(console=self.console)


def run_sampler(log_likelihood: Callable, parameters, config: Optional[SamplerConfig] = None,
                verbose: bool = True) -> SamplerResult:
    """
    Convenience function to sample a likelihood over declared parameters.

    Parameters
    ----------
    log_likelihood : callable
        ``f(vector) -> float``
    parameters : ParameterManager or dict
        Parameter declarations, see :meth:`ParameterManager.from_dict`
    config : SamplerConfig or dict, optional
        Run options
    verbose : bool
        Print progress

    Returns
    -------
    SamplerResult
    """
    from ..parameters import ParameterManager

    if isinstance(parameters, dict):
        parameters = ParameterManager.from_dict(parameters)
    if isinstance(config, dict):
        config = SamplerConfig.from_dict(config)
    sampler = MarkovChainSampler.from_parameters(parameters, log_likelihood, config, verbose=verbose)
    return sampler.run()
