#!/usr/bin/env python3
"""
Sampler Configuration for scanmc.

An immutable, validated set of run options passed explicitly into the
sampler. Options can be given as keyword arguments, as a dictionary or as a
YAML file.
"""

from dataclasses import dataclass, asdict, replace as dataclass_replace
from enum import Enum
from typing import Dict, Any, Optional, Tuple, List

import yaml

from .constants import (
    DEFAULT_NUM_CHAINS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNKS,
    DEFAULT_PRERUN_ITERATIONS_MIN,
    DEFAULT_PRERUN_ITERATIONS_MAX,
    DEFAULT_PRERUN_ITERATIONS_UPDATE,
    RHAT_CONVERGENCE_THRESHOLD,
    DEFAULT_ACCEPTANCE_BAND,
    DEFAULT_MAX_OPTIMIZATION_ITERATIONS,
)
from .exceptions import ConfigurationError


class ProposalKind(Enum):
    """Supported adaptive proposal families."""
    GAUSSIAN = "gaussian"
    STUDENT_T = "student_t"


Partition = Tuple[Tuple[str, float, float], ...]


def _normalize_partitions(partitions) -> Tuple[Partition, ...]:
    normalized = []
    for index, partition in enumerate(partitions or ()):
        triples = []
        for triple in partition:
            if isinstance(triple, dict):
                triple = (triple.get("name"), triple.get("min"), triple.get("max"))
            if len(triple) != 3:
                raise ConfigurationError(
                    f"Partition {index} must consist of (name, min, max) triples, got {triple!r}"
                )
            name, lo, hi = triple
            lo, hi = float(lo), float(hi)
            if not lo < hi:
                raise ConfigurationError(
                    f"Partition {index} has an empty range [{lo}, {hi}] for '{name}'"
                )
            triples.append((str(name), lo, hi))
        if not triples:
            raise ConfigurationError(f"Partition {index} is empty")
        normalized.append(tuple(triples))
    return tuple(normalized)


@dataclass(frozen=True)
class SamplerConfig:
    """
    Run options of a :class:`~scanmc.samplers.core.MarkovChainSampler`.

    Parameters
    ----------
    number_of_chains : int
        Number of chains in the ensemble.
    chunk_size : int
        Steps per chain between persistence flushes.
    chunks : int
        Number of main-run chunks.
    need_prerun, need_main_run : bool
        Whether the burn-in and the main run are performed.
    prerun_iterations_min, prerun_iterations_max, prerun_iterations_update : int
        Burn-in continuation policy.
    scale_reduction : float
        Convergence threshold for the R-hat statistic.
    adapt_proposals : bool
        Whether proposals are adapted during the prerun.
    proposal : str
        ``"gaussian"`` or ``"student_t"``.
    student_t_degrees_of_freedom : float, optional
        Degrees of freedom of the Student-t proposal, required for it.
    acceptance_band : tuple of float
        Acceptance rates outside this band rescale the proposal.
    block_proposal_parameters : tuple of str
        Parameters proposed directly from their prior.
    partitions : tuple
        Declared partitions, each a tuple of ``(name, min, max)`` triples.
    partition_index : int, optional
        Partition to restrict the run to.
    seed : int
        Global seed, chain ``i`` uses ``SeedSequence(seed, spawn_key=(i,))``.
    parallelize : bool
        Run chains on one thread each.
    resume_file, output_file : str, optional
        Checkpoint to resume from, and the store written during the run.
    store_prerun, store_observables_and_proposals : bool
        Persist prerun chunks, and candidate points alongside samples.
    find_modes : bool
        Refine each starting point with a local optimizer before the prerun.
    mode_finding_iterations : int
        Iteration limit of the local optimizer.

    Examples
    --------
    >>> config = SamplerConfig(number_of_chains=4, chunk_size=500, seed=7)
    >>> config.replace(proposal="student_t", student_t_degrees_of_freedom=5.0).proposal
    'student_t'
    """

    number_of_chains: int = DEFAULT_NUM_CHAINS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunks: int = DEFAULT_CHUNKS
    need_prerun: bool = True
    need_main_run: bool = True
    prerun_iterations_min: int = DEFAULT_PRERUN_ITERATIONS_MIN
    prerun_iterations_max: int = DEFAULT_PRERUN_ITERATIONS_MAX
    prerun_iterations_update: int = DEFAULT_PRERUN_ITERATIONS_UPDATE
    scale_reduction: float = RHAT_CONVERGENCE_THRESHOLD
    adapt_proposals: bool = True
    proposal: str = ProposalKind.GAUSSIAN.value
    student_t_degrees_of_freedom: Optional[float] = None
    acceptance_band: Tuple[float, float] = DEFAULT_ACCEPTANCE_BAND
    block_proposal_parameters: Tuple[str, ...] = ()
    partitions: Tuple[Partition, ...] = ()
    partition_index: Optional[int] = None
    seed: int = 0
    parallelize: bool = True
    resume_file: Optional[str] = None
    output_file: Optional[str] = None
    store_prerun: bool = False
    store_observables_and_proposals: bool = False
    find_modes: bool = False
    mode_finding_iterations: int = DEFAULT_MAX_OPTIMIZATION_ITERATIONS

    def __post_init__(self):
        """Normalize container fields and validate all options."""
        object.__setattr__(self, "proposal", self._validate_proposal())
        object.__setattr__(self, "acceptance_band", tuple(float(x) for x in self.acceptance_band))
        object.__setattr__(self, "block_proposal_parameters", tuple(self.block_proposal_parameters))
        object.__setattr__(self, "partitions", _normalize_partitions(self.partitions))
        if self.resume_file is not None:
            object.__setattr__(self, "resume_file", str(self.resume_file))
        if self.output_file is not None:
            object.__setattr__(self, "output_file", str(self.output_file))

        self._validate_counts()
        self._validate_prerun()
        self._validate_partitions()

    def _validate_proposal(self) -> str:
        kind = str(self.proposal).lower().replace("-", "_")
        if kind in ("multivariate_student_t", "studentt"):
            kind = ProposalKind.STUDENT_T.value
        valid = [k.value for k in ProposalKind]
        if kind not in valid:
            raise ConfigurationError(f"Unknown proposal '{self.proposal}'. Valid kinds: {valid}")
        if kind == ProposalKind.STUDENT_T.value:
            dof = self.student_t_degrees_of_freedom
            if dof is None or not float(dof) > 0.0:
                raise ConfigurationError(
                    f"Student-t proposal needs positive degrees of freedom, got {dof}"
                )
        return kind

    def _validate_counts(self):
        for name in ("number_of_chains", "chunk_size", "mode_finding_iterations"):
            if int(getattr(self, name)) < 1:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.chunks < 0:
            raise ConfigurationError(f"chunks must be non-negative, got {self.chunks}")
        if not self.scale_reduction > 1.0:
            raise ConfigurationError(f"scale_reduction must exceed 1, got {self.scale_reduction}")
        lo, hi = self.acceptance_band if len(self.acceptance_band) == 2 else (1.0, 0.0)
        if not 0.0 < lo < hi < 1.0:
            raise ConfigurationError(f"acceptance_band must satisfy 0 < low < high < 1, got {self.acceptance_band}")

    def _validate_prerun(self):
        if self.prerun_iterations_update < 1:
            raise ConfigurationError("prerun_iterations_update must be positive")
        if self.prerun_iterations_min < 0:
            raise ConfigurationError("prerun_iterations_min must be non-negative")
        if self.prerun_iterations_max < self.prerun_iterations_min:
            raise ConfigurationError(
                f"prerun_iterations_max ({self.prerun_iterations_max}) is smaller than "
                f"prerun_iterations_min ({self.prerun_iterations_min})"
            )

    def _validate_partitions(self):
        if self.partition_index is None:
            return
        if not self.partitions:
            raise ConfigurationError(
                f"Can't select partition {self.partition_index} from no partitions!"
            )
        if not 0 <= self.partition_index < len(self.partitions):
            raise ConfigurationError(
                f"Partition index {self.partition_index} out of range; "
                f"{len(self.partitions)} partitions declared"
            )

    @property
    def proposal_kind(self) -> ProposalKind:
        return ProposalKind(self.proposal)

    @property
    def selected_partition(self) -> Optional[Partition]:
        if self.partition_index is None:
            return None
        return self.partitions[self.partition_index]

    @property
    def resuming(self) -> bool:
        return self.resume_file is not None

    def replace(self, **changes) -> 'SamplerConfig':
        """Return a new, validated configuration with ``changes`` applied."""
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["acceptance_band"] = list(self.acceptance_band)
        data["block_proposal_parameters"] = list(self.block_proposal_parameters)
        data["partitions"] = [[list(t) for t in p] for p in self.partitions]
        return data

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'SamplerConfig':
        """
        Create a configuration from a dictionary.

        Unknown keys raise :class:`ConfigurationError`.
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(config_dict) - known)
        if unknown:
            raise ConfigurationError(f"Unknown sampler options: {unknown}")
        return cls(**config_dict)

    @classmethod
    def from_yaml(cls, filename: str) -> 'SamplerConfig':
        with open(filename, 'r') as f:
            data = yaml.safe_load(f) or {}
        if "sampler" in data:
            data = data["sampler"]
        return cls.from_dict(data)

    @classmethod
    def quick(cls, **overrides) -> 'SamplerConfig':
        """Small configuration for smoke runs."""
        defaults = dict(
            number_of_chains=2,
            chunk_size=200,
            chunks=2,
            prerun_iterations_min=200,
            prerun_iterations_max=1000,
            prerun_iterations_update=200,
            parallelize=False,
        )
        defaults.update(overrides)
        return cls(**defaults)

    def describe(self) -> List[Tuple[str, str]]:
        """(option, value) pairs for display."""
        rows = [
            ("chains", str(self.number_of_chains)),
            ("chunks", f"{self.chunks} x {self.chunk_size}"),
            ("proposal", self.proposal if self.proposal != "student_t"
             else f"student_t (dof={self.student_t_degrees_of_freedom})"),
            ("prerun", f"{self.prerun_iterations_min}..{self.prerun_iterations_max} "
                       f"step {self.prerun_iterations_update}" if self.need_prerun else "disabled"),
            ("R-hat threshold", f"{self.scale_reduction}"),
            ("seed", str(self.seed)),
            ("parallel", str(self.parallelize)),
        ]
        if self.partition_index is not None:
            rows.append(("partition", f"{self.partition_index} of {len(self.partitions)}"))
        if self.block_proposal_parameters:
            rows.append(("prior proposals", ", ".join(self.block_proposal_parameters)))
        if self.resume_file:
            rows.append(("resume", self.resume_file))
        if self.output_file:
            rows.append(("output", self.output_file))
        return rows
