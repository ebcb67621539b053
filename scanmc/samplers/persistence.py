#!/usr/bin/env python3
"""
Chunked sample storage and checkpoints.

All data of a run lives in one HDF5 file::

    /metadata                         format version, parameter names, configuration
    /prerun/chunk_000000/chain_0      samples, log_posterior, accepted [, candidates]
    /main run/chunk_000000/chain_0
    /checkpoints/checkpoint_000000    JSON encoded :class:`Checkpoint`

Chunks and checkpoints are first written below a temporary name and renamed
once complete, so an interrupted write never leaves a partial entry behind
under a final name and never touches entries written before.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import h5py
import numpy as np

from .chain import ChainHistory, ChainState
from .constants import (
    STORE_FORMAT_VERSION,
    PRERUN_GROUP,
    MAIN_GROUP,
    CHECKPOINT_GROUP,
    METADATA_GROUP,
    INCOMPLETE_PREFIX,
)

PHASES = {"prerun": PRERUN_GROUP, "main": MAIN_GROUP}


def _phase_group(phase: str) -> str:
    if phase not in PHASES:
        raise ValueError(f"Unknown phase '{phase}'. Valid phases: {list(PHASES)}")
    return PHASES[phase]


def _entry_index(name: str) -> int:
    return int(name.rsplit("_", 1)[1])


# =============================================================================
# Records
# =============================================================================

@dataclass
class ChainRecord:
    """Samples of one chain within one chunk."""

    chain: int
    first_iteration: int
    samples: np.ndarray
    log_posterior: np.ndarray
    accepted: np.ndarray
    candidates: Optional[np.ndarray] = None
    candidate_log_posterior: Optional[np.ndarray] = None

    @property
    def last_iteration(self) -> int:
        """Exclusive end of the iteration range."""
        return self.first_iteration + int(self.samples.shape[0])

    @classmethod
    def from_history(cls, chain: int, first_iteration: int, history: ChainHistory) -> 'ChainRecord':
        return cls(
            chain=chain,
            first_iteration=first_iteration,
            samples=history.points,
            log_posterior=history.log_posterior,
            accepted=history.accepted,
            candidates=history.candidates,
            candidate_log_posterior=history.candidate_log_posterior,
        )


@dataclass
class Checkpoint:
    """
    State of a run at the end of the prerun or at a main-run chunk boundary.

    Attributes
    ----------
    chains : list of ChainState
        One entry per chain, proposal state included.
    chunks_completed : int
        Main-run chunks stored so far.
    iterations : int
        Main-run steps per chain completed so far.
    parameter_names : list of str
        Parameter order of the stored vectors.
    prerun : dict
        Summary of the prerun that preceded the main run.
    """

    chains: List[ChainState]
    chunks_completed: int
    iterations: int
    parameter_names: List[str]
    prerun: Dict[str, Any] = field(default_factory=dict)
    created: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def number_of_chains(self) -> int:
        return len(self.chains)

    def to_json(self) -> str:
        return json.dumps({
            "chains": [c.to_dict() for c in self.chains],
            "chunks_completed": self.chunks_completed,
            "iterations": self.iterations,
            "number_of_chains": self.number_of_chains,
            "parameter_names": list(self.parameter_names),
            "prerun": self.prerun,
            "created": self.created,
        })

    @classmethod
    def from_json(cls, text: str) -> 'Checkpoint':
        data = json.loads(text)
        return cls(
            chains=[ChainState.from_dict(c) for c in data["chains"]],
            chunks_completed=int(data["chunks_completed"]),
            iterations=int(data["iterations"]),
            parameter_names=list(data["parameter_names"]),
            prerun=data.get("prerun", {}),
            created=data.get("created", ""),
        )


# =============================================================================
# Store
# =============================================================================

class ChunkStore:
    """
    Append-only HDF5 store for chunks and checkpoints.

    The file is opened for every operation and closed afterwards, so the
    on-disk state is consistent between operations.

    Parameters
    ----------
    path : str or Path
        HDF5 file, created on first write.
    compression : str, optional
        h5py compression filter for sample datasets.
    """

    def __init__(self, path: Union[str, Path], compression: Optional[str] = "gzip"):
        self.path = Path(path)
        self.compression = compression

    def exists(self) -> bool:
        return self.path.exists()

    def reset(self) -> None:
        """Start a new, empty store, removing any previous content."""
        with self._open('w'):
            pass

    def _open(self, mode: str) -> h5py.File:
        if mode != 'r':
            self.path.parent.mkdir(parents=True, exist_ok=True)
        return h5py.File(self.path, mode)

    def write_metadata(self, parameter_names: Sequence[str],
                       config: Optional[Dict[str, Any]] = None,
                       extra: Optional[Dict[str, Any]] = None) -> None:
        """Write (or replace) the run metadata."""
        with self._open('a') as f:
            if METADATA_GROUP in f:
                del f[METADATA_GROUP]
            meta_group = f.create_group(METADATA_GROUP)
            meta_group.attrs['format_version'] = STORE_FORMAT_VERSION
            meta_group.attrs['creation_time'] = datetime.now().isoformat()
            meta_group.create_dataset('parameter_names', data=json.dumps(list(parameter_names)))
            if config is not None:
                meta_group.create_dataset('config', data=json.dumps(config, indent=2, default=str))
            for key, value in (extra or {}).items():
                meta_group.attrs[key] = value

    def read_metadata(self) -> Dict[str, Any]:
        with self._open('r') as f:
            if METADATA_GROUP not in f:
                raise ValueError(f"Invalid store {self.path}: missing metadata")
            meta_group = f[METADATA_GROUP]
            metadata = dict(meta_group.attrs)
            metadata['parameter_names'] = json.loads(meta_group['parameter_names'].asstr()[()])
            if 'config' in meta_group:
                metadata['config'] = json.loads(meta_group['config'].asstr()[()])
        return metadata

    def append_chunk(self, phase: str, chunk_index: int, records: Sequence[ChainRecord]) -> None:
        """
        Store the records of one chunk.

        The chunk becomes visible under its final name only after every
        record has been written.
        """
        name = f"chunk_{chunk_index:06d}"
        with self._open('a') as f:
            phase_group = f.require_group(_phase_group(phase))
            if name in phase_group:
                raise ValueError(f"Chunk {chunk_index} of phase '{phase}' already stored in {self.path}")
            temp_name = INCOMPLETE_PREFIX + name
            if temp_name in phase_group:
                del phase_group[temp_name]

            chunk_group = phase_group.create_group(temp_name)
            chunk_group.attrs['chunk_index'] = chunk_index
            for record in records:
                chain_group = chunk_group.create_group(f"chain_{record.chain}")
                chain_group.attrs['chain'] = record.chain
                chain_group.attrs['first_iteration'] = record.first_iteration
                chain_group.attrs['last_iteration'] = record.last_iteration
                chain_group.create_dataset('samples', data=record.samples, compression=self.compression)
                chain_group.create_dataset('log_posterior', data=record.log_posterior,
                                           compression=self.compression)
                chain_group.create_dataset('accepted', data=record.accepted)
                if record.candidates is not None:
                    chain_group.create_dataset('candidates', data=record.candidates,
                                               compression=self.compression)
                    chain_group.create_dataset('candidate_log_posterior',
                                               data=record.candidate_log_posterior)
            f.flush()
            phase_group.move(temp_name, name)

    def chunk_indices(self, phase: str) -> List[int]:
        """Indices of the complete chunks of ``phase``."""
        if not self.exists():
            return []
        with self._open('r') as f:
            group_name = _phase_group(phase)
            if group_name not in f:
                return []
            return sorted(_entry_index(n) for n in f[group_name] if not n.startswith(INCOMPLETE_PREFIX))

    def read_samples(self, phase: str = "main", chunks: Optional[int] = None) -> Dict[str, np.ndarray]:
        """
        Concatenate the complete chunks of ``phase``.

        Only chunks with an index below ``chunks`` are read when it is given.

        Returns
        -------
        dict
            ``samples`` of shape ``(chains, draws, parameters)``,
            ``log_posterior`` and ``accepted`` of shape ``(chains, draws)``,
            plus ``candidates`` and ``candidate_log_posterior`` when stored.
        """
        per_chain: Dict[int, Dict[str, List[np.ndarray]]] = {}
        with self._open('r') as f:
            group_name = _phase_group(phase)
            names = []
            if group_name in f:
                names = sorted(
                    (n for n in f[group_name] if not n.startswith(INCOMPLETE_PREFIX)),
                    key=_entry_index,
                )
            if chunks is not None:
                names = [n for n in names if _entry_index(n) < chunks]
            for name in names:
                for chain_group in f[group_name][name].values():
                    chain = int(chain_group.attrs['chain'])
                    entry = per_chain.setdefault(chain, {})
                    for key in chain_group:
                        entry.setdefault(key, []).append(np.asarray(chain_group[key]))

        result: Dict[str, np.ndarray] = {}
        chains = sorted(per_chain)
        if not chains:
            return result
        for key in per_chain[chains[0]]:
            result[key] = np.stack([np.concatenate(per_chain[c][key]) for c in chains])
        return result

    def write_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Store ``checkpoint``; it becomes readable only once complete."""
        name = f"checkpoint_{checkpoint.chunks_completed:06d}"
        with self._open('a') as f:
            group = f.require_group(CHECKPOINT_GROUP)
            temp_name = INCOMPLETE_PREFIX + name
            for stale in (temp_name, name):
                if stale in group:
                    del group[stale]
            dset = group.create_dataset(temp_name, data=checkpoint.to_json())
            dset.attrs['chunks_completed'] = checkpoint.chunks_completed
            dset.attrs['iterations'] = checkpoint.iterations
            f.flush()
            group.move(temp_name, name)

    def read_checkpoint(self) -> Optional[Checkpoint]:
        """Last complete checkpoint, or None when there is none."""
        if not self.exists():
            return None
        with self._open('r') as f:
            if CHECKPOINT_GROUP not in f:
                return None
            group = f[CHECKPOINT_GROUP]
            names = [n for n in group if not n.startswith(INCOMPLETE_PREFIX)]
            if not names:
                return None
            latest = max(names, key=_entry_index)
            return Checkpoint.from_json(group[latest].asstr()[()])

    def discard_incomplete(self) -> int:
        """Remove partially written entries; return how many were removed."""
        if not self.exists():
            return 0
        removed = 0
        with self._open('a') as f:
            for group_name in (PRERUN_GROUP, MAIN_GROUP, CHECKPOINT_GROUP):
                if group_name not in f:
                    continue
                group = f[group_name]
                for name in [n for n in group if n.startswith(INCOMPLETE_PREFIX)]:
                    del group[name]
                    removed += 1
        return removed

    def truncate(self, phase: str, chunks: int) -> int:
        """Remove chunks of ``phase`` with index ``>= chunks``; return how many were removed."""
        if not self.exists():
            return 0
        removed = 0
        with self._open('a') as f:
            group_name = _phase_group(phase)
            if group_name not in f:
                return 0
            group = f[group_name]
            for name in list(group):
                if not name.startswith(INCOMPLETE_PREFIX) and _entry_index(name) >= chunks:
                    del group[name]
                    removed += 1
        return removed
