#!/usr/bin/env python3
"""
Lockstep execution of a chain ensemble.

Every chain runs a whole block of steps before control returns; the caller
resumes only once all chains are done, so diagnostics, adaptation and
persistence always see a quiesced ensemble.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from .chain import Chain, ChainHistory


def get_optimal_worker_count(num_chains: int, max_workers: Optional[int] = None) -> int:
    """
    Number of worker threads for ``num_chains`` chains.

    Parameters
    ----------
    num_chains : int
        Size of the ensemble.
    max_workers : int, optional
        Upper bound, defaults to the number of CPU cores.

    Returns
    -------
    int
        At least 1, at most one worker per chain.
    """
    if max_workers is None:
        max_workers = os.cpu_count() or 1
    return max(1, min(num_chains, max_workers))


class ChainExecutor:
    """
    Runs chains sequentially or with one thread per chain.

    Chains are advanced in place, so they stay in this process. Threads only
    overlap while the likelihood releases the GIL (numpy, scipy or compiled
    extension code); a pure-Python likelihood runs effectively serially,
    with results identical to the sequential mode.

    Parameters
    ----------
    parallelize : bool
        Use a thread pool when more than one chain is run.
    max_workers : int, optional
        Cap on the number of threads.
    """

    def __init__(self, parallelize: bool = True, max_workers: Optional[int] = None):
        self.parallelize = parallelize
        self.max_workers = max_workers
        self._pool: Optional[ThreadPoolExecutor] = None

    def _ensure_pool(self, num_chains: int) -> ThreadPoolExecutor:
        if self._pool is None:
            workers = get_optimal_worker_count(num_chains, self.max_workers)
            self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scanmc-chain")
        return self._pool

    def run(self, chains: Sequence[Chain], steps: int,
            record_candidates: bool = False) -> List[ChainHistory]:
        """
        Advance every chain by ``steps`` steps.

        Returns the histories in chain order once all chains are done.
        Exceptions raised inside a chain propagate to the caller.
        """
        if not self.parallelize or len(chains) < 2:
            return [chain.run(steps, record_candidates) for chain in chains]

        pool = self._ensure_pool(len(chains))
        futures = [pool.submit(chain.run, steps, record_candidates) for chain in chains]
        return [future.result() for future in futures]

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self) -> 'ChainExecutor':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False
