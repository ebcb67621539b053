#!/usr/bin/env python3
"""
Convergence diagnostics for chain ensembles.

Samples are arranged as ``(chains, draws, parameters)``.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpyro.diagnostics import gelman_rubin, effective_sample_size as _numpyro_ess

from .constants import RHAT_CONVERGENCE_THRESHOLD


def _as_ensemble(samples) -> np.ndarray:
    samples = np.asarray(samples, dtype=float)
    if samples.ndim == 2:
        samples = samples[:, :, None]
    if samples.ndim != 3:
        raise ValueError(f"Expected samples of shape (chains, draws, parameters), got {samples.shape}")
    return samples


def scale_reduction(samples) -> np.ndarray:
    """
    Gelman-Rubin scale reduction ``R`` per parameter.

    ``R = sqrt(((N - 1) / N * W + B / N) / W)`` with ``W`` the mean
    within-chain variance and ``B / N`` the variance of the chain means.
    Fewer than two chains or two draws, or vanishing ``W``, give ``inf``.

    Parameters
    ----------
    samples : array_like
        Shape ``(chains, draws)`` or ``(chains, draws, parameters)``.

    Returns
    -------
    numpy.ndarray
        One value per parameter.
    """
    samples = _as_ensemble(samples)
    chains, draws, dimension = samples.shape
    r_hat = np.full(dimension, math.inf)
    if chains < 2 or draws < 2:
        return r_hat

    within = samples.var(axis=1, ddof=1).mean(axis=0)
    usable = np.isfinite(within) & (within > 0.0)
    if np.any(usable):
        r_hat[usable] = np.asarray(gelman_rubin(samples[:, :, usable]), dtype=float)
    return r_hat


def effective_sample_size(samples) -> np.ndarray:
    """Effective sample size per parameter (numpyro estimator)."""
    samples = _as_ensemble(samples)
    if samples.shape[1] < 2:
        return np.zeros(samples.shape[2])
    return np.asarray(_numpyro_ess(samples), dtype=float)


@dataclass
class ConvergenceReport:
    """Result of one convergence check."""

    r_hat: np.ndarray
    threshold: float
    names: Optional[List[str]] = None

    @property
    def converged_parameters(self) -> np.ndarray:
        return self.r_hat < self.threshold

    @property
    def converged(self) -> bool:
        return bool(np.all(self.converged_parameters))

    @property
    def max_r_hat(self) -> float:
        return float(np.max(self.r_hat))

    def as_dict(self) -> Dict[str, float]:
        names = self.names or [f"x{i}" for i in range(self.r_hat.size)]
        return {name: float(r) for name, r in zip(names, self.r_hat)}


class ConvergenceDiagnostic:
    """
    Scale-reduction convergence test over a chain ensemble.

    Parameters
    ----------
    threshold : float
        A parameter has converged when its ``R`` is below this value.
    names : sequence of str, optional
        Parameter names used in reports.
    """

    def __init__(self, threshold: float = RHAT_CONVERGENCE_THRESHOLD,
                 names: Optional[Sequence[str]] = None):
        self.threshold = float(threshold)
        self.names = list(names) if names is not None else None

    def compute(self, samples) -> ConvergenceReport:
        return ConvergenceReport(scale_reduction(samples), self.threshold, self.names)

    def is_converged(self, samples) -> bool:
        return self.compute(samples).converged
