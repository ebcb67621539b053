"""scanmc MCMC sampling package with lazy attribute loading."""

from __future__ import annotations

import importlib
from typing import Any

_MODULE_ALIASES = {
    "core": "scanmc.samplers.core",
    "config": "scanmc.samplers.config",
    "posterior": "scanmc.samplers.posterior",
    "proposals": "scanmc.samplers.proposals",
    "chain": "scanmc.samplers.chain",
    "diagnostics": "scanmc.samplers.diagnostics",
    "prerun": "scanmc.samplers.prerun",
    "persistence": "scanmc.samplers.persistence",
    "multicore": "scanmc.samplers.multicore",
    "optimize": "scanmc.samplers.optimize",
    "exceptions": "scanmc.samplers.exceptions",
}

_ATTRIBUTE_MAP = {
    # Sampler
    "MarkovChainSampler": ("scanmc.samplers.core", "MarkovChainSampler"),
    "SamplerResult": ("scanmc.samplers.core", "SamplerResult"),
    "run_sampler": ("scanmc.samplers.core", "run_sampler"),
    # Configuration
    "SamplerConfig": ("scanmc.samplers.config", "SamplerConfig"),
    "ProposalKind": ("scanmc.samplers.config", "ProposalKind"),
    # Building blocks
    "Posterior": ("scanmc.samplers.posterior", "Posterior"),
    "Chain": ("scanmc.samplers.chain", "Chain"),
    "ChainState": ("scanmc.samplers.chain", "ChainState"),
    "ChainHistory": ("scanmc.samplers.chain", "ChainHistory"),
    "AdaptiveGaussianProposal": ("scanmc.samplers.proposals", "AdaptiveGaussianProposal"),
    "StudentTProposal": ("scanmc.samplers.proposals", "StudentTProposal"),
    "DiscreteProposal": ("scanmc.samplers.proposals", "DiscreteProposal"),
    "PriorProposal": ("scanmc.samplers.proposals", "PriorProposal"),
    "CompositeProposal": ("scanmc.samplers.proposals", "CompositeProposal"),
    "build_proposal": ("scanmc.samplers.proposals", "build_proposal"),
    # Convergence
    "ConvergenceDiagnostic": ("scanmc.samplers.diagnostics", "ConvergenceDiagnostic"),
    "ConvergenceReport": ("scanmc.samplers.diagnostics", "ConvergenceReport"),
    "scale_reduction": ("scanmc.samplers.diagnostics", "scale_reduction"),
    "effective_sample_size": ("scanmc.samplers.diagnostics", "effective_sample_size"),
    "PrerunCoordinator": ("scanmc.samplers.prerun", "PrerunCoordinator"),
    "PrerunResult": ("scanmc.samplers.prerun", "PrerunResult"),
    # Execution
    "ChainExecutor": ("scanmc.samplers.multicore", "ChainExecutor"),
    # Checkpoint System
    "ChunkStore": ("scanmc.samplers.persistence", "ChunkStore"),
    "ChainRecord": ("scanmc.samplers.persistence", "ChainRecord"),
    "Checkpoint": ("scanmc.samplers.persistence", "Checkpoint"),
    # Mode finding
    "find_mode": ("scanmc.samplers.optimize", "find_mode"),
    "ModeResult": ("scanmc.samplers.optimize", "ModeResult"),
    # Errors
    "ScanMCError": ("scanmc.samplers.exceptions", "ScanMCError"),
    "ConfigurationError": ("scanmc.samplers.exceptions", "ConfigurationError"),
    "NumericDegeneracyWarning": ("scanmc.samplers.exceptions", "NumericDegeneracyWarning"),
    "NonConvergenceWarning": ("scanmc.samplers.exceptions", "NonConvergenceWarning"),
}

__all__ = list(_MODULE_ALIASES.keys()) + list(_ATTRIBUTE_MAP.keys())


def __getattr__(name: str) -> Any:  # pragma: no cover - simple trampoline
    if name in _ATTRIBUTE_MAP:
        module_name, attr = _ATTRIBUTE_MAP[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        return value
    if name in _MODULE_ALIASES:
        module = importlib.import_module(_MODULE_ALIASES[name])
        globals()[name] = module
        return module
    raise AttributeError(f"module 'scanmc.samplers' has no attribute '{name}'")


def __dir__() -> list[str]:  # pragma: no cover - trivial helper
    return sorted(list(__all__) + [k for k in globals().keys() if not k.startswith("_")])
