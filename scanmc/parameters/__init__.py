"""Parameter declarations and prior distributions."""

from .priors import (
    LogPrior,
    FlatPrior,
    GaussianPrior,
    LogGammaPrior,
    DiscretePrior,
    make_prior,
)
from .manager import ParameterManager

__all__ = [
    "LogPrior",
    "FlatPrior",
    "GaussianPrior",
    "LogGammaPrior",
    "DiscretePrior",
    "make_prior",
    "ParameterManager",
]
