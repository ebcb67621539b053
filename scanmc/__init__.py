"""
scanmc: adaptive multi-chain Markov Chain Monte Carlo parameter scans.

scanmc samples Bayesian posteriors over model parameters from a black-box
log-likelihood and a set of declared priors. Chains run in lockstep, burn-in
is diagnosed with the scale-reduction statistic, the parameter space can be
partitioned for independent exploration, and long runs are checkpointed to
HDF5 so they can be resumed.
"""

__version__ = "0.1.0"

from . import parameters
from . import samplers

__all__ = [
    "parameters",
    "samplers",
]
