#!/usr/bin/env python3
"""
Configuration Constants for scanmc Samplers

Centralizes all configuration constants to eliminate hardcoding.
"""

# ========== Chain Ensemble Defaults ==========

# Default number of chains in the ensemble
DEFAULT_NUM_CHAINS = 4

# Steps per chain between persistence flushes
DEFAULT_CHUNK_SIZE = 1000

# Number of main-run chunks
DEFAULT_CHUNKS = 10

# ========== Prerun (burn-in) Defaults ==========

DEFAULT_PRERUN_ITERATIONS_MIN = 1000
DEFAULT_PRERUN_ITERATIONS_MAX = 20000
DEFAULT_PRERUN_ITERATIONS_UPDATE = 1000

# R-hat convergence threshold
RHAT_CONVERGENCE_THRESHOLD = 1.1

# ========== Proposal Tuning ==========

# Acceptance rates outside this band (around the optimal 0.234) rescale the proposal
DEFAULT_ACCEPTANCE_BAND = (0.15, 0.35)

# Multiplicative step applied to the proposal scale per adaptation
SCALE_ADJUSTMENT_FACTOR = 1.5

# Initial proposal covariance as a fraction of the prior variance
INITIAL_COVARIANCE_FRACTION = 0.01

# Covariance estimates whose correlation matrix has a smaller reciprocal
# condition number are rejected
MIN_RECIPROCAL_CONDITION = 1e-12


def optimal_scale(dimension: int) -> float:
    """Roberts-Rosenthal scale 2.38^2/d for a d-dimensional random walk."""
    return 2.38 ** 2 / max(int(dimension), 1)


# ========== Starting Points ==========

# Prior draws attempted per chain before giving up on a finite posterior
MAX_STARTING_POINT_ATTEMPTS = 1000

# ========== Mode Finding ==========

DEFAULT_MAX_OPTIMIZATION_ITERATIONS = 2000

# ========== Persistence ==========

STORE_FORMAT_VERSION = "1.0"

PRERUN_GROUP = "prerun"
MAIN_GROUP = "main run"
CHECKPOINT_GROUP = "checkpoints"
METADATA_GROUP = "metadata"

# Chunks are written below this prefix and renamed once complete
INCOMPLETE_PREFIX = ".incomplete-"

# ========== Random Number Generation ==========

# Seeds are reduced modulo 2**64 before building a SeedSequence
RNG_SEED_MODULO = 2 ** 64
