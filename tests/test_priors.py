#!/usr/bin/env python3
"""
Test suite for scanmc prior distributions.
"""

import math

import numpy as np
import pytest
from scipy import integrate

from scanmc.parameters.priors import (
    ONE_SIGMA,
    DiscretePrior,
    FlatPrior,
    GaussianPrior,
    LogGammaPrior,
    make_prior,
)
from scanmc.samplers.exceptions import ConfigurationError


class TestFlatPrior:
    """Test the uniform prior."""

    def setup_method(self):
        self.prior = FlatPrior("x", -1.0, 3.0)
        self.rng = np.random.default_rng(1)

    def test_density(self):
        assert self.prior.log_density(0.0) == pytest.approx(-math.log(4.0))
        assert self.prior.density(2.9) == pytest.approx(0.25)
        assert self.prior.log_density(3.5) == -math.inf
        assert self.prior.density(-1.5) == 0.0

    def test_sample_in_range(self):
        draws = [self.prior.sample(self.rng) for _ in range(1000)]
        assert min(draws) >= -1.0
        assert max(draws) <= 3.0

    def test_variance(self):
        assert self.prior.variance() == pytest.approx(16.0 / 12.0)

    def test_narrowed_intersects(self):
        narrowed = self.prior.narrowed(0.0, 10.0)
        assert narrowed.range == (0.0, 3.0)
        assert narrowed.log_density(0.5) == pytest.approx(-math.log(3.0))

    def test_narrowed_without_overlap(self):
        with pytest.raises(ConfigurationError):
            self.prior.narrowed(5.0, 6.0)

    def test_invalid_ranges(self):
        with pytest.raises(ConfigurationError):
            FlatPrior("x", 1.0, 1.0)
        with pytest.raises(ConfigurationError):
            FlatPrior("x", 0.0, math.inf)


class TestGaussianPrior:
    """Test the asymmetric Gaussian prior."""

    def setup_method(self):
        self.symmetric = GaussianPrior("x", -math.inf, math.inf, 1.0, 2.0, 3.0)
        self.asymmetric = GaussianPrior("y", -math.inf, math.inf, 1.0, 2.0, 5.0)
        self.rng = np.random.default_rng(2)

    def test_symmetric_matches_normal(self):
        expected = -0.5 * math.log(2.0 * math.pi)
        assert self.symmetric.log_density(2.0) == pytest.approx(expected)
        assert self.symmetric.log_density(3.0) == pytest.approx(expected - 0.5)

    def test_normalized(self):
        total, _ = integrate.quad(self.asymmetric.density, -math.inf, math.inf)
        assert total == pytest.approx(1.0, abs=1e-6)

    def test_continuous_at_central(self):
        left = self.asymmetric.log_density(2.0 - 1e-9)
        right = self.asymmetric.log_density(2.0 + 1e-9)
        assert left == pytest.approx(right, abs=1e-6)

    def test_truncated_range_is_normalized(self):
        prior = GaussianPrior("x", 1.5, 4.0, 1.0, 2.0, 5.0)
        total, _ = integrate.quad(prior.density, 1.5, 4.0)
        assert total == pytest.approx(1.0, abs=1e-6)
        assert prior.log_density(1.0) == -math.inf

    def test_sample_moments(self):
        draws = np.array([self.symmetric.sample(self.rng) for _ in range(20000)])
        assert np.mean(draws) == pytest.approx(2.0, abs=0.03)
        assert np.std(draws) == pytest.approx(1.0, abs=0.03)

    def test_truncated_samples_in_range(self):
        prior = GaussianPrior("x", 1.8, 2.5, 1.0, 2.0, 3.0)
        draws = [prior.sample(self.rng) for _ in range(2000)]
        assert min(draws) >= 1.8
        assert max(draws) <= 2.5

    def test_invalid_ordering(self):
        with pytest.raises(ConfigurationError):
            GaussianPrior("x", -math.inf, math.inf, 2.0, 1.0, 3.0)


class TestLogGammaPrior:
    """Test the skewed log-gamma prior."""

    def setup_method(self):
        self.prior = LogGammaPrior("x", -math.inf, math.inf, 1.0, 2.0, 4.0)

    def test_mode_at_central(self):
        peak = self.prior.log_density(2.0)
        assert peak > self.prior.log_density(1.9)
        assert peak > self.prior.log_density(2.1)

    def test_equal_density_at_interval_ends(self):
        assert self.prior.log_density(1.0) == pytest.approx(self.prior.log_density(4.0), rel=1e-6)

    def test_interval_coverage(self):
        coverage, _ = integrate.quad(self.prior.density, 1.0, 4.0)
        assert coverage == pytest.approx(ONE_SIGMA, abs=1e-5)

    def test_normalized(self):
        total, _ = integrate.quad(self.prior.density, -math.inf, math.inf)
        assert total == pytest.approx(1.0, abs=1e-5)

    def test_mirrored_interval(self):
        mirrored = LogGammaPrior("x", -math.inf, math.inf, 0.0, 2.0, 3.0)
        assert mirrored.log_density(0.0) == pytest.approx(mirrored.log_density(3.0), rel=1e-6)
        assert mirrored.log_density(1.0) > mirrored.log_density(3.0)

    def test_samples_follow_skew(self):
        rng = np.random.default_rng(3)
        draws = np.array([self.prior.sample(rng) for _ in range(20000)])
        inside = np.mean((draws > 1.0) & (draws < 4.0))
        assert inside == pytest.approx(ONE_SIGMA, abs=0.02)
        assert np.median(draws) > 2.0

    def test_symmetric_interval_rejected(self):
        with pytest.raises(ConfigurationError, match="symmetric"):
            LogGammaPrior("x", -math.inf, math.inf, 1.0, 2.0, 3.0)


class TestDiscretePrior:
    """Test the prior over a finite support."""

    def setup_method(self):
        self.prior = DiscretePrior("n", [3, 1, 2, 2])

    def test_support(self):
        assert self.prior.values == (1.0, 2.0, 3.0)
        assert self.prior.range == (1.0, 3.0)

    def test_density(self):
        assert self.prior.log_density(2.0) == pytest.approx(-math.log(3.0))
        assert self.prior.log_density(2.5) == -math.inf

    def test_samples_are_members(self):
        rng = np.random.default_rng(4)
        draws = {self.prior.sample(rng) for _ in range(300)}
        assert draws == {1.0, 2.0, 3.0}

    def test_narrowed(self):
        assert self.prior.narrowed(1.5, 5.0).values == (2.0, 3.0)
        with pytest.raises(ConfigurationError):
            self.prior.narrowed(3.5, 5.0)


class TestMakePrior:
    """Test prior declarations."""

    def test_flat(self):
        prior = make_prior("x", {"type": "flat", "min": 0.0, "max": 1.0})
        assert isinstance(prior, FlatPrior)

    def test_n_sigmas_narrows_range(self):
        prior = make_prior("x", {"type": "gaussian", "lower": 1.0, "central": 2.0, "upper": 4.0,
                                 "n_sigmas": 3})
        assert prior.range == (-1.0, 8.0)

    def test_n_sigmas_respects_hard_bound(self):
        prior = make_prior("x", {"type": "log_gamma", "lower": 1.0, "central": 2.0, "upper": 4.0,
                                 "min": 0.0, "n_sigmas": 3})
        assert isinstance(prior, LogGammaPrior)
        assert prior.range == (0.0, 8.0)

    def test_n_sigmas_bounds(self):
        with pytest.raises(ConfigurationError):
            make_prior("x", {"type": "gaussian", "lower": 1.0, "central": 2.0, "upper": 3.0,
                             "n_sigmas": 11})
        with pytest.raises(ConfigurationError):
            make_prior("x", {"type": "gaussian", "lower": 1.0, "central": 2.0, "upper": 3.0,
                             "n_sigmas": 0})

    def test_n_sigmas_with_flat_prior(self):
        with pytest.raises(ConfigurationError):
            make_prior("x", {"type": "flat", "min": 0.0, "max": 1.0, "n_sigmas": 2})

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="missing"):
            make_prior("x", {"type": "flat", "min": 0.0})

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unknown prior"):
            make_prior("x", {"type": "cauchy"})

    def test_to_dict_rebuilds_prior(self):
        prior = make_prior("x", {"type": "gaussian", "lower": 1.0, "central": 2.0, "upper": 4.0,
                                 "n_sigmas": 2})
        rebuilt = make_prior("x", prior.to_dict())
        assert rebuilt.range == prior.range
        assert rebuilt.log_density(2.5) == pytest.approx(prior.log_density(2.5))
