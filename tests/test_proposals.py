#!/usr/bin/env python3
"""
Test suite for proposal distributions.
"""

import numpy as np
import pytest

from scanmc.parameters.priors import DiscretePrior, FlatPrior, GaussianPrior
from scanmc.samplers.config import SamplerConfig
from scanmc.samplers.constants import SCALE_ADJUSTMENT_FACTOR, optimal_scale
from scanmc.samplers.exceptions import ConfigurationError, NumericDegeneracyWarning
from scanmc.samplers.posterior import Posterior
from scanmc.samplers.proposals import (
    AdaptiveGaussianProposal,
    CompositeProposal,
    DiscreteProposal,
    PriorProposal,
    StudentTProposal,
    build_proposal,
)


class TestAdaptiveGaussianProposal:
    """Test the adaptive random-walk proposal."""

    def setup_method(self):
        self.covariance = np.array([[1.0, 0.3], [0.3, 2.0]])
        self.proposal = AdaptiveGaussianProposal(self.covariance)
        self.rng = np.random.default_rng(10)

    def test_defaults(self):
        assert self.proposal.symmetric
        assert self.proposal.scale == pytest.approx(optimal_scale(2))
        assert self.proposal.log_ratio(np.zeros(2), np.ones(2)) == 0.0

    def test_step_covariance(self):
        current = np.array([1.0, -1.0])
        steps = np.array([self.proposal.propose(current, self.rng) - current for _ in range(20000)])
        expected = self.proposal.scale * self.covariance
        np.testing.assert_allclose(np.cov(steps, rowvar=False), expected, rtol=0.05, atol=0.05)

    def test_only_governed_components_change(self):
        proposal = AdaptiveGaussianProposal([[1.0]], indices=[1])
        current = np.array([5.0, 0.0, 7.0])
        candidate = proposal.propose(current, self.rng)
        assert candidate[0] == 5.0
        assert candidate[2] == 7.0
        assert candidate[1] != 0.0
        assert current[1] == 0.0

    def test_scale_adaptation(self):
        samples = self.rng.multivariate_normal([0.0, 0.0], self.covariance, size=500)
        scale = self.proposal.scale
        self.proposal.adapt(samples, 0.9)
        assert self.proposal.scale == pytest.approx(scale * SCALE_ADJUSTMENT_FACTOR)
        self.proposal.adapt(samples, 0.01)
        self.proposal.adapt(samples, 0.01)
        assert self.proposal.scale == pytest.approx(scale / SCALE_ADJUSTMENT_FACTOR)
        self.proposal.adapt(samples, 0.234)
        assert self.proposal.scale == pytest.approx(scale / SCALE_ADJUSTMENT_FACTOR)

    def test_covariance_adaptation(self):
        target = np.array([[4.0, -1.0], [-1.0, 1.0]])
        samples = self.rng.multivariate_normal([0.0, 0.0], target, size=5000)
        self.proposal.adapt(samples, 0.25)
        np.testing.assert_allclose(self.proposal.covariance, np.cov(samples, rowvar=False))

    def test_near_singular_update_is_rejected(self):
        x = self.rng.standard_normal(200)
        samples = np.column_stack([x, 2.0 * x])
        before = self.proposal.covariance.copy()
        scale = self.proposal.scale

        with pytest.warns(NumericDegeneracyWarning):
            self.proposal.adapt(samples, 0.9)

        np.testing.assert_array_equal(self.proposal.covariance, before)
        assert self.proposal.scale == pytest.approx(scale * SCALE_ADJUSTMENT_FACTOR)
        # still usable
        self.proposal.propose(np.zeros(2), self.rng)

    def test_non_finite_and_short_updates_are_rejected(self):
        before = self.proposal.covariance.copy()
        with pytest.warns(NumericDegeneracyWarning):
            self.proposal.adapt(np.array([[np.nan, 1.0], [2.0, 3.0], [1.0, 0.0]]), 0.25)
        with pytest.warns(NumericDegeneracyWarning):
            self.proposal.adapt(np.array([[1.0, 2.0]]), 0.25)
        np.testing.assert_array_equal(self.proposal.covariance, before)

    def test_mixed_scales_are_not_degenerate(self):
        """Parameters differing by many orders of magnitude are fine."""
        proposal = AdaptiveGaussianProposal(np.diag([1e-28, 1.0]))
        samples = self.rng.standard_normal((500, 2)) * np.array([1e-9, 10.0])
        proposal.adapt(samples, 0.25)
        np.testing.assert_allclose(proposal.covariance, np.cov(samples, rowvar=False))

        step = proposal.propose(np.zeros(2), self.rng)
        assert np.all(np.isfinite(step))
        assert abs(step[0]) < 1e-6

    def test_invalid_initial_covariance(self):
        with pytest.raises(ConfigurationError):
            AdaptiveGaussianProposal([[1.0, 1.0], [1.0, 1.0]])
        with pytest.raises(ConfigurationError):
            AdaptiveGaussianProposal([[1.0, 0.0]])

    def test_state_roundtrip(self):
        samples = self.rng.multivariate_normal([0.0, 0.0], [[3.0, 0.0], [0.0, 0.5]], size=300)
        self.proposal.adapt(samples, 0.5)
        other = AdaptiveGaussianProposal(np.eye(2))
        other.load_state(self.proposal.state())

        np.testing.assert_array_equal(other.covariance, self.proposal.covariance)
        assert other.scale == self.proposal.scale
        a = self.proposal.propose(np.zeros(2), np.random.default_rng(5))
        b = other.propose(np.zeros(2), np.random.default_rng(5))
        np.testing.assert_array_equal(a, b)


class TestStudentTProposal:
    """Test the heavy-tailed proposal."""

    def test_degrees_of_freedom_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            StudentTProposal(np.eye(2), 0.0)
        with pytest.raises(ConfigurationError):
            StudentTProposal(np.eye(2), -3.0)
        with pytest.raises(ConfigurationError):
            StudentTProposal(np.eye(2), None)

    def test_heavier_tails_than_gaussian(self):
        rng = np.random.default_rng(11)
        student = StudentTProposal([[1.0]], 2.0, scale=1.0)
        gaussian = AdaptiveGaussianProposal([[1.0]], scale=1.0)
        t_steps = np.array([student.propose(np.zeros(1), rng)[0] for _ in range(20000)])
        g_steps = np.array([gaussian.propose(np.zeros(1), rng)[0] for _ in range(20000)])
        assert np.mean(np.abs(t_steps) > 4.0) > 10 * np.mean(np.abs(g_steps) > 4.0)
        assert student.symmetric
        assert student.state()["degrees_of_freedom"] == 2.0


class TestDiscreteProposal:
    """Test the proposal over a finite support."""

    def test_candidates_are_members(self):
        rng = np.random.default_rng(12)
        proposal = DiscreteProposal(1, [0.5, 1.5, 4.0])
        seen = set()
        for _ in range(2000):
            candidate = proposal.propose(np.array([9.0, 0.5]), rng)
            assert candidate[0] == 9.0
            seen.add(candidate[1])
        assert seen == {0.5, 1.5, 4.0}

    def test_never_adapted(self):
        proposal = DiscreteProposal(0, [1.0, 2.0])
        proposal.adapt(np.ones((10, 1)), 0.0)
        assert proposal.values == (1.0, 2.0)
        assert proposal.symmetric


class TestPriorProposal:
    """Test the independence proposal from the prior."""

    def setup_method(self):
        self.prior = GaussianPrior("x", -10.0, 10.0, -1.0, 0.0, 2.0)
        self.proposal = PriorProposal(0, self.prior)

    def test_is_asymmetric(self):
        assert not self.proposal.symmetric

    def test_log_ratio(self):
        current, candidate = np.array([0.5]), np.array([-1.5])
        expected = self.prior.log_density(0.5) - self.prior.log_density(-1.5)
        assert self.proposal.log_ratio(current, candidate) == pytest.approx(expected)

    def test_draws_follow_prior(self):
        rng = np.random.default_rng(13)
        draws = [self.proposal.propose(np.array([0.0]), rng)[0] for _ in range(1000)]
        assert all(-10.0 <= d <= 10.0 for d in draws)


class TestComposition:
    """Test assembling proposals over the full vector."""

    def setup_method(self):
        self.posterior = Posterior(
            lambda v: 0.0,
            [
                FlatPrior("a", 0.0, 1.0),
                DiscretePrior("k", [1, 2, 3]),
                GaussianPrior("b", -5.0, 5.0, -1.0, 0.0, 1.0),
                FlatPrior("c", -1.0, 1.0),
            ],
        )

    def test_block_assignment(self):
        config = SamplerConfig(block_proposal_parameters=("c",))
        proposal = build_proposal(self.posterior, config)

        kinds = {b.kind: b.indices.tolist() for b in proposal.blocks}
        assert kinds["gaussian"] == [0, 2]
        assert kinds["discrete"] == [1]
        assert kinds["prior"] == [3]
        assert not proposal.symmetric

    def test_initial_covariance_from_prior(self):
        proposal = build_proposal(self.posterior, SamplerConfig())
        adaptive = proposal.blocks[0]
        assert adaptive.covariance[0, 0] == pytest.approx(0.01 / 12.0)
        assert adaptive.covariance[0, 1] == 0.0

    def test_student_t_block(self):
        config = SamplerConfig(proposal="student_t", student_t_degrees_of_freedom=4.0)
        proposal = build_proposal(self.posterior, config)
        assert isinstance(proposal.blocks[0], StudentTProposal)
        assert proposal.symmetric

    def test_unknown_blocked_parameter(self):
        with pytest.raises(ConfigurationError):
            build_proposal(self.posterior, SamplerConfig(block_proposal_parameters=("z",)))

    def test_log_ratio_sums_blocks(self):
        config = SamplerConfig(block_proposal_parameters=("b", "c"))
        proposal = build_proposal(self.posterior, config)
        current = np.array([0.5, 1.0, 0.3, 0.2])
        candidate = np.array([0.4, 2.0, -0.7, -0.5])
        priors = self.posterior.priors
        expected = (priors[2].log_density(0.3) - priors[2].log_density(-0.7)
                    + priors[3].log_density(0.2) - priors[3].log_density(-0.5))
        assert proposal.log_ratio(current, candidate) == pytest.approx(expected)

    def test_overlapping_blocks(self):
        with pytest.raises(ConfigurationError):
            CompositeProposal([DiscreteProposal(0, [1.0]), DiscreteProposal(0, [2.0])])

    def test_state_roundtrip(self):
        config = SamplerConfig(block_proposal_parameters=("c",))
        proposal = build_proposal(self.posterior, config)
        proposal.blocks[0].scale = 0.7
        other = build_proposal(self.posterior, config)
        other.load_state(proposal.state())
        assert other.blocks[0].scale == 0.7

    def test_state_kind_mismatch(self):
        proposal = build_proposal(self.posterior, SamplerConfig())
        with pytest.raises(ConfigurationError):
            proposal.blocks[0].load_state({"kind": "student_t"})
