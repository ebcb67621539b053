#!/usr/bin/env python3
"""
Test suite for the Metropolis-Hastings chain.
"""

import json

import numpy as np
import pytest

from scanmc.parameters.priors import DiscretePrior, FlatPrior, GaussianPrior
from scanmc.samplers.chain import Chain, ChainState
from scanmc.samplers.posterior import Posterior
from scanmc.samplers.proposals import (
    AdaptiveGaussianProposal,
    CompositeProposal,
    DiscreteProposal,
    PriorProposal,
)


def gaussian_likelihood(mean, sigma):
    def log_likelihood(vector):
        return -0.5 * float(np.sum(((vector - mean) / sigma) ** 2))
    return log_likelihood


class TestChain:
    """Test single-chain sampling."""

    def setup_method(self):
        self.posterior = Posterior(gaussian_likelihood(1.0, 0.5), [FlatPrior("x", -10.0, 10.0)])

    def make_chain(self, seed=0, covariance=0.25):
        proposal = AdaptiveGaussianProposal([[covariance]])
        return Chain(self.posterior, proposal, np.random.default_rng(seed), [0.0])

    def test_counts(self):
        chain = self.make_chain()
        assert chain.acceptance_rate == 0.0
        history = chain.run(500)

        assert chain.accepted + chain.rejected == 500
        assert chain.iterations == 500
        assert 0.0 <= chain.acceptance_rate <= 1.0
        assert len(history) == 500
        assert int(np.count_nonzero(history.accepted)) == chain.accepted

    def test_step(self):
        chain = self.make_chain()
        accepted = [chain.step() for _ in range(50)]
        assert sum(accepted) == chain.accepted

    def test_reset_statistics(self):
        chain = self.make_chain()
        chain.run(100)
        chain.reset_statistics()
        assert chain.accepted == 0
        assert chain.rejected == 0
        assert chain.iterations == 100

    def test_gaussian_moments(self):
        chain = self.make_chain(seed=1)
        chain.run(1000)
        history = chain.run(40000)
        samples = history.points[:, 0]

        assert np.mean(samples) == pytest.approx(1.0, abs=0.05)
        assert np.var(samples) == pytest.approx(0.25, rel=0.1)

    def test_history_tracks_current_point(self):
        chain = self.make_chain(seed=2)
        history = chain.run(200)
        np.testing.assert_array_equal(history.points[-1], chain.point)
        assert history.log_posterior[-1] == chain.log_posterior
        for i in range(1, 200):
            if not history.accepted[i]:
                np.testing.assert_array_equal(history.points[i], history.points[i - 1])

    def test_candidates_recorded(self):
        chain = self.make_chain(seed=3)
        history = chain.run(100, record_candidates=True)
        assert history.candidates.shape == (100, 1)
        accepted = history.accepted
        np.testing.assert_array_equal(history.candidates[accepted], history.points[accepted])

    def test_out_of_domain_always_rejected(self):
        posterior = Posterior(lambda v: 0.0, [FlatPrior("x", 0.0, 0.1)])
        chain = Chain(posterior, AdaptiveGaussianProposal([[100.0]]), np.random.default_rng(4), [0.05])
        history = chain.run(1000)
        assert np.all(history.points >= 0.0)
        assert np.all(history.points <= 0.1)
        assert chain.acceptance_rate < 0.05

    def test_snapshot_restore_reproduces_trajectory(self):
        chain = self.make_chain(seed=5)
        chain.run(100)
        state = chain.snapshot()
        expected = chain.run(50)

        other = self.make_chain(seed=99)
        other.restore(state)
        actual = other.run(50)

        np.testing.assert_array_equal(actual.points, expected.points)
        assert other.accepted == chain.accepted
        assert other.iterations == chain.iterations

    def test_state_is_json_serialisable(self):
        chain = self.make_chain(seed=6)
        chain.run(10)
        text = json.dumps(chain.snapshot().to_dict())
        state = ChainState.from_dict(json.loads(text))
        assert state.point == chain.point.tolist()
        assert state.rng_state == chain.rng.bit_generator.state

    def test_move_to(self):
        chain = self.make_chain()
        chain.move_to([1.0])
        assert chain.log_posterior == pytest.approx(self.posterior.evaluate(np.array([1.0])))
        assert chain.iterations == 0


class TestAsymmetricProposals:
    """Test the Hastings correction."""

    def test_prior_proposal_samples_prior(self):
        prior = GaussianPrior("x", -10.0, 10.0, -1.0, 0.0, 2.0)
        posterior = Posterior(lambda v: 0.0, [prior])
        chain = Chain(posterior, PriorProposal(0, prior), np.random.default_rng(7), [0.0])
        history = chain.run(2000)

        # proposal equals target: every candidate is accepted
        assert chain.acceptance_rate > 0.99
        # mean of the two-piece normal: sqrt(2/pi) (s_u^2 - s_l^2) / (s_l + s_u)
        assert np.mean(history.points[:, 0]) == pytest.approx(np.sqrt(2.0 / np.pi), abs=0.15)

    def test_discrete_chain_stays_on_support(self):
        posterior = Posterior(
            lambda v: -float(v[1]),
            [FlatPrior("x", 0.0, 1.0), DiscretePrior("k", [0, 1, 2])],
        )
        proposal = CompositeProposal([
            AdaptiveGaussianProposal([[0.01]], indices=[0]),
            DiscreteProposal(1, [0.0, 1.0, 2.0]),
        ])
        chain = Chain(posterior, proposal, np.random.default_rng(8), [0.5, 1.0])
        history = chain.run(3000)
        assert set(np.unique(history.points[:, 1])) <= {0.0, 1.0, 2.0}
        counts = np.array([np.sum(history.points[:, 1] == k) for k in (0.0, 1.0, 2.0)])
        assert counts[0] > counts[1] > counts[2]
