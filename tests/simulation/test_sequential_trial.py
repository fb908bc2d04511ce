"""Unit tests for the sequential trial simulator."""

import pytest

from bayesian_ab.core.distributions import Beta, NormalGamma, Variant
from bayesian_ab.exceptions import InvalidConfigurationError, UnsupportedShapeError
from bayesian_ab.simulation.config import ExperimentPriors, SimulationConfig
from bayesian_ab.simulation.sequential import run_trial


@pytest.fixture
def beta_config():
    """Small Bernoulli design that stops within a few dozen rounds."""
    return SimulationConfig(
        num_trials=1,
        loss_threshold=1e-3,
        sampling_distribution=Beta(10, 90),
        obs_per_round=200,
        max_rounds=200,
    )


@pytest.fixture
def uniform_priors():
    return ExperimentPriors.shared(Beta(1, 1))


class TestRunTrial:
    """Tests for run_trial on the Beta-Bernoulli path."""

    def test_reproducible(self, beta_config, uniform_priors):
        """Test that identical arguments give identical results."""
        result1 = run_trial(beta_config, uniform_priors, seed=42)
        result2 = run_trial(beta_config, uniform_priors, seed=42)

        assert result1 == result2

    def test_seed_changes_outcome(self, beta_config, uniform_priors):
        """Test that different seeds give different trials."""
        results = [run_trial(beta_config, uniform_priors, seed=seed) for seed in range(5)]

        assert len({(r.rounds_run, r.final_loss_a, r.final_loss_b) for r in results}) > 1

    def test_result_invariants(self, beta_config, uniform_priors):
        """Test round budget, winner consistency and stopping condition."""
        for seed in range(10):
            result = run_trial(beta_config, uniform_priors, seed=seed)

            assert 1 <= result.rounds_run <= beta_config.max_rounds
            assert result.final_loss_a >= 0
            assert result.final_loss_b >= 0
            assert result.realized_loss >= 0
            assert result.true_better in (Variant.A, Variant.B)
            if not result.stopped:
                assert result.declared_winner is None
                assert result.rounds_run == beta_config.max_rounds
            else:
                assert result.chosen_loss < beta_config.loss_threshold
                other = result.final_loss_b if result.declared_winner is Variant.A else result.final_loss_a
                assert result.chosen_loss <= other

    def test_single_round_unreachable_threshold(self, uniform_priors):
        """Test that max_rounds=1 with an unreachable threshold never stops."""
        config = SimulationConfig(
            num_trials=1,
            loss_threshold=1e-9,
            sampling_distribution=Beta(70, 7000),
            obs_per_round=500,
            max_rounds=1,
        )
        priors = ExperimentPriors.shared(Beta(70, 7000))

        for seed in range(5):
            result = run_trial(config, priors, seed=seed)
            assert result.rounds_run == 1
            assert result.stopped is False
            assert result.declared_winner is None

    def test_consecutive_rounds_never_stops_earlier(self, beta_config, uniform_priors):
        """Test that requiring a streak cannot shorten a trial."""
        strict = SimulationConfig(
            num_trials=1,
            loss_threshold=beta_config.loss_threshold,
            sampling_distribution=beta_config.sampling_distribution,
            obs_per_round=beta_config.obs_per_round,
            max_rounds=beta_config.max_rounds,
            consecutive_rounds=3,
        )

        for seed in range(5):
            instant = run_trial(beta_config, uniform_priors, seed=seed)
            streak = run_trial(strict, uniform_priors, seed=seed)
            assert streak.rounds_run >= instant.rounds_run
            if streak.stopped:
                assert streak.rounds_run >= 3

    def test_prior_family_must_match(self, beta_config):
        """Test that Normal-Gamma priors cannot absorb Bernoulli data."""
        priors = ExperimentPriors.shared(NormalGamma(0.0, 1.0, 2.0, 2.0))

        with pytest.raises(InvalidConfigurationError, match="not be conjugate"):
            run_trial(beta_config, priors, seed=0)

    def test_fractional_prior_needs_numerical(self, beta_config):
        """Test that fractional priors fail under the closed form and run numerically."""
        priors = ExperimentPriors.shared(Beta(1.5, 1.0))

        with pytest.raises(UnsupportedShapeError):
            run_trial(beta_config, priors, seed=0)

        numerical = SimulationConfig(
            num_trials=1,
            loss_threshold=beta_config.loss_threshold,
            sampling_distribution=beta_config.sampling_distribution,
            obs_per_round=beta_config.obs_per_round,
            max_rounds=3,
            method='numerical',
        )
        result = run_trial(numerical, priors, seed=0)
        assert 1 <= result.rounds_run <= 3


class TestRunTrialNormalGamma:
    """Tests for run_trial on the Normal-Gamma path."""

    @pytest.fixture
    def normal_config(self):
        return SimulationConfig(
            num_trials=1,
            loss_threshold=0.01,
            sampling_distribution=NormalGamma(mu0=0.0, lam=1.0, alpha=10.0, beta=10.0),
            obs_per_round=100,
            max_rounds=100,
        )

    def test_normal_gamma_trial(self, normal_config):
        """Test that continuous trials run and respect the budget."""
        priors = ExperimentPriors.shared(NormalGamma(mu0=0.0, lam=1.0, alpha=2.0, beta=2.0))

        for seed in range(3):
            result = run_trial(normal_config, priors, seed=seed)
            assert 1 <= result.rounds_run <= normal_config.max_rounds
            assert result.final_loss_a >= 0
            assert result.final_loss_b >= 0
            if not result.stopped:
                assert result.declared_winner is None

    def test_normal_gamma_reproducible(self, normal_config):
        """Test determinism on the continuous path."""
        priors = ExperimentPriors.shared(NormalGamma(mu0=0.0, lam=1.0, alpha=2.0, beta=2.0))

        assert run_trial(normal_config, priors, seed=9) == run_trial(normal_config, priors, seed=9)
