"""Unit tests for the parallel experiment driver."""

import dataclasses
import math
import os

import numpy as np
import pytest

from bayesian_ab.core.distributions import Beta, Variant
from bayesian_ab.exceptions import InvalidObservationError, NumericInstabilityError
from bayesian_ab.simulation import driver, sequential
from bayesian_ab.simulation.config import ExperimentPriors, SimulationConfig, TrialResult
from bayesian_ab.simulation.sequential import run_trial


@pytest.fixture
def small_config():
    """Design with a loose threshold so trials end within a few rounds."""
    return SimulationConfig(
        num_trials=12,
        loss_threshold=1e-3,
        sampling_distribution=Beta(70, 7000),
        obs_per_round=500,
        max_rounds=2000,
        seed=2024,
    )


class TestTrialSeeds:
    """Tests for per-trial seed derivation."""

    def test_trial_seeds_deterministic(self, small_config):
        """Test that seeds depend only on the configuration."""
        first = [s.generate_state(2).tolist() for s in driver.trial_seeds(small_config)]
        second = [s.generate_state(2).tolist() for s in driver.trial_seeds(small_config)]

        assert first == second
        assert len(first) == small_config.num_trials
        assert len({tuple(state) for state in first}) == small_config.num_trials


class TestRunTrials:
    """Tests for running one configuration."""

    def test_matches_direct_trials(self, small_config):
        """Test that the driver returns trials in trial-index order."""
        priors = ExperimentPriors.shared(small_config.sampling_distribution)
        expected = [run_trial(small_config, priors, seed) for seed in driver.trial_seeds(small_config)]

        results = driver.run_trials(small_config, n_workers=1)

        assert results == expected

    def test_parallel_matches_serial(self, small_config):
        """Test that scheduling does not change results."""
        serial = driver.run_trials(small_config, n_workers=1)
        parallel = driver.run_trials(small_config, n_workers=2)

        assert parallel == serial

    def test_failed_trials_do_not_abort_siblings(self, small_config, monkeypatch):
        """Test that package errors mark single trials as failed."""
        real_run_trial = driver.run_trial

        def flaky_run_trial(config, priors, seed):
            if seed.spawn_key[-1] % 2 == 1:
                raise InvalidObservationError("synthetic failure")
            return real_run_trial(config, priors, seed)

        monkeypatch.setattr(driver, 'run_trial', flaky_run_trial)
        results = driver.run_trials(small_config, n_workers=1)

        failed = [r for r in results if r.failed]
        assert len(failed) == small_config.num_trials // 2
        assert all("synthetic failure" in r.error for r in failed)
        assert all(not r.failed for r in results[::2])

    def test_failed_trial_keeps_completed_rounds(self, small_config, monkeypatch):
        """Test that a trial failing mid-run records the rounds it finished."""
        config = dataclasses.replace(small_config, num_trials=1, loss_threshold=1e-9)
        real_expected_losses = sequential.expected_losses
        calls = []

        def failing_third_round(a, b, method):
            calls.append(method)
            if len(calls) == 3:
                raise NumericInstabilityError("synthetic overflow")
            return real_expected_losses(a, b, method)

        monkeypatch.setattr(sequential, 'expected_losses', failing_third_round)
        (result,) = driver.run_trials(config, n_workers=1)

        assert result.failed
        assert result.rounds_run == 2
        assert "synthetic overflow" in result.error

    def test_other_errors_propagate(self, small_config, monkeypatch):
        """Test that programming errors are not swallowed."""
        def broken_run_trial(config, priors, seed):
            raise RuntimeError("bug")

        monkeypatch.setattr(driver, 'run_trial', broken_run_trial)

        with pytest.raises(RuntimeError, match="bug"):
            driver.run_trials(small_config, n_workers=1)


class TestAggregateTrials:
    """Tests for reducing trial results."""

    def test_aggregate_includes_inconclusive_trials(self):
        """Test that mean_loss covers stopped and inconclusive trials alike."""
        results = [
            TrialResult(4, True, Variant.A, 5e-5, 3e-4, Variant.A, 0.0),
            TrialResult(6, True, Variant.B, 2e-4, 7e-5, Variant.A, 1e-3),
            TrialResult(10, False, None, 4e-4, 2e-4, Variant.B, 0.0),
        ]

        agg = driver.aggregate_trials(results, loss_threshold=1e-4)

        assert agg.mean_loss == pytest.approx((5e-5 + 7e-5 + 2e-4) / 3)
        assert agg.mean_stopped_loss == pytest.approx((5e-5 + 7e-5) / 2)
        assert agg.stop_rate == pytest.approx(2 / 3)
        assert agg.mean_rounds == pytest.approx(20 / 3)
        assert agg.mean_realized_loss == pytest.approx(1e-3 / 3)
        assert agg.num_trials == 3
        assert agg.num_failed == 0
        assert agg.loss_threshold == 1e-4

    def test_aggregate_skips_failed_trials(self):
        """Test that failed trials are counted but not averaged."""
        results = [
            TrialResult(4, True, Variant.A, 5e-5, 3e-4, Variant.A, 0.0),
            TrialResult.from_error(InvalidObservationError("bad counts")),
        ]

        agg = driver.aggregate_trials(results, loss_threshold=1e-4)

        assert agg.num_failed == 1
        assert agg.mean_loss == pytest.approx(5e-5)
        assert agg.stop_rate == 1.0

    def test_aggregate_nothing_stopped(self):
        """Test NaN stopped loss when no trial stopped."""
        results = [TrialResult(10, False, None, 4e-4, 2e-4, Variant.B, 0.0)]

        agg = driver.aggregate_trials(results, loss_threshold=1e-4)

        assert agg.stop_rate == 0.0
        assert math.isnan(agg.mean_stopped_loss)

    def test_aggregate_all_failed(self):
        """Test that an all-failed configuration yields NaN statistics."""
        results = [TrialResult.from_error(InvalidObservationError("bad")) for _ in range(3)]

        agg = driver.aggregate_trials(results, loss_threshold=1e-4)

        assert agg.num_failed == 3
        assert math.isnan(agg.mean_loss)


class TestRunConfigurations:
    """Tests for multi-configuration runs."""

    def test_one_result_per_config_in_order(self, small_config):
        """Test threshold sweeps keep input order."""
        configs = driver.threshold_sweep(small_config, [2e-3, 1e-3])

        aggregates = driver.run_configurations(configs, n_workers=1)

        assert [agg.loss_threshold for agg in aggregates] == [2e-3, 1e-3]
        for agg in aggregates:
            assert agg.num_trials == small_config.num_trials
            assert agg.num_failed == 0
            assert 0.0 <= agg.stop_rate <= 1.0
            if agg.stop_rate > 0:
                assert agg.mean_stopped_loss < agg.loss_threshold

    def test_configs_independent_of_batch(self, small_config):
        """Test that a configuration's aggregate does not depend on its neighbours."""
        alone = driver.run_configurations([small_config], n_workers=1)[0]
        together = driver.run_configurations(
            [small_config.with_threshold(5e-3), small_config], n_workers=1
        )[1]

        assert alone == together

    def test_priors_per_config(self, small_config):
        """Test explicit priors and length validation."""
        priors = ExperimentPriors.shared(Beta(1, 99))
        aggregates = driver.run_configurations([small_config], priors=[priors], n_workers=1)
        assert len(aggregates) == 1

        with pytest.raises(ValueError, match="one ExperimentPriors per configuration"):
            driver.run_configurations([small_config], priors=[priors, priors], n_workers=1)

    def test_empty(self):
        """Test that no configurations give no results."""
        assert driver.run_configurations([], n_workers=1) == []


class TestDefaultWorkers:
    """Tests for worker-count configuration."""

    def test_env_override(self, monkeypatch):
        """Test the BAYESIAN_AB_WORKERS environment variable."""
        monkeypatch.setenv(driver.WORKERS_ENV, "3")
        assert driver.default_workers() == 3

    def test_cpu_count_fallback(self, monkeypatch):
        """Test the CPU-count default."""
        monkeypatch.delenv(driver.WORKERS_ENV, raising=False)
        assert driver.default_workers() == (os.cpu_count() or 1)


@pytest.mark.slow
class TestStoppingRuleGuarantee:
    """End-to-end check of the expected-loss stopping rule."""

    def test_stopped_loss_bounded_by_threshold(self):
        """Test the 250-trial scenario: expected and realized loss stay near the threshold."""
        config = SimulationConfig(
            num_trials=250,
            loss_threshold=1e-4,
            sampling_distribution=Beta(70, 7000),
            obs_per_round=500,
            max_rounds=10000,
        )

        results = driver.run_trials(config, priors=ExperimentPriors.shared(Beta(70, 7000)))

        stopped = [r for r in results if r.stopped]
        assert stopped
        assert all(r.rounds_run <= config.max_rounds for r in results)
        mean_min_loss = np.mean([min(r.final_loss_a, r.final_loss_b) for r in stopped])
        assert mean_min_loss <= config.loss_threshold

        agg = driver.aggregate_trials(results, config.loss_threshold)
        assert agg.mean_stopped_loss <= config.loss_threshold
        assert agg.num_failed == 0
        # Realized shortfall against the simulated truth; slack covers 250-trial noise
        assert 0.0 <= agg.mean_realized_loss <= 2 * config.loss_threshold
