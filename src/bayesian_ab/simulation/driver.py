"""
Experiment Driver
=================

Run many independent stopping-rule simulations, in parallel, and summarize
them per configuration.

Validation question: if we stop as soon as the expected loss of the leading
variant drops below a threshold, is the loss we actually incur on average
also below that threshold? Run a few hundred trials per threshold to find
out.

Parallelism:
- Every (configuration, trial) pair is an independent task
- Trial seeds are spawned from the configuration's root seed, so results do
  not depend on scheduling
- Results are regrouped by (configuration index, trial index), never by
  completion order
- Worker count: ``n_workers`` argument, else the BAYESIAN_AB_WORKERS
  environment variable, else the CPU count

Example Usage:
--------------
>>> from bayesian_ab.core.distributions import Beta
>>> from bayesian_ab.simulation import driver
>>> from bayesian_ab.simulation.config import SimulationConfig
>>>
>>> base = SimulationConfig(
...     num_trials=250, loss_threshold=1e-4,
...     sampling_distribution=Beta(70, 7000),
...     obs_per_round=500, max_rounds=10000,
... )
>>> configs = driver.threshold_sweep(base, [1e-3, 1e-4, 1e-5])
>>> for agg in driver.run_configurations(configs):
...     print(f"{agg.loss_threshold:.0e}: mean loss {agg.mean_loss:.2e}, stop rate {agg.stop_rate:.0%}")
"""

import logging
import math
import os
from multiprocessing import get_context
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from bayesian_ab.exceptions import BayesianABError
from bayesian_ab.simulation.config import (
    AggregateResult,
    ExperimentPriors,
    SimulationConfig,
    TrialResult,
)
from bayesian_ab.simulation.sequential import run_trial

logger = logging.getLogger(__name__)

WORKERS_ENV = "BAYESIAN_AB_WORKERS"

Task = Tuple[int, int, SimulationConfig, ExperimentPriors, np.random.SeedSequence]
PriorsArg = Optional[Union[ExperimentPriors, Sequence[ExperimentPriors]]]


def default_workers() -> int:
    """Worker count from BAYESIAN_AB_WORKERS, falling back to the CPU count."""
    value = os.environ.get(WORKERS_ENV)
    if value:
        return max(1, int(value))
    return os.cpu_count() or 1


def trial_seeds(config: SimulationConfig) -> List[np.random.SeedSequence]:
    """One independent seed per trial, spawned from ``config.seed``."""
    return np.random.SeedSequence(config.seed).spawn(config.num_trials)


def threshold_sweep(config: SimulationConfig, thresholds: Iterable[float]) -> List[SimulationConfig]:
    """Copies of ``config`` differing only in loss threshold."""
    return [config.with_threshold(threshold) for threshold in thresholds]


def _trial_worker(task: Task) -> Tuple[int, int, TrialResult]:
    config_index, trial_index, config, priors, seed = task
    try:
        result = run_trial(config, priors, seed)
    except BayesianABError as exc:
        result = TrialResult.from_error(exc, rounds_run=exc.context.get("rounds_run", 0))
    return config_index, trial_index, result


def _run_tasks(tasks: List[Task], n_workers: int) -> Dict[Tuple[int, int], TrialResult]:
    results: Dict[Tuple[int, int], TrialResult] = {}

    if n_workers <= 1 or len(tasks) <= 1:
        for task in tasks:
            config_index, trial_index, result = _trial_worker(task)
            results[(config_index, trial_index)] = result
        return results

    processes = min(n_workers, len(tasks))
    chunksize = max(1, len(tasks) // (processes * 4))
    ctx = get_context("spawn")
    with ctx.Pool(processes=processes) as pool:
        try:
            for config_index, trial_index, result in pool.imap_unordered(
                _trial_worker, tasks, chunksize=chunksize
            ):
                results[(config_index, trial_index)] = result
        except KeyboardInterrupt:
            logger.warning("Interrupted; terminating %d workers", processes)
            raise
    return results


def _resolve_priors(configs: Sequence[SimulationConfig], priors: PriorsArg) -> List[ExperimentPriors]:
    if priors is None:
        return [ExperimentPriors.shared(config.sampling_distribution) for config in configs]
    if isinstance(priors, ExperimentPriors):
        return [priors] * len(configs)
    priors = list(priors)
    if len(priors) != len(configs):
        raise ValueError("Need one ExperimentPriors per configuration")
    return priors


def _run(
    configs: Sequence[SimulationConfig],
    priors: PriorsArg,
    n_workers: Optional[int],
) -> List[List[TrialResult]]:
    configs = list(configs)
    resolved = _resolve_priors(configs, priors)
    if n_workers is None:
        n_workers = default_workers()

    tasks: List[Task] = []
    for config_index, (config, config_priors) in enumerate(zip(configs, resolved)):
        logger.info(
            "Config %d: %d trials, threshold=%.3g, %d obs/round, max %d rounds",
            config_index, config.num_trials, config.loss_threshold,
            config.obs_per_round, config.max_rounds,
        )
        for trial_index, seed in enumerate(trial_seeds(config)):
            tasks.append((config_index, trial_index, config, config_priors, seed))

    results = _run_tasks(tasks, n_workers)

    grouped = []
    for config_index, config in enumerate(configs):
        trials = [results[(config_index, trial_index)] for trial_index in range(config.num_trials)]
        failed = [trial for trial in trials if trial.failed]
        if failed:
            logger.warning(
                "Config %d: %d of %d trials failed (first: %s)",
                config_index, len(failed), len(trials), failed[0].error,
            )
        grouped.append(trials)
    return grouped


def run_trials(
    config: SimulationConfig,
    priors: Optional[ExperimentPriors] = None,
    n_workers: Optional[int] = None,
) -> List[TrialResult]:
    """
    Run all trials of one configuration.

    Parameters
    ----------
    config : SimulationConfig
        Experiment design
    priors : ExperimentPriors, optional
        Defaults to the sampling distribution as prior for both variants
    n_workers : int, optional
        Worker processes; 1 runs in-process

    Returns
    -------
    list of TrialResult
        In trial-index order
    """
    return _run([config], priors, n_workers)[0]


def aggregate_trials(results: Sequence[TrialResult], loss_threshold: float) -> AggregateResult:
    """
    Reduce trial results to an AggregateResult.

    Every completed trial contributes its chosen variant's final expected
    loss to ``mean_loss``, whether it stopped or ran out of rounds. Failed
    trials are counted in ``num_failed`` and otherwise ignored.
    """
    completed = [r for r in results if not r.failed]
    num_failed = len(results) - len(completed)

    if not completed:
        return AggregateResult(
            mean_loss=math.nan,
            stop_rate=math.nan,
            mean_rounds=math.nan,
            num_trials=len(results),
            num_failed=num_failed,
            loss_threshold=loss_threshold,
            mean_realized_loss=math.nan,
            mean_stopped_loss=math.nan,
        )

    stopped_losses = [r.chosen_loss for r in completed if r.stopped]
    return AggregateResult(
        mean_loss=float(np.mean([r.chosen_loss for r in completed])),
        stop_rate=float(np.mean([r.stopped for r in completed])),
        mean_rounds=float(np.mean([r.rounds_run for r in completed])),
        num_trials=len(results),
        num_failed=num_failed,
        loss_threshold=loss_threshold,
        mean_realized_loss=float(np.mean([r.realized_loss for r in completed])),
        mean_stopped_loss=float(np.mean(stopped_losses)) if stopped_losses else math.nan,
    )


def run_configurations(
    configs: Sequence[SimulationConfig],
    priors: PriorsArg = None,
    n_workers: Optional[int] = None,
) -> List[AggregateResult]:
    """
    Simulate every configuration and summarize each.

    Parameters
    ----------
    configs : sequence of SimulationConfig
        Designs to compare (e.g. from ``threshold_sweep``)
    priors : ExperimentPriors or sequence of ExperimentPriors, optional
        One set for all configurations, one per configuration, or None to use
        each configuration's sampling distribution as prior
    n_workers : int, optional
        Worker processes shared by all configurations

    Returns
    -------
    list of AggregateResult
        One per configuration, in input order
    """
    configs = list(configs)
    grouped = _run(configs, priors, n_workers)
    aggregates = []
    for config, trials in zip(configs, grouped):
        aggregate = aggregate_trials(trials, config.loss_threshold)
        logger.info(
            "Threshold %.3g: mean_loss=%.3e stop_rate=%.1f%% mean_rounds=%.1f",
            config.loss_threshold, aggregate.mean_loss,
            100 * aggregate.stop_rate, aggregate.mean_rounds,
        )
        aggregates.append(aggregate)
    return aggregates


if __name__ == "__main__":
    # Demo
    from bayesian_ab.core.distributions import Beta

    logging.basicConfig(level=logging.INFO)
    print("=" * 80)
    print("Expected-Loss Stopping Rule Validation")
    print("=" * 80)

    base = SimulationConfig(
        num_trials=50,
        loss_threshold=1e-3,
        sampling_distribution=Beta(70, 7000),
        obs_per_round=500,
        max_rounds=1000,
    )
    for aggregate in run_configurations(threshold_sweep(base, [1e-3, 3e-4, 1e-4])):
        print(
            f"threshold={aggregate.loss_threshold:.0e}  "
            f"mean expected loss={aggregate.mean_loss:.2e}  "
            f"mean realized loss={aggregate.mean_realized_loss:.2e}  "
            f"stop rate={aggregate.stop_rate:.0%}  "
            f"mean rounds={aggregate.mean_rounds:.1f}"
        )
