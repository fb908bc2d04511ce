"""
Sequential Experiment Simulation
================================

Simulate one A/B experiment under the expected-loss stopping rule.

Per trial:
1. Draw each variant's true rate (Beta) or true mean and precision
   (NormalGamma) from the sampling distribution
2. Each round, give each variant obs_per_round / 2 new observations and
   update its posterior
3. Compute both expected losses and step the stopping policy
4. Stop on a declared winner or when the round budget runs out

All randomness comes from a generator seeded for this trial only, so a trial
is reproducible and safe to run in any worker process.

Example Usage:
--------------
>>> from bayesian_ab.core.distributions import Beta
>>> from bayesian_ab.simulation.config import ExperimentPriors, SimulationConfig
>>> from bayesian_ab.simulation.sequential import run_trial
>>>
>>> config = SimulationConfig(
...     num_trials=1, loss_threshold=1e-4,
...     sampling_distribution=Beta(70, 7000),
...     obs_per_round=500, max_rounds=10000,
... )
>>> result = run_trial(config, ExperimentPriors.shared(Beta(70, 7000)), seed=42)
>>> print(result.declared_winner, result.rounds_run)
"""

import logging
import math
from dataclasses import replace
from typing import Dict, Tuple, Union

import numpy as np

from bayesian_ab.core.closed_form import expected_losses
from bayesian_ab.core.conjugate import update_beta, update_normal_gamma
from bayesian_ab.core.distributions import Beta, Variant
from bayesian_ab.decision.stopping import StoppingPolicy, StoppingState
from bayesian_ab.exceptions import BayesianABError, InvalidConfigurationError
from bayesian_ab.simulation.config import (
    ExperimentPriors,
    SimulationConfig,
    TrialResult,
    VariantState,
)

logger = logging.getLogger(__name__)

Seed = Union[int, np.random.SeedSequence]


def _draw_truth(config: SimulationConfig, rng: np.random.Generator) -> Dict[Variant, Tuple[float, ...]]:
    """True parameters per variant: (rate,) for Beta, (mu, tau) for NormalGamma."""
    dist = config.sampling_distribution
    truth = {}
    for variant in Variant:
        if isinstance(dist, Beta):
            truth[variant] = (float(dist.sample(rng)),)
        else:
            mu, tau = dist.sample(rng)
            truth[variant] = (float(mu), float(tau))
    return truth


def _observe(
    state: VariantState,
    truth: Tuple[float, ...],
    n: int,
    rng: np.random.Generator,
) -> VariantState:
    """Draw ``n`` observations from the true distribution and update the posterior."""
    if isinstance(state.posterior, Beta):
        (rate,) = truth
        successes = int(rng.binomial(n, rate))
        posterior = update_beta(state.posterior, successes, n)
    else:
        mu, tau = truth
        batch = rng.normal(mu, 1.0 / math.sqrt(tau), n)
        sample_var = float(batch.var(ddof=1)) if n > 1 else 0.0
        posterior = update_normal_gamma(state.posterior, float(batch.mean()), sample_var, n)
    return VariantState(posterior=posterior, observations_seen=state.observations_seen + n)


def _check_families(config: SimulationConfig, priors: ExperimentPriors) -> None:
    expected = type(config.sampling_distribution)
    if not isinstance(priors.a, expected):
        raise InvalidConfigurationError(
            f"Priors are {type(priors.a).__name__} but the sampling distribution is "
            f"{expected.__name__}; observations would not be conjugate"
        )


def run_trial(config: SimulationConfig, priors: ExperimentPriors, seed: Seed) -> TrialResult:
    """
    Run one simulated experiment end to end.

    Parameters
    ----------
    config : SimulationConfig
        Experiment design
    priors : ExperimentPriors
        Priors of A and B, same family as ``config.sampling_distribution``
    seed : int or numpy.random.SeedSequence
        Seed of this trial's private generator

    Returns
    -------
    TrialResult
        Identical for identical arguments

    Raises
    ------
    InvalidObservationError, UnsupportedShapeError
        Propagated from the updater/evaluator; fatal to this trial only.
        ``exc.context["rounds_run"]`` holds the rounds completed before it.
    """
    _check_families(config, priors)
    rng = np.random.default_rng(seed)

    truth = _draw_truth(config, rng)
    states = {variant: VariantState(posterior=priors.for_variant(variant)) for variant in Variant}
    policy = StoppingPolicy(
        threshold=config.loss_threshold,
        max_rounds=config.max_rounds,
        consecutive_rounds=config.consecutive_rounds,
    )

    n = config.obs_per_variant
    loss_a = loss_b = math.nan
    rounds_run = 0
    state = StoppingState.RUNNING
    for round_number in range(1, config.max_rounds + 1):
        try:
            states = {variant: _observe(states[variant], truth[variant], n, rng) for variant in Variant}
            loss_a, loss_b = expected_losses(
                states[Variant.A].posterior, states[Variant.B].posterior, method=config.method
            )
        except BayesianABError as exc:
            # Rounds completed before the failure
            exc.context.setdefault("rounds_run", round_number - 1)
            raise
        rounds_run = round_number
        state = policy.step(loss_a, loss_b, round_number)
        if state.is_terminal:
            break

    stopped = state in (StoppingState.STOPPED_A, StoppingState.STOPPED_B)
    true_a = truth[Variant.A][0]
    true_b = truth[Variant.B][0]
    true_better = Variant.B if true_b > true_a else Variant.A

    result = TrialResult(
        rounds_run=rounds_run,
        stopped=stopped,
        declared_winner=policy.winner if stopped else None,
        final_loss_a=float(loss_a),
        final_loss_b=float(loss_b),
        true_better=true_better,
    )
    # Audit against the simulated truth
    true_chosen = true_a if result.chosen is Variant.A else true_b
    realized_loss = max(true_a, true_b) - true_chosen
    logger.debug(
        "Trial finished: rounds=%d stopped=%s winner=%s realized_loss=%.3e",
        rounds_run, stopped, result.declared_winner, realized_loss,
    )
    return replace(result, realized_loss=float(realized_loss))
