"""
Simulation Records
==================

Immutable inputs and outputs of the stopping-rule simulation:

- **SimulationConfig**: one experiment design (threshold, batch size, budget)
- **ExperimentPriors**: the priors of variants A and B
- **VariantState**: one variant's posterior within a running trial
- **TrialResult**: outcome of one simulated experiment
- **AggregateResult**: summary over all trials of one configuration

Everything is a frozen dataclass, so records can be pickled to worker
processes and compared for equality.
"""

import math
from dataclasses import dataclass, replace
from typing import Optional, Union

from bayesian_ab.core.distributions import Beta, NormalGamma, PriorSpec, Variant
from bayesian_ab.exceptions import InvalidConfigurationError

SamplingDistribution = Union[Beta, NormalGamma]


@dataclass(frozen=True)
class SimulationConfig:
    """
    Design of a simulated experiment.

    Parameters
    ----------
    num_trials : int
        Independent experiments to simulate
    loss_threshold : float
        Expected-loss threshold of the stopping rule
    sampling_distribution : Beta or NormalGamma
        Distribution the true rate (Beta) or the true mean and precision
        (NormalGamma) of each variant is drawn from, once per trial
    obs_per_round : int
        Observations per round across both variants; must be even, each
        variant gets half. Odd values are rejected.
    max_rounds : int
        Round budget per trial
    seed : int, default=0
        Root seed; trial seeds are spawned from it
    consecutive_rounds : int, default=1
        Rounds in a row a variant must stay under the threshold
    method : {'closed_form', 'numerical'}, default='closed_form'
        Evaluation of Beta comparison probabilities
    """

    num_trials: int
    loss_threshold: float
    sampling_distribution: SamplingDistribution
    obs_per_round: int
    max_rounds: int
    seed: int = 0
    consecutive_rounds: int = 1
    method: str = 'closed_form'

    def __post_init__(self) -> None:
        if self.num_trials < 1:
            raise InvalidConfigurationError(
                "num_trials must be at least 1", context={"num_trials": self.num_trials}
            )
        if not (self.loss_threshold > 0 and math.isfinite(self.loss_threshold)):
            raise InvalidConfigurationError(
                "loss_threshold must be positive", context={"loss_threshold": self.loss_threshold}
            )
        if not isinstance(self.sampling_distribution, (Beta, NormalGamma)):
            raise InvalidConfigurationError(
                "sampling_distribution must be a Beta or NormalGamma, got "
                f"{type(self.sampling_distribution).__name__}"
            )
        if self.obs_per_round < 2:
            raise InvalidConfigurationError(
                "obs_per_round must be at least 2", context={"obs_per_round": self.obs_per_round}
            )
        if self.obs_per_round % 2 != 0:
            raise InvalidConfigurationError(
                f"obs_per_round must be even so both variants get equal traffic, got {self.obs_per_round}",
                context={"obs_per_round": self.obs_per_round},
            )
        if self.max_rounds < 1:
            raise InvalidConfigurationError(
                "max_rounds must be at least 1", context={"max_rounds": self.max_rounds}
            )
        if self.seed < 0:
            raise InvalidConfigurationError("seed must be non-negative", context={"seed": self.seed})
        if self.consecutive_rounds < 1:
            raise InvalidConfigurationError(
                "consecutive_rounds must be at least 1",
                context={"consecutive_rounds": self.consecutive_rounds},
            )
        if self.method not in ('closed_form', 'numerical'):
            raise InvalidConfigurationError("method must be 'closed_form' or 'numerical'")

    @property
    def obs_per_variant(self) -> int:
        return self.obs_per_round // 2

    def with_threshold(self, loss_threshold: float) -> "SimulationConfig":
        return replace(self, loss_threshold=loss_threshold)


@dataclass(frozen=True)
class ExperimentPriors:
    """Priors for variants A and B (same family)."""

    a: PriorSpec
    b: PriorSpec

    def __post_init__(self) -> None:
        if type(self.a) is not type(self.b):
            raise InvalidConfigurationError(
                f"Priors must share a family, got {type(self.a).__name__} and {type(self.b).__name__}"
            )

    @classmethod
    def shared(cls, prior: PriorSpec) -> "ExperimentPriors":
        return cls(a=prior, b=prior)

    def for_variant(self, variant: Variant) -> PriorSpec:
        return self.a if variant is Variant.A else self.b


@dataclass(frozen=True)
class VariantState:
    """Posterior of one variant and how many observations produced it."""

    posterior: PriorSpec
    observations_seen: int = 0


@dataclass(frozen=True)
class TrialResult:
    """
    Outcome of one simulated experiment.

    Attributes
    ----------
    rounds_run : int
        Rounds executed (never more than max_rounds)
    stopped : bool
        Whether the stopping rule declared a winner
    declared_winner : Variant or None
        Winner; None whenever ``stopped`` is False
    final_loss_a, final_loss_b : float
        Expected losses at the last round (NaN for failed trials)
    true_better : Variant or None
        Variant whose simulated true rate/mean is higher
    realized_loss : float
        True shortfall of the chosen variant against the better one
    error : str or None
        Message of the package error that ended the trial, if any
    """

    rounds_run: int
    stopped: bool
    declared_winner: Optional[Variant]
    final_loss_a: float
    final_loss_b: float
    true_better: Optional[Variant] = None
    realized_loss: float = math.nan
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.rounds_run < 0:
            raise InvalidConfigurationError(
                "rounds_run must be non-negative", context={"rounds_run": self.rounds_run}
            )
        if self.stopped != (self.declared_winner is not None):
            raise InvalidConfigurationError(
                "A trial declares a winner if and only if it stopped",
                context={"stopped": self.stopped, "declared_winner": self.declared_winner},
            )

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def chosen(self) -> Variant:
        """Declared winner, or the lower-loss variant when inconclusive."""
        if self.declared_winner is not None:
            return self.declared_winner
        return Variant.A if self.final_loss_a <= self.final_loss_b else Variant.B

    @property
    def chosen_loss(self) -> float:
        """Expected loss of the chosen variant at the final round."""
        return self.final_loss_a if self.chosen is Variant.A else self.final_loss_b

    @classmethod
    def from_error(cls, error: Exception, rounds_run: int = 0) -> "TrialResult":
        return cls(
            rounds_run=rounds_run,
            stopped=False,
            declared_winner=None,
            final_loss_a=math.nan,
            final_loss_b=math.nan,
            error=f"{type(error).__name__}: {error}",
        )


@dataclass(frozen=True)
class AggregateResult:
    """
    Summary of one configuration's trials.

    ``mean_loss`` includes every completed trial's final expected loss (at
    the stopping round, or at max_rounds when inconclusive), so it stays
    comparable across configurations with different stop rates.
    ``mean_stopped_loss`` is restricted to stopped trials.
    """

    mean_loss: float
    stop_rate: float
    mean_rounds: float
    num_trials: int
    num_failed: int
    loss_threshold: float
    mean_realized_loss: float
    mean_stopped_loss: float
