"""
Conjugate Distributions
=======================

Immutable parameter containers for the three conjugate families used by the
engine:

- **Beta(alpha, beta)**: prior/posterior for a Bernoulli rate
- **Gamma(alpha, beta)**: prior/posterior for a Poisson rate or a Gaussian
  precision (rate parameterization, mean = alpha / beta)
- **NormalGamma(mu0, lam, alpha, beta)**: joint prior/posterior for a
  Gaussian mean and precision

Instances are frozen: updates return new instances, so a posterior can be
shared with another process without copying.

Example Usage:
--------------
>>> from bayesian_ab.core.distributions import Beta
>>> prior = Beta(alpha=70, beta=7000)
>>> print(f"Prior mean: {prior.mean():.4f}")
Prior mean: 0.0099
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union

import numpy as np

from bayesian_ab.exceptions import InvalidParameterError, UnsupportedShapeError


def _require_positive(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        raise InvalidParameterError(
            f"{name} must be positive and finite, got {value}",
            context={name: value},
        )


class Variant(str, Enum):
    """Experiment arm."""

    A = "A"
    B = "B"

    def other(self) -> "Variant":
        return Variant.B if self is Variant.A else Variant.A


@dataclass(frozen=True)
class Beta:
    """Beta distribution for a Bernoulli success rate."""

    alpha: float
    beta: float

    family: ClassVar[str] = "Beta"

    def __post_init__(self) -> None:
        _require_positive("alpha", self.alpha)
        _require_positive("beta", self.beta)

    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    def variance(self) -> float:
        """Var = alpha * beta / ((alpha + beta)^2 * (alpha + beta + 1))"""
        ab = self.alpha + self.beta
        return (self.alpha * self.beta) / (ab * ab * (ab + 1))

    def sample(self, rng: np.random.Generator, size: Optional[int] = None):
        return rng.beta(self.alpha, self.beta, size)


@dataclass(frozen=True)
class Gamma:
    """Gamma distribution with shape ``alpha`` and rate ``beta``."""

    alpha: float
    beta: float

    family: ClassVar[str] = "Gamma"

    def __post_init__(self) -> None:
        _require_positive("alpha", self.alpha)
        _require_positive("beta", self.beta)

    def mean(self) -> float:
        return self.alpha / self.beta

    def variance(self) -> float:
        return self.alpha / self.beta**2

    def sample(self, rng: np.random.Generator, size: Optional[int] = None):
        return rng.gamma(self.alpha, 1.0 / self.beta, size)


@dataclass(frozen=True)
class NormalGamma:
    """
    Normal-Gamma distribution over a Gaussian mean ``mu`` and precision ``tau``.

    Generative form:
        tau ~ Gamma(alpha, rate=beta)
        mu | tau ~ Normal(mu0, 1 / (lam * tau))

    Parameters
    ----------
    mu0 : float
        Location of the mean
    lam : float
        Pseudo-observation count behind ``mu0``
    alpha : float
        Shape of the precision
    beta : float
        Rate of the precision
    """

    mu0: float
    lam: float
    alpha: float
    beta: float

    family: ClassVar[str] = "NormalGamma"

    def __post_init__(self) -> None:
        if not math.isfinite(self.mu0):
            raise InvalidParameterError(f"mu0 must be finite, got {self.mu0}", context={"mu0": self.mu0})
        _require_positive("lam", self.lam)
        _require_positive("alpha", self.alpha)
        _require_positive("beta", self.beta)

    def mean(self) -> float:
        """Posterior mean of ``mu``."""
        return self.mu0

    def precision_mean(self) -> float:
        return self.alpha / self.beta

    def precision_variance(self) -> float:
        return self.alpha / self.beta**2

    def mean_variance(self) -> float:
        """
        Variance of the marginal of ``mu``: beta / (lam * (alpha - 1)).

        Only defined for alpha > 1.
        """
        if self.alpha <= 1:
            raise UnsupportedShapeError(
                f"Variance of the mean is undefined for alpha <= 1 (alpha={self.alpha})",
                context={"alpha": self.alpha},
            )
        return self.beta / (self.lam * (self.alpha - 1))

    def variance(self) -> float:
        """Variance of ``mu``; same as ``mean_variance``."""
        return self.mean_variance()

    def sample(self, rng: np.random.Generator, size: Optional[int] = None) -> Tuple:
        """Draw ``(mu, tau)`` pairs."""
        tau = rng.gamma(self.alpha, 1.0 / self.beta, size)
        mu = rng.normal(self.mu0, 1.0 / np.sqrt(self.lam * tau))
        return mu, tau


PriorSpec = Union[Beta, Gamma, NormalGamma]
