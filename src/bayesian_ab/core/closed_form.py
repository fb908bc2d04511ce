"""
Closed-Form Bayesian Decision Quantities
========================================

Exact P(B > A) and expected loss for two-variant experiments, without Monte
Carlo sampling.

Expected loss of choosing a variant is E[max(theta_other - theta_chosen, 0)]:
how much we expect to give up if the choice turns out to be wrong. A stopping
rule that waits until this drops below a threshold bounds the average cost of
wrong decisions by that threshold.

Families:
- **Beta** (conversion rates): exact, via the finite sum in ``special.h_sum``
- **NormalGamma** (continuous metrics): normal approximation of each
  variant's marginal posterior mean

Example Usage:
--------------
>>> from bayesian_ab.core import closed_form
>>> from bayesian_ab.core.distributions import Beta
>>>
>>> a = Beta(alpha=51, beta=451)
>>> b = Beta(alpha=61, beta=441)
>>> prob = closed_form.probability_b_greater_a(a, b)
>>> loss_b = closed_form.expected_loss('B', a, b)
>>> print(f"P(B > A) = {prob:.2%}, expected loss of shipping B = {loss_b:.5f}")
"""

import logging
import math
import warnings
from typing import Callable, Literal, Tuple, Union

from scipy import stats

from bayesian_ab.core.distributions import Beta, NormalGamma, Variant
from bayesian_ab.core.special import h_integral, h_sum
from bayesian_ab.exceptions import NumericInstabilityError, NumericInstabilityWarning

logger = logging.getLogger(__name__)

# Negative losses smaller than this in magnitude are rounding noise
LOSS_TOLERANCE = 1e-9

Method = Literal['closed_form', 'numerical']
Posterior = Union[Beta, NormalGamma]


def _h_function(method: str) -> Callable[[float, float, float, float], float]:
    if method == 'closed_form':
        return h_sum
    elif method == 'numerical':
        return h_integral
    else:
        raise ValueError("method must be 'closed_form' or 'numerical'")


def _check_pair(a: Posterior, b: Posterior) -> None:
    if type(a) is not type(b):
        raise TypeError(
            f"Both variants must share a family, got {type(a).__name__} and {type(b).__name__}"
        )
    if not isinstance(a, (Beta, NormalGamma)):
        raise TypeError(f"No closed form for {type(a).__name__} comparisons")


def _normal_difference(minuend: NormalGamma, subtrahend: NormalGamma) -> Tuple[float, float]:
    """Mean and std of the normal approximation to mu_minuend - mu_subtrahend."""
    m = minuend.mean() - subtrahend.mean()
    s = math.sqrt(minuend.mean_variance() + subtrahend.mean_variance())
    return m, s


def probability_b_greater_a(
    a: Posterior,
    b: Posterior,
    method: Method = 'closed_form',
) -> float:
    """
    Probability that variant B's rate (or mean) exceeds variant A's.

    Parameters
    ----------
    a : Beta or NormalGamma
        Posterior of variant A
    b : Beta or NormalGamma
        Posterior of variant B (same family as ``a``)
    method : {'closed_form', 'numerical'}, default='closed_form'
        Beta only. 'closed_form' needs an integral ``b.alpha`` and raises
        UnsupportedShapeError otherwise; 'numerical' integrates the joint
        density and accepts any shape.

    Returns
    -------
    float
        P(theta_B > theta_A) in [0, 1]

    Notes
    -----
    - probability_b_greater_a(a, b) + probability_b_greater_a(b, a) == 1
    - Identical posteriors give 0.5
    """
    _check_pair(a, b)
    if isinstance(a, Beta):
        h = _h_function(method)
        return h(a.alpha, a.beta, b.alpha, b.beta)

    m, s = _normal_difference(b, a)
    return float(stats.norm.cdf(m / s))


def _beta_loss(other: Beta, chosen: Beta, h) -> float:
    # B(alpha + 1, beta) / B(alpha, beta) == alpha / (alpha + beta)
    other_mean = other.alpha / (other.alpha + other.beta)
    chosen_mean = chosen.alpha / (chosen.alpha + chosen.beta)
    # P(other' > chosen) where other' ~ Beta(alpha + 1, beta), and vice versa
    other_wins = 1.0 - h(other.alpha + 1, other.beta, chosen.alpha, chosen.beta)
    other_wins_shifted = 1.0 - h(other.alpha, other.beta, chosen.alpha + 1, chosen.beta)
    return other_mean * other_wins - chosen_mean * other_wins_shifted


def _normal_gamma_loss(other: NormalGamma, chosen: NormalGamma) -> float:
    # E[max(D, 0)] for D ~ N(m, s^2)
    m, s = _normal_difference(other, chosen)
    z = m / s
    return m * stats.norm.cdf(z) + s * stats.norm.pdf(z)


def _clamp_loss(raw: float, variant: Variant) -> float:
    if not math.isfinite(raw):
        raise NumericInstabilityError(
            f"Expected loss for variant {variant.value} is not finite",
            context={"variant": variant.value, "loss": raw},
        )
    if raw >= 0:
        return float(raw)
    if raw < -LOSS_TOLERANCE:
        message = f"Expected loss for variant {variant.value} was {raw:.3e}; clamped to 0"
        logger.warning(message)
        warnings.warn(message, NumericInstabilityWarning, stacklevel=3)
    return 0.0


def expected_loss(
    variant: Union[Variant, str],
    a: Posterior,
    b: Posterior,
    method: Method = 'closed_form',
) -> float:
    """
    Expected loss of choosing ``variant``.

    Parameters
    ----------
    variant : Variant or {'A', 'B'}
        Variant being chosen
    a, b : Beta or NormalGamma
        Posteriors of variants A and B
    method : {'closed_form', 'numerical'}, default='closed_form'
        How Beta comparison probabilities are evaluated

    Returns
    -------
    float
        E[max(theta_other - theta_chosen, 0)], never negative

    Formula
    -------
    For Beta posteriors and variant B:

        E[L](B) = alpha_a / (alpha_a + beta_a) * (1 - h(alpha_a + 1, beta_a, alpha_b, beta_b))
                - alpha_b / (alpha_b + beta_b) * (1 - h(alpha_a, beta_a, alpha_b + 1, beta_b))

    with h(...) = P(p_B > p_A). E[L](A) swaps the roles of a and b.

    Notes
    -----
    - Closed form for A needs an integral a.alpha; for B an integral b.alpha
    - Negative results beyond 1e-9 are clamped to 0 with a
      NumericInstabilityWarning
    - A non-finite result raises NumericInstabilityError
    """
    variant = Variant(variant)
    _check_pair(a, b)

    if variant is Variant.B:
        other, chosen = a, b
    else:
        other, chosen = b, a

    if isinstance(a, Beta):
        raw = _beta_loss(other, chosen, _h_function(method))
    else:
        raw = _normal_gamma_loss(other, chosen)

    return _clamp_loss(raw, variant)


def expected_losses(
    a: Posterior,
    b: Posterior,
    method: Method = 'closed_form',
) -> Tuple[float, float]:
    """Return ``(expected_loss(A), expected_loss(B))``."""
    return (
        expected_loss(Variant.A, a, b, method),
        expected_loss(Variant.B, a, b, method),
    )


if __name__ == "__main__":
    # Demo
    print("=" * 80)
    print("Closed-Form Bayesian A/B Demo")
    print("=" * 80)

    a = Beta(alpha=1 + 50, beta=1 + 450)
    b = Beta(alpha=1 + 60, beta=1 + 440)
    print(f"Posterior A: Beta({a.alpha}, {a.beta})")
    print(f"Posterior B: Beta({b.alpha}, {b.beta})")
    print(f"\nP(B > A) = {probability_b_greater_a(a, b):.4f}")
    loss_a, loss_b = expected_losses(a, b)
    print(f"Expected loss if choose A: {loss_a:.6f}")
    print(f"Expected loss if choose B: {loss_b:.6f}")
