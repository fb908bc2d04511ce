"""
Special Functions for Closed-Form Beta Comparisons
==================================================

Numerically stable building blocks for the exact probability that one Beta
variable exceeds another:

    P(p_B > p_A) = sum_{i=0}^{alpha_B - 1}
                   B(alpha_A + i, beta_A + beta_B)
                   / ((beta_B + i) * B(1 + i, beta_B) * B(alpha_A, beta_A))

The sum is finite only when alpha_B is a positive integer. That holds for
Beta-Bernoulli posteriors whenever the prior's alpha is integral, since
each success adds exactly one. Shapes are tagged ``IntegralShape`` or
``FractionalShape``; fractional shapes must use the numerical fallback
``h_integral`` which the caller has to choose explicitly.

References
----------
- Evan Miller (2015): "Formulas for Bayesian A/B Testing"
- Chris Stucchio (2015): "Bayesian A/B Testing at VWO"
"""

import logging
from dataclasses import dataclass
from typing import Union

import numpy as np
from scipy import integrate, special

from bayesian_ab.exceptions import NumericInstabilityError, UnsupportedShapeError

logger = logging.getLogger(__name__)

# Above this many terms the closed-form sum dominates the runtime of a round
LARGE_TERM_COUNT = 100_000


@dataclass(frozen=True)
class IntegralShape:
    """Shape parameter that is a positive integer; ``terms`` is its value."""

    terms: int


@dataclass(frozen=True)
class FractionalShape:
    """Shape parameter with a fractional part."""

    value: float


def classify_shape(value: float) -> Union[IntegralShape, FractionalShape]:
    """
    Tag a shape parameter as integral or fractional.

    Example
    -------
    >>> classify_shape(75.0)
    IntegralShape(terms=75)
    >>> classify_shape(70.5)
    FractionalShape(value=70.5)
    """
    value = float(value)
    if value >= 1 and value.is_integer():
        return IntegralShape(terms=int(value))
    return FractionalShape(value=value)


def log_beta(x, y):
    """
    Log of the Beta function, log B(x, y) = lgamma(x) + lgamma(y) - lgamma(x + y).

    Works elementwise on arrays. Stays finite for parameters in the millions
    where ``scipy.special.beta`` underflows to zero.
    """
    return special.gammaln(x) + special.gammaln(y) - special.gammaln(np.add(x, y))


def h_sum(alpha_a: float, beta_a: float, alpha_b: float, beta_b: float) -> float:
    """
    Exact P(p_B > p_A) for p_A ~ Beta(alpha_a, beta_a), p_B ~ Beta(alpha_b, beta_b).

    Parameters
    ----------
    alpha_a, beta_a : float
        Parameters of A's Beta distribution
    alpha_b : float
        Shape of B's distribution; must be a positive integer
    beta_b : float
        Second parameter of B's distribution

    Returns
    -------
    float
        Probability in [0, 1]

    Raises
    ------
    UnsupportedShapeError
        If alpha_b is not a positive integer
    NumericInstabilityError
        If any term of the sum is not finite

    Notes
    -----
    - Each term is computed in log space and exponentiated separately
    - Cost is linear in alpha_b
    """
    shape = classify_shape(alpha_b)
    if isinstance(shape, FractionalShape):
        raise UnsupportedShapeError(
            f"Closed-form sum needs an integral alpha_b, got {shape.value}. "
            "Use method='numerical' for fractional shapes.",
            context={"alpha_b": shape.value},
        )

    n_terms = shape.terms
    if n_terms > LARGE_TERM_COUNT:
        logger.debug("h_sum evaluating %d terms (alpha_b=%s)", n_terms, alpha_b)

    i = np.arange(n_terms, dtype=np.float64)
    # Non-finite terms are reported below
    with np.errstate(over="ignore", invalid="ignore"):
        log_terms = (
            log_beta(alpha_a + i, beta_a + beta_b)
            - np.log(beta_b + i)
            - log_beta(1.0 + i, beta_b)
            - log_beta(alpha_a, beta_a)
        )
    if not np.all(np.isfinite(log_terms)):
        raise NumericInstabilityError(
            "Non-finite term in closed-form sum",
            context={"alpha_a": alpha_a, "beta_a": beta_a, "alpha_b": alpha_b, "beta_b": beta_b},
        )

    total = np.exp(log_terms).sum()
    return float(min(max(total, 0.0), 1.0))


def h_integral(alpha_a: float, beta_a: float, alpha_b: float, beta_b: float) -> float:
    """
    Numerical P(p_B > p_A) for arbitrary (possibly fractional) shapes.

    Integrates the joint density over {p_B > p_A}. The inner integral is the
    regularized incomplete beta function; substituting u = F_B(x) turns the
    outer integral into one over B's quantiles:

        P(p_B > p_A) = integral_0^1 F_A(F_B^-1(u)) du

    The integrand is bounded in [0, 1], so densities that pile up at 0 or 1
    (shapes below 1) leave no singularity at the endpoints. Above x = 1/2
    the integral runs in y = 1 - x instead, because quantiles within 1e-16 of
    1 round to 1.0 in floating point while the same distances from 0 do not.
    """
    mean_a = alpha_a / (alpha_a + beta_a)
    # Mass of B below (u_split) and above (v_split) x = 1/2
    u_split = float(special.betainc(alpha_b, beta_b, 0.5))
    v_split = float(special.betainc(beta_b, alpha_b, 0.5))

    def lower(u):
        # F_A(x) for x = F_B^-1(u) <= 1/2
        return special.betainc(alpha_a, beta_a, special.betaincinv(alpha_b, beta_b, u))

    def upper(v):
        # F_A(1 - y) for y = S_B^-1(v) <= 1/2, where S_B is B's survival function
        return 1.0 - special.betainc(beta_a, alpha_a, special.betaincinv(beta_b, alpha_b, v))

    value = 0.0
    if u_split > 0.0:
        # F_A jumps from 0 to 1 around A's mean; hint where that happens
        step = float(special.betainc(alpha_b, beta_b, mean_a))
        points = [step] if 0.0 < step < u_split else None
        part, _ = integrate.quad(lower, 0.0, u_split, points=points, limit=200, epsabs=1e-12)
        value += part
    if v_split > 0.0:
        step = float(special.betainc(beta_b, alpha_b, beta_a / (alpha_a + beta_a)))
        points = [step] if 0.0 < step < v_split else None
        part, _ = integrate.quad(upper, 0.0, v_split, points=points, limit=200, epsabs=1e-12)
        value += part
    return float(min(max(value, 0.0), 1.0))
