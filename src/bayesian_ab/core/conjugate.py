"""
Conjugate Updates
=================

Closed-form posterior updates. Each function returns a new distribution and
leaves the prior untouched.

- Beta-Bernoulli: Beta(alpha + successes, beta + failures)
- Normal-Gamma-Gaussian: standard four-parameter update from a batch's
  sample mean and variance
- Gamma-Poisson: Gamma(alpha + total_count, beta + exposure)

Example Usage:
--------------
>>> from bayesian_ab.core import conjugate
>>> from bayesian_ab.core.distributions import Beta
>>>
>>> posterior = conjugate.update_beta(Beta(1, 1), successes=50, trials=500)
>>> print(posterior)
Beta(alpha=51, beta=451)
"""

import math

from bayesian_ab.core.distributions import Beta, Gamma, NormalGamma
from bayesian_ab.exceptions import InvalidObservationError


def update_beta(prior: Beta, successes: int, trials: int) -> Beta:
    """
    Beta-Bernoulli posterior after ``successes`` out of ``trials``.

    Raises
    ------
    InvalidObservationError
        If successes < 0, trials < 0 or successes > trials
    """
    if successes < 0:
        raise InvalidObservationError(
            "Number of successes must be non-negative",
            context={"successes": successes},
        )
    if trials < 0:
        raise InvalidObservationError(
            "Number of trials must be non-negative",
            context={"trials": trials},
        )
    if successes > trials:
        raise InvalidObservationError(
            "Number of successes cannot exceed trials",
            context={"successes": successes, "trials": trials},
        )
    return Beta(alpha=prior.alpha + successes, beta=prior.beta + (trials - successes))


def update_normal_gamma(
    prior: NormalGamma,
    sample_mean: float,
    sample_var: float,
    n: int,
) -> NormalGamma:
    """
    Normal-Gamma posterior after a batch of ``n`` Gaussian observations.

    Parameters
    ----------
    prior : NormalGamma
        Current belief about the mean and precision
    sample_mean : float
        Mean of the batch
    sample_var : float
        Unbiased (ddof=1) variance of the batch; ignored when n == 1
    n : int
        Batch size, at least 1

    Returns
    -------
    NormalGamma
        mu_n    = (lam * mu0 + n * xbar) / (lam + n)
        lam_n   = lam + n
        alpha_n = alpha + n / 2
        beta_n  = beta + SS / 2 + lam * n * (xbar - mu0)^2 / (2 * (lam + n))

        where SS = (n - 1) * sample_var is the within-batch sum of squares.
    """
    if n < 1:
        raise InvalidObservationError("Batch size must be at least 1", context={"n": n})
    if not math.isfinite(sample_mean) or not math.isfinite(sample_var):
        raise InvalidObservationError(
            "Sample mean and variance must be finite",
            context={"sample_mean": sample_mean, "sample_var": sample_var},
        )
    if sample_var < 0:
        raise InvalidObservationError(
            "Sample variance must be non-negative",
            context={"sample_var": sample_var},
        )

    sum_squares = (n - 1) * sample_var if n > 1 else 0.0
    lam_n = prior.lam + n
    mu_n = (prior.lam * prior.mu0 + n * sample_mean) / lam_n
    alpha_n = prior.alpha + n / 2
    beta_n = (
        prior.beta
        + 0.5 * sum_squares
        + prior.lam * n * (sample_mean - prior.mu0) ** 2 / (2 * lam_n)
    )
    return NormalGamma(mu0=mu_n, lam=lam_n, alpha=alpha_n, beta=beta_n)


def update_gamma(prior: Gamma, total_count: int, exposure: float) -> Gamma:
    """Gamma-Poisson posterior after ``total_count`` events over ``exposure`` units."""
    if total_count < 0 or exposure < 0:
        raise InvalidObservationError(
            "Event count and exposure must be non-negative",
            context={"total_count": total_count, "exposure": exposure},
        )
    return Gamma(alpha=prior.alpha + total_count, beta=prior.beta + exposure)


def update(prior, *args, **kwargs):
    """
    Dispatch to the conjugate update matching the prior's family.

    Example
    -------
    >>> update(Beta(1, 1), successes=3, trials=10)
    Beta(alpha=4, beta=8)
    """
    if isinstance(prior, Beta):
        return update_beta(prior, *args, **kwargs)
    elif isinstance(prior, NormalGamma):
        return update_normal_gamma(prior, *args, **kwargs)
    elif isinstance(prior, Gamma):
        return update_gamma(prior, *args, **kwargs)
    else:
        raise TypeError(f"No conjugate update for {type(prior).__name__}")
