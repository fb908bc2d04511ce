"""
Moment Matching
===============

Build prior distributions from a desired mean and variance instead of raw
pseudo-counts. Useful when domain knowledge reads like "conversion is about
1%, give or take 0.1%".

Example Usage:
--------------
>>> from bayesian_ab.core import moments
>>>
>>> prior = moments.fit_beta(mean=0.01, variance=0.001**2)
>>> print(f"Beta({prior.alpha:.1f}, {prior.beta:.1f})")
Beta(99.0, 9800.0)
"""

from bayesian_ab.core.distributions import Beta, Gamma, NormalGamma
from bayesian_ab.exceptions import InvalidMomentError


def fit_beta(mean: float, variance: float) -> Beta:
    """
    Beta distribution with the given mean and variance.

    Parameters
    ----------
    mean : float
        Target mean, strictly between 0 and 1
    variance : float
        Target variance, 0 < variance < mean * (1 - mean)

    Returns
    -------
    Beta
        Distribution whose first two moments match the targets

    Formula
    -------
    alpha = ((1 - mean) * mean^2 - mean * variance) / variance
    beta  = alpha * (1 - mean) / mean

    Notes
    -----
    - A Beta variance is always below mean * (1 - mean); larger targets
      have no solution and raise InvalidMomentError
    """
    if not 0 < mean < 1:
        raise InvalidMomentError(
            f"Beta mean must be between 0 and 1, got {mean}",
            context={"mean": mean},
        )
    if variance <= 0:
        raise InvalidMomentError(
            f"variance must be positive, got {variance}",
            context={"variance": variance},
        )
    if variance >= mean * (1 - mean):
        raise InvalidMomentError(
            f"No Beta distribution has variance {variance} at mean {mean} "
            f"(must be below {mean * (1 - mean)})",
            context={"mean": mean, "variance": variance},
        )

    alpha = ((1 - mean) * mean**2 - mean * variance) / variance
    beta = alpha * (1 - mean) / mean
    return Beta(alpha=alpha, beta=beta)


def fit_gamma(mean: float, variance: float) -> Gamma:
    """
    Gamma distribution (rate parameterization) with the given moments.

    beta = mean / variance, alpha = beta * mean
    """
    if mean <= 0 or variance <= 0:
        raise InvalidMomentError(
            f"Gamma mean and variance must be positive, got mean={mean}, variance={variance}",
            context={"mean": mean, "variance": variance},
        )
    beta = mean / variance
    alpha = beta * mean
    return Gamma(alpha=alpha, beta=beta)


def fit_normal_gamma(
    mean0: float,
    precision_mean: float,
    var_of_mean: float,
    var_of_precision: float,
) -> NormalGamma:
    """
    Normal-Gamma prior from targets on the mean and the precision.

    Parameters
    ----------
    mean0 : float
        Target mean of the Gaussian mean
    precision_mean : float
        Target mean of the precision (1 / variance of a single observation)
    var_of_mean : float
        Target variance of the Gaussian mean
    var_of_precision : float
        Target variance of the precision

    Returns
    -------
    NormalGamma

    Formula
    -------
    beta   = precision_mean / var_of_precision
    alpha  = beta * precision_mean
    lambda = beta / (var_of_mean * (alpha - 1))

    Notes
    -----
    - The marginal variance of the mean only exists for alpha > 1, so targets
      giving alpha <= 1 raise InvalidMomentError
    """
    if precision_mean <= 0 or var_of_mean <= 0 or var_of_precision <= 0:
        raise InvalidMomentError(
            "precision_mean, var_of_mean and var_of_precision must be positive",
            context={
                "precision_mean": precision_mean,
                "var_of_mean": var_of_mean,
                "var_of_precision": var_of_precision,
            },
        )

    beta = precision_mean / var_of_precision
    alpha = beta * precision_mean
    if alpha <= 1:
        raise InvalidMomentError(
            f"Implied alpha={alpha} <= 1: variance of the mean would be undefined. "
            "Lower var_of_precision or raise precision_mean.",
            context={"alpha": alpha},
        )
    lam = beta / (var_of_mean * (alpha - 1))
    return NormalGamma(mu0=mean0, lam=lam, alpha=alpha, beta=beta)
