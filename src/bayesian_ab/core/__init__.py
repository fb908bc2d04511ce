"""Conjugate distributions and closed-form Bayesian comparisons."""

from bayesian_ab.core import closed_form, conjugate, distributions, moments, special

__all__ = ["closed_form", "conjugate", "distributions", "moments", "special"]
