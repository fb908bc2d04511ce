"""
Bayesian A/B Decisions - Closed-Form Expected Loss and Stopping Rules
=====================================================================

Decide two-variant experiments from posterior beliefs instead of p-values,
and check by simulation that the expected-loss stopping rule keeps the
average cost of wrong decisions under its threshold.

Modules:
--------
- core: Conjugate distributions, moment matching, closed-form P(B > A) and
  expected loss, conjugate updates
- decision: Expected-loss stopping rule
- simulation: Sequential trial simulator and parallel experiment driver

Example Usage:
--------------
>>> from bayesian_ab import fit_beta, probability_b_greater_a, expected_loss
>>> from bayesian_ab.core.distributions import Beta
>>>
>>> prior = fit_beta(mean=0.01, variance=1.4e-6)
>>> a = Beta(alpha=120, beta=11880)
>>> b = Beta(alpha=140, beta=11860)
>>> print(f"P(B > A) = {probability_b_greater_a(a, b):.2%}")
>>> print(f"Expected loss of shipping B: {expected_loss('B', a, b):.2e}")

Version: 1.0.0
License: MIT
"""

import logging

__version__ = "1.0.0"
__license__ = "MIT"

from bayesian_ab.core import closed_form, conjugate, distributions, moments, special
from bayesian_ab.core.closed_form import expected_loss, probability_b_greater_a
from bayesian_ab.core.moments import fit_beta, fit_gamma, fit_normal_gamma
from bayesian_ab.simulation.driver import run_configurations
from bayesian_ab.simulation.sequential import run_trial

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "closed_form",
    "conjugate",
    "distributions",
    "moments",
    "special",
    "fit_beta",
    "fit_gamma",
    "fit_normal_gamma",
    "probability_b_greater_a",
    "expected_loss",
    "run_trial",
    "run_configurations",
]
