"""
Exceptions and Warnings
=======================

Error hierarchy for the Bayesian A/B engine. Every error raised by the
package derives from ``BayesianABError`` so the experiment driver can tell a
failed trial apart from a programming error.

Input-validation errors also subclass ``ValueError``, so callers that only
catch ``ValueError`` keep working.
"""

from typing import Any, Dict, Optional


class BayesianABError(Exception):
    """Base exception for all package errors.

    Attributes
    ----------
    message : str
        Human-readable error message
    context : dict
        Values that triggered the error
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidParameterError(BayesianABError, ValueError):
    """Distribution parameters violate alpha, beta, lambda > 0."""


class InvalidMomentError(BayesianABError, ValueError):
    """No distribution of the target family has the requested moments."""


class InvalidObservationError(BayesianABError, ValueError):
    """Observed data is inconsistent (e.g. more successes than trials)."""


class UnsupportedShapeError(BayesianABError, ValueError):
    """Closed-form sum requested with a non-integral shape parameter.

    The caller must switch to ``method='numerical'`` explicitly.
    """


class InvalidConfigurationError(BayesianABError, ValueError):
    """Simulation configuration cannot be run."""


class NumericInstabilityError(BayesianABError, ArithmeticError):
    """A closed-form term evaluated to a non-finite value."""


class NumericInstabilityWarning(RuntimeWarning):
    """A computed expected loss was negative beyond tolerance and was clamped."""
