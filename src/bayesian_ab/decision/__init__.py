"""Stopping rules for sequential experiments."""

from bayesian_ab.decision import stopping

__all__ = ["stopping"]
