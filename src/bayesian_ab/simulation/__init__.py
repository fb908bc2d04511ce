"""Simulation of sequential experiments under the expected-loss stopping rule."""

from bayesian_ab.simulation import config, driver, sequential

__all__ = ["config", "driver", "sequential"]
