"""
Expected-Loss Stopping Rule
===========================

Decide after each round of data whether an experiment can stop.

Rule (checked in order):
1. loss_A < threshold and loss_A <= loss_B  -> stop, A wins
2. loss_B < threshold and loss_B <  loss_A  -> stop, B wins
3. round >= max_rounds                      -> stop, inconclusive
4. otherwise                                -> keep running

When both losses are under the threshold the smaller one wins; an exact tie
goes to A so repeated runs give the same answer.

Example Usage:
--------------
>>> from bayesian_ab.decision import stopping
>>>
>>> state = stopping.evaluate_stopping(
...     loss_a=2e-4, loss_b=5e-5, round_number=12, max_rounds=100, threshold=1e-4
... )
>>> print(state.value)
stopped_b
"""

from enum import Enum
from typing import Optional

from bayesian_ab.core.distributions import Variant


class StoppingState(str, Enum):
    """States of the stopping rule. All states except RUNNING are terminal."""

    RUNNING = 'running'
    STOPPED_A = 'stopped_a'
    STOPPED_B = 'stopped_b'
    STOPPED_INCONCLUSIVE = 'stopped_inconclusive'

    @property
    def is_terminal(self) -> bool:
        return self is not StoppingState.RUNNING


def _candidate(loss_a: float, loss_b: float, threshold: float) -> Optional[Variant]:
    if loss_a < threshold and loss_a <= loss_b:
        return Variant.A
    if loss_b < threshold and loss_b < loss_a:
        return Variant.B
    return None


def evaluate_stopping(
    loss_a: float,
    loss_b: float,
    round_number: int,
    max_rounds: int,
    threshold: float,
) -> StoppingState:
    """
    Instant-stop expected-loss rule for a single round.

    Parameters
    ----------
    loss_a, loss_b : float
        Current expected loss of choosing A and B
    round_number : int
        Rounds completed so far (1-based)
    max_rounds : int
        Round budget
    threshold : float
        Loss below which a variant may be declared winner

    Returns
    -------
    StoppingState
    """
    winner = _candidate(loss_a, loss_b, threshold)
    if winner is Variant.A:
        return StoppingState.STOPPED_A
    if winner is Variant.B:
        return StoppingState.STOPPED_B
    if round_number >= max_rounds:
        return StoppingState.STOPPED_INCONCLUSIVE
    return StoppingState.RUNNING


def winner_for(state: StoppingState) -> Optional[Variant]:
    """Variant declared by a terminal state, None otherwise."""
    if state is StoppingState.STOPPED_A:
        return Variant.A
    if state is StoppingState.STOPPED_B:
        return Variant.B
    return None


class StoppingPolicy:
    """
    Stateful stopping rule for one trial.

    Parameters
    ----------
    threshold : float
        Expected-loss threshold
    max_rounds : int
        Round budget
    consecutive_rounds : int, default=1
        Rounds in a row the same variant must satisfy its stopping condition
        before it is declared winner. 1 is the instant-stop rule.

    Example
    -------
    >>> policy = StoppingPolicy(threshold=1e-4, max_rounds=3, consecutive_rounds=2)
    >>> policy.step(5e-5, 1e-3, round_number=1).value
    'running'
    >>> policy.step(4e-5, 1e-3, round_number=2).value
    'stopped_a'
    """

    def __init__(self, threshold: float, max_rounds: int, consecutive_rounds: int = 1):
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if consecutive_rounds < 1:
            raise ValueError("consecutive_rounds must be at least 1")
        self.threshold = threshold
        self.max_rounds = max_rounds
        self.consecutive_rounds = consecutive_rounds
        self.state = StoppingState.RUNNING
        self._streak_variant: Optional[Variant] = None
        self._streak = 0

    def step(self, loss_a: float, loss_b: float, round_number: int) -> StoppingState:
        """Feed one round of losses and return the new state."""
        if self.state.is_terminal:
            return self.state

        if self.consecutive_rounds == 1:
            self.state = evaluate_stopping(
                loss_a, loss_b, round_number, self.max_rounds, self.threshold
            )
            return self.state

        candidate = _candidate(loss_a, loss_b, self.threshold)
        if candidate is not None and candidate is self._streak_variant:
            self._streak += 1
        else:
            self._streak_variant = candidate
            self._streak = 1 if candidate is not None else 0

        if self._streak >= self.consecutive_rounds:
            self.state = (
                StoppingState.STOPPED_A if candidate is Variant.A else StoppingState.STOPPED_B
            )
        elif round_number >= self.max_rounds:
            self.state = StoppingState.STOPPED_INCONCLUSIVE
        return self.state

    @property
    def winner(self) -> Optional[Variant]:
        return winner_for(self.state)
