"""Strategy State Machine — IDLE → DAILY_DIRECTION_SET → HOURLY_ALIGNED → SIGNAL_ARMED.

State transitions:
  IDLE → DAILY_DIRECTION_SET: daily ADX gives a Call or Put bias
  DAILY_DIRECTION_SET → HOURLY_ALIGNED: hourly ADX strong and DI agrees with bias
  HOURLY_ALIGNED → DAILY_DIRECTION_SET: hourly alignment no longer holds
  HOURLY_ALIGNED → SIGNAL_ARMED: all entry filters passed
  SIGNAL_ARMED → IDLE: entry signal emitted
  ANY → IDLE: EOD reset or invalidation
"""

from __future__ import annotations

import logging
from typing import Callable

from fno_engine.core.errors import InvalidStrategyState
from fno_engine.core.types import StrategyState

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[StrategyState, StrategyState], None]

_TRANSITIONS: dict[StrategyState, frozenset[StrategyState]] = {
    StrategyState.IDLE: frozenset({StrategyState.DAILY_DIRECTION_SET}),
    StrategyState.DAILY_DIRECTION_SET: frozenset({
        StrategyState.HOURLY_ALIGNED,
        StrategyState.IDLE,
    }),
    StrategyState.HOURLY_ALIGNED: frozenset({
        StrategyState.SIGNAL_ARMED,
        StrategyState.DAILY_DIRECTION_SET,
        StrategyState.IDLE,
    }),
    StrategyState.SIGNAL_ARMED: frozenset({StrategyState.IDLE}),
}


class StrategyStateMachine:
    """Explicit transition table; illegal moves raise InvalidStrategyState."""

    def __init__(self) -> None:
        self._state = StrategyState.IDLE
        self._transition_callbacks: list[TransitionCallback] = []

    @property
    def state(self) -> StrategyState:
        return self._state

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Register callback for state transitions. Called with (old_state, new_state)."""
        self._transition_callbacks.append(callback)

    def can_transition(self, new_state: StrategyState) -> bool:
        return new_state in _TRANSITIONS[self._state]

    def transition_to(self, new_state: StrategyState) -> None:
        if new_state == self._state:
            return
        if not self.can_transition(new_state):
            raise InvalidStrategyState(
                f"Illegal strategy transition {self._state.name} → {new_state.name}",
                current=self._state.name,
                requested=new_state.name,
            )
        self._move(new_state)

    def reset(self) -> None:
        """Return to IDLE from any state."""
        if self._state != StrategyState.IDLE:
            self._move(StrategyState.IDLE)

    def _move(self, new_state: StrategyState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info("Strategy: %s → %s", old_state.name, new_state.name)
        for cb in self._transition_callbacks:
            cb(old_state, new_state)
