"""
Widget session state machine.

Disconnected -> Connecting -> Connected{Idle, Recording, Thinking}

One enumerated state replaces separate recording / thinking flags, so
combinations such as "recording while thinking" cannot be represented.
"""
from enum import Enum
from typing import Callable, Dict, FrozenSet, List


class WidgetState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"
    RECORDING = "recording"
    THINKING = "thinking"

    @property
    def is_connected(self) -> bool:
        return self in (WidgetState.IDLE, WidgetState.RECORDING, WidgetState.THINKING)


ALLOWED_TRANSITIONS: Dict[WidgetState, FrozenSet[WidgetState]] = {
    WidgetState.DISCONNECTED: frozenset({WidgetState.CONNECTING}),
    WidgetState.CONNECTING: frozenset({WidgetState.IDLE, WidgetState.DISCONNECTED}),
    WidgetState.IDLE: frozenset({WidgetState.RECORDING, WidgetState.THINKING, WidgetState.DISCONNECTED}),
    WidgetState.RECORDING: frozenset({WidgetState.IDLE, WidgetState.DISCONNECTED}),
    WidgetState.THINKING: frozenset({WidgetState.IDLE, WidgetState.DISCONNECTED}),
}


class IllegalTransitionError(RuntimeError):
    """Raised for a transition missing from ALLOWED_TRANSITIONS."""

    def __init__(self, from_state: WidgetState, to_state: WidgetState):
        super().__init__(f"Illegal widget transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class WidgetStateMachine:
    """Holds the current WidgetState and enforces the transition table."""

    def __init__(self, initial: WidgetState = WidgetState.DISCONNECTED):
        self._state = initial
        self._listeners: List[Callable[[WidgetState, WidgetState], None]] = []

    @property
    def state(self) -> WidgetState:
        return self._state

    def can_transition(self, new_state: WidgetState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self._state]

    def transition_to(self, new_state: WidgetState) -> WidgetState:
        """
        Move to new_state. Returns the previous state.
        """
        if not self.can_transition(new_state):
            raise IllegalTransitionError(self._state, new_state)
        old_state = self._state
        self._state = new_state
        for listener in list(self._listeners):
            listener(old_state, new_state)
        return old_state

    def on_change(self, listener: Callable[[WidgetState, WidgetState], None]) -> None:
        """Register listener(old_state, new_state)."""
        self._listeners.append(listener)
