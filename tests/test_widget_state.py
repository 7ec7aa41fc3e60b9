"""
Tests for the widget state machine.
"""
import pytest

from widget.state import (
    ALLOWED_TRANSITIONS,
    IllegalTransitionError,
    WidgetState,
    WidgetStateMachine,
)


def test_initial_state():
    assert WidgetStateMachine().state is WidgetState.DISCONNECTED


def test_happy_path():
    machine = WidgetStateMachine()

    assert machine.transition_to(WidgetState.CONNECTING) is WidgetState.DISCONNECTED
    assert machine.transition_to(WidgetState.IDLE) is WidgetState.CONNECTING
    machine.transition_to(WidgetState.RECORDING)
    machine.transition_to(WidgetState.IDLE)
    machine.transition_to(WidgetState.THINKING)
    machine.transition_to(WidgetState.IDLE)
    assert machine.transition_to(WidgetState.DISCONNECTED) is WidgetState.IDLE


@pytest.mark.parametrize("state", [s for s in WidgetState if s is not WidgetState.DISCONNECTED])
def test_any_state_may_disconnect(state):
    machine = WidgetStateMachine(initial=state)
    machine.transition_to(WidgetState.DISCONNECTED)
    assert machine.state is WidgetState.DISCONNECTED


@pytest.mark.parametrize(
    "from_state, to_state",
    [
        (WidgetState.DISCONNECTED, WidgetState.IDLE),
        (WidgetState.DISCONNECTED, WidgetState.RECORDING),
        (WidgetState.CONNECTING, WidgetState.RECORDING),
        (WidgetState.RECORDING, WidgetState.THINKING),
        (WidgetState.THINKING, WidgetState.RECORDING),
        (WidgetState.RECORDING, WidgetState.RECORDING),
    ],
)
def test_illegal_transitions(from_state, to_state):
    machine = WidgetStateMachine(initial=from_state)

    with pytest.raises(IllegalTransitionError) as excinfo:
        machine.transition_to(to_state)

    assert machine.state is from_state
    assert excinfo.value.from_state is from_state
    assert excinfo.value.to_state is to_state


def test_recording_and_thinking_are_exclusive():
    assert WidgetState.THINKING not in ALLOWED_TRANSITIONS[WidgetState.RECORDING]
    assert WidgetState.RECORDING not in ALLOWED_TRANSITIONS[WidgetState.THINKING]


def test_is_connected():
    assert not WidgetState.DISCONNECTED.is_connected
    assert not WidgetState.CONNECTING.is_connected
    assert WidgetState.IDLE.is_connected
    assert WidgetState.RECORDING.is_connected
    assert WidgetState.THINKING.is_connected


def test_change_listener():
    machine = WidgetStateMachine()
    changes = []
    machine.on_change(lambda old, new: changes.append((old, new)))

    machine.transition_to(WidgetState.CONNECTING)

    assert changes == [(WidgetState.DISCONNECTED, WidgetState.CONNECTING)]
