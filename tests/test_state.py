"""Unit tests for the session state machine."""
import pytest

from whispertui.errors import InvalidTransitionError
from whispertui.state import (
    DaemonEvent,
    DaemonState,
    EventType,
    StateMachine,
    WindowContext,
)

START = DaemonEvent(EventType.START)
STOP = DaemonEvent(EventType.STOP)


def complete(text="hello"):
    return DaemonEvent(EventType.TRANSCRIPTION_COMPLETE, text=text)


def error(message="boom"):
    return DaemonEvent(EventType.ERROR, message=message)


def machine_in(state):
    machine = StateMachine()
    if state in (DaemonState.RECORDING, DaemonState.TRANSCRIBING):
        machine.send(START)
    if state == DaemonState.TRANSCRIBING:
        machine.send(STOP)
    return machine


class TestTransitions:
    """Tests for the transition table."""

    @pytest.mark.unit
    def test_initial_state_is_idle(self):
        """A new machine starts idle with an empty context."""
        machine = StateMachine()

        assert machine.state == DaemonState.IDLE
        assert machine.snapshot().to_dict() == {
            "state": "idle",
            "context": {"currentWindow": None, "lastError": None, "lastTranscription": None},
        }

    @pytest.mark.unit
    def test_full_cycle(self):
        """idle -> recording -> transcribing -> idle stores the transcription."""
        machine = StateMachine()

        assert machine.send(START) == DaemonState.RECORDING
        assert machine.send(STOP) == DaemonState.TRANSCRIBING
        assert machine.send(complete("hello world")) == DaemonState.IDLE

        assert machine.context.last_transcription == "hello world"
        assert machine.context.last_error is None

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "state,event",
        [
            (DaemonState.IDLE, STOP),
            (DaemonState.IDLE, complete()),
            (DaemonState.RECORDING, START),
            (DaemonState.RECORDING, complete()),
            (DaemonState.TRANSCRIBING, START),
            (DaemonState.TRANSCRIBING, STOP),
        ],
    )
    def test_rejected_events_leave_machine_untouched(self, state, event):
        """Events outside the table raise and change nothing."""
        machine = machine_in(state)
        before = machine.snapshot()

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.send(event)

        assert machine.snapshot() == before
        assert exc_info.value.current_state == state.value
        assert exc_info.value.event == event.type.value

    @pytest.mark.unit
    def test_rejection_message(self):
        """The rejection message names the event and the state."""
        machine = StateMachine()

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.send(STOP)

        assert str(exc_info.value) == "Invalid transition: cannot process 'stop' in state 'idle'"

    @pytest.mark.unit
    @pytest.mark.parametrize("state", list(DaemonState))
    def test_error_from_any_state_returns_to_idle(self, state):
        """error is accepted everywhere and records the message."""
        machine = machine_in(state)

        assert machine.send(error("mic unplugged")) == DaemonState.IDLE
        assert machine.context.last_error == "mic unplugged"

    @pytest.mark.unit
    def test_start_clears_last_error(self):
        machine = StateMachine()
        machine.send(error())

        machine.send(START)

        assert machine.context.last_error is None

    @pytest.mark.unit
    def test_can_transition_does_not_mutate(self):
        machine = StateMachine()

        assert machine.can_transition(EventType.START)
        assert not machine.can_transition(EventType.STOP)
        assert machine.can_transition("error")
        assert machine.state == DaemonState.IDLE


class TestListeners:
    """Tests for subscribe/unsubscribe."""

    @pytest.mark.unit
    def test_listener_called_once_per_transition_in_order(self):
        machine = StateMachine()
        calls = []
        machine.subscribe(lambda old, new, event: calls.append((old, new, event.type)))

        machine.send(START)
        machine.send(STOP)
        machine.send(complete())

        assert calls == [
            (DaemonState.IDLE, DaemonState.RECORDING, EventType.START),
            (DaemonState.RECORDING, DaemonState.TRANSCRIBING, EventType.STOP),
            (DaemonState.TRANSCRIBING, DaemonState.IDLE, EventType.TRANSCRIPTION_COMPLETE),
        ]

    @pytest.mark.unit
    def test_listener_sees_updated_state(self):
        machine = StateMachine()
        seen = []
        machine.subscribe(lambda old, new, event: seen.append(machine.state))

        machine.send(START)

        assert seen == [DaemonState.RECORDING]

    @pytest.mark.unit
    def test_rejected_event_not_notified(self):
        machine = StateMachine()
        calls = []
        machine.subscribe(lambda *args: calls.append(args))

        with pytest.raises(InvalidTransitionError):
            machine.send(STOP)

        assert calls == []

    @pytest.mark.unit
    def test_unsubscribe_is_idempotent(self):
        machine = StateMachine()
        calls = []
        unsubscribe = machine.subscribe(lambda *args: calls.append(args))

        unsubscribe()
        unsubscribe()
        machine.send(START)

        assert calls == []

    @pytest.mark.unit
    def test_failing_listener_does_not_block_others(self):
        machine = StateMachine()
        calls = []

        def broken(old, new, event):
            raise RuntimeError("listener bug")

        machine.subscribe(broken)
        machine.subscribe(lambda *args: calls.append(args))

        assert machine.send(START) == DaemonState.RECORDING
        assert len(calls) == 1


class TestContext:
    """Tests for the session context."""

    @pytest.mark.unit
    def test_window_context_wire_format(self):
        machine = StateMachine()
        machine.set_window_context(WindowContext("kitty", "nvim main.py", True))

        assert machine.snapshot().to_dict()["context"]["currentWindow"] == {
            "windowClass": "kitty",
            "windowTitle": "nvim main.py",
            "isCodeAware": True,
        }

    @pytest.mark.unit
    def test_window_context_survives_transitions(self):
        machine = StateMachine()
        window = WindowContext("firefox", "Docs", False)
        machine.set_window_context(window)

        machine.send(START)
        machine.send(error())

        assert machine.context.current_window == window

    @pytest.mark.unit
    def test_snapshot_is_a_copy(self):
        machine = StateMachine()
        snapshot = machine.snapshot()

        snapshot.context.last_error = "tampered"

        assert machine.context.last_error is None

    @pytest.mark.unit
    def test_reset(self):
        machine = machine_in(DaemonState.TRANSCRIBING)
        machine.set_window_context(WindowContext("foot", "sh", True))

        machine.reset()

        assert machine.state == DaemonState.IDLE
        assert machine.context.current_window is None
