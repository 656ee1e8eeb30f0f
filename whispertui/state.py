"""Daemon session state machine.

A pure state machine (no I/O) tracking whether the daemon is idle,
recording or transcribing.

    idle --start--> recording --stop--> transcribing --transcription_complete--> idle

``error`` is accepted in every state and always returns to ``idle``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from .errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class DaemonState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class EventType(str, Enum):
    START = "start"
    STOP = "stop"
    TRANSCRIPTION_COMPLETE = "transcription_complete"
    ERROR = "error"


@dataclass(frozen=True)
class DaemonEvent:
    type: EventType
    text: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class WindowContext:
    window_class: str
    window_title: str
    is_code_aware: bool

    def to_dict(self) -> dict:
        return {
            "windowClass": self.window_class,
            "windowTitle": self.window_title,
            "isCodeAware": self.is_code_aware,
        }


@dataclass
class StateContext:
    current_window: WindowContext | None = None
    last_error: str | None = None
    last_transcription: str | None = None

    def to_dict(self) -> dict:
        return {
            "currentWindow": self.current_window.to_dict() if self.current_window else None,
            "lastError": self.last_error,
            "lastTranscription": self.last_transcription,
        }


@dataclass(frozen=True)
class StateSnapshot:
    state: DaemonState
    context: StateContext = field(default_factory=StateContext)

    def to_dict(self) -> dict:
        return {"state": self.state.value, "context": self.context.to_dict()}


StateChangeListener = Callable[[DaemonState, DaemonState, DaemonEvent], None]

TRANSITIONS: dict[tuple[DaemonState, EventType], DaemonState] = {
    (DaemonState.IDLE, EventType.START): DaemonState.RECORDING,
    (DaemonState.IDLE, EventType.ERROR): DaemonState.IDLE,
    (DaemonState.RECORDING, EventType.STOP): DaemonState.TRANSCRIBING,
    (DaemonState.RECORDING, EventType.ERROR): DaemonState.IDLE,
    (DaemonState.TRANSCRIBING, EventType.TRANSCRIPTION_COMPLETE): DaemonState.IDLE,
    (DaemonState.TRANSCRIBING, EventType.ERROR): DaemonState.IDLE,
}


class StateMachine:
    """Session state for one daemon.

    Listeners registered with ``subscribe`` are called with
    ``(old_state, new_state, event)`` once per accepted transition, in order.
    """

    def __init__(self) -> None:
        self._state = DaemonState.IDLE
        self._context = StateContext()
        self._listeners: list[StateChangeListener] = []

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def context(self) -> StateContext:
        return replace(self._context)

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(state=self._state, context=self.context)

    def can_transition(self, event_type: EventType) -> bool:
        return (self._state, EventType(event_type)) in TRANSITIONS

    def send(self, event: DaemonEvent) -> DaemonState:
        """Apply an event to the session.

        Args:
            event: The event to process.

        Returns:
            The new state.

        Raises:
            InvalidTransitionError: If the event is not allowed in the current
                state. State and context are left untouched.
        """
        event_type = EventType(event.type)
        next_state = TRANSITIONS.get((self._state, event_type))
        if next_state is None:
            raise InvalidTransitionError(self._state.value, event_type.value)

        if event_type == EventType.ERROR:
            self._context.last_error = event.message
        elif event_type == EventType.TRANSCRIPTION_COMPLETE:
            self._context.last_transcription = event.text
            self._context.last_error = None
        elif event_type == EventType.START:
            self._context.last_error = None

        old_state = self._state
        self._state = next_state

        for listener in list(self._listeners):
            try:
                listener(old_state, next_state, event)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

        return next_state

    def set_window_context(self, window: WindowContext | None) -> None:
        self._context.current_window = window

    def subscribe(self, listener: StateChangeListener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            A callable that removes the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self) -> None:
        """Force the initial state with an empty context (daemon startup only)."""
        self._state = DaemonState.IDLE
        self._context = StateContext()
