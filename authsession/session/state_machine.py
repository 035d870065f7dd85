"""
Session Lifecycle State Machine

States:
    LOGGED_OUT     → No identity cached (resting state)
    AUTHENTICATING → Credential exchange / registration / restore in flight
    AUTHENTICATED  → Identity cached, session live (resting state)
    REFRESHING     → Proactive session refresh in flight

Transitions:
    LOGGED_OUT     → AUTHENTICATING : LOGIN_REQUESTED, REGISTER_REQUESTED, RESTORE_REQUESTED
    AUTHENTICATING → AUTHENTICATED  : AUTH_SUCCEEDED
    AUTHENTICATING → LOGGED_OUT     : AUTH_FAILED
    AUTHENTICATED  → REFRESHING     : REFRESH_STARTED
    REFRESHING     → AUTHENTICATED  : REFRESH_SUCCEEDED, REFRESH_ABANDONED
    REFRESHING     → LOGGED_OUT     : REFRESH_FAILED
    any but LOGGED_OUT → LOGGED_OUT : LOGOUT, SESSION_EXPIRED

Design:
    - Closed transition table; unknown (state, trigger) pairs are rejected
    - Version counter increments on every applied transition
    - Listener failures are logged and never abort a transition
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

from authsession.core.types import Result, Ok, Err, Timestamp

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    """
    Session lifecycle states.

    Exactly one is current at any time. Only LOGGED_OUT and AUTHENTICATED
    are resting states; the others last one operation at most.
    """
    LOGGED_OUT = auto()
    AUTHENTICATING = auto()
    AUTHENTICATED = auto()
    REFRESHING = auto()

    @property
    def is_stable(self) -> bool:
        return self in (LifecycleState.LOGGED_OUT, LifecycleState.AUTHENTICATED)

    @property
    def is_logged_in(self) -> bool:
        """Identity is cached (a refresh does not drop the session)."""
        return self in (LifecycleState.AUTHENTICATED, LifecycleState.REFRESHING)


class Trigger(str, Enum):
    """Named events that drive transitions."""
    LOGIN_REQUESTED = "LOGIN_REQUESTED"
    REGISTER_REQUESTED = "REGISTER_REQUESTED"
    RESTORE_REQUESTED = "RESTORE_REQUESTED"
    AUTH_SUCCEEDED = "AUTH_SUCCEEDED"
    AUTH_FAILED = "AUTH_FAILED"
    REFRESH_STARTED = "REFRESH_STARTED"
    REFRESH_SUCCEEDED = "REFRESH_SUCCEEDED"
    REFRESH_FAILED = "REFRESH_FAILED"
    REFRESH_ABANDONED = "REFRESH_ABANDONED"  # refresh cancelled, expiry unchanged
    LOGOUT = "LOGOUT"
    SESSION_EXPIRED = "SESSION_EXPIRED"


@dataclass(frozen=True, slots=True)
class Transition:
    """A valid (from, trigger) → to edge."""
    from_state: LifecycleState
    to_state: LifecycleState
    trigger: Trigger


_S = LifecycleState

VALID_TRANSITIONS: frozenset[Transition] = frozenset({
    # LOGGED_OUT transitions
    Transition(_S.LOGGED_OUT, _S.AUTHENTICATING, Trigger.LOGIN_REQUESTED),
    Transition(_S.LOGGED_OUT, _S.AUTHENTICATING, Trigger.REGISTER_REQUESTED),
    Transition(_S.LOGGED_OUT, _S.AUTHENTICATING, Trigger.RESTORE_REQUESTED),

    # AUTHENTICATING transitions
    Transition(_S.AUTHENTICATING, _S.AUTHENTICATED, Trigger.AUTH_SUCCEEDED),
    Transition(_S.AUTHENTICATING, _S.LOGGED_OUT, Trigger.AUTH_FAILED),

    # AUTHENTICATED / REFRESHING transitions
    Transition(_S.AUTHENTICATED, _S.REFRESHING, Trigger.REFRESH_STARTED),
    Transition(_S.REFRESHING, _S.AUTHENTICATED, Trigger.REFRESH_SUCCEEDED),
    Transition(_S.REFRESHING, _S.LOGGED_OUT, Trigger.REFRESH_FAILED),
    Transition(_S.REFRESHING, _S.AUTHENTICATED, Trigger.REFRESH_ABANDONED),

    # Forced logout from any live state
    *(
        Transition(state, _S.LOGGED_OUT, trigger)
        for state in (_S.AUTHENTICATING, _S.AUTHENTICATED, _S.REFRESHING)
        for trigger in (Trigger.LOGOUT, Trigger.SESSION_EXPIRED)
    ),
})

_TRANSITION_INDEX: dict[tuple[LifecycleState, Trigger], Transition] = {
    (t.from_state, t.trigger): t for t in VALID_TRANSITIONS
}


@dataclass(frozen=True, slots=True)
class StateTransitionEvent:
    """Event emitted on state transition."""
    from_state: LifecycleState
    to_state: LifecycleState
    trigger: Trigger
    version: int
    timestamp: Timestamp


class SessionStateMachine:
    """
    Finite state machine for the session lifecycle.

    Usage:
        fsm = SessionStateMachine()
        result = fsm.transition(Trigger.LOGIN_REQUESTED)
        if result.is_err():
            ...

    Not internally synchronized; the owning SessionManager is the only
    writer.
    """

    __slots__ = ("_state", "_version", "_listeners")

    def __init__(self, initial: LifecycleState = LifecycleState.LOGGED_OUT) -> None:
        self._state = initial
        self._version = 0
        self._listeners: list[Callable[[StateTransitionEvent], None]] = []

    def add_listener(self, listener: Callable[[StateTransitionEvent], None]) -> None:
        self._listeners.append(listener)

    def transition(self, trigger: Trigger) -> Result[StateTransitionEvent, str]:
        """
        Attempt state transition.

        Returns:
            Ok(event) on successful transition
            Err(message) when the trigger is not valid from the current state
        """
        edge = _TRANSITION_INDEX.get((self._state, trigger))
        if edge is None:
            return Err(
                f"No valid transition from {self._state.name} "
                f"with trigger '{trigger.value}'"
            )

        old_state = self._state
        self._state = edge.to_state
        self._version += 1

        event = StateTransitionEvent(
            from_state=old_state,
            to_state=edge.to_state,
            trigger=trigger,
            version=self._version,
            timestamp=Timestamp.now(),
        )
        logger.debug(f"Session {old_state.name} -> {edge.to_state.name} ({trigger.value})")

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("State transition listener failed")

        return Ok(event)

    def can_transition(self, trigger: Trigger) -> bool:
        return (self._state, trigger) in _TRANSITION_INDEX

    def available_triggers(self) -> list[Trigger]:
        return [t for (state, t) in _TRANSITION_INDEX if state == self._state]

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def version(self) -> int:
        return self._version

