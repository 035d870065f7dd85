"""
Session module: Client-side identity session lifecycle.

Provides:
- SessionManager: Facade owning the single live session
- SessionStateMachine: Lifecycle FSM (LOGGED_OUT ↔ AUTHENTICATED)
- SessionMonitor: Background expiry watch and proactive refresh
- RegistrationSaga: Identity + profile creation with compensation
"""

from authsession.session.state_machine import (
    LifecycleState,
    SessionStateMachine,
    StateTransitionEvent,
    Trigger,
)
from authsession.session.monitor import MonitorAction, SessionMonitor
from authsession.session.registration import (
    RegistrationOutcome,
    RegistrationSaga,
    SagaCoordinator,
    SagaState,
    SagaStep,
)
from authsession.session.validation import InputValidator
from authsession.session.manager import (
    ChangeKind,
    SessionChange,
    SessionManager,
    SessionSnapshot,
)

__all__ = [
    # State Machine
    "LifecycleState",
    "SessionStateMachine",
    "StateTransitionEvent",
    "Trigger",
    # Monitor
    "MonitorAction",
    "SessionMonitor",
    # Registration
    "RegistrationOutcome",
    "RegistrationSaga",
    "SagaCoordinator",
    "SagaState",
    "SagaStep",
    # Validation
    "InputValidator",
    # Manager
    "ChangeKind",
    "SessionChange",
    "SessionManager",
    "SessionSnapshot",
]
