from .models import (
    ConnectionState,
    ConnectionStatus,
    ErrorCategory,
    InvalidIdentityError,
    InvalidTransitionError,
    OnboardingError,
    OnboardingInProgressError,
    OnboardingMode,
    SessionError,
    SessionNotFoundError,
    SessionSnapshot,
    SettlePolicy,
    StateTransition,
    TransitionTrigger,
    validate_identity,
)
from .state_machine import OnboardingStateMachine
from .store import FileStorage, KeyValueStorage, MemoryStorage, SessionStore, get_session_store

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "ErrorCategory",
    "InvalidIdentityError",
    "InvalidTransitionError",
    "OnboardingError",
    "OnboardingInProgressError",
    "OnboardingMode",
    "SessionError",
    "SessionNotFoundError",
    "SessionSnapshot",
    "SettlePolicy",
    "StateTransition",
    "TransitionTrigger",
    "validate_identity",
    "OnboardingStateMachine",
    "FileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "SessionStore",
    "get_session_store",
]
