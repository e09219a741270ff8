"""
Onboarding Session Models

Connection states, the durable session snapshot, the observable connection
status and the errors raised by the session layer.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pinwallet.config import settings
from pinwallet.providers.custody import CredentialPair, WalletRecord


MIN_IDENTITY_LENGTH = 5

IDENTITY_TOO_SHORT = f"User ID must be at least {MIN_IDENTITY_LENGTH} characters"
USER_NOT_FOUND = "User not found. Please use 'Create Wallet' if this is your first time."
INVALID_USER = "Invalid user ID or API parameters"
TOKEN_TIMEOUT = "Timed out while requesting a user token"
WALLET_PENDING = "Wallet creation pending. Please try again."
SESSION_EXPIRED = "Session expired. Please connect again."
NOTHING_TO_RETRY = "Nothing to retry. Please connect again."


class ConnectionState(str, Enum):
    """Where the onboarding sequence currently is."""

    DISCONNECTED = "disconnected"
    CREATING_IDENTITY = "creating_identity"
    ISSUING_CREDENTIALS = "issuing_credentials"
    INITIALIZING_ACCOUNT = "initializing_account"
    AWAITING_SIGNATURE = "awaiting_signature"
    CONNECTED = "connected"


class OnboardingMode(str, Enum):
    NEW = "new"              # create the identity first
    RETURNING = "returning"  # identity already exists remotely


class TransitionTrigger(str, Enum):
    AUTOMATIC = "automatic"
    USER_ACTION = "user_action"
    ERROR = "error"
    RESTORE = "restore"


class ErrorCategory(str, Enum):
    """Categories of onboarding errors reported on the status."""

    VALIDATION = "validation"
    CONFLICT = "conflict"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    PROVIDER = "provider"
    SIGNING = "signing"
    PENDING = "pending"
    UNKNOWN = "unknown"


STATUS_TEXT: Dict[ConnectionState, str] = {
    ConnectionState.DISCONNECTED: "Connect Wallet",
    ConnectionState.CREATING_IDENTITY: "Creating user...",
    ConnectionState.ISSUING_CREDENTIALS: "Getting token...",
    ConnectionState.INITIALIZING_ACCOUNT: "Initializing...",
    ConnectionState.AWAITING_SIGNATURE: "Creating wallet...",
    ConnectionState.CONNECTED: "Connected",
}


class OnboardingError(Exception):
    """Base exception for onboarding errors."""
    pass


class InvalidIdentityError(OnboardingError):
    """Identity rejected before any network call."""
    pass


class InvalidTransitionError(OnboardingError):
    """Raised when attempting an invalid state transition."""

    def __init__(self, from_state: ConnectionState, to_state: ConnectionState, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message or f"Invalid transition from {from_state.value} to {to_state.value}"
        )


class OnboardingInProgressError(InvalidTransitionError):
    """A second onboarding run was requested while one is active."""
    pass


class SessionError(Exception):
    """Base exception for persisted session errors."""
    pass


class SessionNotFoundError(SessionError):
    """No complete session snapshot is persisted."""
    pass


def validate_identity(raw: Optional[str]) -> str:
    """
    Validate a user-chosen identity.

    The identity is opaque and sent to the custody service exactly as typed;
    only its length is checked, and an all-whitespace value is rejected.
    """
    identity = raw or ""
    if len(identity) < MIN_IDENTITY_LENGTH or not identity.strip():
        raise InvalidIdentityError(IDENTITY_TOO_SHORT)
    return identity


@dataclass
class SessionSnapshot:
    """The durable (identity, credentials, wallets) tuple."""

    identity: str
    credentials: CredentialPair
    wallets: List[WalletRecord] = field(default_factory=list)

    @property
    def primary_wallet(self) -> Optional[WalletRecord]:
        return self.wallets[0] if self.wallets else None

    @property
    def is_complete(self) -> bool:
        return bool(
            self.identity
            and self.credentials.session_token
            and self.credentials.encryption_key
            and self.wallets
        )


@dataclass(frozen=True)
class SettlePolicy:
    """
    Wallet lookups after a wallet-creation challenge.

    The custody service indexes new wallets with some lag, so the list is
    polled with exponential backoff up to ``max_attempts`` lookups.
    """

    initial_delay_s: float = 2.5
    backoff_factor: float = 2.0
    max_delay_s: float = 10.0
    max_attempts: int = 3

    @classmethod
    def from_settings(cls) -> "SettlePolicy":
        return cls(
            initial_delay_s=settings.settle_initial_delay_seconds,
            backoff_factor=settings.settle_backoff_factor,
            max_delay_s=settings.settle_max_delay_seconds,
            max_attempts=settings.settle_max_attempts,
        )

    @classmethod
    def immediate(cls) -> "SettlePolicy":
        """Single lookup, no delay."""
        return cls(initial_delay_s=0.0, backoff_factor=1.0, max_delay_s=0.0, max_attempts=1)

    def delays(self) -> Iterator[float]:
        """Delay to wait before each lookup."""
        delay = self.initial_delay_s
        for _ in range(max(1, self.max_attempts)):
            yield delay
            delay = min(delay * self.backoff_factor, self.max_delay_s)


@dataclass
class StateTransition:
    """Record of a state transition."""

    from_state: ConnectionState
    to_state: ConnectionState
    trigger: TransitionTrigger = TransitionTrigger.AUTOMATIC
    reason: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromState": self.from_state.value,
            "toState": self.to_state.value,
            "trigger": self.trigger.value,
            "reason": self.reason,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ConnectionStatus:
    """Observable view of the onboarding state machine."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    identity: str = ""
    address: Optional[str] = None
    wallet_id: Optional[str] = None
    chain_label: Optional[str] = None
    balance: Optional[str] = None
    message: Optional[str] = None
    is_error: bool = False
    error_category: Optional[ErrorCategory] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and bool(self.address)

    @property
    def is_busy(self) -> bool:
        return self.state not in (ConnectionState.DISCONNECTED, ConnectionState.CONNECTED)

    @property
    def status_text(self) -> str:
        return STATUS_TEXT[self.state]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "identity": self.identity,
            "address": self.address,
            "walletId": self.wallet_id,
            "chainLabel": self.chain_label,
            "balance": self.balance,
            "message": self.message,
            "isError": self.is_error,
            "errorCategory": self.error_category.value if self.error_category else None,
            "isConnected": self.is_connected,
        }
