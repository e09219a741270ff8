"""
Onboarding State Machine

Drives the ordered sequence that provisions a PIN-protected wallet for an
identity:

    disconnected -> creating_identity -> issuing_credentials
        -> initializing_account -> awaiting_signature -> connected

``creating_identity`` is skipped for returning users and ``awaiting_signature``
is skipped when the account was already initialized. Any step can fall back
to ``disconnected``. Remote and SDK errors never escape: they end up on the
observable ``ConnectionStatus`` as a message plus an error flag.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from uuid import uuid4

from pinwallet.config import settings
from pinwallet.providers.custody import (
    CredentialPair,
    CustodyProvider,
    CustodyResult,
    WalletRecord,
    get_custody_provider,
)
from pinwallet.providers.signing import (
    SigningError,
    SigningProvider,
    SigningUnavailableError,
    get_signing_provider,
    run_challenge,
)
from pinwallet.services.balance import find_usdc_balance

from .models import (
    INVALID_USER,
    NOTHING_TO_RETRY,
    SESSION_EXPIRED,
    TOKEN_TIMEOUT,
    USER_NOT_FOUND,
    WALLET_PENDING,
    ConnectionState,
    ConnectionStatus,
    ErrorCategory,
    InvalidIdentityError,
    InvalidTransitionError,
    OnboardingInProgressError,
    OnboardingMode,
    SessionError,
    SessionSnapshot,
    SettlePolicy,
    StateTransition,
    TransitionTrigger,
    validate_identity,
)
from .store import SessionStore, get_session_store


StatusCallback = Callable[[ConnectionStatus], Awaitable[None]]
TransitionCallback = Callable[[StateTransition], Awaitable[None]]


def _category_for(result: CustodyResult) -> ErrorCategory:
    if result.timed_out:
        return ErrorCategory.TIMEOUT
    if result.is_auth_failure:
        return ErrorCategory.AUTHENTICATION
    if result.status_code is None:
        return ErrorCategory.NETWORK
    return ErrorCategory.PROVIDER


class OnboardingStateMachine:
    """
    Owns the identity/session lifecycle of one process.

    Features:
    - Validates transitions against an explicit transition table
    - Treats "already exists"/"already initialized" as success
    - Bridges the signing provider callback onto the event loop
    - Persists the session snapshot only once a wallet exists
    - Notifies status callbacks after every change
    """

    TRANSITIONS: Dict[ConnectionState, Set[ConnectionState]] = {
        ConnectionState.DISCONNECTED: {
            ConnectionState.CREATING_IDENTITY,
            ConnectionState.ISSUING_CREDENTIALS,   # returning user
            ConnectionState.INITIALIZING_ACCOUNT,  # retry with retained credentials
            ConnectionState.CONNECTED,             # restored session
        },
        ConnectionState.CREATING_IDENTITY: {
            ConnectionState.ISSUING_CREDENTIALS,
            ConnectionState.DISCONNECTED,
        },
        ConnectionState.ISSUING_CREDENTIALS: {
            ConnectionState.INITIALIZING_ACCOUNT,
            ConnectionState.DISCONNECTED,
        },
        ConnectionState.INITIALIZING_ACCOUNT: {
            ConnectionState.AWAITING_SIGNATURE,
            ConnectionState.CONNECTED,             # already initialized
            ConnectionState.DISCONNECTED,
        },
        ConnectionState.AWAITING_SIGNATURE: {
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        },
        ConnectionState.CONNECTED: {
            ConnectionState.DISCONNECTED,
        },
    }

    def __init__(
        self,
        custody: Optional[CustodyProvider] = None,
        store: Optional[SessionStore] = None,
        signing_provider: Optional[SigningProvider] = None,
        *,
        settle_policy: Optional[SettlePolicy] = None,
        token_timeout_s: Optional[float] = None,
        account_type: Optional[str] = None,
        chains: Optional[List[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the state machine.

        Args:
            custody: Custody client (default: process-wide provider)
            store: Session store (default: file-backed store)
            signing_provider: Signing SDK; when omitted the process-wide
                provider is looked up lazily on first use
            settle_policy: Wallet lookups after a wallet-creation challenge
            token_timeout_s: Upper bound on credential issuance
            account_type: Account type requested at initialization
            chains: Chain labels requested at initialization
            logger: Optional logger
        """
        self._custody = custody or get_custody_provider()
        self._store = store or get_session_store()
        self._signing_provider = signing_provider
        self.settle_policy = settle_policy or SettlePolicy.from_settings()
        self.token_timeout_s = token_timeout_s or settings.token_issue_timeout_seconds
        self.account_type = account_type or settings.account_type
        self.chains = list(chains) if chains is not None else [settings.primary_wallet_chain]
        self.logger = logger or logging.getLogger(__name__)

        self._state = ConnectionState.DISCONNECTED
        self._mode = OnboardingMode.NEW
        self._identity = ""
        self._credentials: Optional[CredentialPair] = None
        self._challenge_id: Optional[str] = None
        self._wallets: List[WalletRecord] = []
        self._balance: Optional[str] = None
        self._message: Optional[str] = None
        self._is_error = False
        self._error_category: Optional[ErrorCategory] = None

        # Bumped by disconnect(); a run that wakes up with an older value is abandoned
        self._generation = 0
        self._running = False

        self.history: List[StateTransition] = []
        self._status_callbacks: List[StatusCallback] = []
        self._transition_callbacks: List[TransitionCallback] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def mode(self) -> OnboardingMode:
        return self._mode

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def credentials(self) -> Optional[CredentialPair]:
        return self._credentials

    @property
    def challenge_id(self) -> Optional[str]:
        return self._challenge_id

    @property
    def wallets(self) -> List[WalletRecord]:
        return list(self._wallets)

    @property
    def primary_wallet(self) -> Optional[WalletRecord]:
        return self._wallets[0] if self._wallets else None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self.status.is_connected

    @property
    def has_pending_restore(self) -> bool:
        """True while idle and disconnected over a persisted session that restore() would resume."""
        return not self._running and self._state == ConnectionState.DISCONNECTED and self._store.has_session()

    @property
    def status(self) -> ConnectionStatus:
        primary = self.primary_wallet
        connected = self._state == ConnectionState.CONNECTED
        return ConnectionStatus(
            state=self._state,
            identity=self._identity,
            address=primary.address if connected and primary else None,
            wallet_id=primary.id if connected and primary else None,
            chain_label=primary.chain_label if connected and primary else None,
            balance=self._balance if connected else None,
            message=self._message,
            is_error=self._is_error,
            error_category=self._error_category,
        )

    def register_status_callback(self, callback: StatusCallback) -> None:
        """Register an async callback run after every status change."""
        self._status_callbacks.append(callback)

    def unregister_status_callback(self, callback: StatusCallback) -> None:
        if callback in self._status_callbacks:
            self._status_callbacks.remove(callback)

    def register_transition_callback(self, callback: TransitionCallback) -> None:
        """Register an async callback run after every state transition."""
        self._transition_callbacks.append(callback)

    def can_transition_to(self, to_state: ConnectionState) -> bool:
        return to_state in self.TRANSITIONS.get(self._state, set())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def restore(self) -> ConnectionStatus:
        """
        Resume from a complete persisted snapshot without any custody call.

        The balance refresh that follows is best-effort and never downgrades
        the state.
        """
        if self._running or self._state != ConnectionState.DISCONNECTED:
            return self.status

        snapshot = self._store.load()
        if snapshot is None:
            return self.status

        self._identity = snapshot.identity
        self._credentials = snapshot.credentials
        self._wallets = list(snapshot.wallets)
        self._clear_message()
        self.logger.info(f"Restoring session for user {snapshot.identity}")

        self._authenticate_signing_provider(snapshot.credentials)
        await self._transition(
            ConnectionState.CONNECTED,
            trigger=TransitionTrigger.RESTORE,
            reason="Session restored",
        )
        await self.refresh_balance()
        return self.status

    async def start(self, identity: str, mode: OnboardingMode = OnboardingMode.NEW) -> ConnectionStatus:
        """
        Run the onboarding sequence for ``identity``.

        Raises:
            OnboardingInProgressError: a run is in flight or the machine is
                not disconnected
        """
        self._guard_idle(ConnectionState.CREATING_IDENTITY)

        try:
            identity = validate_identity(identity)
        except InvalidIdentityError as exc:
            await self._report(str(exc), ErrorCategory.VALIDATION)
            return self.status

        signer_error = self._signing_unavailable()
        if signer_error:
            await self._report(signer_error, ErrorCategory.VALIDATION)
            return self.status

        generation = self._begin()
        self._identity = identity
        self._mode = mode
        self._credentials = None
        self._clear_message()

        try:
            await self._run(generation)
        finally:
            self._end(generation)
        return self.status

    async def retry(self) -> ConnectionStatus:
        """Restart from account initialization with the retained credentials."""
        self._guard_idle(ConnectionState.INITIALIZING_ACCOUNT)

        if not (self._identity and self._credentials):
            await self._report(NOTHING_TO_RETRY, ErrorCategory.VALIDATION)
            return self.status

        generation = self._begin()
        self._clear_message()
        try:
            await self._guarded(generation, self._initialize_account(generation))
        finally:
            self._end(generation)
        return self.status

    async def disconnect(self) -> ConnectionStatus:
        """Clear the persisted session and all in-memory secrets."""
        self._generation += 1
        self._running = False

        self._store.clear()
        self._identity = ""
        self._credentials = None
        self._challenge_id = None
        self._wallets = []
        self._balance = None
        self._clear_message()

        if self._state != ConnectionState.DISCONNECTED:
            await self._transition(
                ConnectionState.DISCONNECTED,
                trigger=TransitionTrigger.USER_ACTION,
                reason="Disconnected by user",
            )
        else:
            await self._notify()
        return self.status

    # ------------------------------------------------------------------
    # Connected-session operations
    # ------------------------------------------------------------------

    async def refresh_balance(self) -> Optional[str]:
        """Fetch the stablecoin balance of the primary wallet; failures are logged only."""
        primary = self.primary_wallet
        credentials = self._credentials
        if self._state != ConnectionState.CONNECTED or not primary or not credentials:
            return None

        try:
            result = await self._custody.get_token_balance(credentials, primary.id)
            if not result.is_created:
                self.logger.warning(f"Failed to load balance for wallet {primary.id}: {result.reason}")
                return None
            self._balance = find_usdc_balance(result.value or [])
        except Exception as exc:
            self.logger.warning(f"Failed to load balance for wallet {primary.id}: {exc}")
            return None
        return self._balance

    async def refresh_wallets(self) -> List[WalletRecord]:
        """Re-fetch the wallet list of the connected session."""
        credentials = self._credentials
        if self._state != ConnectionState.CONNECTED or not credentials:
            return self.wallets

        result = await self._custody.list_wallets(credentials)
        if result.is_auth_failure:
            await self._expire_session()
            return []
        if not result.is_created:
            self.logger.warning(f"Wallet refresh failed: {result.reason}")
            return self.wallets

        wallets = result.value or []
        if not wallets:
            self.logger.warning("Wallet refresh returned no wallets; keeping the stored list")
            return self.wallets

        previous = self.primary_wallet
        self._wallets = list(wallets)
        try:
            self._store.replace_wallets(self._wallets)
        except SessionError as exc:
            self.logger.warning(f"Wallet list not persisted: {exc}")
        if previous is None or previous.address != wallets[0].address:
            await self._notify()
        return self.wallets

    async def execute_challenge(self, challenge_id: str) -> Dict[str, Any]:
        """
        Run a challenge (e.g. a transaction) for the connected wallet.

        Raises:
            SigningError: not connected, or the signing provider reported a failure
        """
        credentials = self._credentials
        if self._state != ConnectionState.CONNECTED or not credentials:
            raise SigningError("Wallet not connected")

        signer = self._signer()
        signer.set_authentication(credentials)
        return await run_challenge(signer, challenge_id)

    async def device_id(self) -> Optional[str]:
        """Device id of the signing SDK, cached in the session store."""
        cached = self._store.device_id
        if cached:
            return cached
        try:
            device_id = await self._signer().get_device_id()
        except SigningError as exc:
            self.logger.error(f"Failed to get device id: {exc.message}")
            return None
        self._store.device_id = device_id
        return device_id

    # ------------------------------------------------------------------
    # Onboarding steps
    # ------------------------------------------------------------------

    async def _run(self, generation: int) -> None:
        async def sequence() -> None:
            if self._mode == OnboardingMode.NEW:
                if not await self._create_identity(generation):
                    return
            if not await self._issue_credentials(generation):
                return
            await self._initialize_account(generation)

        await self._guarded(generation, sequence())

    async def _guarded(self, generation: int, step: Awaitable[None]) -> None:
        # Anything unexpected still has to land on the status, never on the caller
        try:
            await step
        except Exception as exc:
            self.logger.exception("Onboarding failed unexpectedly")
            if not self._is_stale(generation):
                await self._fail(str(exc) or "Connection failed", ErrorCategory.UNKNOWN, discard_credentials=True)

    async def _create_identity(self, generation: int) -> bool:
        await self._transition(ConnectionState.CREATING_IDENTITY, reason="Creating user")

        result = await self._custody.create_user(self._identity)
        if self._is_stale(generation):
            return False

        if result.is_failed:
            await self._fail(result.reason or "Failed to create user", _category_for(result))
            return False
        if result.is_already_exists:
            self.logger.info(f"User {self._identity} already exists; continuing")
        return True

    async def _issue_credentials(self, generation: int) -> bool:
        await self._transition(ConnectionState.ISSUING_CREDENTIALS, reason="Getting user token")

        try:
            result = await asyncio.wait_for(
                self._custody.issue_token(self._identity, timeout_s=self.token_timeout_s),
                timeout=self.token_timeout_s,
            )
        except asyncio.TimeoutError:
            result = CustodyResult.failed(TOKEN_TIMEOUT, timed_out=True)
        if self._is_stale(generation):
            return False

        if not result.is_created or result.value is None:
            await self._fail(
                self._token_failure_message(result),
                _category_for(result),
                discard_credentials=True,
            )
            return False

        # In memory only until a wallet exists
        self._credentials = result.value
        return True

    def _token_failure_message(self, result: CustodyResult) -> str:
        if self._mode == OnboardingMode.RETURNING:
            if result.timed_out or result.status_code in (400, 404):
                return USER_NOT_FOUND
        else:
            if result.timed_out:
                return TOKEN_TIMEOUT
            if result.status_code == 400:
                return INVALID_USER
        return result.reason or "Failed to get user token"

    async def _initialize_account(self, generation: int) -> None:
        await self._transition(ConnectionState.INITIALIZING_ACCOUNT, reason="Initializing account")
        credentials = self._require_credentials()

        self.logger.info(
            f"Initializing user with accountType={self.account_type} blockchains={self.chains}"
        )
        result = await self._custody.initialize_account(
            credentials,
            account_type=self.account_type,
            chains=self.chains,
            idempotency_key=str(uuid4()),
        )
        if self._is_stale(generation):
            return

        if result.is_already_exists:
            self.logger.info("User already initialized, loading existing wallets")
            await self._discover_wallets(generation, SettlePolicy.immediate())
            return

        if result.is_failed or not result.value:
            await self._fail(
                result.reason or "Failed to initialize user",
                _category_for(result),
                discard_credentials=True,
            )
            return

        self._challenge_id = result.value
        await self._await_signature(generation)

    async def _await_signature(self, generation: int) -> None:
        await self._transition(ConnectionState.AWAITING_SIGNATURE, reason="Creating wallet")
        credentials = self._require_credentials()

        # Single use: gone before the provider gets it
        challenge_id, self._challenge_id = self._challenge_id, None

        try:
            signer = self._signer()
            signer.set_authentication(credentials)
            await run_challenge(signer, challenge_id)
        except SigningError as exc:
            if self._is_stale(generation):
                return
            self.logger.error(f"Execute challenge failed: {exc.message}")
            # Identity and credentials stay so retry() can skip token issuance
            await self._fail(exc.message or "Failed to create wallet", ErrorCategory.SIGNING)
            return

        if self._is_stale(generation):
            return
        self.logger.info("Challenge executed successfully")
        await self._discover_wallets(generation, self.settle_policy)

    async def _discover_wallets(self, generation: int, policy: SettlePolicy) -> None:
        credentials = self._require_credentials()
        last_failure: Optional[CustodyResult] = None

        for attempt, delay in enumerate(policy.delays(), start=1):
            if delay:
                await asyncio.sleep(delay)
                if self._is_stale(generation):
                    return

            result = await self._custody.list_wallets(credentials)
            if self._is_stale(generation):
                return

            if result.is_auth_failure:
                await self._fail(
                    result.reason or SESSION_EXPIRED,
                    ErrorCategory.AUTHENTICATION,
                    discard_credentials=True,
                )
                return
            if result.is_created and result.value:
                await self._connect(result.value)
                return

            last_failure = result if result.is_failed else None
            self.logger.info(f"No wallets yet (attempt {attempt}/{policy.max_attempts})")

        if last_failure is not None:
            await self._fail(last_failure.reason or "Failed to load wallets", _category_for(last_failure))
        else:
            await self._fail(WALLET_PENDING, ErrorCategory.PENDING)

    async def _connect(self, wallets: List[WalletRecord]) -> None:
        self._wallets = list(wallets)
        # Persist before announcing so readers of the store see the session
        self._store.save(
            SessionSnapshot(identity=self._identity, credentials=self._credentials, wallets=self._wallets)
        )
        self._clear_message()
        await self._transition(ConnectionState.CONNECTED, reason="Wallet discovered")
        await self.refresh_balance()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guard_idle(self, to_state: ConnectionState) -> None:
        if self._running or self._state != ConnectionState.DISCONNECTED:
            raise OnboardingInProgressError(
                from_state=self._state,
                to_state=to_state,
                message=f"Onboarding already in progress (state: {self._state.value})",
            )

    def _begin(self) -> int:
        self._generation += 1
        self._running = True
        return self._generation

    def _end(self, generation: int) -> None:
        if generation == self._generation:
            self._running = False

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation

    def _require_credentials(self) -> CredentialPair:
        if self._credentials is None:
            raise SessionError("No credentials for this session")
        return self._credentials

    def _signer(self) -> SigningProvider:
        if self._signing_provider is not None:
            return self._signing_provider
        return get_signing_provider()

    def _signing_unavailable(self) -> Optional[str]:
        try:
            self._signer()
        except SigningUnavailableError as exc:
            return exc.message
        return None

    def _authenticate_signing_provider(self, credentials: CredentialPair) -> None:
        try:
            signer = self._signer()
        except SigningUnavailableError as exc:
            self.logger.debug(f"Signing provider not restored: {exc.message}")
            return
        if signer.is_ready():
            signer.set_authentication(credentials)

    def _clear_message(self) -> None:
        self._message = None
        self._is_error = False
        self._error_category = None

    async def _report(self, message: str, category: ErrorCategory) -> None:
        """Surface an error without changing state."""
        self._message = message
        self._is_error = True
        self._error_category = category
        await self._notify()

    async def _fail(
        self,
        message: str,
        category: ErrorCategory,
        *,
        discard_credentials: bool = False,
    ) -> None:
        self._challenge_id = None
        if discard_credentials:
            self._credentials = None
        self._wallets = []
        self._balance = None
        self._message = message
        self._is_error = True
        self._error_category = category
        await self._transition(
            ConnectionState.DISCONNECTED,
            trigger=TransitionTrigger.ERROR,
            reason=f"{category.value} failure",
            error_message=message,
        )

    async def _expire_session(self) -> None:
        self.logger.warning(f"Credentials for {self._identity} were rejected; clearing session")
        self._store.clear()
        self._identity = ""
        await self._fail(SESSION_EXPIRED, ErrorCategory.AUTHENTICATION, discard_credentials=True)

    async def _transition(
        self,
        to_state: ConnectionState,
        *,
        trigger: TransitionTrigger = TransitionTrigger.AUTOMATIC,
        reason: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> StateTransition:
        from_state = self._state
        if not self.can_transition_to(to_state):
            raise InvalidTransitionError(from_state=from_state, to_state=to_state)

        transition = StateTransition(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            reason=reason,
            error_message=error_message,
        )
        self._state = to_state
        self.history.append(transition)

        self.logger.info(
            f"Onboarding {from_state.value} -> {to_state.value}"
            f"{f' ({reason})' if reason else ''}"
        )
        for callback in list(self._transition_callbacks):
            try:
                await callback(transition)
            except Exception as e:
                self.logger.error(f"Transition callback error: {e}")
        await self._notify()
        return transition

    async def _notify(self) -> None:
        status = self.status
        for callback in list(self._status_callbacks):
            try:
                await callback(status)
            except Exception as e:
                self.logger.error(f"Status callback error: {e}")
