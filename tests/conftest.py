"""Shared fakes for the custody service and the signing SDK."""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from pinwallet.core.session import MemoryStorage, SessionStore, SettlePolicy
from pinwallet.providers.custody import CredentialPair, CustodyResult, TokenBalance, WalletRecord
from pinwallet.providers.signing import SigningCallback, SigningError, SigningProvider


ALICE_CREDENTIALS = CredentialPair(session_token="t1", encryption_key="k1")
ALICE_WALLET = WalletRecord.from_api({"id": "w1", "address": "0xabc", "blockchain": "ARC-TESTNET"})
USDC_BALANCE = TokenBalance.from_api(
    {"amount": "42.5", "token": {"id": "tok-usdc", "symbol": "USDC", "name": "USD Coin"}}
)


class FakeCustody:
    """Custody client double; every call is an AsyncMock returning a canned result."""

    def __init__(self):
        self.create_user = AsyncMock(return_value=CustodyResult.created({"id": "alice1", "status": "ENABLED"}))
        self.issue_token = AsyncMock(return_value=CustodyResult.created(ALICE_CREDENTIALS))
        self.initialize_account = AsyncMock(return_value=CustodyResult.created("c1"))
        self.list_wallets = AsyncMock(return_value=CustodyResult.created([ALICE_WALLET]))
        self.get_token_balance = AsyncMock(return_value=CustodyResult.created([USDC_BALANCE]))

    @property
    def call_count(self) -> int:
        return sum(
            mock.await_count
            for mock in (
                self.create_user,
                self.issue_token,
                self.initialize_account,
                self.list_wallets,
                self.get_token_balance,
            )
        )


class FakeSigner(SigningProvider):
    """Signing SDK double that answers each challenge immediately."""

    def __init__(self, error: Optional[Dict[str, Any]] = None, ready: bool = True):
        self.error = error
        self.ready = ready
        self.events: List[str] = []
        self.credentials: Optional[CredentialPair] = None
        self.executed: List[str] = []

    def is_ready(self) -> bool:
        return self.ready

    def set_authentication(self, credentials: CredentialPair) -> None:
        self.events.append("set_authentication")
        self.credentials = credentials

    def execute(self, challenge_id: str, callback: SigningCallback) -> None:
        if self.credentials is None:
            raise SigningError("not authenticated")
        self.events.append("execute")
        self.executed.append(challenge_id)
        if self.error is not None:
            callback(self.error, None)
        else:
            callback(None, {"challengeId": challenge_id, "status": "COMPLETE"})

    async def get_device_id(self) -> str:
        return "device-123"


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> SessionStore:
    return SessionStore(storage, prefix="test")


@pytest.fixture
def custody() -> FakeCustody:
    return FakeCustody()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def no_wait_policy() -> SettlePolicy:
    return SettlePolicy(initial_delay_s=0.0, backoff_factor=1.0, max_delay_s=0.0, max_attempts=3)
