"""
PIN wallet connector.

Exposes the persisted session as a standard account connector. Every read
comes from the session store, so connecting never touches the network.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pinwallet.config import settings
from pinwallet.providers.custody import WalletRecord
from pinwallet.providers.signing import SigningProvider, SigningUnavailableError, get_signing_provider

from ..session.models import SessionError, SessionNotFoundError
from ..session.store import SessionStore, get_session_store
from .framework import Connector, ConnectorEmitter, ConnectResult


logger = logging.getLogger(__name__)

CONNECTOR_ID = "pin-wallet"
CONNECTOR_NAME = "PIN Wallet"


class ChainSwitchNotSupportedError(SessionError):
    """The custody wallet lives on a fixed chain."""
    pass


def _parse_chain_id(chain_id: Union[int, str]) -> int:
    if isinstance(chain_id, int):
        return chain_id
    return int(chain_id, 0)


class PinWalletConnector(Connector):
    id = CONNECTOR_ID
    name = CONNECTOR_NAME
    type = "pinWallet"

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        signing_provider: Optional[SigningProvider] = None,
        chain_ids: Optional[Sequence[int]] = None,
        emitter: Optional[ConnectorEmitter] = None,
    ):
        super().__init__(emitter)
        self.store = store or get_session_store()
        self._signing_provider = signing_provider
        self.chain_ids = list(chain_ids or settings.chain_ids)

    async def connect(self, chain_id: Optional[int] = None) -> ConnectResult:
        snapshot = self.store.load()
        if snapshot is None:
            raise SessionNotFoundError(
                "Please connect your PIN wallet first using the onboarding flow"
            )

        provider = await self.get_provider()
        if provider is not None:
            provider.set_authentication(snapshot.credentials)

        accounts = [snapshot.primary_wallet.address]
        resolved_chain = chain_id if chain_id is not None else await self.get_chain_id()
        logger.info(f"Connector connected for {snapshot.identity} on chain {resolved_chain}")

        self.emitter.emit("connect", {"accounts": accounts, "chainId": resolved_chain})
        return ConnectResult(accounts=accounts, chain_id=resolved_chain)

    async def disconnect(self) -> None:
        self.store.clear()
        self.emitter.emit("disconnect")

    async def get_accounts(self) -> List[str]:
        snapshot = self.store.load()
        return [snapshot.primary_wallet.address] if snapshot else []

    async def get_chain_id(self) -> int:
        return self.chain_ids[0]

    async def is_authorized(self) -> bool:
        return self.store.has_session()

    async def get_provider(self) -> Optional[SigningProvider]:
        """Signing provider, or None when it cannot be used in this process."""
        if self._signing_provider is not None:
            return self._signing_provider
        try:
            return get_signing_provider()
        except SigningUnavailableError as exc:
            logger.debug(f"No signing provider for connector: {exc.message}")
            return None

    async def switch_chain(self, chain_id: Union[int, str]) -> None:
        raise ChainSwitchNotSupportedError(
            f"Chain switching is not supported by {CONNECTOR_NAME} (requested {chain_id})"
        )

    # Lifecycle callbacks

    def on_accounts_changed(self, accounts: List[str]) -> None:
        if not accounts:
            self.emitter.emit("disconnect")
        else:
            self.emitter.emit("change", {"accounts": list(accounts)})

    def on_chain_changed(self, chain_id: Union[int, str]) -> None:
        self.emitter.emit("change", {"chainId": _parse_chain_id(chain_id)})

    def on_disconnect(self, error: Optional[Exception] = None) -> None:
        self.emitter.emit("disconnect")

    # Session readers

    def get_account(self) -> Optional[WalletRecord]:
        return self.store.primary_wallet()

    def get_session_token(self) -> Optional[str]:
        return self.store.session_token

    def get_encryption_key(self) -> Optional[str]:
        return self.store.encryption_key

    def get_wallet_id(self) -> Optional[str]:
        wallet = self.store.primary_wallet()
        return wallet.id if wallet else None

    def describe(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type, "chains": self.chain_ids}
