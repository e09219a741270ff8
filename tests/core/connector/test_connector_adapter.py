"""Tests for the PIN wallet connector and the multi-chain framework."""

import pytest

from conftest import ALICE_CREDENTIALS, ALICE_WALLET, FakeSigner

from pinwallet.core.connector import (
    CONNECTOR_ID,
    ChainSwitchNotSupportedError,
    FrameworkStatus,
    MultiChainFramework,
    PinWalletConnector,
)
from pinwallet.core.session import OnboardingStateMachine, SessionNotFoundError, SessionSnapshot


@pytest.fixture
def persisted(store):
    store.save(SessionSnapshot("alice1", ALICE_CREDENTIALS, [ALICE_WALLET]))
    return store


@pytest.fixture
def connector(store, signer):
    return PinWalletConnector(store, signer, chain_ids=[5042002])


@pytest.fixture
def events(connector):
    seen = []
    for name in ("connect", "change", "disconnect"):
        connector.emitter.on(name, lambda data, name=name: seen.append((name, data)))
    return seen


class TestPinWalletConnector:

    @pytest.mark.asyncio
    async def test_connect_without_session_raises(self, connector):
        with pytest.raises(SessionNotFoundError):
            await connector.connect()

    @pytest.mark.asyncio
    async def test_connect_from_snapshot(self, connector, persisted, signer, events):
        result = await connector.connect()

        assert result.accounts == ["0xabc"]
        assert result.chain_id == 5042002
        assert signer.credentials == ALICE_CREDENTIALS
        assert events == [("connect", {"accounts": ["0xabc"], "chainId": 5042002})]

    @pytest.mark.asyncio
    async def test_connect_with_requested_chain(self, connector, persisted):
        result = await connector.connect(chain_id=1)

        assert result.chain_id == 1

    @pytest.mark.asyncio
    async def test_connect_without_signing_provider(self, store, persisted, monkeypatch):
        from pinwallet.config import settings
        from pinwallet.providers import signing

        signing.reset_signing_provider()
        monkeypatch.setattr(settings, "signing_interactive", False)
        connector = PinWalletConnector(store, chain_ids=[5042002])

        result = await connector.connect()

        assert result.accounts == ["0xabc"]
        assert await connector.get_provider() is None

    @pytest.mark.asyncio
    async def test_accounts_match_snapshot(self, connector, persisted):
        assert await connector.get_accounts() == [persisted.load().primary_wallet.address]

    @pytest.mark.asyncio
    async def test_accounts_after_onboarding(self, custody, store, signer, no_wait_policy, connector):
        machine = OnboardingStateMachine(custody, store, signer, settle_policy=no_wait_policy)
        await machine.start("alice1")

        assert await PinWalletConnector(store, signer).get_accounts() == ["0xabc"]
        assert await connector.is_authorized() is True

    @pytest.mark.asyncio
    async def test_reads_without_session(self, connector):
        assert await connector.get_accounts() == []
        assert await connector.is_authorized() is False
        assert connector.get_account() is None
        assert connector.get_wallet_id() is None
        assert connector.get_session_token() is None

    @pytest.mark.asyncio
    async def test_session_readers(self, connector, persisted):
        assert connector.get_account().address == "0xabc"
        assert connector.get_wallet_id() == "w1"
        assert connector.get_session_token() == "t1"
        assert connector.get_encryption_key() == "k1"
        assert await connector.get_chain_id() == 5042002

    @pytest.mark.asyncio
    async def test_disconnect_clears_store(self, connector, persisted, events):
        await connector.disconnect()

        assert persisted.has_session() is False
        assert events == [("disconnect", {})]

    @pytest.mark.asyncio
    async def test_switch_chain_not_supported(self, connector):
        with pytest.raises(ChainSwitchNotSupportedError):
            await connector.switch_chain(1)

    def test_accounts_changed(self, connector, events):
        connector.on_accounts_changed(["0xdef"])
        connector.on_accounts_changed([])

        assert events == [("change", {"accounts": ["0xdef"]}), ("disconnect", {})]

    def test_chain_changed_accepts_hex(self, connector, events):
        connector.on_chain_changed("0x4cef52")
        connector.on_chain_changed(1)

        assert events == [("change", {"chainId": 5042002}), ("change", {"chainId": 1})]

    def test_on_disconnect(self, connector, events):
        connector.on_disconnect()

        assert events == [("disconnect", {})]


class TestMultiChainFramework:

    @pytest.fixture
    def framework(self, connector):
        framework = MultiChainFramework()
        framework.register_connector(connector)
        return framework

    @pytest.mark.asyncio
    async def test_connect_tracks_connection(self, framework, persisted):
        connection = await framework.connect(CONNECTOR_ID)

        assert connection.address == "0xabc"
        assert framework.is_connected is True
        assert framework.status == FrameworkStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_failed_connect_stays_disconnected(self, framework):
        with pytest.raises(SessionNotFoundError):
            await framework.connect(CONNECTOR_ID)

        assert framework.status == FrameworkStatus.DISCONNECTED
        assert framework.connection is None

    @pytest.mark.asyncio
    async def test_connector_events_update_connection(self, framework, connector, persisted):
        await framework.connect(CONNECTOR_ID)

        connector.on_chain_changed(1)
        assert framework.connection.chain_id == 1

        connector.on_accounts_changed([])
        assert framework.is_connected is False

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(self, framework, persisted):
        await framework.disconnect()

        assert persisted.has_session() is True

    @pytest.mark.asyncio
    async def test_reconnect_uses_authorized_connector(self, framework, persisted):
        connection = await framework.reconnect()

        assert connection.address == "0xabc"
        assert framework.is_connected is True

    @pytest.mark.asyncio
    async def test_reconnect_without_session(self, framework):
        assert await framework.reconnect() is None
        assert framework.status == FrameworkStatus.DISCONNECTED

    def test_unknown_connector(self):
        with pytest.raises(KeyError):
            MultiChainFramework().get_connector("nope")
