"""
Multi-chain connector framework.

A small in-process host for wallet connectors: it keeps a registry of
connectors, the current connection, and listens to each connector's event
emitter (``connect``, ``change``, ``disconnect``) to keep that connection up
to date.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class ConnectorEmitter:
    """Synchronous event emitter shared by a connector and the framework."""

    def __init__(self, uid: str):
        self.uid = uid
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(data or {})
            except Exception as e:
                logger.error(f"Connector listener error on {event}: {e}")

    def clear(self) -> None:
        self._listeners.clear()

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))


class FrameworkStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    CONNECTED = "connected"


@dataclass
class FrameworkConnection:
    connector_id: str
    accounts: List[str] = field(default_factory=list)
    chain_id: Optional[int] = None

    @property
    def address(self) -> Optional[str]:
        return self.accounts[0] if self.accounts else None


@dataclass
class ConnectResult:
    accounts: List[str]
    chain_id: int


class Connector(ABC):
    """Interface every connector plugged into the framework implements."""

    id: str = "connector"
    name: str = "Connector"
    type: str = "connector"

    def __init__(self, emitter: Optional[ConnectorEmitter] = None):
        self.emitter = emitter or ConnectorEmitter(self.id)

    @abstractmethod
    async def connect(self, chain_id: Optional[int] = None) -> ConnectResult:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def get_accounts(self) -> List[str]:
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def is_authorized(self) -> bool:
        pass


class MultiChainFramework:
    """Tracks the active connection across registered connectors."""

    def __init__(self):
        self._connectors: Dict[str, Connector] = {}
        self._connection: Optional[FrameworkConnection] = None
        self.status = FrameworkStatus.DISCONNECTED

    def register_connector(self, connector: Connector) -> None:
        if connector.id in self._connectors:
            logger.warning(f"Connector {connector.id} already registered; replacing it")
            self._detach(self._connectors[connector.id])
        self._connectors[connector.id] = connector
        emitter = connector.emitter
        emitter.on("connect", lambda data: self._on_connect(connector.id, data))
        emitter.on("change", lambda data: self._on_change(connector.id, data))
        emitter.on("disconnect", lambda data: self._on_disconnect(connector.id, data))

    def get_connector(self, connector_id: str) -> Connector:
        if connector_id not in self._connectors:
            raise KeyError(f"Unknown connector: {connector_id}")
        return self._connectors[connector_id]

    @property
    def connection(self) -> Optional[FrameworkConnection]:
        return self._connection

    @property
    def address(self) -> Optional[str]:
        return self._connection.address if self._connection else None

    @property
    def is_connected(self) -> bool:
        return self.status == FrameworkStatus.CONNECTED and self._connection is not None

    async def connect(self, connector_id: str, chain_id: Optional[int] = None) -> Optional[FrameworkConnection]:
        """Connect through ``connector_id``; a connect while one is running is a no-op."""
        if self.status in (FrameworkStatus.CONNECTING, FrameworkStatus.RECONNECTING):
            logger.debug("Connect requested while already connecting; ignoring")
            return self._connection

        connector = self.get_connector(connector_id)
        previous = self.status
        self.status = FrameworkStatus.CONNECTING
        try:
            result = await connector.connect(chain_id)
        except Exception:
            self.status = previous if self._connection else FrameworkStatus.DISCONNECTED
            raise

        self._connection = FrameworkConnection(
            connector_id=connector_id,
            accounts=list(result.accounts),
            chain_id=result.chain_id,
        )
        self.status = FrameworkStatus.CONNECTED
        return self._connection

    async def disconnect(self) -> None:
        """Disconnect the active connector; no-op when nothing is connected."""
        if self._connection is None:
            self.status = FrameworkStatus.DISCONNECTED
            return
        connector = self._connectors.get(self._connection.connector_id)
        if connector is not None:
            await connector.disconnect()
        self._reset()

    async def reconnect(self) -> Optional[FrameworkConnection]:
        """Re-establish the connection of every authorized connector (first one wins)."""
        if self.status != FrameworkStatus.DISCONNECTED:
            return self._connection

        for connector in self._connectors.values():
            if not await connector.is_authorized():
                continue
            self.status = FrameworkStatus.RECONNECTING
            try:
                result = await connector.connect()
            except Exception as e:
                logger.warning(f"Reconnect through {connector.id} failed: {e}")
                self.status = FrameworkStatus.DISCONNECTED
                continue
            self._connection = FrameworkConnection(connector.id, list(result.accounts), result.chain_id)
            self.status = FrameworkStatus.CONNECTED
            return self._connection
        return None

    # Emitter events

    def _on_connect(self, connector_id: str, data: Dict[str, Any]) -> None:
        self._connection = FrameworkConnection(
            connector_id=connector_id,
            accounts=list(data.get("accounts") or []),
            chain_id=data.get("chainId"),
        )
        self.status = FrameworkStatus.CONNECTED

    def _on_change(self, connector_id: str, data: Dict[str, Any]) -> None:
        if self._connection is None or self._connection.connector_id != connector_id:
            return
        if "accounts" in data:
            self._connection.accounts = list(data["accounts"])
        if "chainId" in data:
            self._connection.chain_id = data["chainId"]

    def _on_disconnect(self, connector_id: str, data: Dict[str, Any]) -> None:
        if self._connection is not None and self._connection.connector_id == connector_id:
            self._reset()

    def _reset(self) -> None:
        self._connection = None
        self.status = FrameworkStatus.DISCONNECTED

    def _detach(self, connector: Connector) -> None:
        connector.emitter.clear()
