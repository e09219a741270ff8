"""
Sync Reconciler

Keeps the multi-chain framework's connection in line with the onboarding
state machine. The machine is the source of truth; the framework follows.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

from pinwallet.services.user_address import UserAddressQuery

from ..session.models import ConnectionStatus
from ..session.state_machine import OnboardingStateMachine
from .adapter import CONNECTOR_ID
from .framework import ConnectorEmitter, FrameworkStatus, MultiChainFramework


logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    NONE = "none"
    CONNECT = "connect"
    DISCONNECT = "disconnect"


class SyncReconciler:
    """
    Idempotent reconciliation between the machine and the framework.

    - machine connected on address A, framework absent or on another address: connect
    - machine disconnected, framework connected: disconnect, unless the machine
      has not yet restored the persisted session the framework resumed from
    - anything else: nothing to do
    """

    def __init__(
        self,
        machine: OnboardingStateMachine,
        framework: MultiChainFramework,
        connector_id: str = CONNECTOR_ID,
        address_query: Optional[UserAddressQuery] = None,
    ):
        self.machine = machine
        self.framework = framework
        self.connector_id = connector_id
        self.address_query = address_query or UserAddressQuery(machine)

        self._in_flight = False
        self._dirty = False
        self._started = False
        self._tasks: Set[asyncio.Task] = set()
        self.last_action = SyncAction.NONE

    def plan(self) -> SyncAction:
        status = self.machine.status
        if status.is_connected:
            if self.framework.status in (FrameworkStatus.CONNECTING, FrameworkStatus.RECONNECTING):
                return SyncAction.NONE
            current = self.framework.address if self.framework.is_connected else None
            if current is None or current.lower() != (status.address or "").lower():
                return SyncAction.CONNECT
            return SyncAction.NONE

        if self.framework.is_connected:
            # A framework reconnect can land before the machine restores the same session
            if self.machine.has_pending_restore:
                return SyncAction.NONE
            return SyncAction.DISCONNECT
        return SyncAction.NONE

    async def evaluate(self) -> SyncAction:
        """Run at most one corrective action; failures are logged, never raised."""
        if self._in_flight:
            self._dirty = True
            return SyncAction.NONE

        self._in_flight = True
        action = SyncAction.NONE
        try:
            action = self.plan()
            if action == SyncAction.NONE:
                return action

            logger.info(f"Syncing connector state: {action.value}")
            try:
                if action == SyncAction.CONNECT:
                    await self.framework.connect(self.connector_id)
                else:
                    await self.framework.disconnect()
            except Exception as e:
                logger.error(f"Failed to {action.value} connector: {e}")
            finally:
                await self.address_query.invalidate()
            self.last_action = action
            return action
        finally:
            self._in_flight = False
            if self._dirty:
                self._dirty = False
                await self.evaluate()

    def start(self) -> None:
        """Subscribe to machine status changes and framework connection events."""
        if self._started:
            return
        self._started = True
        self.machine.register_status_callback(self._on_status)
        emitter = self._emitter()
        if emitter is not None:
            for event in ("connect", "change", "disconnect"):
                emitter.on(event, self._on_framework_event)

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.machine.unregister_status_callback(self._on_status)
        emitter = self._emitter()
        if emitter is not None:
            for event in ("connect", "change", "disconnect"):
                emitter.off(event, self._on_framework_event)
        for task in list(self._tasks):
            task.cancel()

    async def _on_status(self, status: ConnectionStatus) -> None:
        await self.evaluate()

    def _on_framework_event(self, data: Dict[str, Any]) -> None:
        # Emitter listeners are synchronous; the re-evaluation runs as its own task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.evaluate())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _emitter(self) -> Optional[ConnectorEmitter]:
        try:
            return self.framework.get_connector(self.connector_id).emitter
        except KeyError:
            return None
