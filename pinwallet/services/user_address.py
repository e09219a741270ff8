"""Derived read of the connected wallet address, cached per (address, state)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..cache import TTLCache, cache as default_cache

if TYPE_CHECKING:
    from ..core.session.state_machine import OnboardingStateMachine

QUERY_PREFIX = "user_address"


@dataclass
class UserAddressView:
    address: Optional[str]
    is_connected: bool
    connection_state: str
    chain_label: Optional[str] = None
    is_loading: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "isConnected": self.is_connected,
            "connectionState": self.connection_state,
            "chainLabel": self.chain_label,
            "isLoading": self.is_loading,
        }


class UserAddressQuery:
    """
    Read-through view of the state machine's primary address.

    Consumers invalidate it after any sync action so the next read reflects
    the new connection.
    """

    def __init__(self, machine: "OnboardingStateMachine", cache: Optional[TTLCache] = None):
        self.machine = machine
        self.cache = cache or default_cache

    def cache_key(self) -> str:
        status = self.machine.status
        return f"{QUERY_PREFIX}:{status.address or ''}:{status.state.value}"

    async def get(self) -> UserAddressView:
        key = self.cache_key()
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        status = self.machine.status
        view = UserAddressView(
            address=status.address if status.is_connected else None,
            is_connected=status.is_connected,
            connection_state=status.state.value,
            chain_label=status.chain_label,
            is_loading=status.is_busy,
        )
        # Intermediate states change quickly; only settled views are cached
        if not view.is_loading:
            await self.cache.set(key, view)
        return view

    async def invalidate(self) -> int:
        return await self.cache.invalidate_prefix(f"{QUERY_PREFIX}:")
