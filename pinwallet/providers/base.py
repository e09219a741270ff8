from abc import ABC, abstractmethod
from typing import Any, Dict


class Provider(ABC):
    """Base interface for remote services the wallet talks to"""

    name: str
    timeout_s: float = 30

    @abstractmethod
    async def ready(self) -> bool:
        """Check if the provider is configured well enough to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status (healthy / disabled / error)"""
        pass

    async def close(self) -> None:
        """Release pooled connections"""
        pass
