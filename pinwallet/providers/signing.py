"""
Signing provider capability.

The secure-enclave signing SDK renders the PIN UI and executes challenges on
its own schedule. It is modelled as a process-wide resource: a factory is
registered once at startup, and the instance is built lazily on first
interactive use. In non-interactive execution (``signing_interactive=False``)
it is never constructed.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ..config import settings
from .custody import CredentialPair

logger = logging.getLogger(__name__)

SigningCallback = Callable[[Optional[Any], Optional[Dict[str, Any]]], None]
SigningProviderFactory = Callable[[str], "SigningProvider"]


class SigningError(Exception):
    """Challenge execution failed or was rejected by the user."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class SigningUnavailableError(SigningError):
    """No signing SDK can be used in this process."""
    pass


class SigningProvider(ABC):
    """Capability interface of the client-side signing SDK."""

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    @abstractmethod
    def set_authentication(self, credentials: CredentialPair) -> None:
        """Must be called before ``execute``."""
        pass

    @abstractmethod
    def execute(self, challenge_id: str, callback: SigningCallback) -> None:
        """Start a challenge; ``callback(error, result)`` reports the outcome."""
        pass

    @abstractmethod
    async def get_device_id(self) -> str:
        pass


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return error.get("message") or "Failed to execute challenge"
    return getattr(error, "message", None) or str(error) or "Failed to execute challenge"


def _error_code(error: Any) -> Optional[int]:
    code = error.get("code") if isinstance(error, dict) else getattr(error, "code", None)
    return code if isinstance(code, int) else None


async def run_challenge(provider: SigningProvider, challenge_id: str) -> Dict[str, Any]:
    """
    Execute a challenge and wait for the provider's callback.

    The callback may fire from another thread and is honoured at most once;
    later invocations are dropped.

    Raises:
        SigningError: the provider reported an error or refused to start
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _settle(error: Optional[Any], result: Optional[Dict[str, Any]]) -> None:
        if future.done():
            logger.debug(f"Ignoring repeated callback for challenge {challenge_id}")
            return
        if error is not None:
            future.set_exception(SigningError(_error_message(error), _error_code(error)))
        else:
            future.set_result(result or {})

    def _callback(error: Optional[Any], result: Optional[Dict[str, Any]] = None) -> None:
        loop.call_soon_threadsafe(_settle, error, result)

    try:
        provider.execute(challenge_id, _callback)
    except SigningError:
        raise
    except Exception as exc:
        raise SigningError(_error_message(exc)) from exc

    return await future


_factory: Optional[SigningProviderFactory] = None
_signing_provider: Optional[SigningProvider] = None


def register_signing_provider_factory(factory: SigningProviderFactory) -> None:
    """Install the factory used to build the process-wide signing provider."""
    global _factory, _signing_provider
    _factory = factory
    _signing_provider = None


def get_signing_provider() -> SigningProvider:
    global _signing_provider
    if not settings.signing_interactive:
        raise SigningUnavailableError("Signing is not available in non-interactive execution")
    if _signing_provider is None:
        if not settings.has_app_id:
            raise SigningUnavailableError(
                "App ID is not configured. Please check your environment variables."
            )
        if _factory is None:
            raise SigningUnavailableError("No signing provider has been registered")
        _signing_provider = _factory(settings.custody_app_id)
        logger.info("Signing provider initialized")
    return _signing_provider


def reset_signing_provider() -> None:
    global _factory, _signing_provider
    _factory = None
    _signing_provider = None
