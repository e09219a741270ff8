"""
Wallet Custody Provider.

Typed wrapper around the remote custody REST API that owns user-controlled,
PIN-protected wallets.

Operations:
- Create a user for an opaque identity
- Issue a short-lived session token + encryption key
- Initialize the user's account (yields a wallet-creation challenge)
- List the user's wallets
- Read token balances of a wallet

Every operation returns a ``CustodyResult`` tagged ``CREATED``,
``ALREADY_EXISTS`` or ``FAILED`` instead of raising, so callers branch on the
result kind rather than on remote error codes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar
from uuid import uuid4

import httpx

from .base import Provider
from ..config import settings

logger = logging.getLogger(__name__)

ALREADY_INITIALIZED_CODE = 155106

T = TypeVar("T")


class CustodyError(Exception):
    """Custody response could not be interpreted."""
    pass


class ResultKind(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


@dataclass
class CustodyResult(Generic[T]):
    """Outcome of a single custody call."""

    kind: ResultKind
    value: Optional[T] = None
    reason: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[int] = None
    # Unwrapped ``data`` on success, the raw error body otherwise
    payload: Dict[str, Any] = field(default_factory=dict)
    timed_out: bool = False

    @classmethod
    def created(cls, value: T, *, status_code: int = 200, payload: Optional[Dict[str, Any]] = None) -> "CustodyResult[T]":
        return cls(kind=ResultKind.CREATED, value=value, status_code=status_code, payload=payload or {})

    @classmethod
    def already_exists(
        cls,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        reason: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "CustodyResult[T]":
        return cls(
            kind=ResultKind.ALREADY_EXISTS,
            reason=reason,
            status_code=status_code,
            error_code=error_code,
            payload=payload or {},
        )

    @classmethod
    def failed(
        cls,
        reason: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        timed_out: bool = False,
    ) -> "CustodyResult[T]":
        return cls(
            kind=ResultKind.FAILED,
            reason=reason,
            status_code=status_code,
            error_code=error_code,
            payload=payload or {},
            timed_out=timed_out,
        )

    @property
    def is_created(self) -> bool:
        return self.kind == ResultKind.CREATED

    @property
    def is_already_exists(self) -> bool:
        return self.kind == ResultKind.ALREADY_EXISTS

    @property
    def is_failed(self) -> bool:
        return self.kind == ResultKind.FAILED

    @property
    def is_auth_failure(self) -> bool:
        """Remote rejected the end-user token or the service key."""
        return self.is_failed and self.status_code in (401, 403)


@dataclass(frozen=True)
class CredentialPair:
    """Short-lived end-user credentials issued by the custody service."""

    session_token: str
    encryption_key: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CredentialPair":
        token = data.get("userToken") or data.get("sessionToken")
        key = data.get("encryptionKey")
        if not token or not key:
            raise CustodyError("Token response is missing userToken or encryptionKey")
        return cls(session_token=token, encryption_key=key)

    def __repr__(self) -> str:
        return "CredentialPair(session_token=***, encryption_key=***)"


@dataclass
class WalletRecord:
    """A wallet owned by the user; unknown remote fields are kept in ``raw``."""

    id: str
    address: str
    chain_label: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WalletRecord":
        wallet_id = data.get("id")
        address = data.get("address")
        if not wallet_id or not address:
            raise CustodyError("Wallet entry is missing id or address")
        return cls(
            id=str(wallet_id),
            address=str(address),
            chain_label=data.get("blockchain") or data.get("chainLabel") or "",
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.raw,
            "id": self.id,
            "address": self.address,
            "blockchain": self.chain_label,
        }


@dataclass
class TokenBalance:
    amount: str
    symbol: str = ""
    name: str = ""
    token_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "TokenBalance":
        token = data.get("token") or {}
        return cls(
            amount=str(data.get("amount", "0")),
            symbol=token.get("symbol") or "",
            name=token.get("name") or "",
            token_id=token.get("id"),
            raw=data,
        )


@dataclass
class CustodyConfig:
    base_url: str
    api_key: str
    timeout_s: float = 30.0
    user_exists_codes: List[int] = field(default_factory=lambda: [ALREADY_INITIALIZED_CODE])


class CustodyProvider(Provider):
    """
    Provider for the wallet custody REST API.

    Usage:
        provider = get_custody_provider()

        created = await provider.create_user("alice1")
        token = await provider.issue_token("alice1")
        if token.is_created:
            init = await provider.initialize_account(token.value, account_type="SCA")
    """

    name = "custody"

    def __init__(
        self,
        config: Optional[CustodyConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or CustodyConfig(
            base_url=settings.custody_base_url,
            api_key=settings.custody_api_key,
            timeout_s=settings.custody_request_timeout_seconds,
            user_exists_codes=list(settings.custody_user_exists_codes),
        )
        self.timeout_s = self._config.timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def ready(self) -> bool:
        return bool(self._config.base_url and self._config.api_key)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Custody API key not configured"}

        try:
            response = await self._request("GET", "/ping")
            response.raise_for_status()
            return {"status": "healthy"}
        except Exception as exc:
            return {"status": "error", "reason": str(exc)}

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Users
    # =========================================================================

    async def create_user(self, identity: str) -> CustodyResult[Dict[str, Any]]:
        """Create the custody user; an existing user comes back as ``ALREADY_EXISTS``."""
        logger.info(f"Creating custody user {identity}")
        return await self._call(
            "POST",
            "/v1/w3s/users",
            json={"userId": identity},
            parse=lambda data: data,
            conflict_codes=self._config.user_exists_codes,
            conflict_statuses=(409,),
        )

    async def issue_token(
        self,
        identity: str,
        *,
        timeout_s: Optional[float] = None,
    ) -> CustodyResult[CredentialPair]:
        logger.info(f"Issuing session token for {identity}")
        return await self._call(
            "POST",
            "/v1/w3s/users/token",
            json={"userId": identity},
            parse=CredentialPair.from_api,
            timeout_s=timeout_s,
        )

    async def initialize_account(
        self,
        credentials: CredentialPair,
        *,
        account_type: Optional[str] = None,
        chains: Optional[Iterable[str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> CustodyResult[str]:
        """
        Initialize the user's account.

        Returns the wallet-creation challenge id on success. Code 155106
        (user already initialized) is reported as ``ALREADY_EXISTS``.
        """
        payload: Dict[str, Any] = {"idempotencyKey": idempotency_key or str(uuid4())}
        if account_type:
            payload["accountType"] = account_type
        if chains:
            payload["blockchains"] = list(chains)

        return await self._call(
            "POST",
            "/v1/w3s/user/initialize",
            json=payload,
            user_token=credentials.session_token,
            parse=_challenge_id,
            conflict_codes=(ALREADY_INITIALIZED_CODE,),
        )

    # =========================================================================
    # Wallets
    # =========================================================================

    async def list_wallets(self, credentials: CredentialPair) -> CustodyResult[List[WalletRecord]]:
        return await self._call(
            "GET",
            "/v1/w3s/wallets",
            user_token=credentials.session_token,
            parse=lambda data: [WalletRecord.from_api(w) for w in data.get("wallets") or []],
        )

    async def get_token_balance(
        self,
        credentials: CredentialPair,
        wallet_id: str,
    ) -> CustodyResult[List[TokenBalance]]:
        return await self._call(
            "GET",
            f"/v1/w3s/wallets/{wallet_id}/balances",
            user_token=credentials.session_token,
            parse=lambda data: [TokenBalance.from_api(b) for b in data.get("tokenBalances") or []],
        )

    # =========================================================================
    # HTTP helpers
    # =========================================================================

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                timeout=self._config.timeout_s,
                transport=self._transport,
            )
        return self._client

    def _headers(self, user_token: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }
        if user_token:
            headers["X-User-Token"] = user_token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        user_token: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> httpx.Response:
        client = await self._get_client()
        return await client.request(
            method,
            path,
            json=json,
            headers=self._headers(user_token),
            timeout=timeout_s if timeout_s is not None else self._config.timeout_s,
        )

    async def _call(
        self,
        method: str,
        path: str,
        *,
        parse,
        json: Optional[Dict[str, Any]] = None,
        user_token: Optional[str] = None,
        timeout_s: Optional[float] = None,
        conflict_codes: Iterable[int] = (),
        conflict_statuses: Iterable[int] = (),
    ) -> CustodyResult:
        try:
            response = await self._request(method, path, json=json, user_token=user_token, timeout_s=timeout_s)
        except httpx.TimeoutException as exc:
            logger.warning(f"Custody {method} {path} timed out: {exc!r}")
            return CustodyResult.failed("Request to custody service timed out", timed_out=True)
        except httpx.RequestError as exc:
            logger.warning(f"Custody {method} {path} failed: {exc!r}")
            return CustodyResult.failed(f"Request failed: {exc}")

        body = _json_body(response)

        if response.is_success:
            data = body.get("data", body)
            if not isinstance(data, dict):
                data = {}
            try:
                value = parse(data)
            except (CustodyError, AttributeError, TypeError, ValueError) as exc:
                # A 2xx with the wrong shape is a failed call, never an exception
                logger.error(f"Unexpected custody response for {method} {path}: {exc}")
                return CustodyResult.failed(str(exc), status_code=response.status_code, payload=data)
            return CustodyResult.created(value, status_code=response.status_code, payload=data)

        error_code = _error_code(body)
        reason = body.get("message") or body.get("error") or f"HTTP {response.status_code}"

        if (error_code is not None and error_code in set(conflict_codes)) or (
            response.status_code in set(conflict_statuses)
        ):
            logger.info(f"Custody {method} {path}: already exists (code={error_code})")
            return CustodyResult.already_exists(
                status_code=response.status_code,
                error_code=error_code,
                reason=reason,
                payload=body,
            )

        logger.warning(f"Custody {method} {path} -> {response.status_code} code={error_code}: {reason}")
        return CustodyResult.failed(
            reason,
            status_code=response.status_code,
            error_code=error_code,
            payload=body,
        )


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _error_code(body: Dict[str, Any]) -> Optional[int]:
    code = body.get("code")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _challenge_id(data: Dict[str, Any]) -> str:
    challenge_id = data.get("challengeId")
    if not challenge_id:
        raise CustodyError("Initialization response is missing challengeId")
    return str(challenge_id)


_custody_provider: Optional[CustodyProvider] = None


def get_custody_provider() -> CustodyProvider:
    global _custody_provider
    if _custody_provider is None:
        _custody_provider = CustodyProvider()
    return _custody_provider
