"""Server-side proxy to the custody API so clients never see the service API key."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from ..providers.custody import CredentialPair, CustodyProvider, CustodyResult, get_custody_provider

router = APIRouter(prefix="/api")

logger = logging.getLogger(__name__)


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _respond(result: CustodyResult) -> JSONResponse:
    if result.is_created:
        return JSONResponse(result.payload or {}, status_code=200)
    if result.status_code is None:
        # Transport failure before the custody service answered
        return _error(result.reason or "Upstream request failed", 504 if result.timed_out else 502)
    return JSONResponse(result.payload or {"error": result.reason}, status_code=result.status_code)


def _user_credentials(user_token: str) -> CredentialPair:
    # Only the user token travels with these calls
    return CredentialPair(session_token=user_token, encryption_key="")


@router.post("/endpoints")
async def custody_endpoints(
    body: Optional[Dict[str, Any]] = Body(default=None),
    custody: CustodyProvider = Depends(get_custody_provider),
) -> JSONResponse:
    params = dict(body or {})
    action = params.pop("action", None)
    if not action:
        return _error("Missing action")

    try:
        if action == "createUser":
            user_id = params.get("userId")
            if not user_id:
                return _error("Missing required field: userId")
            return _respond(await custody.create_user(user_id))

        if action == "getUserToken":
            user_id = params.get("userId")
            if not user_id:
                return _error("Missing required field: userId")
            return _respond(await custody.issue_token(user_id))

        if action == "initializeUser":
            user_token = params.get("userToken")
            if not user_token:
                return _error("Missing userToken")
            return _respond(
                await custody.initialize_account(
                    _user_credentials(user_token),
                    account_type=params.get("accountType"),
                    chains=params.get("blockchains"),
                )
            )

        if action == "listWallets":
            user_token = params.get("userToken")
            if not user_token:
                return _error("Missing userToken")
            return _respond(await custody.list_wallets(_user_credentials(user_token)))

        if action == "getTokenBalance":
            user_token = params.get("userToken")
            wallet_id = params.get("walletId")
            if not user_token or not wallet_id:
                return _error("Missing userToken or walletId")
            return _respond(await custody.get_token_balance(_user_credentials(user_token), wallet_id))

    except Exception:
        logger.exception("Error in /api/endpoints")
        return _error("Internal server error", 500)

    return _error(f"Unknown action: {action}")
