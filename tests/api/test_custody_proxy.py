"""Tests for the custody proxy endpoint."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import ALICE_CREDENTIALS, FakeCustody

from pinwallet.main import app
from pinwallet.providers.custody import CustodyResult, get_custody_provider


@pytest.fixture
def proxy_custody() -> FakeCustody:
    custody = FakeCustody()
    custody.create_user.return_value = CustodyResult.created(
        {"id": "alice1"}, payload={"id": "alice1", "status": "ENABLED"}
    )
    custody.issue_token.return_value = CustodyResult.created(
        ALICE_CREDENTIALS, payload={"userToken": "t1", "encryptionKey": "k1"}
    )
    custody.initialize_account.return_value = CustodyResult.created("c1", payload={"challengeId": "c1"})
    custody.list_wallets.return_value = CustodyResult.created([], payload={"wallets": []})
    custody.get_token_balance.return_value = CustodyResult.created([], payload={"tokenBalances": []})
    custody.health_check = AsyncMock(return_value={"status": "healthy"})
    return custody


@pytest.fixture
def client(proxy_custody):
    app.dependency_overrides[get_custody_provider] = lambda: proxy_custody
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_missing_action(client):
    response = client.post("/api/endpoints", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "Missing action"}


def test_unknown_action(client):
    response = client.post("/api/endpoints", json={"action": "dropTables"})

    assert response.status_code == 400
    assert response.json() == {"error": "Unknown action: dropTables"}


@pytest.mark.parametrize(
    "body,error",
    [
        ({"action": "createUser"}, "Missing required field: userId"),
        ({"action": "getUserToken"}, "Missing required field: userId"),
        ({"action": "initializeUser"}, "Missing userToken"),
        ({"action": "listWallets"}, "Missing userToken"),
        ({"action": "getTokenBalance", "userToken": "t1"}, "Missing userToken or walletId"),
    ],
)
def test_missing_fields(client, proxy_custody, body, error):
    response = client.post("/api/endpoints", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": error}
    assert proxy_custody.call_count == 0


def test_create_user_returns_unwrapped_data(client, proxy_custody):
    response = client.post("/api/endpoints", json={"action": "createUser", "userId": "alice1"})

    assert response.status_code == 200
    assert response.json() == {"id": "alice1", "status": "ENABLED"}
    proxy_custody.create_user.assert_awaited_once_with("alice1")


def test_get_user_token(client):
    response = client.post("/api/endpoints", json={"action": "getUserToken", "userId": "alice1"})

    assert response.json() == {"userToken": "t1", "encryptionKey": "k1"}


def test_initialize_user_forwards_options(client, proxy_custody):
    response = client.post(
        "/api/endpoints",
        json={"action": "initializeUser", "userToken": "t1", "accountType": "SCA", "blockchains": ["ARC-TESTNET"]},
    )

    assert response.json() == {"challengeId": "c1"}
    args, kwargs = proxy_custody.initialize_account.await_args
    assert args[0].session_token == "t1"
    assert kwargs == {"account_type": "SCA", "chains": ["ARC-TESTNET"]}


def test_remote_error_passes_through(client, proxy_custody):
    proxy_custody.initialize_account.return_value = CustodyResult.already_exists(
        status_code=409,
        error_code=155106,
        reason="User already initialized",
        payload={"code": 155106, "message": "User already initialized"},
    )

    response = client.post("/api/endpoints", json={"action": "initializeUser", "userToken": "t1"})

    assert response.status_code == 409
    assert response.json() == {"code": 155106, "message": "User already initialized"}


def test_transport_timeout(client, proxy_custody):
    proxy_custody.list_wallets.return_value = CustodyResult.failed("timed out", timed_out=True)

    response = client.post("/api/endpoints", json={"action": "listWallets", "userToken": "t1"})

    assert response.status_code == 504


def test_token_balance(client, proxy_custody):
    response = client.post(
        "/api/endpoints", json={"action": "getTokenBalance", "userToken": "t1", "walletId": "w1"}
    )

    assert response.json() == {"tokenBalances": []}
    args, _ = proxy_custody.get_token_balance.await_args
    assert args[1] == "w1"


def test_unexpected_error_is_500(client, proxy_custody):
    proxy_custody.list_wallets.side_effect = RuntimeError("boom")

    response = client.post("/api/endpoints", json={"action": "listWallets", "userToken": "t1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_request_id_header(client):
    response = client.post("/api/endpoints", json={}, headers={"x-request-id": "req-1"})

    assert response.headers["x-request-id"] == "req-1"


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["providers"]["custody"] == {"status": "healthy"}
