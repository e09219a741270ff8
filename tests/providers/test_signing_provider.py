"""Tests for the signing provider bridge and process-wide registry."""

import asyncio
import threading

import pytest

from conftest import ALICE_CREDENTIALS, FakeSigner

from pinwallet.config import settings
from pinwallet.providers import signing
from pinwallet.providers.signing import (
    SigningError,
    SigningUnavailableError,
    get_signing_provider,
    register_signing_provider_factory,
    run_challenge,
)


@pytest.fixture(autouse=True)
def clean_registry():
    signing.reset_signing_provider()
    yield
    signing.reset_signing_provider()


class DoubleCallbackSigner(FakeSigner):
    def execute(self, challenge_id, callback):
        callback(None, {"first": True})
        callback({"message": "late error"}, None)


class ThreadedSigner(FakeSigner):
    def execute(self, challenge_id, callback):
        threading.Thread(target=callback, args=(None, {"challengeId": challenge_id})).start()


class TestRunChallenge:

    @pytest.mark.asyncio
    async def test_success(self):
        signer = FakeSigner()
        signer.set_authentication(ALICE_CREDENTIALS)

        result = await run_challenge(signer, "c1")

        assert result["challengeId"] == "c1"

    @pytest.mark.asyncio
    async def test_error_payload_becomes_signing_error(self):
        signer = FakeSigner(error={"code": 155706, "message": "User cancelled"})
        signer.set_authentication(ALICE_CREDENTIALS)

        with pytest.raises(SigningError) as exc_info:
            await run_challenge(signer, "c1")

        assert exc_info.value.message == "User cancelled"
        assert exc_info.value.code == 155706

    @pytest.mark.asyncio
    async def test_only_first_callback_counts(self):
        result = await run_challenge(DoubleCallbackSigner(), "c1")

        assert result == {"first": True}

    @pytest.mark.asyncio
    async def test_callback_from_other_thread(self):
        result = await asyncio.wait_for(run_challenge(ThreadedSigner(), "c9"), timeout=2)

        assert result["challengeId"] == "c9"

    @pytest.mark.asyncio
    async def test_synchronous_failure_wrapped(self):
        # Not authenticated: FakeSigner raises before invoking the callback
        with pytest.raises(SigningError):
            await run_challenge(FakeSigner(), "c1")


class TestRegistry:

    def test_unavailable_when_not_interactive(self, monkeypatch):
        monkeypatch.setattr(settings, "signing_interactive", False)
        register_signing_provider_factory(lambda app_id: FakeSigner())

        with pytest.raises(SigningUnavailableError):
            get_signing_provider()

    def test_unavailable_without_app_id(self, monkeypatch):
        monkeypatch.setattr(settings, "custody_app_id", "")
        register_signing_provider_factory(lambda app_id: FakeSigner())

        with pytest.raises(SigningUnavailableError):
            get_signing_provider()

    def test_unavailable_without_factory(self, monkeypatch):
        monkeypatch.setattr(settings, "custody_app_id", "app-1")

        with pytest.raises(SigningUnavailableError):
            get_signing_provider()

    def test_built_once_with_app_id(self, monkeypatch):
        monkeypatch.setattr(settings, "signing_interactive", True)
        monkeypatch.setattr(settings, "custody_app_id", "app-1")
        built = []

        def factory(app_id):
            built.append(app_id)
            return FakeSigner()

        register_signing_provider_factory(factory)

        first = get_signing_provider()
        second = get_signing_provider()

        assert first is second
        assert built == ["app-1"]
