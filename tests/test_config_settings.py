from pinwallet.config import Settings


def test_circle_api_key_alias(monkeypatch):
    """Custody API key should load from the CIRCLE_* variable names."""

    monkeypatch.delenv("CUSTODY_API_KEY", raising=False)
    monkeypatch.setenv("CIRCLE_API_KEY", "sk-from-circle")

    settings = Settings()

    assert settings.custody_api_key == "sk-from-circle"
    assert settings.has_custody_key is True


def test_app_id_falls_back_to_public_variable(monkeypatch):
    """The browser-style app id variable is used when no other is set."""

    monkeypatch.delenv("CUSTODY_APP_ID", raising=False)
    monkeypatch.delenv("CIRCLE_APP_ID", raising=False)
    monkeypatch.setenv("NEXT_PUBLIC_CIRCLE_APP_ID", "app-public")

    settings = Settings()

    assert settings.custody_app_id == "app-public"
    assert settings.has_app_id is True


def test_defaults(monkeypatch):
    monkeypatch.delenv("SETTLE_MAX_ATTEMPTS", raising=False)
    monkeypatch.delenv("CHAIN_IDS", raising=False)

    settings = Settings()

    assert settings.account_type == "SCA"
    assert settings.primary_wallet_chain == "ARC-TESTNET"
    assert settings.default_chain_id == 5042002
    assert settings.custody_user_exists_codes == [155101, 155106]
    assert settings.token_issue_timeout_seconds == 30.0
    assert settings.settle_max_attempts == 3


def test_list_settings_from_env(monkeypatch):
    monkeypatch.setenv("CHAIN_IDS", "[1, 5042002]")

    settings = Settings()

    assert settings.chain_ids == [1, 5042002]
