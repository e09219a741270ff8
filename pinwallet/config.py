import os

from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the app id from the browser-style variable name when set."""

        super().model_post_init(__context)

        if not self.custody_app_id:
            fallback = os.getenv("NEXT_PUBLIC_CIRCLE_APP_ID")
            if fallback:
                object.__setattr__(self, "custody_app_id", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Proxy server host")
    port: int = Field(default=8000, description="Proxy server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Remote custody service
    custody_base_url: str = Field(
        default="https://api.circle.com",
        description="Base URL of the wallet custody REST API",
        validation_alias=AliasChoices("custody_base_url", "CIRCLE_BASE_URL"),
    )
    custody_api_key: str = Field(
        default="",
        description="Service API key sent as bearer token on every custody call",
        validation_alias=AliasChoices("custody_api_key", "CIRCLE_API_KEY"),
    )
    custody_app_id: str = Field(
        default="",
        description="App id the signing SDK is initialized with",
        validation_alias=AliasChoices("custody_app_id", "CIRCLE_APP_ID"),
    )
    custody_request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout applied to every custody call",
    )
    token_issue_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on credential issuance; fails closed",
    )
    custody_user_exists_codes: List[int] = Field(
        default_factory=lambda: [155101, 155106],
        description="Remote error codes meaning the user already exists",
    )

    # Account provisioning
    account_type: str = Field(default="SCA", description="Account type requested at initialization")
    primary_wallet_chain: str = Field(
        default="ARC-TESTNET",
        description="Chain label the wallet is provisioned on",
    )
    chain_ids: List[int] = Field(
        default_factory=lambda: [5042002],
        description="Chain ids exposed by the connector; the first one is the default",
    )

    # Settle policy after a wallet-creation challenge
    settle_initial_delay_seconds: float = Field(default=2.5, ge=0, description="Delay before the first wallet lookup")
    settle_backoff_factor: float = Field(default=2.0, ge=1, description="Multiplier between wallet lookups")
    settle_max_delay_seconds: float = Field(default=10.0, ge=0, description="Cap on the delay between lookups")
    settle_max_attempts: int = Field(default=3, ge=1, description="Maximum wallet lookups after a challenge")

    # Session persistence
    session_store_path: str = Field(
        default=str(Path.home() / ".pinwallet" / "session.json"),
        description="File backing the durable session store",
    )
    session_key_prefix: str = Field(default="pinwallet", description="Prefix of persisted session keys")

    # Signing SDK
    signing_interactive: bool = Field(
        default=True,
        description="Allow the signing SDK to be constructed (disable for server-side execution)",
    )

    # Cache Settings
    cache_ttl_seconds: int = Field(default=300, description="Cache TTL in seconds")
    max_cache_size: int = Field(default=1000, description="Maximum cache size")

    @property
    def has_custody_key(self) -> bool:
        return bool(self.custody_api_key)

    @property
    def has_app_id(self) -> bool:
        return bool(self.custody_app_id)

    @property
    def default_chain_id(self) -> int:
        return self.chain_ids[0]


# Global settings instance
settings = Settings()
