import os

from pathlib import Path
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

DEFAULT_API_BASE_URL = "http://localhost:3001/api/v1"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.api_base_url:
            fallback = os.getenv("VITE_API_URL") or DEFAULT_API_BASE_URL
            object.__setattr__(self, "api_base_url", fallback.rstrip("/"))

    # Backend
    api_base_url: str = Field(default="", description="Versioned base URL of the ChainSync REST API")
    request_timeout_seconds: int = Field(default=30, description="Request timeout")
    log_level: str = Field(default="INFO", description="Logging level")

    # Durable storage
    storage_dir: Path = Field(
        default=BASE_DIR / ".chainsync",
        description="Directory used by the file-backed key-value store",
    )
    session_storage_key: str = Field(
        default="chainsync_auth",
        description="Key under which the session is persisted",
    )
    transfers_storage_key: str = Field(
        default="transfer-storage",
        description="Key under which the local transfer history is persisted",
    )

    # Session
    auto_refresh: bool = Field(default=True, description="Refresh the access token before it expires")
    refresh_threshold_seconds: int = Field(
        default=300,
        ge=0,
        description="Refresh this many seconds before the access token expires",
    )

    # Wallet discovery
    discovery_grace_period_ms: int = Field(
        default=500,
        ge=0,
        description="How long to wait for announced providers before the legacy scan",
    )

    # Chain interaction
    confirmation_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between transaction receipt polls",
    )
    confirmation_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Give up waiting for a receipt after this many seconds",
    )
    balance_poll_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between native balance reads for the session address",
    )

    # Transfers
    check_balance_before_submit: bool = Field(
        default=False,
        description="Reject transfers whose amount exceeds the token balance before approval",
    )
    progress_step_dwell_seconds: List[float] = Field(
        default_factory=lambda: [2.0, 4.0, 3.0, 5.0, 3.0],
        description="Simulated dwell time of each progress step, in template order",
    )


# Global settings instance
settings = Settings()
