from chainsync.config import DEFAULT_API_BASE_URL, Settings


def test_api_base_url_defaults_to_local_backend(monkeypatch):
    """With nothing configured the client talks to the local dev backend."""

    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.delenv("VITE_API_URL", raising=False)

    settings = Settings()

    assert settings.api_base_url == DEFAULT_API_BASE_URL


def test_api_base_url_legacy_alias(monkeypatch):
    """The legacy VITE_API_URL variable is honoured when present."""

    monkeypatch.delenv("API_BASE_URL", raising=False)
    monkeypatch.setenv("VITE_API_URL", "https://api.chainsync.example/api/v1/")

    settings = Settings()

    assert settings.api_base_url == "https://api.chainsync.example/api/v1"


def test_api_base_url_direct_env(monkeypatch):
    """Environment-provided API_BASE_URL remains the primary source."""

    monkeypatch.setenv("API_BASE_URL", "https://primary.example/api/v1")
    monkeypatch.setenv("VITE_API_URL", "https://legacy.example/api/v1")

    settings = Settings()

    assert settings.api_base_url == "https://primary.example/api/v1"


def test_storage_keys_and_timers_defaults(monkeypatch):
    monkeypatch.delenv("REFRESH_THRESHOLD_SECONDS", raising=False)

    settings = Settings()

    assert settings.session_storage_key == "chainsync_auth"
    assert settings.transfers_storage_key == "transfer-storage"
    assert settings.refresh_threshold_seconds == 300
    assert settings.discovery_grace_period_ms == 500
    assert settings.check_balance_before_submit is False
    assert settings.progress_step_dwell_seconds == [2.0, 4.0, 3.0, 5.0, 3.0]


def test_env_overrides_are_case_insensitive(monkeypatch):
    monkeypatch.setenv("refresh_threshold_seconds", "60")
    monkeypatch.setenv("CHECK_BALANCE_BEFORE_SUBMIT", "true")

    settings = Settings()

    assert settings.refresh_threshold_seconds == 60
    assert settings.check_balance_before_submit is True
