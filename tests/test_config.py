"""Tests for songreel/config.py configuration module.

This module tests:
- Environment variable loading functions
- Default value handling and clamping
- Error cases for missing required configuration
"""

import pytest

from songreel.config import (
    DEFAULT_KIE_BASE_URL,
    DEFAULT_LLM_MODEL,
    get_allowed_asset_hosts,
    get_database_url,
    get_default_llm_model,
    get_ffmpeg_timeout,
    get_kie_api_key,
    get_kie_base_url,
    get_max_stage_attempts,
    get_openrouter_api_key,
    get_r2_settings,
    get_stalled_job_age,
    get_stalled_job_sweep_interval,
    get_webhook_callback_base,
    get_worker_concurrency,
    get_youtube_settings,
    is_development,
)
from songreel.exceptions import ConfigurationError


class TestGetDatabaseUrl:
    @pytest.fixture(autouse=True)
    def clear_cache(self):
        get_database_url.cache_clear()
        yield
        get_database_url.cache_clear()

    def test_raises_value_error_when_not_set(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_database_url()

    def test_converts_postgresql_scheme(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://user:pw@db:5432/songreel")

        assert get_database_url() == "postgresql+asyncpg://user:pw@db:5432/songreel"

    def test_returns_asyncpg_url_unchanged(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://user:pw@db:5432/songreel")

        assert get_database_url() == "postgresql+asyncpg://user:pw@db:5432/songreel"


class TestWebhookConfig:
    def test_callback_base_requires_url_and_secret(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("WEBHOOK_BASE_URL", "https://songreel.example.com/")
        monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
        assert get_webhook_callback_base() is None

        monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")
        assert get_webhook_callback_base() == "https://songreel.example.com/api/v1/webhooks/s3cret"

    def test_callback_base_disabled_without_base_url(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("WEBHOOK_BASE_URL", raising=False)
        monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")

        assert get_webhook_callback_base() is None

    def test_allowed_asset_hosts_parsed(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("WEBHOOK_ALLOWED_HOSTS", " CDN.example.com , ,media.example.org")

        assert get_allowed_asset_hosts() == ["cdn.example.com", "media.example.org"]

    @pytest.mark.parametrize("value, expected", [("development", True), ("Production", False), ("", True)])
    def test_is_development(self, monkeypatch: pytest.MonkeyPatch, value, expected):
        monkeypatch.setenv("SERVER_ENV", value)

        assert is_development() is expected


class TestProviderCredentials:
    def test_kie_api_key_required(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("KIE_API_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="KIE_API_KEY"):
            get_kie_api_key()

    def test_openrouter_api_key_required(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="OPENROUTER_API_KEY"):
            get_openrouter_api_key()

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("KIE_BASE_URL", raising=False)
        monkeypatch.delenv("DEFAULT_LLM_MODEL", raising=False)

        assert get_kie_base_url() == DEFAULT_KIE_BASE_URL
        assert get_default_llm_model() == DEFAULT_LLM_MODEL

    def test_r2_settings_report_missing_variables(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("R2_ACCOUNT_ID", "acct")
        for name in ("R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigurationError) as exc_info:
            get_r2_settings()

        assert "R2_ACCESS_KEY_ID" in str(exc_info.value)
        assert "R2_ACCOUNT_ID" not in str(exc_info.value)

    def test_r2_settings_loaded(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("R2_ACCOUNT_ID", "acct")
        monkeypatch.setenv("R2_ACCESS_KEY_ID", "key")
        monkeypatch.setenv("R2_SECRET_ACCESS_KEY", "secret")
        monkeypatch.setenv("R2_BUCKET_NAME", "videos")
        monkeypatch.setenv("R2_PUBLIC_URL", "https://videos.example.com/")

        settings = get_r2_settings()

        assert settings.public_url == "https://videos.example.com"
        assert settings.endpoint_url == "https://acct.r2.cloudflarestorage.com"


class TestIntegerSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        for name in ("WORKER_CONCURRENCY", "MAX_STAGE_ATTEMPTS", "FFMPEG_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)

        assert get_worker_concurrency() == 10
        assert get_max_stage_attempts() == 3
        assert get_ffmpeg_timeout() == 600

    def test_out_of_range_values_are_clamped(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("WORKER_CONCURRENCY", "500")
        monkeypatch.setenv("MAX_STAGE_ATTEMPTS", "0")

        assert get_worker_concurrency() == 50
        assert get_max_stage_attempts() == 1

    def test_invalid_value_falls_back_to_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FFMPEG_TIMEOUT", "ten minutes")

        assert get_ffmpeg_timeout() == 600

    def test_stalled_job_settings(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("STALLED_JOB_SWEEP_INTERVAL", raising=False)
        monkeypatch.setenv("STALLED_JOB_AGE", "60")

        assert get_stalled_job_sweep_interval() == 300
        assert get_stalled_job_age() == 600


class TestYouTubeSettings:
    @pytest.fixture
    def youtube_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("YOUTUBE_CLIENT_ID", "client.apps.googleusercontent.com")
        monkeypatch.setenv("YOUTUBE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("YOUTUBE_REFRESH_TOKEN", "1//refresh")
        monkeypatch.delenv("YOUTUBE_PRIVACY_STATUS", raising=False)
        return monkeypatch

    def test_disabled_without_refresh_token(self, youtube_env):
        youtube_env.delenv("YOUTUBE_REFRESH_TOKEN")

        assert get_youtube_settings() is None

    def test_defaults_to_unlisted(self, youtube_env):
        settings = get_youtube_settings()

        assert settings.client_id == "client.apps.googleusercontent.com"
        assert settings.privacy_status == "unlisted"

    def test_invalid_privacy_status_falls_back(self, youtube_env):
        youtube_env.setenv("YOUTUBE_PRIVACY_STATUS", "everyone")

        assert get_youtube_settings().privacy_status == "unlisted"

        youtube_env.setenv("YOUTUBE_PRIVACY_STATUS", "Public")

        assert get_youtube_settings().privacy_status == "public"
