"""Configuration management for the pipeline orchestrator.

This module provides centralized configuration loading from environment variables.
Values that must stay fixed for the process lifetime are cached with lru_cache.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required for production)
    SERVER_ENV: development | staging | production (default: development)
    WEBHOOK_BASE_URL: Public base URL providers call back to (optional)
    WEBHOOK_SECRET: Shared secret embedded in callback URLs (optional)
    WEBHOOK_ALLOWED_HOSTS: Extra comma-separated hosts for asset URLs (optional)
    OPENROUTER_API_KEY / OPENROUTER_BASE_URL / DEFAULT_LLM_MODEL: LLM provider
    KIE_API_KEY / KIE_BASE_URL: Suno and NanoBanana provider
    R2_ACCOUNT_ID / R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY / R2_BUCKET_NAME / R2_PUBLIC_URL
    WORKSPACE_DIR: Scratch directory for media assembly (default: /tmp/songreel)
    WORKER_CONCURRENCY: Parallel advance items per worker (default: 10)
    MAX_STAGE_ATTEMPTS: Transport-error attempts per stage (default: 3)
    FFMPEG_TIMEOUT: Seconds allowed per ffmpeg invocation (default: 600)
    STALLED_JOB_SWEEP_INTERVAL / STALLED_JOB_AGE: Lost-item recovery (default: 300 / 1800 seconds)
    YOUTUBE_CLIENT_ID / YOUTUBE_CLIENT_SECRET / YOUTUBE_REFRESH_TOKEN: Optional publishing
    YOUTUBE_PRIVACY_STATUS: private | unlisted | public (default: unlisted)

Usage:
    from songreel.config import get_database_url, get_webhook_callback_base

    db_url = get_database_url()  # Raises if DATABASE_URL not set
    callback_base = get_webhook_callback_base()  # None when webhooks disabled
"""

import os
from dataclasses import dataclass
from functools import lru_cache

import structlog

from songreel.exceptions import ConfigurationError

log = structlog.get_logger(__name__)

DEFAULT_KIE_BASE_URL = "https://api.kie.ai"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_LLM_MODEL = "anthropic/claude-3.5-sonnet"


def _get_int(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer env var, clamping to [minimum, maximum].

    Invalid values fall back to the default with a warning.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_int_config", name=name, value=raw, default=default)
        return default

    if value < minimum or value > maximum:
        clamped = max(minimum, min(value, maximum))
        log.warning(
            "int_config_clamped", name=name, value=value, clamped=clamped,
            minimum=minimum, maximum=maximum,
        )
        return clamped

    return value


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Returns:
        Database URL with asyncpg driver.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_server_env() -> str:
    """Get deployment environment name (lowercase, default "development")."""
    return os.getenv("SERVER_ENV", "development").strip().lower() or "development"


def is_development() -> bool:
    return get_server_env() == "development"


def get_webhook_secret() -> str:
    """Get the shared webhook secret ("" when unset)."""
    return os.getenv("WEBHOOK_SECRET", "")


def get_webhook_callback_base() -> str | None:
    """Get the base URL used to build provider callback URLs.

    Callbacks are only enabled when both WEBHOOK_BASE_URL and WEBHOOK_SECRET
    are set; otherwise stage handlers fall back to polling.

    Returns:
        "{WEBHOOK_BASE_URL}/api/v1/webhooks/{WEBHOOK_SECRET}" or None.
    """
    base_url = os.getenv("WEBHOOK_BASE_URL", "").rstrip("/")
    secret = get_webhook_secret()
    if not base_url or not secret:
        return None
    return f"{base_url}/api/v1/webhooks/{secret}"


def get_allowed_asset_hosts() -> list[str]:
    """Get extra asset hosts from WEBHOOK_ALLOWED_HOSTS (comma-separated)."""
    raw = os.getenv("WEBHOOK_ALLOWED_HOSTS", "")
    return [host.strip().lower() for host in raw.split(",") if host.strip()]


def get_openrouter_api_key() -> str:
    """Get OpenRouter API key.

    Raises:
        ConfigurationError: If OPENROUTER_API_KEY not set.
    """
    key = os.getenv("OPENROUTER_API_KEY")
    if not key:
        raise ConfigurationError("OPENROUTER_API_KEY environment variable is required")
    return key


def get_openrouter_base_url() -> str:
    return os.getenv("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL).rstrip("/")


def get_default_llm_model() -> str:
    return os.getenv("DEFAULT_LLM_MODEL", DEFAULT_LLM_MODEL)


def get_kie_api_key() -> str:
    """Get KIE API key shared by the Suno and NanoBanana clients.

    Raises:
        ConfigurationError: If KIE_API_KEY not set.
    """
    key = os.getenv("KIE_API_KEY")
    if not key:
        raise ConfigurationError("KIE_API_KEY environment variable is required")
    return key


def get_kie_base_url() -> str:
    return os.getenv("KIE_BASE_URL", DEFAULT_KIE_BASE_URL).rstrip("/")


@dataclass(frozen=True)
class R2Settings:
    """Cloudflare R2 bucket credentials."""

    account_id: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    public_url: str | None = None

    @property
    def endpoint_url(self) -> str:
        return f"https://{self.account_id}.r2.cloudflarestorage.com"


def get_r2_settings() -> R2Settings:
    """Get R2 credentials from environment.

    Raises:
        ConfigurationError: If any of the required R2_* variables is missing.
    """
    required = {
        "R2_ACCOUNT_ID": os.getenv("R2_ACCOUNT_ID", ""),
        "R2_ACCESS_KEY_ID": os.getenv("R2_ACCESS_KEY_ID", ""),
        "R2_SECRET_ACCESS_KEY": os.getenv("R2_SECRET_ACCESS_KEY", ""),
        "R2_BUCKET_NAME": os.getenv("R2_BUCKET_NAME", ""),
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise ConfigurationError(f"Missing R2 configuration: {', '.join(missing)}")

    public_url = os.getenv("R2_PUBLIC_URL", "").rstrip("/") or None
    return R2Settings(
        account_id=required["R2_ACCOUNT_ID"],
        access_key_id=required["R2_ACCESS_KEY_ID"],
        secret_access_key=required["R2_SECRET_ACCESS_KEY"],
        bucket_name=required["R2_BUCKET_NAME"],
        public_url=public_url,
    )


def get_workspace_dir() -> str:
    """Get scratch directory for media assembly (default: /tmp/songreel)."""
    return os.getenv("WORKSPACE_DIR", "/tmp/songreel")


def get_worker_concurrency() -> int:
    """Get number of advance items a worker processes in parallel.

    Environment Variable:
        WORKER_CONCURRENCY: Integer 1-50 (default: 10)
    """
    return _get_int("WORKER_CONCURRENCY", default=10, minimum=1, maximum=50)


def get_max_stage_attempts() -> int:
    """Get transport-error attempt bound per stage.

    Environment Variable:
        MAX_STAGE_ATTEMPTS: Integer 1-10 (default: 3)
    """
    return _get_int("MAX_STAGE_ATTEMPTS", default=3, minimum=1, maximum=10)


def get_ffmpeg_timeout() -> int:
    """Get ffmpeg timeout in seconds (FFMPEG_TIMEOUT, 30-3600, default 600)."""
    return _get_int("FFMPEG_TIMEOUT", default=600, minimum=30, maximum=3600)


def get_stalled_job_sweep_interval() -> int:
    """Get seconds between stalled job sweeps.

    Environment Variable:
        STALLED_JOB_SWEEP_INTERVAL: Integer 30-3600 (default: 300)
    """
    return _get_int("STALLED_JOB_SWEEP_INTERVAL", default=300, minimum=30, maximum=3600)


def get_stalled_job_age() -> int:
    """Get seconds without an update after which a non-terminal job is swept.

    Kept well above the longest legitimate wait (webhook grace, retry
    backoff, a single ffmpeg run).

    Environment Variable:
        STALLED_JOB_AGE: Integer 600-86400 (default: 1800)
    """
    return _get_int("STALLED_JOB_AGE", default=1800, minimum=600, maximum=86400)


@dataclass(frozen=True)
class YouTubeSettings:
    """OAuth credentials of the channel completed videos are published to."""

    client_id: str
    client_secret: str
    refresh_token: str
    privacy_status: str = "unlisted"


YOUTUBE_PRIVACY_STATUSES = ("private", "unlisted", "public")


def get_youtube_settings() -> YouTubeSettings | None:
    """Get YouTube publishing credentials, or None when publishing is disabled.

    Publishing is enabled only when YOUTUBE_CLIENT_ID, YOUTUBE_CLIENT_SECRET
    and YOUTUBE_REFRESH_TOKEN are all set. YOUTUBE_PRIVACY_STATUS defaults
    to ``unlisted``.
    """
    client_id = os.getenv("YOUTUBE_CLIENT_ID", "")
    client_secret = os.getenv("YOUTUBE_CLIENT_SECRET", "")
    refresh_token = os.getenv("YOUTUBE_REFRESH_TOKEN", "")
    if not (client_id and client_secret and refresh_token):
        return None

    privacy_status = os.getenv("YOUTUBE_PRIVACY_STATUS", "unlisted").lower()
    if privacy_status not in YOUTUBE_PRIVACY_STATUSES:
        log.warning("invalid_youtube_privacy_status", value=privacy_status, default="unlisted")
        privacy_status = "unlisted"

    return YouTubeSettings(
        client_id=client_id,
        client_secret=client_secret,
        refresh_token=refresh_token,
        privacy_status=privacy_status,
    )
