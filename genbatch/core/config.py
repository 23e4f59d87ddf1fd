"""Settings for the limiter, the provider client, logging and the HTTP app.

Each group reads its own env prefix (``RATE_LIMIT_``, ``PROVIDER_``, ``LOG_``,
``APP_``). ``APP_ENV`` (development, testing, staging or production) picks
the ``.env.<env>`` file loaded before the groups are built.

Settings are built once at startup by ``load_settings()`` and passed
explicitly into ``create_app()``; there is no module-level instance.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}


def _load_env_file(app_env: str) -> None:
    """Populate os.environ from the environment's .env file when it exists.

    Nested BaseSettings don't inherit env_file, so the file is loaded into
    the process environment before any settings group is built.
    """

    env_path = PROJECT_ROOT / ENV_FILE_MAP.get(app_env, ".env.development")
    if env_path.is_file():
        from dotenv import load_dotenv

        load_dotenv(env_path, override=False)


class RateLimitSettings(BaseSettings):
    """Per-category pacing and adaptive backoff configuration."""

    image_rpm: float = Field(10, ge=1, description="Image requests per minute")
    image_burst: int = Field(3, ge=1, description="Image burst capacity")
    speech_rpm: float = Field(20, ge=1, description="Speech requests per minute")
    speech_burst: int = Field(5, ge=1, description="Speech burst capacity")
    window_seconds: float = Field(
        60.0,
        gt=0,
        description="Length of the RPM window in seconds",
    )
    backoff_factor: float = Field(
        0.7,
        gt=0,
        le=1,
        description="Multiplier applied to the RPM per consecutive rate-limit error",
    )
    recovery_factor: float = Field(
        1.05,
        ge=1,
        description="Multiplier applied to the RPM when recovering after errors clear",
    )
    max_backoff_exponent: int = Field(
        5,
        ge=0,
        description="Cap on the backoff exponent",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class ProviderSettings(BaseSettings):
    """Remote generation provider configuration."""

    name: str = Field("minimax", description="Provider name")
    api_key: str | None = Field(None, description="Provider API key")
    base_url: str = Field(
        "https://api.minimaxi.com/v1",
        description="Provider API base URL",
    )
    timeout_seconds: float = Field(30.0, gt=0, description="Per-request timeout")
    retry_attempts: int = Field(
        3,
        ge=1,
        description="Total attempts for retryable failures (network, timeout, 5xx)",
    )
    retry_delay_seconds: float = Field(
        1.0,
        ge=0,
        description="Base delay between retries; multiplied by the attempt number",
    )

    model_config = SettingsConfigDict(
        env_prefix="PROVIDER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, ge=0, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(3, ge=0, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )
    output_dir: str = Field(
        ".",
        description="Base directory for relative output file paths",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Raises validation errors on construction if any group is invalid.
    """

    app_env: str = "development"
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    app: AppSettings = Field(default_factory=AppSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def _check_log_output(self) -> "Settings":
        if self.log.output.lower() not in {"stdout", "file"}:
            raise ValueError("LOG_OUTPUT must be 'stdout' or 'file'")
        if self.log.format.lower() not in {"json", "plain"}:
            raise ValueError("LOG_FORMAT must be 'json' or 'plain'")
        return self


def load_settings(app_env: str | None = None) -> Settings:
    """Build the settings value for this process.

    Args:
        app_env: Environment name; defaults to the APP_ENV variable.

    Returns:
        Fully validated Settings.
    """

    env = app_env or os.getenv("APP_ENV", "development")
    _load_env_file(env)
    return Settings(app_env=env)  # type: ignore[call-arg]
