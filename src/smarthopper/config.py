"""Application configuration contract."""

import sys
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_VERSION = "0.1.0"
TOOL_TIMEOUT_MIN_SECONDS = 1
TOOL_TIMEOUT_MAX_SECONDS = 600


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    settings_path: str = Field(
        alias="SMARTHOPPER_SETTINGS_PATH", default="~/.smarthopper/settings.json"
    )
    providers_dir: str = Field(alias="SMARTHOPPER_PROVIDERS_DIR", default="")
    provider_pattern: str = Field(
        alias="SMARTHOPPER_PROVIDER_PATTERN", default="smarthopper_providers_*.py"
    )
    default_provider: str = Field(alias="SMARTHOPPER_DEFAULT_PROVIDER", default="")

    hash_base_url: str = Field(
        alias="SMARTHOPPER_HASH_BASE_URL",
        default="https://architects-toolkit.github.io/SmartHopper/hashes",
    )
    hash_timeout_seconds: float = Field(alias="SMARTHOPPER_HASH_TIMEOUT_SECONDS", default=10.0)
    version: str = Field(alias="SMARTHOPPER_VERSION", default=PACKAGE_VERSION)
    platform: str = Field(alias="SMARTHOPPER_PLATFORM", default="")
    signing_key: str = Field(alias="SMARTHOPPER_SIGNING_KEY", default="")

    tool_timeout_seconds: int = Field(alias="SMARTHOPPER_TOOL_TIMEOUT_SECONDS", default=120)
    max_tool_iterations: int = Field(alias="SMARTHOPPER_MAX_TOOL_ITERATIONS", default=10)
    request_timeout_seconds: float = Field(
        alias="SMARTHOPPER_REQUEST_TIMEOUT_SECONDS", default=120.0
    )
    stream_idle_timeout_seconds: float = Field(
        alias="SMARTHOPPER_STREAM_IDLE_TIMEOUT_SECONDS", default=0.0
    )

    openai_api_key: str = Field(alias="OPENAI_API_KEY", default="")
    anthropic_api_key: str = Field(alias="ANTHROPIC_API_KEY", default="")

    def resolved_platform(self) -> str:
        if self.platform.strip():
            return self.platform.strip()
        if sys.platform.startswith("win"):
            return "net7.0-windows"
        if sys.platform == "darwin":
            return "net7.0-macos"
        return "net7.0-linux"

    def clamped_tool_timeout(self) -> int:
        return max(
            TOOL_TIMEOUT_MIN_SECONDS,
            min(TOOL_TIMEOUT_MAX_SECONDS, int(self.tool_timeout_seconds)),
        )


def validate_settings_for_env(settings: Settings) -> None:
    problems: list[str] = []
    if settings.max_tool_iterations < 1:
        problems.append("SMARTHOPPER_MAX_TOOL_ITERATIONS(must be >= 1)")
    if settings.request_timeout_seconds <= 0:
        problems.append("SMARTHOPPER_REQUEST_TIMEOUT_SECONDS(must be > 0)")
    if settings.stream_idle_timeout_seconds < 0:
        problems.append("SMARTHOPPER_STREAM_IDLE_TIMEOUT_SECONDS(must be >= 0)")

    if settings.app_env == "prod":
        if not settings.hash_base_url.startswith("https://"):
            problems.append("SMARTHOPPER_HASH_BASE_URL(https required)")
        if not settings.settings_path.strip():
            problems.append("SMARTHOPPER_SETTINGS_PATH")

    if problems:
        keys = ", ".join(sorted(set(problems)))
        raise ValueError(f"invalid configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
