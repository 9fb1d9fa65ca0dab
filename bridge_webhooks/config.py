"""Bridge webhook tooling configuration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

DEFAULT_BRIDGE_API_URL = "https://api.bridge.xyz/v0"


@lru_cache(maxsize=8)
def _read_key_file(path: str) -> str:
    # read once per path; failed reads are not cached
    return Path(path).read_text(encoding="utf-8")


class Settings(BaseSettings):
    """Environment-driven settings (BRIDGE_API_KEY, BRIDGE_API_URL, ...)."""

    bridge_api_key: str = ""
    bridge_api_url: str = DEFAULT_BRIDGE_API_URL
    bridge_webhook_id: str = ""

    # PEM text wins over the file path when both are set
    bridge_webhook_public_key: str = ""
    bridge_webhook_public_key_file: str = ""

    webhook_max_age_ms: int = 10 * 60 * 1000
    webhook_max_future_skew_ms: int | None = 5 * 60 * 1000

    redis_url: str = "redis://localhost:6379/0"

    model_config = {"env_file": (".env", ".env.local"), "extra": "ignore"}

    def webhook_public_key(self) -> str:
        """Return the configured PEM public key, or "" if none is configured."""
        if self.bridge_webhook_public_key:
            # .env files often carry the PEM with literal \n sequences
            return self.bridge_webhook_public_key.replace("\\n", "\n")
        if self.bridge_webhook_public_key_file:
            return _read_key_file(self.bridge_webhook_public_key_file)
        return ""


@lru_cache
def get_settings() -> Settings:
    return Settings()
