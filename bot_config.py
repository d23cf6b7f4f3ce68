"""
Runtime configuration for the APK search bot, read once from the environment
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from apkpure_client import MB
from apkpure_parser import BASE_URL


class ConfigError(Exception):
    pass


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BotConfig:
    bot_token: str
    base_url: str = BASE_URL
    search_limit: int = 5
    max_file_size: int = 50 * MB
    page_timeout: float = 10.0
    binary_timeout: float = 30.0
    webhook_url: Optional[str] = None
    downloads_dir: str = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'app_cache')
    environment: str = "production"
    port: int = 8000
    freeform_min_length: int = 3
    debug: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BotConfig":
        env = os.environ if environ is None else environ

        token = env.get("BOT_TOKEN", "").strip()
        if not token:
            raise ConfigError("BOT_TOKEN environment variable is required")

        webhook_url = env.get("WEBHOOK_URL", "").strip() or None
        vercel_host = env.get("VERCEL_URL", "").strip()
        if not webhook_url and vercel_host:
            webhook_url = f"https://{vercel_host}/api/bot"

        try:
            return cls(
                bot_token=token,
                base_url=env.get("CATALOG_BASE_URL", BASE_URL).rstrip("/"),
                search_limit=int(env.get("SEARCH_RESULT_LIMIT", "5")),
                max_file_size=int(float(env.get("MAX_FILE_SIZE_MB", "50")) * MB),
                page_timeout=float(env.get("PAGE_TIMEOUT", "10")),
                binary_timeout=float(env.get("BINARY_TIMEOUT", "30")),
                webhook_url=webhook_url,
                downloads_dir=env.get("DOWNLOADS_DIR", cls.downloads_dir),
                environment=env.get("ENVIRONMENT", "production"),
                port=int(env.get("PORT", "8000")),
                debug=_env_bool(env.get("DEBUG", "true")),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e
