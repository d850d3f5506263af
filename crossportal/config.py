"""
Runtime settings.

Values come from the environment (a local ``.env`` file is loaded first with
python-dotenv). Settings are built once by the caller and handed to the
extractor, the store and the CLI; nothing in the package reads the environment
on its own.

Environment variables:
    DATABASE_URL                 SQLAlchemy URL of the CRM database
    CROSSPORTAL_HEADLESS         "0"/"false" shows the browser window
    CROSSPORTAL_NAV_TIMEOUT_MS   navigation timeout per page load
    CROSSPORTAL_SETTLE_MS        pause after the first page load
    CROSSPORTAL_MAX_BROWSERS     worker pool size for batch extraction
    CROSSPORTAL_DEFAULT_CITY     city reported when the page does not say
    CROSSPORTAL_USER_AGENTS      "|" separated user agents to rotate
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


DEFAULT_DATABASE_URL = "sqlite:///crossportal.db"
DEFAULT_NAV_TIMEOUT_MS = 45000
DEFAULT_SETTLE_MS = 2000
DEFAULT_MAX_BROWSERS = 3
DEFAULT_CITY = "Milano"

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36 Edg/122.0.0.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass
class Settings:
    """Configuration shared by the extractor, the store and the CLI."""
    database_url: str = DEFAULT_DATABASE_URL
    headless: bool = True
    nav_timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS
    settle_ms: int = DEFAULT_SETTLE_MS
    max_concurrent_browsers: int = DEFAULT_MAX_BROWSERS
    default_city: str = DEFAULT_CITY
    user_agents: list[str] = field(default_factory=lambda: list(DEFAULT_USER_AGENTS))

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> Settings:
        """Build settings from the environment, loading ``.env`` first."""
        load_dotenv(dotenv_path)

        user_agents = [
            ua.strip()
            for ua in os.getenv("CROSSPORTAL_USER_AGENTS", "").split("|")
            if ua.strip()
        ]

        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            headless=_env_bool("CROSSPORTAL_HEADLESS", True),
            nav_timeout_ms=_env_int("CROSSPORTAL_NAV_TIMEOUT_MS", DEFAULT_NAV_TIMEOUT_MS, minimum=1000),
            settle_ms=_env_int("CROSSPORTAL_SETTLE_MS", DEFAULT_SETTLE_MS),
            max_concurrent_browsers=_env_int("CROSSPORTAL_MAX_BROWSERS", DEFAULT_MAX_BROWSERS, minimum=1),
            default_city=os.getenv("CROSSPORTAL_DEFAULT_CITY", DEFAULT_CITY),
            user_agents=user_agents or list(DEFAULT_USER_AGENTS),
        )
