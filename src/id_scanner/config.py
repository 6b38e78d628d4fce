"""Configuration for the ID scanner service.

Settings are read from environment variables once at startup and passed to
the components that need them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

RECORD_STORE_KINDS = ("sql", "memory")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}.")


def _get_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}.") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}.")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API, the extraction client and the store."""

    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_timeout: float = 30.0
    openai_max_tokens: int = 1000
    simulate_extraction: bool = False
    record_store: str = "sql"
    database_url: str = "sqlite:///./id_scanner.db"
    recent_limit: int = 5
    regenerate_duplicate_ids: bool = False
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self) -> None:
        if self.record_store not in RECORD_STORE_KINDS:
            raise ConfigurationError(
                f"Unknown record store {self.record_store!r}; expected one of "
                + ", ".join(RECORD_STORE_KINDS)
            )
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError(f"Unknown log level {self.log_level!r}.")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``env`` (``os.environ`` by default)."""

        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            openai_api_key=env.get("OPENAI_API_KEY", "").strip(),
            openai_model=env.get("ID_SCANNER_OPENAI_MODEL", defaults.openai_model),
            openai_timeout=_get_number(
                env, "ID_SCANNER_OPENAI_TIMEOUT", defaults.openai_timeout, float
            ),
            openai_max_tokens=_get_number(
                env, "ID_SCANNER_OPENAI_MAX_TOKENS", defaults.openai_max_tokens, int
            ),
            simulate_extraction=_get_bool(
                env, "ID_SCANNER_SIMULATE_EXTRACTION", defaults.simulate_extraction
            ),
            record_store=env.get("ID_SCANNER_RECORD_STORE", defaults.record_store).strip().lower(),
            database_url=env.get("ID_SCANNER_DATABASE_URL", defaults.database_url),
            recent_limit=_get_number(env, "ID_SCANNER_RECENT_LIMIT", defaults.recent_limit, int),
            regenerate_duplicate_ids=_get_bool(
                env, "ID_SCANNER_REGENERATE_DUPLICATE_IDS", defaults.regenerate_duplicate_ids
            ),
            log_level=env.get("ID_SCANNER_LOG_LEVEL", defaults.log_level).strip().upper(),
            host=env.get("ID_SCANNER_HOST", defaults.host),
            port=_get_number(env, "ID_SCANNER_PORT", defaults.port, int),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install the root logging handler used by the service."""

    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logging.getLogger("id_scanner").setLevel(level.upper())
