"""
Server settings, read from the environment (and a `.env` file if present).
"""

import os
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel

DEFAULT_DB_URL = "file:chat.db"
DEFAULT_PORT = 3000


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


class Settings(BaseModel):
    db_url: str = DEFAULT_DB_URL
    db_token: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    recovery_window: float = 120.0
    enrich_timeout: float = 2.0
    enrich_hardware_id: bool = False

    @property
    def is_remote(self) -> bool:
        from chat_relay.store.base import REMOTE_SCHEMES
        return self.db_url.startswith(REMOTE_SCHEMES)


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Settings:
    """Build Settings from `env` (defaults to os.environ, after loading `.env`)."""
    if env is None:
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        env = os.environ
    return Settings(
        db_url=env.get("DB_URL") or DEFAULT_DB_URL,
        db_token=env.get("DB_TOKEN") or None,
        host=env.get("HOST") or "0.0.0.0",
        port=int(env.get("PORT") or DEFAULT_PORT),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        recovery_window=float(env.get("RECOVERY_WINDOW") or 120.0),
        enrich_timeout=float(env.get("ENRICH_TIMEOUT") or 2.0),
        enrich_hardware_id=_to_bool(env.get("ENRICH_HARDWARE_ID"), default=False),
    )
