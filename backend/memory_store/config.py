"""Runtime configuration loaded from environment variables."""

import os
from functools import lru_cache

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Settings for the memory store service."""

    database_path: str = "./data/memory.db"
    log_level: str = "INFO"
    # token -> caller subject
    api_tokens: dict[str, str] = Field(default_factory=dict)
    allow_anonymous_writes: bool = False
    busy_timeout_ms: int = Field(default=5000, ge=0)
    cors_origin_regex: str = r"^http://localhost(:\d+)?$"


def parse_api_tokens(raw: str) -> dict[str, str]:
    """Parse ``MEMORY_API_TOKENS``.

    Entries are comma separated and are either ``subject:token`` or a bare
    token, in which case the subject is ``client-<n>``.
    """
    tokens: dict[str, str] = {}
    for index, entry in enumerate(raw.split(","), start=1):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            subject, token = entry.split(":", 1)
            subject, token = subject.strip(), token.strip()
        else:
            subject, token = f"client-{index}", entry
        if token:
            tokens[token] = subject or f"client-{index}"
    return tokens


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from the environment."""
    return Settings(
        database_path=os.getenv("DATABASE_PATH", "./data/memory.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        api_tokens=parse_api_tokens(os.getenv("MEMORY_API_TOKENS", "")),
        allow_anonymous_writes=os.getenv("MEMORY_API_ALLOW_ANONYMOUS", "0").strip() == "1",
        busy_timeout_ms=_env_int("DB_BUSY_TIMEOUT_MS", 5000),
        cors_origin_regex=os.getenv("CORS_ORIGIN_REGEX", r"^http://localhost(:\d+)?$"),
    )
