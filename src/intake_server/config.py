"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

from intake_engine.constants import ENGINE_IDLE_TTL, SESSION_TTL_DAYS

# Read at import time so the cleanup CLI's argparse default can use it
DEFAULT_CLEANUP_DAYS = int(os.getenv("DEFAULT_CLEANUP_DAYS", str(SESSION_TTL_DAYS)))


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    # Where session documents live: "sql" (PostgreSQL) or "memory"
    storage_backend: str = "memory"

    # Remote onboarding GraphQL endpoint (None disables sync and the
    # remote chat responder)
    graphql_url: str | None = None
    graphql_timeout: float = 30.0

    # Question bank YAML (None -> packaged default)
    question_bank_path: str | None = None
    # Crisis keyword YAML (None -> packaged default)
    crisis_keywords_path: str | None = None

    # Live engines idle this long (seconds) are dropped and later restored
    # from the store
    engine_idle_ttl: float = float(ENGINE_IDLE_TTL)


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` / ``GRAPHQL_*`` environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    storage = os.getenv("SERVER_STORAGE_BACKEND", "memory").lower()
    if storage not in ("sql", "memory"):
        raise ValueError(f"Unknown SERVER_STORAGE_BACKEND: {storage}")

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        storage_backend=storage,
        graphql_url=os.getenv("GRAPHQL_URL") or None,
        graphql_timeout=float(os.getenv("GRAPHQL_TIMEOUT", "30")),
        question_bank_path=os.getenv("SERVER_QUESTION_BANK") or None,
        crisis_keywords_path=os.getenv("SERVER_CRISIS_KEYWORDS") or None,
        engine_idle_ttl=float(os.getenv("SERVER_ENGINE_IDLE_TTL", str(ENGINE_IDLE_TTL))),
    )
