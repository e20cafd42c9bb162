"""Application settings read from the environment."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from recordkit.persistence.config import DatabaseConfig

DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"


def resolve_base_path() -> Path:
    """Project root: the parent of ``backend`` when run from there, else cwd."""
    cwd = Path.cwd()
    if cwd.name == "backend":
        return cwd.parent
    return cwd


@dataclass
class Settings:
    """Runtime settings for the API server and CLI.

    Attributes:
        database: Database connection configuration
        metadata_path: Directory holding ``collections/*.yaml``
        secret_key: HS256 key for auth tokens
        request_timeout: Seconds before an operation is cancelled (504)
        log_level: Log level name passed to uvicorn
        host: Bind address for ``recordkit serve``
        port: Bind port for ``recordkit serve``
        cors_origins: Allowed CORS origins
    """

    database: DatabaseConfig
    metadata_path: Path
    secret_key: str = DEFAULT_SECRET_KEY
    request_timeout: float = 30.0
    log_level: str = "info"
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])

    @classmethod
    def from_env(cls, base_path: Path | None = None) -> "Settings":
        """Create settings from RECORDKIT_* environment variables.

        Database resolution follows DatabaseConfig.from_env.
        """
        base_path = base_path or resolve_base_path()

        metadata_path = os.environ.get("RECORDKIT_METADATA_PATH")
        origins = os.environ.get("RECORDKIT_CORS_ORIGINS")

        settings = cls(
            database=DatabaseConfig.from_env(base_path),
            metadata_path=Path(metadata_path) if metadata_path else base_path / "metadata",
            secret_key=os.environ.get("RECORDKIT_SECRET_KEY", DEFAULT_SECRET_KEY),
            request_timeout=float(os.environ.get("RECORDKIT_REQUEST_TIMEOUT", "30")),
            log_level=os.environ.get("RECORDKIT_LOG_LEVEL", "info").lower(),
            host=os.environ.get("RECORDKIT_HOST", "127.0.0.1"),
            port=int(os.environ.get("RECORDKIT_PORT", "8000")),
        )
        if origins:
            settings.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        return settings
