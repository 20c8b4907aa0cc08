"""Environment-driven configuration."""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel

from .errors import ValidationError

# Load environment variables
load_dotenv()


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None


class Settings(BaseModel):
    """Runtime settings for the clipboard watcher, stores and generation."""

    home: Path = Path("~/.pastego").expanduser()
    poll_interval: float = 0.5
    dedup_window_seconds: float = 0.0
    request_timeout: float = 30.0
    connect_timeout: float = 10.0
    claude_max_tokens: int = 4096
    default_query_limit: int = 100
    retention_days: Optional[int] = None

    @property
    def db_path(self) -> Path:
        return self.home / "lancedb"

    @property
    def images_dir(self) -> Path:
        return self.home / "images"

    @property
    def dedup_window(self) -> Optional[float]:
        """Dedup window in seconds, or None when unbounded."""
        return self.dedup_window_seconds if self.dedup_window_seconds > 0 else None

    @classmethod
    def from_env(cls) -> "Settings":
        retention = os.getenv("RETENTION_DAYS")
        return cls(
            home=Path(os.getenv("PASTEGO_HOME", "~/.pastego")).expanduser(),
            poll_interval=_env_float("POLL_INTERVAL", "0.5"),
            dedup_window_seconds=_env_float("DEDUP_WINDOW_SECONDS", "0"),
            request_timeout=_env_float("REQUEST_TIMEOUT", "30"),
            connect_timeout=_env_float("CONNECT_TIMEOUT", "10"),
            claude_max_tokens=_env_int("CLAUDE_MAX_TOKENS", "4096"),
            default_query_limit=_env_int("DEFAULT_QUERY_LIMIT", "100"),
            retention_days=_env_int("RETENTION_DAYS", retention) if retention else None,
        )
