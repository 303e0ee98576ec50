"""Environment-driven settings and logging setup."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path


DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"


def default_db_path() -> Path:
    """Default SQLite location in the user's cache directory."""
    return Path.home() / ".cache" / "ledgerwise" / "ledgerwise.db"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the accountant, monitoring and MCP server."""

    api_key: str = ""
    model: str = DEFAULT_MODEL
    api_url: str = DEFAULT_API_URL
    db_path: str = ""
    user_id: str = "default"
    history_limit: int = 20
    cash_threshold: float = 5000.0
    stream_delay: float = 0.03
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Returns:
            Settings with defaults for every unset variable.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        env = os.environ
        return cls(
            api_key=env.get("GEMINI_API_KEY", ""),
            model=env.get("LEDGERWISE_MODEL", DEFAULT_MODEL),
            api_url=env.get("LEDGERWISE_API_URL", DEFAULT_API_URL),
            db_path=env.get("LEDGERWISE_DB_PATH", str(default_db_path())),
            user_id=env.get("LEDGERWISE_USER_ID", "default"),
            history_limit=int(env.get("LEDGERWISE_HISTORY_LIMIT", "20")),
            cash_threshold=float(env.get("LEDGERWISE_CASH_THRESHOLD", "5000")),
            stream_delay=float(env.get("LEDGERWISE_STREAM_DELAY", "0.03")),
            log_level=env.get("LEDGERWISE_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stderr; stdout is reserved for the MCP transport."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
