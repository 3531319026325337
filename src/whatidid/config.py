"""Configuration module for the whatidid knowledge base."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database
_USER_DIR = Path.home() / ".knowledge-base"
load_dotenv(_USER_DIR / ".env")


logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class KnowledgeBaseConfig(BaseModel):
    """Configuration for the knowledge base."""

    # Database file; KB_PATH points every process at the same store
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("KB_PATH", str(_USER_DIR / "kb.db"))
        ).expanduser()
    )
    # Seconds SQLite waits on a locked database before giving up
    busy_timeout: float = Field(
        default_factory=lambda: _env_float("KB_BUSY_TIMEOUT", 5.0)
    )
    # Bounded retry for writes that lose the lock race
    write_retry_attempts: int = Field(
        default_factory=lambda: _env_int("KB_WRITE_RETRY_ATTEMPTS", 3)
    )
    write_retry_delay: float = Field(
        default_factory=lambda: _env_float("KB_WRITE_RETRY_DELAY", 0.05)
    )
    # Search excerpt window
    excerpt_radius: int = Field(
        default_factory=lambda: _env_int("KB_EXCERPT_RADIUS", 40)
    )
    excerpt_lead_length: int = Field(
        default_factory=lambda: _env_int("KB_EXCERPT_LEAD_LENGTH", 100)
    )
    # Logging
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("KB_LOG_DIR", str(_USER_DIR / "logs"))
        ).expanduser()
    )
    log_level: str = Field(default_factory=lambda: os.getenv("KB_LOG_LEVEL", "INFO"))

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_limits(self) -> "KnowledgeBaseConfig":
        """Reject settings that would disable writes or excerpts."""
        if self.write_retry_attempts < 1:
            raise ValueError("write_retry_attempts must be >= 1")
        if self.write_retry_delay < 0:
            raise ValueError("write_retry_delay must be >= 0")
        if self.busy_timeout < 0:
            raise ValueError("busy_timeout must be >= 0")
        if self.excerpt_radius < 1 or self.excerpt_lead_length < 1:
            raise ValueError("excerpt sizes must be >= 1")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self

    def get_db_url(self, database_path: Optional[Union[str, Path]] = None) -> str:
        """Get the database URL for SQLite, creating the parent directory."""
        db_path = Path(database_path) if database_path else self.database_path
        db_path = db_path.expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = KnowledgeBaseConfig()
