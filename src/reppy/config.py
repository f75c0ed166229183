"""Environment-driven settings for the Reppy server."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PROJECT_ROOT = Path(__file__).parent.parent.parent


@dataclass
class Settings:
    """Server configuration."""

    db_path: Path
    secret_key: str
    token_ttl_hours: int = 24 * 7
    test_mode: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from REPPY_* environment variables."""
        test_mode = os.environ.get("REPPY_TEST_MODE", "").lower() == "true"
        db_path = os.environ.get("REPPY_DB_PATH")
        if db_path:
            path = Path(db_path)
        elif test_mode:
            path = PROJECT_ROOT / "reppy_test.db"
        else:
            path = PROJECT_ROOT / "reppy.db"

        return cls(
            db_path=path,
            secret_key=os.environ.get("REPPY_SECRET_KEY", "dev-secret-change-me"),
            token_ttl_hours=int(os.environ.get("REPPY_TOKEN_TTL_HOURS", 24 * 7)),
            test_mode=test_mode,
        )

    def validate(self) -> None:
        """Raise ValueError for unusable settings."""
        if not self.secret_key:
            raise ValueError("REPPY_SECRET_KEY must not be empty")
        if self.token_ttl_hours <= 0:
            raise ValueError("REPPY_TOKEN_TTL_HOURS must be positive")
        if not self.db_path.parent.exists():
            raise ValueError(f"Database directory does not exist: {self.db_path.parent}")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
