"""
Configuration management for the batchline application.

This module handles:
- Database path / URL configuration
- Environment-specific configuration (development vs. production)
- Efficiency scoring parameters (on-time threshold)
- Formulation locking policy
- Log level
"""

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from .constants import (
    DATABASE_FILENAME,
    ON_TIME_THRESHOLD,
)

ENV_VAR = "BATCHLINE_ENV"
DATABASE_URL_VAR = "BATCHLINE_DATABASE_URL"
ON_TIME_HOURS_VAR = "BATCHLINE_ON_TIME_HOURS"
ENFORCE_COMPOSITION_VAR = "BATCHLINE_ENFORCE_COMPOSITION"
LOG_LEVEL_VAR = "BATCHLINE_LOG_LEVEL"

_FALSE_VALUES = {"0", "false", "no", "off"}


class Config:
    """
    Application configuration manager.

    Values are read once from the environment when the instance is created.
    Every setting has a default so the application runs with no environment
    configured at all.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_dir = self._base_dir
        self._database_path = self._database_dir / DATABASE_FILENAME
        self._database_url_override = os.environ.get(DATABASE_URL_VAR)

        self._on_time_threshold = self._read_on_time_threshold()
        self._enforce_composition = (
            os.environ.get(ENFORCE_COMPOSITION_VAR, "1").strip().lower() not in _FALSE_VALUES
        )
        self._log_level = os.environ.get(LOG_LEVEL_VAR, "INFO").upper()

    def _get_project_data_dir(self) -> Path:
        """Project-local data/ directory used in development."""
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Per-user application directory used in production."""
        return Path.home() / ".batchline"

    def _read_on_time_threshold(self) -> timedelta:
        raw = os.environ.get(ON_TIME_HOURS_VAR)
        if raw is None or not raw.strip():
            return ON_TIME_THRESHOLD
        try:
            hours = float(raw)
        except ValueError:
            logging.getLogger(__name__).warning(
                f"Ignoring invalid {ON_TIME_HOURS_VAR}={raw!r}; using default"
            )
            return ON_TIME_THRESHOLD
        if hours <= 0:
            logging.getLogger(__name__).warning(
                f"Ignoring non-positive {ON_TIME_HOURS_VAR}={raw!r}; using default"
            )
            return ON_TIME_THRESHOLD
        return timedelta(hours=hours)

    def ensure_directories(self) -> None:
        """Create the database directory if it doesn't exist."""
        self._database_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        """Full path to the default SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            BATCHLINE_DATABASE_URL when set, otherwise a SQLite URL for
            the default database file
        """
        if self._database_url_override:
            return self._database_url_override
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def uses_default_database(self) -> bool:
        """True when the database lives at the default file path."""
        return not self._database_url_override

    @property
    def on_time_threshold(self) -> timedelta:
        """Maximum start-to-end duration for a batch to count as on time."""
        return self._on_time_threshold

    @property
    def enforce_composition(self) -> bool:
        """Whether locking a version requires percentages summing to 100."""
        return self._enforce_composition

    @property
    def log_level(self) -> str:
        """Root log level name used by the CLI."""
        return self._log_level

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def database_exists(self) -> bool:
        """
        Check if the default database file exists.

        Returns:
            True if database file exists, False otherwise
        """
        return self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument - this prevents accidental database
    switching mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    BATCHLINE_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_VAR, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger = logging.getLogger(__name__)
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
