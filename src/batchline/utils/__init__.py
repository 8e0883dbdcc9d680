"""Utilities package for the batchline application."""

from .config import Config, get_config, reset_config
from .datetime_utils import utc_now

__all__ = [
    "Config",
    "get_config",
    "reset_config",
    "utc_now",
]
