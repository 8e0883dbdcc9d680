"""batchline - batch production tracking for manufacturing floors."""

from .utils.constants import APP_VERSION

__version__ = APP_VERSION
