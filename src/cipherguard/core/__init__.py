# Core Module - Shared Utilities
#
# Core module provides shared functionality across all CipherGuard modules:
# - Runtime configuration
# - Structured logging
# - SQLite connection helper

from .config import VaultSettings, load_settings
from .log_setup import configure_logging, get_logger

__all__ = [
    # Configuration
    "VaultSettings",
    "load_settings",
    # Logging
    "configure_logging",
    "get_logger",
]
