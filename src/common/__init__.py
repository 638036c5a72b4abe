"""Common utilities for OpsFlow command-line tools."""

from .logger import configure_logging, setup_logger, get_logger
from .config import load_config, load_catalog

__all__ = ["configure_logging", "get_logger", "load_catalog", "load_config", "setup_logger"]
