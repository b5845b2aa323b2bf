"""Utility modules for Couch Sync."""

from couch_sync.utils.logger import get_logger, get_run_logger, setup_logging
from couch_sync.utils.display import ProgressDisplay

__all__ = ["setup_logging", "get_logger", "get_run_logger", "ProgressDisplay"]
