"""Utility modules for Subgraph Sync."""

from subgraph_sync.utils.logger import setup_logging, get_logger
from subgraph_sync.utils.display import ProgressDisplay

__all__ = ["setup_logging", "get_logger", "ProgressDisplay"]
