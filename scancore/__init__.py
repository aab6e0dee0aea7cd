"""
ScanCore Shared Module
======================

Common utilities, models, and configuration management shared by the
drmscan executable inspection tool.
"""

from scancore.config import ScanConfig, get_config

__all__ = ["ScanConfig", "get_config"]
