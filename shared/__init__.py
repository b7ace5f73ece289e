"""
Strata Shared Module
====================

Configuration management and structured logging shared by the Strata
decoder components.
"""

from shared.config import StrataConfig, get_config
from shared.logger import StrataLogger

__all__ = ["StrataConfig", "StrataLogger", "get_config"]
