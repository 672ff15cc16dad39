"""
Infrastructure module - configuration and logging.
"""

from .config import LifecycleSettings
from .logging_config import setup_logging

__all__ = [
    # config
    "LifecycleSettings",
    # logging
    "setup_logging",
]
