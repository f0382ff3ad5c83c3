"""
Utilities module for label lookup.

Provides logging and label field helpers.
"""

from src.label_lookup.utils.logger import setup_logger, get_logger

__all__ = [
    "setup_logger",
    "get_logger",
]
