"""Expose the public utility surface for routeforge.

What:
  Re-export logging, checksum, and regex helpers that other packages import
  without knowing the underlying module layout.

Interfaces:
  ``get_logger``, ``JsonLogger``, ``checksum``, ``filter_tags``.
"""

from .ids import checksum
from .logging import JsonLogger, get_logger
from .regexsafe import filter_tags

__all__ = [
    "get_logger",
    "JsonLogger",
    "checksum",
    "filter_tags",
]
