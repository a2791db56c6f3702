"""
Utility modules for the comp engine.
"""

from .formatting import format_currency, format_percent, format_range, format_trend_rate
from .logging import JsonFormatter, configure_logging
from .config import Config

__all__ = [
    "format_currency",
    "format_percent",
    "format_range",
    "format_trend_rate",
    "JsonFormatter",
    "configure_logging",
    "Config",
]
