"""Utility Functions.

Common helper functions and utilities used across the application.
Import phone helpers from `src.utils.phone`. Models import this package,
so it must not load `src.core`.
"""

from src.utils.helpers import utcnow

__all__ = [
    "utcnow",
]
