"""Utility functions for DriveSync."""

from app.utils.dates import as_utc, utcnow

__all__ = [
    "as_utc",
    "utcnow",
]
