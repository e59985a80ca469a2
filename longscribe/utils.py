"""
longscribe.utils - Shared utility functions.
"""

from __future__ import annotations


def format_duration(seconds: float) -> str:
    """Format seconds as H:MM:SS or M:SS.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (H:MM:SS if >= 1 hour, otherwise M:SS)
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def truncate(text: str, limit: int = 60) -> str:
    """Shorten text to ``limit`` characters with an ellipsis."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"
