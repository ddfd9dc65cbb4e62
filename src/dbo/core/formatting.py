"""Formatting utilities for display and filesystem-safe names."""

import re

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def format_file_size(size_bytes: int | None) -> str:
    """Format a byte count for display.

    Returns:
        Formatted string (e.g., "42.1 GB", "700.0 MB"), or "-" for
        zero/unknown sizes.
    """
    if not size_bytes:
        return "-"
    if size_bytes >= 1024**4:
        return f"{size_bytes / (1024**4):.2f} TB"
    elif size_bytes >= 1024**3:
        return f"{size_bytes / (1024**3):.1f} GB"
    elif size_bytes >= 1024**2:
        return f"{size_bytes / (1024**2):.1f} MB"
    elif size_bytes >= 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes} B"


def sanitize_disc_name(name: str | None) -> str:
    """Make a disc label safe to use as a folder name.

    Every character outside [A-Za-z0-9_-] becomes an underscore; an empty
    label becomes "Unknown".
    """
    return _UNSAFE_NAME_CHARS.sub("_", name or "Unknown")


def format_percent(value: float) -> str:
    """Format a percentage with one decimal, dropping a trailing ".0"."""
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text
