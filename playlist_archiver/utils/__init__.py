"""
Utility functions for playlist-archiver.

This module provides common helpers used across the application:
    - Filename sanitization (using yt-dlp's sanitize_filename)
    - Slugs for source identifiers
    - Path manipulation helpers

Usage:
    from playlist_archiver.utils import (
        sanitize_filename,
        slugify,
        ensure_directory,
        relative_posix
    )
"""

import os
import re
from pathlib import Path

from yt_dlp.utils import sanitize_filename as yt_dlp_sanitize


_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def sanitize_filename(name: str, restricted: bool = False) -> str:
    """
    Sanitize a string for use as a filename.

    Uses yt-dlp's sanitize_filename function for consistency with
    how yt-dlp names downloaded files.

    Args:
        name: The string to sanitize (e.g., upstream id, playlist name).
        restricted: If True, use more aggressive sanitization that
                   removes all special characters. Default False.

    Returns:
        Sanitized string safe for use in filenames.

    Examples:
        sanitize_filename("Hello: World")  # "Hello_ World"
        sanitize_filename("AC/DC")         # "AC_DC"
    """
    return yt_dlp_sanitize(name, restricted=restricted)


def slugify(text: str, max_length: int = 48) -> str:
    """
    Turn arbitrary text into a lowercase, dash separated slug.

    Args:
        text: Text to convert (playlist name, URL path segment).
        max_length: Maximum slug length.

    Returns:
        The slug, or "source" if nothing usable is left.

    Example:
        slugify("My Likes (2024)")  # "my-likes-2024"
    """
    cleaned = sanitize_filename(text, restricted=True).lower()
    slug = _SLUG_INVALID.sub("-", cleaned).strip("-")
    return slug[:max_length].rstrip("-") or "source"


def ensure_directory(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.

    Returns:
        The same path (for chaining).

    Raises:
        OSError: If directory cannot be created (permissions, etc.)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def relative_posix(path: Path, start: Path) -> str:
    """
    Express `path` relative to `start` using forward slashes.

    Unlike Path.relative_to, this walks up with ".." when `path` is not
    inside `start`, which is what playlist files need.

    Example:
        relative_posix(Path("/data/audio/a/track.mp3"), Path("/data/playlists"))
        # "../audio/a/track.mp3"
    """
    return Path(os.path.relpath(path, start)).as_posix()


__all__ = [
    "sanitize_filename",
    "slugify",
    "ensure_directory",
    "relative_posix",
]
