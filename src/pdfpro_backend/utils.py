"""
Utility functions for file system operations and filename handling.

This module provides helper functions for:
- Sanitizing user-provided filenames for safe filesystem and archive usage
- Ensuring directory creation with proper error handling
- Generating unique, collision-free temporary filenames
- Checking the PDF file signature before handing a file to the engine
"""

from __future__ import annotations

import re
import secrets
import time
from pathlib import Path

# Pattern to match characters that are not safe for filesystem paths
# Allows: alphanumeric characters, dots, underscores, and hyphens
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")
EXTENSION_PATTERN = re.compile(r"\.[A-Za-z0-9]{1,8}")

PDF_MAGIC = b"%PDF"


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a filesystem-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A filesystem-safe label or the fallback value

    Example:
        >>> sanitize_label("My Report (final)", "document")
        "My-Report-final"
        >>> sanitize_label("@#$", "document")
        "document"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.")
    return cleaned or fallback


def sanitize_filename(filename: str, default_suffix: str = ".pdf") -> str:
    """
    Reduce an uploaded filename to a safe basename, keeping its extension.

    Directory components supplied by the client are discarded.

    Example:
        >>> sanitize_filename("../../etc/report v2.PDF")
        "report-v2.pdf"
    """
    stem, suffix = split_extension(Path(filename.replace("\\", "/")).name)
    safe_stem = sanitize_label(stem, fallback="document")
    if not EXTENSION_PATTERN.fullmatch(suffix):
        suffix = default_suffix
    return f"{safe_stem}{suffix.lower()}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("document.pdf")
        ("document", ".pdf")
    """
    path = Path(filename)
    return path.stem, path.suffix


def unique_token() -> str:
    """Millisecond timestamp plus a random suffix, unique per call."""
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9):09d}"


def unique_filename(prefix: str, suffix: str) -> str:
    """
    Build a collision-free filename such as ``rotated-1718000000000-042311873.pdf``.

    Args:
        prefix: Leading label describing what the file holds
        suffix: File extension including the dot (may be empty)
    """
    return f"{sanitize_label(prefix, fallback='file')}-{unique_token()}{suffix}"


def has_pdf_signature(path: Path) -> bool:
    """Return True when the file starts with the ``%PDF`` magic number."""
    try:
        with path.open("rb") as handle:
            return handle.read(len(PDF_MAGIC)) == PDF_MAGIC
    except OSError:
        return False
