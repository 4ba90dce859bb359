"""
Parsing of page and range specifications such as ``"1,3-5"`` or ``"all"``.

Pages are written 1-based by clients; the selector returns 0-based indices in
the order they were written. Two modes are supported:

- ``SelectionMode.SELECT`` accepts any subset of pages. Tokens that are
  malformed, reversed, out of range or already selected contribute nothing.
- ``SelectionMode.PERMUTATION`` requires every page exactly once (page
  reordering). Any such token is rejected with a ``PageSelectionError`` that
  names it, and so is a result that does not cover the whole document.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterator, List, Optional

from .errors import PageSelectionError

ALL_PAGES = "all"

_NUMBER = re.compile(r"\d+")


class SelectionMode(str, Enum):
    SELECT = "select"
    PERMUTATION = "permutation"


def tokenize(spec: str) -> List[str]:
    """Split on commas, trim whitespace and drop empty tokens."""
    return [token.strip() for token in spec.split(",") if token.strip()]


def _parse_page_number(text: str) -> Optional[int]:
    text = text.strip()
    if not _NUMBER.fullmatch(text):
        return None
    value = int(text)
    return value if value >= 1 else None


def _parse_token(token: str) -> Optional[tuple[int, int]]:
    """Return the inclusive 1-based bounds of a token, or None if malformed."""
    if "-" in token:
        parts = token.split("-")
        if len(parts) != 2:
            return None
        start, end = _parse_page_number(parts[0]), _parse_page_number(parts[1])
        if start is None or end is None or start > end:
            return None
        return start, end
    page = _parse_page_number(token)
    if page is None:
        return None
    return page, page


def _pages_in_range(start: int, end: int, total_pages: int, strict: bool, token: str) -> Iterator[int]:
    if end > total_pages:
        if strict:
            raise PageSelectionError(
                f"Page {end} in '{token}' is out of range (document has {total_pages} pages)"
            )
        end = total_pages
    return iter(range(start, end + 1))


def is_all_pages(spec: Optional[str]) -> bool:
    return spec is None or not spec.strip() or spec.strip().lower() == ALL_PAGES


def select_pages(
    spec: Optional[str],
    total_pages: int,
    mode: SelectionMode = SelectionMode.SELECT,
) -> List[int]:
    """
    Resolve a page specification against a document of ``total_pages`` pages.

    Args:
        spec: Comma-separated pages and inclusive ranges, ``"all"`` or None
        total_pages: Page count of the document the spec applies to
        mode: Whether the result may be any subset or must be a permutation

    Returns:
        Unique 0-based page indices in the order they were requested

    Raises:
        PageSelectionError: In permutation mode, for a malformed, reversed,
            out-of-range or repeated token, or when not every page is listed
    """
    if total_pages < 0:
        raise ValueError("total_pages must not be negative")
    if is_all_pages(spec):
        return list(range(total_pages))

    strict = mode is SelectionMode.PERMUTATION
    selected: List[int] = []
    seen: set[int] = set()

    for token in tokenize(spec):  # type: ignore[arg-type]
        bounds = _parse_token(token)
        if bounds is None:
            if strict:
                raise PageSelectionError(f"Invalid page token '{token}': use page numbers like 3 or ranges like 1-3")
            continue

        for page in _pages_in_range(bounds[0], bounds[1], total_pages, strict, token):
            index = page - 1
            if index in seen:
                if strict:
                    raise PageSelectionError(f"Duplicate page {page} in '{token}'")
                continue
            seen.add(index)
            selected.append(index)

    if strict and len(selected) != total_pages:
        raise PageSelectionError(
            f"Page order must list every page exactly once: expected {total_pages} pages, got {len(selected)}"
        )
    return selected


def complement(indices: List[int], total_pages: int) -> List[int]:
    """Return the indices of ``range(total_pages)`` not in ``indices``, ascending."""
    excluded = set(indices)
    return [index for index in range(total_pages) if index not in excluded]
