"""
Per-request tracking and reclamation of temporary files.

Every file created on behalf of a request (the spooled upload, intermediate
outputs, the zip archive) is registered with that request's
``TempResourceTracker``. The tracker is drained immediately when the request
fails, or a short grace period after a successful response has been sent so
that slow clients are not cut off mid-download.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .utils import ensure_directory, unique_filename

logger = logging.getLogger(__name__)


class TempResourceTracker:
    """
    Append-only set of paths owned by one request, drained exactly once.

    Paths are deleted by exact name. The only pattern-based lookup is
    ``discover``, which is restricted to a prefix the caller obtained from
    ``unique_prefix`` and therefore cannot match another request's files.
    """

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = ensure_directory(work_dir)
        self._pending: List[Path] = []
        self._seen: set[Path] = set()
        self._drain_handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> List[Path]:
        return list(self._pending)

    def register(self, path: Path) -> Path:
        """Register ``path`` for deletion; registering a path twice is a no-op."""
        path = Path(path)
        if path not in self._seen:
            self._seen.add(path)
            self._pending.append(path)
        return path

    def allocate(self, prefix: str, suffix: str) -> Path:
        """Reserve a unique path in the work directory and register it."""
        return self.register(self.work_dir / unique_filename(prefix, suffix))

    def unique_prefix(self, label: str) -> str:
        """A filename prefix no other request can produce."""
        return unique_filename(label, "")

    def discover(self, prefix: str) -> List[Path]:
        """
        Register and return files in the work directory whose name starts with ``prefix``.

        Used for external tools that pick their own numbered output names.
        """
        matches = sorted(
            entry for entry in self.work_dir.iterdir() if entry.is_file() and entry.name.startswith(prefix)
        )
        for match in matches:
            self.register(match)
        return matches

    def drain(self) -> List[Path]:
        """
        Delete every pending path, best effort.

        Missing files are skipped. Failures are logged and never raised. A
        second call only handles paths registered after the first one.

        Returns:
            The paths that were actually removed
        """
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None

        pending, self._pending = self._pending, []
        removed: List[Path] = []
        for path in pending:
            try:
                if path.exists():
                    path.unlink()
                    removed.append(path)
            except OSError as exc:
                logger.warning("Failed to delete temporary file %s: %s", path, exc)
        if removed:
            logger.debug("Removed %d temporary file(s)", len(removed))
        return removed

    def schedule_drain(self, delay: float) -> Optional[asyncio.TimerHandle]:
        """
        Drain after ``delay`` seconds on the running event loop.

        A non-positive delay drains immediately and returns None. Scheduling
        again replaces any timer that has not fired yet.
        """
        if self._drain_handle is not None:
            self._drain_handle.cancel()
            self._drain_handle = None
        if delay <= 0:
            self.drain()
            return None
        loop = asyncio.get_running_loop()
        self._drain_handle = loop.call_later(delay, self.drain)
        return self._drain_handle
