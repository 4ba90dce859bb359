"""
Process-wide state exposed through the admin API.

The request counter, the priority-mode flag and the issued admin session
tokens live here instead of in module globals. All reads and writes go
through one ``ServiceState`` instance and are serialized by its lock, since
request handlers and worker threads may touch them concurrently.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from threading import Lock
from typing import Optional

from .models import AdminStats

logger = logging.getLogger(__name__)


class ServiceState:
    def __init__(self, admin_password: str) -> None:
        self._admin_password = admin_password
        self._lock = Lock()
        self._request_count = 0
        self._priority_mode = False
        self._token_hashes: set[str] = set()

    @staticmethod
    def _hash_token(token: str) -> str:
        """SHA-256 hash of a session token; raw tokens are never stored."""
        return hashlib.sha256(token.encode()).hexdigest()

    def record_request(self) -> int:
        with self._lock:
            self._request_count += 1
            return self._request_count

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._request_count

    @property
    def priority_mode(self) -> bool:
        with self._lock:
            return self._priority_mode

    def set_priority_mode(self, enabled: bool) -> bool:
        with self._lock:
            self._priority_mode = enabled
        logger.info("Priority mode set to %s", enabled)
        return enabled

    def login(self, password: str) -> Optional[str]:
        """
        Issue a session token if ``password`` matches the admin password.

        Returns:
            The new token, or None when the password is wrong
        """
        if not secrets.compare_digest(password.encode(), self._admin_password.encode()):
            logger.warning("Rejected admin login attempt")
            return None
        token = f"pdfpro_{secrets.token_urlsafe(32)}"
        with self._lock:
            self._token_hashes.add(self._hash_token(token))
        return token

    def is_authorized(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            return self._hash_token(token) in self._token_hashes

    def stats(self) -> AdminStats:
        with self._lock:
            return AdminStats(request_count=self._request_count, priority_mode=self._priority_mode)
