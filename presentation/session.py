"""Server-side store for CalDAV credentials of logged-in browsers.

The signed session cookie only carries an opaque token; the password never
leaves the server.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class Credentials:
    """CalDAV account details captured at login."""
    endpoint: str
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(endpoint={self.endpoint!r}, username={self.username!r})"


class CredentialStore:
    """Token keyed credential storage with expiry."""

    def __init__(self, max_age_seconds: int, clock: Callable[[], float] = time.time):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Credentials, float]] = {}
        self._lock = Lock()
        self.logger = logging.getLogger(__name__)

    def save(self, credentials: Credentials) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._purge_expired()
            self._entries[token] = (credentials, self._clock())
        self.logger.info(f"Stored credentials for {credentials.username}")
        return token

    def get(self, token: Optional[str]) -> Optional[Credentials]:
        if not token:
            return None
        with self._lock:
            entry = self._entries.get(token)
            if entry is None:
                return None
            credentials, saved_at = entry
            if self._clock() - saved_at > self.max_age_seconds:
                del self._entries[token]
                return None
        return credentials

    def discard(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._entries.pop(token, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [
            token for token, (_, saved_at) in self._entries.items()
            if now - saved_at > self.max_age_seconds
        ]
        for token in expired:
            del self._entries[token]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
