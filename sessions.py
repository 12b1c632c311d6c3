"""
Server-side session storage.

A session binds a random token (sent to the browser in a signed cookie)
to a user id until ``expires_at``.  Stores are process-local here; swap in
another ``SessionStore`` to share sessions between processes.
"""

import hashlib
import hmac
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

SESSION_COOKIE = "session"


@dataclass
class Session:
    user_id: int
    issued_at: datetime
    expires_at: datetime

    def expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionStore:
    """Interface for session backends."""

    def get(self, token: str) -> Optional[Session]:
        raise NotImplementedError

    def set(self, token: str, session: Session) -> None:
        raise NotImplementedError

    def delete(self, token: str) -> None:
        raise NotImplementedError

    def prune(self, now: datetime) -> int:
        """Remove expired sessions and return how many were dropped."""
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """Thread-safe in-memory store; sessions are lost on restart."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def get(self, token: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(token)

    def set(self, token: str, session: Session) -> None:
        with self._lock:
            self._sessions[token] = session

    def delete(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def prune(self, now: datetime) -> int:
        with self._lock:
            stale = [t for t, s in self._sessions.items() if s.expired(now)]
            for token in stale:
                del self._sessions[token]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def new_token() -> str:
    return secrets.token_urlsafe(32)


def _signature(secret: str, token: str) -> str:
    return hmac.new(secret.encode(), token.encode(), hashlib.sha256).hexdigest()


def sign_token(secret: str, token: str) -> str:
    """Cookie value for a session token."""
    return f"{token}.{_signature(secret, token)}"


def unsign_token(secret: str, value: Optional[str]) -> Optional[str]:
    """Return the token from a signed cookie value, or None if it was tampered with."""
    if not value or "." not in value:
        return None
    token, sig = value.rsplit(".", 1)
    if not hmac.compare_digest(sig, _signature(secret, token)):
        return None
    return token
