"""
Module for admin authentication and session management.
"""
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import bcrypt

from .exceptions import AuthenticationFailed

logger = logging.getLogger(__name__)

SESSION_COOKIE = "photoadmin_session"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored admin password hash is malformed")
        return False


@dataclass
class Session:
    session_id: str
    username: str
    created_at: datetime
    expires_at: datetime


class AdminAuth:
    """Single-admin authentication with in-memory sliding sessions."""

    def __init__(self, username: str, password_hash: str,
                 session_ttl: timedelta = timedelta(hours=24)):
        if not password_hash:
            raise ValueError("password_hash cannot be empty")
        self.username = username
        self.password_hash = password_hash
        self.session_ttl = session_ttl
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def authenticate(self, username: str, password: str) -> Session:
        """Check credentials and open a session.

        Raises:
            AuthenticationFailed: wrong username or password
        """
        if username != self.username or not check_password(password, self.password_hash):
            logger.warning(f"Failed login attempt for user {username!r}")
            raise AuthenticationFailed("invalid credentials")

        self.purge_expired()
        now = self._now()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            username=username,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info(f"Admin {username} logged in")
        return session

    def validate(self, session_id: Optional[str]) -> Session:
        """Return the live session for an id and extend it.

        Raises:
            AuthenticationFailed: missing, unknown or expired session
        """
        if not session_id:
            raise AuthenticationFailed("Unauthorized")

        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise AuthenticationFailed("Unauthorized")
            now = self._now()
            if now >= session.expires_at:
                del self._sessions[session_id]
                raise AuthenticationFailed("session expired")
            session.expires_at = now + self.session_ttl
            return session

    def invalidate(self, session_id: Optional[str]) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        now = self._now()
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if now >= s.expires_at]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")
        return len(expired)
