"""
Authentication & authorization.

Handles password hashing, session issue/teardown and the role gate used
by admin-only routes.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

import bcrypt
from fastapi import Depends, Request
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import Storage, utcnow
from errors import AuthError, ForbiddenError, ValidationError
from schemas import MAX_PASSWORD_BYTES, RegisterRequest
from sessions import SESSION_COOKIE, Session, SessionStore, new_token, sign_token, unsign_token

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10

INVALID_CREDENTIALS = "Invalid username or password"


def hash_password(plain: str, rounds: int = BCRYPT_ROUNDS) -> str:
    if len(plain.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password")
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(plain: str, hashed: str) -> bool:
    data = plain.encode()
    if len(data) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(data, hashed.encode())
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password"}


class AccountService:
    def __init__(self, storage: Storage, sessions: SessionStore, secret: str,
                 ttl: timedelta = timedelta(hours=24),
                 clock: Callable[[], datetime] = utcnow,
                 hash_rounds: int = BCRYPT_ROUNDS):
        self.storage = storage
        self.sessions = sessions
        self.secret = secret
        self.ttl = ttl
        self.clock = clock
        self.hash_rounds = hash_rounds
        self._dummy_hash: Optional[str] = None

    # --------------- Sessions -------------------------------------------

    def _issue_session(self, user_id: int, previous: Optional[str] = None) -> str:
        """Start a session for ``user_id`` and return the signed cookie value."""
        if previous:
            self.logout(previous)
        now = self.clock()
        token = new_token()
        self.sessions.set(token, Session(user_id=user_id, issued_at=now, expires_at=now + self.ttl))
        return sign_token(self.secret, token)

    def _session_for(self, cookie_value: Optional[str]) -> Optional[Session]:
        token = unsign_token(self.secret, cookie_value)
        if token is None:
            return None
        session = self.sessions.get(token)
        if session is None:
            return None
        if session.expired(self.clock()):
            self.sessions.delete(token)
            return None
        return session

    def prune_sessions(self) -> int:
        return self.sessions.prune(self.clock())

    # --------------- Flows ----------------------------------------------

    def register(self, payload: RegisterRequest, previous: Optional[str] = None) -> Tuple[dict, str]:
        """Create a customer account and log it in. Returns (user, cookie value)."""
        if self.storage.get_user_by_username(payload.username):
            raise ValidationError("Username already exists", field="username")
        user_doc = {
            "username": payload.username,
            "password": hash_password(payload.password, self.hash_rounds),
            "role": "customer",
            **payload.profile_fields(),
        }
        try:
            user = self.storage.create_user(user_doc)
        except DuplicateKeyError:
            raise ValidationError("Username already exists", field="username")
        logger.info("Registered user %s", user["username"], extra={"user_id": user["id"]})
        return public_user(user), self._issue_session(user["id"], previous)

    def authenticate(self, username: str, password: str, previous: Optional[str] = None) -> Tuple[dict, str]:
        """Check credentials and start a new session. Returns (user, cookie value)."""
        user = self.storage.get_user_by_username(username)
        if user is None:
            # keep the miss as slow as a real check
            verify_password(password, self._dummy())
            logger.info("Login failed for %s", username)
            raise AuthError(INVALID_CREDENTIALS)
        if not verify_password(password, user.get("password", "")):
            logger.info("Login failed for %s", username)
            raise AuthError(INVALID_CREDENTIALS)
        return public_user(user), self._issue_session(user["id"], previous)

    def current_user(self, cookie_value: Optional[str]) -> dict:
        session = self._session_for(cookie_value)
        if session is None:
            raise AuthError("Not authenticated")
        user = self.storage.get_user(session.user_id)
        if user is None:
            raise AuthError("Not authenticated")
        return public_user(user)

    def logout(self, cookie_value: Optional[str]) -> None:
        token = unsign_token(self.secret, cookie_value)
        if token is not None:
            self.sessions.delete(token)

    def require_role(self, cookie_value: Optional[str], role: str) -> dict:
        try:
            user = self.current_user(cookie_value)
        except AuthError:
            raise ForbiddenError("Forbidden")
        if user.get("role") != role:
            raise ForbiddenError("Forbidden")
        return user

    def ensure_admin(self, settings: Settings) -> Optional[dict]:
        """Create the bootstrap admin account from settings if it does not exist yet."""
        if not settings.admin_username or not settings.admin_password:
            logger.warning("Admin credentials not configured, skipping admin creation")
            return None
        if len(settings.admin_password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            logger.warning("ADMIN_PASSWORD is longer than %d bytes, skipping admin creation",
                           MAX_PASSWORD_BYTES)
            return None
        existing = self.storage.get_user_by_username(settings.admin_username)
        if existing:
            return public_user(existing)
        admin = self.storage.create_user({
            "username": settings.admin_username,
            "password": hash_password(settings.admin_password, self.hash_rounds),
            "role": "admin",
            "full_name": "Administrator",
            "email": settings.admin_email,
            "phone": settings.admin_phone,
        })
        logger.info("Admin user %s created", admin["username"])
        return public_user(admin)

    def _dummy(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = hash_password(new_token(), self.hash_rounds)
        return self._dummy_hash


# --------------- FastAPI dependencies -----------------------------------

def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def session_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE)


def current_user(cookie: Optional[str] = Depends(session_cookie),
                 accounts: AccountService = Depends(get_accounts)) -> dict:
    return accounts.current_user(cookie)


def require_role(role: str):
    """Dependency factory: the caller must be logged in with ``role``."""
    def dependency(cookie: Optional[str] = Depends(session_cookie),
                   accounts: AccountService = Depends(get_accounts)) -> dict:
        return accounts.require_role(cookie, role)
    return dependency


require_admin = require_role("admin")
