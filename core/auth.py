"""
Session context: the single authority for request authorization.

One SessionContext is created per process and handed to every component
that talks to the backend. It is written only at login and at teardown.
teardown() clears the identity before running any teardown callback, so a
poller or watcher that fires afterwards already sees an anonymous session.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import jwt

from models.user import AuthResult, Role

logger = logging.getLogger(__name__)

TeardownCallback = Callable[[str], None]


def _extract_token(header_val: str) -> Optional[str]:
    """Strip a 'Bearer ' prefix if present."""
    if not header_val:
        return None
    hv = header_val.strip()
    if hv.lower().startswith("bearer "):
        return hv.split(None, 1)[1].strip()
    return hv


class SessionContext:
    def __init__(self, token: Optional[str] = None, user_id: Optional[str] = None,
                 role: Optional[Role] = None, storage_path: Optional[str] = None):
        self.token = _extract_token(token) if token else None
        self.user_id = user_id
        self.role = Role(role) if role else None
        self.storage_path = Path(storage_path) if storage_path else None
        self._teardown_callbacks: list[TeardownCallback] = []

    # --- identity ---
    def login(self, result: AuthResult):
        """Install a fresh identity from an auth response."""
        self.token = _extract_token(result.token)
        self.user_id = result.user.id
        self.role = result.user.role
        logger.info("Session started for user=%s role=%s", self.user_id, self.role.value)
        if self.storage_path:
            self.save(self.storage_path)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and bool(self.user_id) and not self.is_expired()

    @property
    def is_client(self) -> bool:
        return self.is_authenticated and self.role == Role.CLIENT

    @property
    def is_mechanic(self) -> bool:
        return self.is_authenticated and self.role == Role.MECHANIC

    def auth_headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def claims(self) -> dict:
        """
        Decode the JWT payload without verifying the signature.
        Only the server can verify; the client reads `exp` to avoid sending
        requests it knows will be rejected.
        """
        if not self.token:
            return {}
        try:
            return jwt.decode(self.token, options={"verify_signature": False})
        except jwt.DecodeError:
            # opaque (non-JWT) tokens are fine, they just carry no claims
            return {}

    def expires_at(self) -> Optional[datetime]:
        exp = self.claims().get("exp")
        if exp is None:
            return None
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires = self.expires_at()
        if expires is None:
            return False
        return (now or datetime.now(timezone.utc)) >= expires

    # --- teardown ---
    def on_teardown(self, callback: TeardownCallback) -> Callable[[], None]:
        """Register a callback run on teardown. Returns a function that removes it."""
        self._teardown_callbacks.append(callback)

        def _remove():
            if callback in self._teardown_callbacks:
                self._teardown_callbacks.remove(callback)
        return _remove

    def teardown(self, reason: str = "logout"):
        """
        Invalidate the session synchronously, then stop dependents.
        Safe to call more than once; callbacks run once per registration.
        """
        was_authenticated = bool(self.token)
        self.token = None
        self.user_id = None
        self.role = None
        if self.storage_path and self.storage_path.exists():
            self.storage_path.unlink()

        callbacks, self._teardown_callbacks = self._teardown_callbacks, []
        if was_authenticated:
            logger.info("Session torn down (%s)", reason)
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Teardown callback %r failed", callback)

    # --- persistence ---
    def save(self, path):
        data = {"token": self.token, "userId": self.user_id,
                "role": self.role.value if self.role else None}
        Path(path).write_text(json.dumps(data), encoding="utf-8")

    @classmethod
    def load(cls, path) -> "SessionContext":
        """Restore a saved identity; an absent, corrupt or expired file gives an anonymous session."""
        p = Path(path)
        session = cls(storage_path=str(p))
        if not p.exists():
            return session
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            token, user_id = data.get("token"), data.get("userId")
            role = Role(data["role"]) if data.get("role") else None
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", p, e)
            return session
        if token and user_id and role:
            session.token = token
            session.user_id = user_id
            session.role = role
            if session.is_expired():
                logger.info("Saved session for %s has expired", user_id)
                session.teardown("expired")
        return session
