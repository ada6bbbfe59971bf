"""
Request authentication.

Bearer tokens are verified by an ``AuthGateway``. The Supabase gateway
delegates to the identity provider; the local gateway keeps users in a JSON
document with Argon2 password hashes and issues opaque session tokens that
are stored only as SHA-256 digests.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Protocol

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from supabase import Client

from furniview.errors import AuthError, DuplicateUser
from furniview.jsonfile import JsonFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None = None


class AuthGateway(Protocol):
    def get_user(self, token: str) -> AuthUser | None:
        """Resolve an access token to its user, or None when it is not valid."""

    def sign_in(self, email: str, password: str) -> dict[str, Any]:
        """Return ``{"user": ..., "session": ...}``; AuthError on bad credentials."""

    def sign_up(self, email: str, password: str) -> dict[str, Any]:
        ...


def _dump(obj: Any) -> Any:
    if obj is None:
        return None
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    return obj


class SupabaseAuth(AuthGateway):
    """Verifies tokens with the anon client; each sign-in uses a fresh client.

    Signing in stores a session on the client that performed it, so the
    shared anon client is never used for that.
    """

    def __init__(self, client: Client, session_client_factory: Callable[[], Client]) -> None:
        self._client = client
        self._session_client_factory = session_client_factory

    def get_user(self, token: str) -> AuthUser | None:
        try:
            resp = self._client.auth.get_user(token)
        except Exception as e:
            logger.warning("Token verification failed: %s", e)
            return None
        user = getattr(resp, "user", None) if resp is not None else None
        if user is None:
            logger.warning("Token valid but no user found")
            return None
        return AuthUser(id=str(user.id), email=getattr(user, "email", None))

    def sign_in(self, email: str, password: str) -> dict[str, Any]:
        client = self._session_client_factory()
        try:
            resp = client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            if "invalid login credentials" in str(e).lower():
                raise AuthError("Invalid login credentials.") from e
            raise
        logger.info("Login successful for user %s", resp.user.id)
        return {"user": _dump(resp.user), "session": _dump(resp.session)}

    def sign_up(self, email: str, password: str) -> dict[str, Any]:
        client = self._session_client_factory()
        try:
            resp = client.auth.sign_up({"email": email, "password": password})
        except Exception as e:
            if "already registered" in str(e).lower():
                raise DuplicateUser("User already registered.") from e
            raise
        return {"user": _dump(resp.user), "session": _dump(resp.session)}


class LocalAuth(AuthGateway):
    def __init__(
        self,
        data_dir: str,
        hasher: PasswordHasher | None = None,
        *,
        session_ttl_sec: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._doc = JsonFile(Path(data_dir).resolve() / "users.json", default={"users": [], "sessions": []})
        self._hasher = hasher or PasswordHasher()
        self._session_ttl = session_ttl_sec
        self._clock = clock

    @staticmethod
    def new_token() -> str:
        raw = secrets.token_bytes(32)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    @staticmethod
    def hash_token(token: str) -> str:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    @staticmethod
    def _public(user: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in user.items() if k != "password_hash"}

    def create_user(self, email: str, password: str) -> dict[str, Any]:
        email = email.strip().lower()
        with self._doc.lock:
            data = self._doc.read()
            if any(u["email"] == email for u in data["users"]):
                raise DuplicateUser("User already registered.")
            user = {
                "id": str(uuid.uuid4()),
                "email": email,
                "password_hash": self._hasher.hash(password),
                "created_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            }
            data["users"].append(user)
            self._doc.write(data)
        return self._public(user)

    def sign_up(self, email: str, password: str) -> dict[str, Any]:
        self.create_user(email, password)
        return self.sign_in(email, password)

    def sign_in(self, email: str, password: str) -> dict[str, Any]:
        email = email.strip().lower()
        data = self._doc.read()
        user = next((u for u in data["users"] if u["email"] == email), None)
        if user is None:
            raise AuthError("Invalid login credentials.")
        try:
            self._hasher.verify(user["password_hash"], password)
        except (VerificationError, InvalidHashError) as e:
            raise AuthError("Invalid login credentials.") from e

        token = self.new_token()
        now = self._clock()
        expires_at = int(now + self._session_ttl)
        with self._doc.lock:
            data = self._doc.read()
            # expired sessions are dropped whenever a new one is written
            data["sessions"] = [s for s in data["sessions"] if s.get("expires_at", 0) > now]
            data["sessions"].append(
                {"token_hash": self.hash_token(token), "user_id": user["id"], "expires_at": expires_at}
            )
            self._doc.write(data)
        public = self._public(user)
        return {
            "user": public,
            "session": {
                "access_token": token,
                "token_type": "bearer",
                "expires_in": self._session_ttl,
                "expires_at": expires_at,
                "user": public,
            },
        }

    def get_user(self, token: str) -> AuthUser | None:
        calc = self.hash_token(token)
        data = self._doc.read()
        session = next((s for s in data["sessions"] if hmac.compare_digest(s["token_hash"], calc)), None)
        if session is None or session.get("expires_at", 0) <= self._clock():
            return None
        user = next((u for u in data["users"] if u["id"] == session["user_id"]), None)
        if user is None:
            return None
        return AuthUser(id=user["id"], email=user.get("email"))
