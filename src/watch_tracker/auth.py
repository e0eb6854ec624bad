"""Session handling for the remote store's auth service."""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import requests

from .constants import TOKEN_EXPIRY_BUFFER_SECONDS
from .errors import AuthError

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[str]], None]

EXPIRY_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
AUTH_TIMEOUT_SECONDS = 15


class SessionStore:
    """Persists the signed-in session with expiry tracking."""

    def __init__(self, session_file: Path):
        """Initialize session store with file path."""
        self.session_file = Path(session_file)
        self.data = self._load_session()

    def _load_session(self) -> dict:
        """Load session from file."""
        if self.session_file.exists():
            try:
                with open(self.session_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict) and "session" in data:
                    return data
            except Exception as e:
                logger.warning(f"Failed to load session: {e}")
        return {"session": {}}

    def save_session(self) -> None:
        """Save session to file."""
        self.session_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.session_file, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=4)
        logger.debug(f"Session saved to {self.session_file}")

    def get(self, name: str) -> Optional[str]:
        return self.data.get("session", {}).get(name)

    def set_session(
        self,
        user_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
        email: Optional[str] = None,
    ) -> None:
        """Store a session, keeping the previous refresh token if none is given."""
        session = {
            "user_id": user_id,
            "access_token": access_token,
            "token_type": "Bearer",
            "refresh_token": refresh_token or self.get("refresh_token"),
            "email": email or self.get("email"),
        }
        if expires_in:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
            session["expiry"] = expiry.strftime(EXPIRY_FORMAT)
        self.data["session"] = session
        self.save_session()

    def clear(self) -> None:
        self.data = {"session": {}}
        if self.session_file.exists():
            self.session_file.unlink()

    def is_expired(self, buffer_seconds: int = TOKEN_EXPIRY_BUFFER_SECONDS) -> bool:
        """Check if the access token is expired or will expire within the buffer."""
        expiry_str = self.get("expiry")
        if not expiry_str:
            return True

        try:
            expiry = datetime.strptime(expiry_str, EXPIRY_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError as e:
            logger.warning(f"Failed to parse session expiry: {e}")
            return True
        return datetime.now(timezone.utc) >= expiry - timedelta(seconds=buffer_seconds)


class AuthSession:
    """Current user identity with change notifications.

    Listeners are called with the new user id (or None after sign-out) only
    when the id actually changes.
    """

    def __init__(self, url: Optional[str], api_key: Optional[str], store: SessionStore):
        """Initialize auth session for the remote project."""
        self.auth_url = f"{url.rstrip('/')}/auth/v1" if url else None
        self.api_key = api_key
        self.store = store
        self._user_id: Optional[str] = None
        self._listeners: list[IdentityListener] = []

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def access_token(self) -> Optional[str]:
        return self.store.get("access_token") if self._user_id else None

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set_user(self, user_id: Optional[str]) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info(f"Identity changed: {'signed in as ' + user_id if user_id else 'signed out'}")
        for listener in list(self._listeners):
            listener(user_id)

    def _token_request(self, grant_type: str, payload: dict) -> dict:
        if not self.auth_url or not self.api_key:
            raise AuthError("Remote store URL and key are not configured")

        try:
            response = requests.post(
                f"{self.auth_url}/token",
                params={"grant_type": grant_type},
                json=payload,
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                timeout=AUTH_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise AuthError(f"Auth request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Auth {grant_type} request failed: {response.status_code}")
            logger.debug(f"Response: {response.text}")
            raise AuthError(f"Auth {grant_type} request failed (HTTP {response.status_code})")

        data = response.json()
        user_id = (data.get("user") or {}).get("id")
        if not data.get("access_token") or not user_id:
            raise AuthError("Auth response did not include a session")
        return data

    def _store_token_data(self, data: dict) -> str:
        user = data["user"]
        self.store.set_session(
            user["id"],
            data["access_token"],
            data.get("refresh_token"),
            data.get("expires_in"),
            user.get("email"),
        )
        return user["id"]

    def sign_in_with_password(self, email: str, password: str) -> str:
        """Sign in and return the user id."""
        data = self._token_request("password", {"email": email, "password": password})
        user_id = self._store_token_data(data)
        self._set_user(user_id)
        return user_id

    def refresh(self) -> None:
        """Exchange the stored refresh token for a new access token."""
        refresh_token = self.store.get("refresh_token")
        if not refresh_token:
            raise AuthError("No refresh token available")

        logger.info("Refreshing access token...")
        data = self._token_request("refresh_token", {"refresh_token": refresh_token})
        self._store_token_data(data)
        logger.info("Access token refreshed successfully")

    def restore(self) -> Optional[str]:
        """Load a saved session, refreshing it if it is about to expire."""
        user_id = self.store.get("user_id")
        if not user_id:
            logger.debug("No saved session")
            return None

        if self.store.is_expired():
            try:
                self.refresh()
            except AuthError as e:
                # Keep the identity so writes are queued rather than dropped
                logger.warning(f"Could not refresh session, remote writes may fail: {e}")
                logger.warning("   Run: watch-tracker login")

        self._set_user(user_id)
        return user_id

    def sign_out(self) -> None:
        """Forget the session. Local library and progress are kept."""
        self.store.clear()
        self._set_user(None)
