"""Credential storage and session persistence."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .models import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"
CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


def fingerprint(token: Optional[str]) -> str:
    """Short, log-safe representation of a token."""
    if not token:
        return "<none>"
    return f"{token[:6]}...({len(token)})"


class CredentialStore:
    """Persists the access/refresh token pair and the cached user profile.

    This is the only component that reads or writes credential state. Tokens
    are always written as a pair.
    """

    def __init__(self, session_file: Optional[str] = None) -> None:
        """
        Initialize the credential store.

        Args:
            session_file: Path to store session data. Defaults to ~/.millets_session.json
        """
        if session_file is None:
            session_file = str(Path.home() / ".millets_session.json")
        self.session_file = session_file
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        """Load credential data from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    data = {k: v for k, v in data.items() if k in CREDENTIAL_KEYS and isinstance(v, str)}
                    if data:
                        logger.info(f"Loaded existing session from {self.session_file}")
                    return data
            except (json.JSONDecodeError, ValueError, OSError) as e:
                # If file is corrupted, start fresh
                logger.warning(f"Could not load session: {e}")
        return {}

    def _persist(self) -> None:
        """Write all keys in a single replace so a pair is never half-written."""
        if not self._data:
            if os.path.exists(self.session_file):
                os.remove(self.session_file)
            return

        directory = os.path.dirname(os.path.abspath(self.session_file))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".millets_session.")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._data, f, indent=2)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.session_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        """Get a raw stored value by key."""
        return self._data.get(key)

    def get_access_token(self) -> Optional[str]:
        return self._data.get(ACCESS_TOKEN_KEY)

    def get_refresh_token(self) -> Optional[str]:
        return self._data.get(REFRESH_TOKEN_KEY)

    def get_user(self) -> Optional[User]:
        """Get the cached user profile."""
        raw = self._data.get(USER_KEY)
        if not raw:
            return None
        try:
            return User.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Ignoring malformed cached user: {e}")
            return None

    def set_tokens(self, access_token: str, refresh_token: str, user: Optional[User] = None) -> None:
        """
        Replace both tokens at once.

        Args:
            access_token: New access token
            refresh_token: New refresh token
            user: Profile to cache; the existing one is kept when omitted
        """
        if not access_token or not refresh_token:
            raise ValueError("Both access and refresh tokens are required")

        data = dict(self._data)
        data[ACCESS_TOKEN_KEY] = access_token
        data[REFRESH_TOKEN_KEY] = refresh_token
        if user is not None:
            data[USER_KEY] = user.model_dump_json()
        previous = self._data
        self._data = data
        try:
            self._persist()
        except Exception:
            self._data = previous
            raise
        logger.info(f"Stored credential pair (access={fingerprint(access_token)})")

    def clear(self) -> None:
        """Remove tokens and cached profile."""
        self._data = {}
        self._persist()
        logger.info("Credentials cleared")

    def is_authenticated(self) -> bool:
        """Check if there is a stored access token."""
        return bool(self.get_access_token())


class MemoryCredentialStore(CredentialStore):
    """Credential store kept only in process memory."""

    def __init__(self) -> None:
        self.session_file = ""
        self._data = {}

    def _load(self) -> dict[str, str]:
        return {}

    def _persist(self) -> None:
        pass
