from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from mms.domain.errors import AuthorizationError, RemoteUnavailableError
from mms.domain.models import UserSession
from mms.repositories.json_repo import atomic_write_text
from mms.time_utils import DEFAULT_TZ, display_timestamp

log = logging.getLogger(__name__)

DEFAULT_ADMIN_HASH = "8d969eef6ecad3c29a3a629280e686cf0c3f5d5a86aff3ca12020c923adc6c92"


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StoredUser:
    username: str
    password_hash: str
    role: str = "administrator"
    enabled: bool = True


class CredentialStore:
    """Static user list kept in ``users.json``; a default admin is written when the file is missing."""

    def __init__(self, auth_path: Path | str):
        self.auth_path = Path(auth_path)

    def _default_config(self) -> dict:
        return {
            "users": [
                {
                    "username": "admin",
                    "passwordHash": DEFAULT_ADMIN_HASH,
                    "role": "administrator",
                    "enabled": True,
                }
            ],
            "settings": {"encryptionEnabled": True, "sessionTimeout": 7200},
        }

    def load(self) -> list[StoredUser]:
        if not self.auth_path.exists():
            atomic_write_text(self.auth_path, json.dumps(self._default_config(), indent=2))
            log.info("auth_config_created path=%s", self.auth_path)
        try:
            data = json.loads(self.auth_path.read_text(encoding="utf-8"))
            users = data.get("users") or []
            return [
                StoredUser(
                    username=str(u["username"]),
                    password_hash=str(u["passwordHash"]).lower(),
                    role=str(u.get("role") or "administrator"),
                    enabled=u.get("enabled", True) is not False,
                )
                for u in users
            ]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AuthorizationError(f"User configuration is unreadable: {exc}") from exc

    def find(self, username: str) -> Optional[StoredUser]:
        for user in self.load():
            if user.username == username and user.enabled:
                return user
        return None


class AuthService:
    """
    Credential check behind ``authenticate(username, credential) -> UserSession``.

    When a remote client is configured it decides first; if it cannot be
    reached the local credential store decides.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        client=None,
        tz: str = DEFAULT_TZ,
        clock: Callable[[], datetime] | None = None,
    ):
        self.credentials = credentials
        self.client = client
        self.tz = tz
        self.clock = clock
        self._session: Optional[UserSession] = None

    def _now(self) -> str:
        return display_timestamp(self.tz, now=self.clock() if self.clock else None)

    def verify_local(self, username: str, credential: str, encrypted: bool = False) -> UserSession:
        user = self.credentials.find(username)
        if user is None:
            log.warning("login_failed user=%s reason=unknown_or_disabled", username)
            raise AuthorizationError("Invalid username or password.")
        # an encrypted credential is already the SHA-256 digest
        digest = credential.strip().lower() if encrypted else hash_password(credential)
        if not hmac.compare_digest(digest, user.password_hash):
            log.warning("login_failed user=%s reason=bad_password encrypted=%s", username, encrypted)
            raise AuthorizationError("Invalid username or password.")
        return UserSession(is_logged_in=True, username=user.username, login_time=self._now(), role=user.role)

    def authenticate(self, username: str, credential: str, encrypted: bool = False) -> UserSession:
        username_clean = (username or "").strip()
        if not username_clean:
            raise AuthorizationError("Username is required.")

        if self.client is not None:
            try:
                result = self.client.login(username_clean, credential, encrypted=encrypted)
                return UserSession(
                    is_logged_in=True,
                    username=str(result.get("username") or username_clean),
                    login_time=str(result.get("loginTime") or self._now()),
                    role=result.get("role"),
                )
            except RemoteUnavailableError as exc:
                log.warning("login_remote_unavailable user=%s error=%s falling back to local", username_clean, exc)

        return self.verify_local(username_clean, credential, encrypted=encrypted)

    def login(self, username: str, credential: str, encrypted: bool = False) -> UserSession:
        session = self.authenticate(username, credential, encrypted=encrypted)
        self._session = session
        log.info("login_ok user=%s encrypted=%s", session.username, encrypted)
        return session

    def logout(self) -> None:
        if self._session is not None:
            log.info("logout user=%s", self._session.username)
        self._session = None

    def current_session(self) -> Optional[UserSession]:
        return self._session
