from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from mms.config import LedgerSettings
from mms.domain.errors import AuthorizationError, CorruptStoreError, RemoteUnavailableError
from mms.domain.models import LedgerDocument

log = logging.getLogger("mms.sync")

LOCAL = "local"
SYNCED = "synced"
DEGRADED = "degraded"

_NO_CACHE = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


@dataclass(frozen=True)
class SyncStatus:
    state: str
    detail: str = ""
    timestamp: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.state == DEGRADED


class SyncClient:
    """HTTP client for the remote copy of the ledger document and the login endpoint."""

    def __init__(self, base_url: str, settings: LedgerSettings | None = None, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.settings = settings or LedgerSettings()
        self.http = session or requests.Session()

    def _json(self, response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteUnavailableError(f"Remote returned a non-JSON body: {exc}") from exc
        if not isinstance(data, dict):
            raise RemoteUnavailableError(f"Remote returned {type(data).__name__}, expected an object")
        return data

    def fetch(self, force: bool = False) -> dict:
        timeout = self.settings.force_pull_timeout if force else self.settings.pull_timeout
        try:
            r = self.http.get(f"{self.base_url}/data", headers=_NO_CACHE, timeout=timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteUnavailableError(f"GET /data failed: {exc}") from exc
        return self._json(r)

    def push(self, payload: dict) -> dict:
        try:
            r = self.http.post(f"{self.base_url}/data", json=payload, timeout=self.settings.push_timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteUnavailableError(f"POST /data failed: {exc}") from exc
        return self._json(r)

    def login(self, username: str, password: str, encrypted: bool = False) -> dict:
        body: dict = {"username": username, "password": password}
        if encrypted:
            body["encrypted"] = True
        try:
            r = self.http.post(f"{self.base_url}/login", json=body, timeout=self.settings.login_timeout)
        except requests.RequestException as exc:
            raise RemoteUnavailableError(f"POST /login failed: {exc}") from exc
        if r.status_code in (401, 403):
            raise AuthorizationError("Invalid username or password.")
        try:
            r.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteUnavailableError(f"POST /login failed: {exc}") from exc
        data = self._json(r)
        if not data.get("success"):
            raise AuthorizationError(str(data.get("message") or "Invalid username or password."))
        return data


class SyncService:
    """
    Mirrors the local document to the remote store.

    The local document is always authoritative for the caller: remote failures
    are logged and reported as a degraded status, never raised.
    """

    def __init__(self, repo, client: SyncClient | None = None):
        self.repo = repo
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def push(self, document: LedgerDocument | None = None) -> SyncStatus:
        if self.client is None:
            return SyncStatus(LOCAL)
        doc = document if document is not None else self.repo.document
        try:
            result = self.client.push(doc.to_dict())
        except RemoteUnavailableError as exc:
            log.warning("sync_push_failed error=%s", exc)
            return SyncStatus(DEGRADED, detail=str(exc))
        if not result.get("success", True):
            log.warning("sync_push_rejected body=%s", result)
            return SyncStatus(DEGRADED, detail="remote rejected the document")
        log.info("sync_push_ok timestamp=%s", result.get("timestamp"))
        return SyncStatus(SYNCED, timestamp=result.get("timestamp"))

    def pull(self, force: bool = False) -> SyncStatus:
        """Overwrite local sections with the remote ones that are present."""
        if self.client is None:
            return SyncStatus(LOCAL)
        try:
            remote = self.client.fetch(force=force)
        except RemoteUnavailableError as exc:
            log.warning("sync_pull_failed force=%s error=%s", force, exc)
            return SyncStatus(DEGRADED, detail=str(exc))

        with self.repo.lock:
            merged = self.repo.document.to_dict()
            for key in ("materials", "records", "audit", "config"):
                if remote.get(key) is not None:
                    merged[key] = remote[key]
            try:
                document = self.repo.parse_dict(merged)
            except CorruptStoreError as exc:
                log.warning("sync_pull_malformed error=%s", exc)
                return SyncStatus(DEGRADED, detail=str(exc))
            self.repo.replace(document)

        log.info(
            "sync_pull_ok materials=%s records=%s",
            len(document.materials),
            len(document.records),
        )
        return SyncStatus(SYNCED)

    def force_pull(self) -> SyncStatus:
        return self.pull(force=True)
