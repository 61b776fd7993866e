from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from mms.domain.models import AuditEntry, LedgerDocument, UserSession
from mms.repositories.unit_of_work import DocumentUnitOfWork, UnitOfWork
from mms.time_utils import DEFAULT_TZ, display_timestamp

log = logging.getLogger("mms.audit")

UNKNOWN_USER = "unknown"


class AuditTrail:
    """Newest-first, size-capped list of human-readable actions kept in the ledger document."""

    def __init__(
        self,
        repo,
        session_provider: Callable[[], Optional[UserSession]] | None = None,
        cap: int = 1000,
        tz: str = DEFAULT_TZ,
        clock: Callable[[], datetime] | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.session_provider = session_provider or (lambda: None)
        self.cap = cap
        self.tz = tz
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: DocumentUnitOfWork(repo))

    def _current_user(self) -> str:
        session = self.session_provider()
        if session and session.is_logged_in and session.username:
            return session.username
        return UNKNOWN_USER

    def _new_entry(self, action: str, details: str) -> AuditEntry:
        now = self.clock() if self.clock else None
        return AuditEntry(
            id=secrets.token_hex(5),
            timestamp=display_timestamp(self.tz, now=now),
            user=self._current_user(),
            action=action,
            details=details,
        )

    def append(self, doc: LedgerDocument, action: str, details: str) -> AuditEntry:
        """Prepend an entry to ``doc``; the caller owns the surrounding unit of work."""
        entry = self._new_entry(action, details)
        doc.audit.insert(0, entry)
        del doc.audit[self.cap:]
        log.info("audit user=%s action=%s details=%s", entry.user, action, details)
        return entry

    def record(self, action: str, details: str) -> AuditEntry:
        with self.uow_factory() as doc:
            return self.append(doc, action, details)

    def list_entries(self) -> list[AuditEntry]:
        return list(self.repo.document.audit)

    def reset(self) -> None:
        with self.uow_factory() as doc:
            doc.audit.clear()
