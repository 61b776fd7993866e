from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from mms.domain.errors import ArchiveNotFoundError, CorruptStoreError, ValidationError
from mms.repositories.json_repo import atomic_write_text

log = logging.getLogger("mms.backup")

ARCHIVE_FORMAT_VERSION = "1.0.0"
SAFETY_PREFIX = "before_restore_"


@dataclass(frozen=True)
class ArchiveInfo:
    name: str
    path: Path
    size: int
    created_at: str
    modified_at: str
    backup_info: Optional[dict]


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")


class BackupService:
    """
    Timestamped JSON snapshots of the whole ledger document.

    Archive layout: ``{"backupInfo": {...}, "data": <ledger document>}``.
    """

    def __init__(
        self,
        repo,
        backup_dir: Path | str,
        retention: Optional[int] = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repo = repo
        self.backup_dir = Path(backup_dir)
        self.retention = retention
        self.clock = clock or datetime.now
        self._writing: set[str] = set()
        self._lock = threading.Lock()

    def _archive_name(self, label: Optional[str], now: datetime) -> str:
        day = now.strftime("%Y-%m-%d")
        stem = f"{label}_{day}" if label else f"database_{day}_{now.strftime('%H-%M-%S')}"
        name = f"{stem}.json"
        n = 0
        while (self.backup_dir / name).exists() or name in self._writing:
            n += 1
            name = f"{stem}-{n}.json"
        return name

    @staticmethod
    def _clean_label(label: Optional[str]) -> Optional[str]:
        if label is None:
            return None
        cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in label.strip())
        return cleaned.strip(".") or None

    def backup(self, label: Optional[str] = None) -> str:
        """Snapshot the live document into a new archive and return its name."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        now = self.clock()
        clean = self._clean_label(label)

        with self._lock:
            name = self._archive_name(clean, now)
            self._writing.add(name)
        try:
            payload = self.repo.serialized()
            archive = {
                "backupInfo": {
                    "timestamp": now.isoformat(timespec="seconds"),
                    "version": ARCHIVE_FORMAT_VERSION,
                    "description": f"Manual backup: {label}" if label else "Automatic backup",
                    "originalSize": len(payload.encode("utf-8")),
                },
                "data": json.loads(payload),
            }
            atomic_write_text(self.backup_dir / name, json.dumps(archive, ensure_ascii=False, indent=2))
            log.info("backup_created name=%s size=%s", name, archive["backupInfo"]["originalSize"])
            if self.retention is not None:
                self.cleanup(self.retention)
        finally:
            with self._lock:
                self._writing.discard(name)
        return name

    def _resolve(self, archive_id: str) -> Path:
        path = (self.backup_dir / archive_id).resolve()
        if path.parent != self.backup_dir.resolve() or not path.is_file():
            raise ArchiveNotFoundError(f"Backup '{archive_id}' not found.")
        return path

    def read_archive(self, archive_id: str) -> dict:
        path = self._resolve(archive_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise CorruptStoreError(f"Backup '{archive_id}' is unreadable: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptStoreError(f"Backup '{archive_id}' is not a JSON object.")
        return data

    def restore(self, archive_id: str) -> str:
        """
        Replace the live document with an archive's payload.

        A safety snapshot of the current state is always written first; its
        name is returned.
        """
        archive = self.read_archive(archive_id)
        payload = archive.get("data", archive)
        document = self.repo.parse_dict(payload, source=archive_id)

        safety = self.backup(f"{SAFETY_PREFIX}{Path(archive_id).stem}")
        self.repo.replace(document)
        log.warning("backup_restored name=%s safety=%s", archive_id, safety)
        return safety

    def list_archives(self) -> list[ArchiveInfo]:
        if not self.backup_dir.exists():
            return []
        found: list[tuple[float, ArchiveInfo]] = []
        for f in self.backup_dir.glob("*.json"):
            try:
                stat = f.stat()
            except FileNotFoundError:
                continue
            info = None
            try:
                meta = json.loads(f.read_text(encoding="utf-8")).get("backupInfo")
                info = meta if isinstance(meta, dict) else None
            except (OSError, UnicodeDecodeError, ValueError, AttributeError):
                log.warning("backup_metadata_unreadable name=%s", f.name)
            created = getattr(stat, "st_birthtime", stat.st_ctime)
            found.append((
                stat.st_mtime,
                ArchiveInfo(
                    name=f.name,
                    path=f,
                    size=stat.st_size,
                    created_at=_iso(created),
                    modified_at=_iso(stat.st_mtime),
                    backup_info=info,
                ),
            ))
        found.sort(key=lambda pair: (pair[0], pair[1].name), reverse=True)
        return [info for _mtime, info in found]

    def cleanup(self, keep: int = 8) -> list[str]:
        """
        Delete all but the ``keep`` most recently modified archives.

        Archives still being written count towards ``keep`` and are never deleted.
        """
        if keep < 0:
            raise ValidationError("keep must be >= 0")
        with self._lock:
            protected = set(self._writing)
        kept = 0
        deleted: list[str] = []
        for archive in self.list_archives():
            if archive.name in protected or kept < keep:
                kept += 1
                continue
            archive.path.unlink(missing_ok=True)
            deleted.append(archive.name)
            log.info("backup_deleted name=%s", archive.name)
        if deleted:
            log.info("backup_cleanup kept=%s deleted=%s", kept, len(deleted))
        return deleted

    def latest_archive(self, include_safety: bool = False) -> Optional[ArchiveInfo]:
        for a in self.list_archives():
            if include_safety or not a.name.startswith(SAFETY_PREFIX):
                return a
        return None

    def restore_latest(self) -> str:
        latest = self.latest_archive()
        if latest is None:
            raise ArchiveNotFoundError("No backups available to restore.")
        self.restore(latest.name)
        return latest.name
