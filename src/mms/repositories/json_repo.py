from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from mms.domain.errors import CorruptStoreError
from mms.domain.models import LedgerDocument, SystemConfig

log = logging.getLogger(__name__)


def dumps_document(document: LedgerDocument) -> str:
    return json.dumps(document.to_dict(), ensure_ascii=False, indent=2)


def atomic_write_text(target: Path, text: str) -> None:
    """Write ``text`` to a sibling temp file, fsync it, then rename over ``target``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonDocumentRepository:
    """
    Owns the single JSON document holding materials, records, audit and config.

    The document is cached in memory after the first read. Every save rewrites
    the whole file; callers mutate the cached aggregate only inside
    ``begin()``/``end()`` (see DocumentUnitOfWork), which hold ``lock``.
    """

    def __init__(self, data_path: Path | str, default_config: Callable[[], SystemConfig]):
        self.data_path = Path(data_path)
        self.default_config = default_config
        self.lock = threading.RLock()
        self._document: Optional[LedgerDocument] = None
        self._depth = 0
        self._snapshot: Optional[LedgerDocument] = None

    def empty_document(self) -> LedgerDocument:
        return LedgerDocument(config=self.default_config())

    def init_store(self) -> None:
        if not self.data_path.exists() or self.data_path.stat().st_size == 0:
            self.save(self.empty_document())
            log.info("store_initialized path=%s", self.data_path)
        else:
            self._document = self.load_or_default()

    def load(self) -> LedgerDocument:
        try:
            raw = self.data_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self.empty_document()
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptStoreError(f"Could not read {self.data_path}: {exc}") from exc
        return self.parse(raw, source=str(self.data_path))

    def parse(self, raw: str, source: str = "<memory>") -> LedgerDocument:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise CorruptStoreError(f"Malformed ledger document in {source}: {exc}") from exc
        return self.parse_dict(data, source=source)

    def parse_dict(self, data, source: str = "<memory>") -> LedgerDocument:
        try:
            return LedgerDocument.from_dict(data, default_config=self.default_config())
        except (ValueError, TypeError, KeyError) as exc:
            raise CorruptStoreError(f"Malformed ledger document in {source}: {exc}") from exc

    def load_or_default(self) -> LedgerDocument:
        try:
            return self.load()
        except CorruptStoreError:
            log.error("store_corrupt path=%s falling back to empty document", self.data_path, exc_info=True)
            self._quarantine()
            return self.empty_document()

    def _quarantine(self) -> Optional[Path]:
        if not self.data_path.exists():
            return None
        ts = datetime.now().strftime("%Y%m%d%H%M%S")
        target = self.data_path.with_name(f"{self.data_path.name}.corrupt-{ts}")
        shutil.copy2(self.data_path, target)
        return target

    @property
    def document(self) -> LedgerDocument:
        with self.lock:
            if self._document is None:
                self._document = self.load_or_default()
            return self._document

    def save(self, document: Optional[LedgerDocument] = None) -> None:
        with self.lock:
            doc = document if document is not None else self.document
            atomic_write_text(self.data_path, dumps_document(doc))
            self._document = doc

    def replace(self, document: LedgerDocument) -> None:
        self.save(document)

    def reload(self) -> LedgerDocument:
        with self.lock:
            self._document = self.load_or_default()
            return self._document

    def serialized(self) -> str:
        with self.lock:
            return dumps_document(self.document)

    # --- transaction hooks used by DocumentUnitOfWork ---

    def begin(self) -> LedgerDocument:
        self.lock.acquire()
        try:
            if self._depth == 0:
                self._snapshot = self.document.copy()
            self._depth += 1
            return self.document
        except BaseException:
            self.lock.release()
            raise

    def end(self, commit: bool) -> None:
        try:
            self._depth -= 1
            if self._depth > 0:
                return
            snapshot, self._snapshot = self._snapshot, None
            if not commit:
                if snapshot is not None:
                    self._document = snapshot
                return
            try:
                self.save()
            except BaseException:
                # the file still holds the pre-transaction state; match it
                if snapshot is not None:
                    self._document = snapshot
                raise
        finally:
            self.lock.release()
