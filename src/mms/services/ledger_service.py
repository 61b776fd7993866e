from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from mms.config import LedgerSettings
from mms.domain.errors import (
    DuplicateIdError,
    RecordNotFoundError,
    UnknownMaterialError,
    ValidationError,
)
from mms.domain.models import InventoryRecord, LedgerDocument, Material, SystemConfig, as_quantity
from mms.repositories.unit_of_work import DocumentUnitOfWork, UnitOfWork
from mms.services import carry_forward
from mms.services.sync_service import LOCAL, SyncStatus
from mms.time_utils import date_key, is_date_key

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyTotals:
    date: str
    material_count: int
    today_in: int
    workshop_out: int
    store_out: int
    negative_stock: list[InventoryRecord]


@dataclass(frozen=True)
class MergeResult:
    materials_added: int
    records_added: int


@dataclass(frozen=True)
class ImportBatch:
    materials: list[Material]
    records: list[InventoryRecord]
    skipped_rows: int = 0


def _require_date(value: str) -> str:
    if not is_date_key(value):
        raise ValidationError(f"Dates must be YYYY-MM-DD, got {value!r}")
    return value


def _require_quantity(field_name: str, value) -> int:
    try:
        return as_quantity(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a whole number, got {value!r}") from exc


class LedgerService:
    """
    Materials and their per-day stock records.

    Every mutation runs inside one unit of work over the whole document, then
    the document is offered to the sync service. A failed push never undoes the
    local write; its outcome is kept in ``last_sync_status``.
    """

    def __init__(
        self,
        repo,
        audit,
        settings: LedgerSettings | None = None,
        sync=None,
        clock: Callable[[], datetime] | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.audit = audit
        self.settings = settings or LedgerSettings()
        self.sync = sync
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: DocumentUnitOfWork(repo))
        self.last_sync_status = SyncStatus(LOCAL)

    # --- helpers ---

    def today(self, offset_days: int = 0) -> str:
        now = self.clock() if self.clock else None
        return date_key(offset_days, self.settings.timezone, now=now)

    def _after_write(self) -> None:
        if self.sync is not None:
            self.last_sync_status = self.sync.push(self.repo.document)

    @staticmethod
    def _material_index(doc: LedgerDocument, material_id: str) -> int:
        for i, m in enumerate(doc.materials):
            if m.id == material_id:
                return i
        return -1

    # --- materials ---

    def list_materials(self) -> list[Material]:
        return list(self.repo.document.materials)

    def get_material(self, material_id: str) -> Material:
        doc = self.repo.document
        idx = self._material_index(doc, material_id)
        if idx < 0:
            raise UnknownMaterialError(f"Material '{material_id}' not found.")
        return doc.materials[idx]

    def search_materials(self, term: str) -> list[Material]:
        needle = (term or "").strip().lower()
        return [
            m
            for m in self.repo.document.materials
            if needle in m.name.lower() or (m.tags and needle in m.tags.lower())
        ]

    def add_material(self, material: Material, opening_stock: int | None = None, date: str | None = None) -> Material:
        if not material.id or not material.name.strip():
            raise ValidationError("Material id and name are required.")
        opening = None if opening_stock is None else _require_quantity("opening_stock", opening_stock)
        with self.uow_factory() as doc:
            if self._material_index(doc, material.id) >= 0:
                raise DuplicateIdError(f"Material id '{material.id}' already exists.")
            doc.materials.append(material)
            if opening is not None:
                day = _require_date(date or self.today())
                self._create_record(doc, carry_forward.opening_record(material.id, day, opening))
            self.audit.append(doc, "Add material", f"Added material: {material.name}")
        self._after_write()
        return material

    def delete_materials(self, ids: Iterable[str]) -> int:
        targets = set(ids)
        if not targets:
            return 0
        with self.uow_factory() as doc:
            before = len(doc.materials)
            doc.materials[:] = [m for m in doc.materials if m.id not in targets]
            doc.records[:] = [r for r in doc.records if r.material_id not in targets]
            removed = before - len(doc.materials)
            self.audit.append(doc, "Delete materials", f"Deleted {removed} material(s)")
        self._after_write()
        log.info("materials_deleted requested=%s removed=%s", len(targets), removed)
        return removed

    # --- records ---

    def record_for(self, material_id: str, date: str) -> Optional[InventoryRecord]:
        return carry_forward.find_record(self.repo.document.records, material_id, date)

    def records_for_date(self, date: str) -> list[InventoryRecord]:
        return [r for r in self.repo.document.records if r.date == date]

    def _create_record(self, doc: LedgerDocument, record: InventoryRecord) -> InventoryRecord:
        existing = carry_forward.find_record(doc.records, record.material_id, record.date)
        if existing is not None:
            return existing
        doc.records.append(record)
        return record

    def get_or_create_record(self, material_id: str, date: str) -> InventoryRecord:
        _require_date(date)
        existing = self.record_for(material_id, date)
        if existing is not None:
            return existing
        with self.uow_factory() as doc:
            if self._material_index(doc, material_id) < 0:
                raise UnknownMaterialError(f"Material '{material_id}' not found.")
            # re-check under the lock before creating
            existing = carry_forward.find_record(doc.records, material_id, date)
            if existing is not None:
                return existing
            record = self._create_record(doc, carry_forward.seed_record(doc.records, material_id, date))
        self._after_write()
        return record

    def update_flows(
        self,
        record_id: str,
        today_in: int | None = None,
        workshop_out: int | None = None,
        store_out: int | None = None,
    ) -> Optional[InventoryRecord]:
        changes = {}
        for k, v in (("today_in", today_in), ("workshop_out", workshop_out), ("store_out", store_out)):
            if v is None:
                continue
            changes[k] = _require_quantity(k, v)
        with self.uow_factory() as doc:
            idx = next((i for i, r in enumerate(doc.records) if r.id == record_id), -1)
            if idx < 0:
                if self.settings.strict_record_lookup:
                    raise RecordNotFoundError(f"Record '{record_id}' not found.")
                log.warning("update_flows_unknown_record id=%s ignored", record_id)
                return None
            updated = replace(doc.records[idx], **changes).recomputed()
            doc.records[idx] = updated
        self._after_write()
        if updated.current_stock < 0:
            log.warning("negative_stock record=%s current=%s", updated.id, updated.current_stock)
        return updated

    def carry_forward_all(self, from_date: str, to_date: str) -> list[InventoryRecord]:
        _require_date(from_date)
        _require_date(to_date)
        with self.uow_factory() as doc:
            created = carry_forward.plan_roll_forward(doc.materials, doc.records, from_date, to_date)
            if created:
                doc.records.extend(created)
                self.audit.append(
                    doc,
                    "Carry forward",
                    f"Created {to_date} records for {len(created)} material(s)",
                )
        if created:
            self._after_write()
        log.info("carry_forward from=%s to=%s created=%s", from_date, to_date, len(created))
        return created

    def generate_next_day(self) -> list[InventoryRecord]:
        return self.carry_forward_all(self.today(), self.today(1))

    # --- views ---

    def history(self, start: str, end: str, search: str = "") -> list[InventoryRecord]:
        doc = self.repo.document
        names = {m.id: m.name.lower() for m in doc.materials}
        needle = (search or "").strip().lower()
        rows = [
            r
            for r in doc.records
            if start <= r.date <= end and r.material_id in names and needle in names[r.material_id]
        ]
        return sorted(rows, key=lambda r: r.date, reverse=True)

    def daily_totals(self, date: str) -> DailyTotals:
        records = self.records_for_date(date)
        return DailyTotals(
            date=date,
            material_count=len(self.repo.document.materials),
            today_in=sum(r.today_in for r in records),
            workshop_out=sum(r.workshop_out for r in records),
            store_out=sum(r.store_out for r in records),
            negative_stock=[r for r in records if r.current_stock < 0],
        )

    # --- config ---

    def get_config(self) -> SystemConfig:
        return self.repo.document.config

    def update_config(self, config: SystemConfig) -> SystemConfig:
        with self.uow_factory() as doc:
            doc.config = config
            self.audit.append(doc, "Update config", "Updated system configuration")
        self._after_write()
        return config

    # --- bulk ---

    def merge_import(
        self,
        batch: ImportBatch,
        default_date: str,
        action: str,
        describe: Callable[[int, int], str],
    ) -> MergeResult:
        """
        Merge imported materials and records, then append one audit entry.

        Materials whose id already exists and records whose (material, date)
        already exists are skipped. Imported materials that arrive without any
        record get an opening record on ``default_date``.
        """
        _require_date(default_date)
        with self.uow_factory() as doc:
            known = {m.id for m in doc.materials}
            added: list[Material] = []
            for m in batch.materials:
                if m.id in known:
                    continue
                doc.materials.append(m)
                known.add(m.id)
                added.append(m)

            records_added = 0
            keys = {(r.material_id, r.date) for r in doc.records}
            for r in batch.records:
                if r.material_id not in known or (r.material_id, r.date) in keys:
                    continue
                doc.records.append(r)
                keys.add((r.material_id, r.date))
                records_added += 1

            with_records = {r.material_id for r in batch.records}
            for m in added:
                if m.id not in with_records and (m.id, default_date) not in keys:
                    doc.records.append(carry_forward.seed_record(doc.records, m.id, default_date))
                    keys.add((m.id, default_date))

            self.audit.append(doc, action, describe(len(added), records_added))
        self._after_write()
        return MergeResult(materials_added=len(added), records_added=records_added)

    def reset_all(self) -> None:
        with self.uow_factory() as doc:
            doc.materials.clear()
            doc.records.clear()
            doc.audit.clear()
            doc.config = self.repo.default_config()
        self._after_write()
        log.warning("ledger_reset")
