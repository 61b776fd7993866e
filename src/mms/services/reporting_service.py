from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from mms.domain.errors import CorruptStoreError, MalformedImportFileError, NotFoundError, ValidationError
from mms.repositories.json_repo import atomic_write_text
from mms.repositories.unit_of_work import DocumentUnitOfWork

log = logging.getLogger(__name__)

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("serial", "序号"),
    ("name", "物料名称"),
    ("tags", "标签"),
    ("unit", "基本计量单位"),
    ("spec", "物料单位"),
    ("yesterdayStock", "昨日库存"),
    ("todayIn", "今日入库"),
    ("workshopOut", "车间出库"),
    ("storeOut", "店面出库"),
    ("currentStock", "今日库存"),
    ("date", "日期"),
)
_LABELS = dict(EXPORT_COLUMNS)


class ReportingService:
    def __init__(self, repo, ledger, audit):
        self.repo = repo
        self.ledger = ledger
        self.audit = audit

    def _columns(self, columns: Optional[Sequence[str]]) -> list[str]:
        if columns is None:
            return [c for c, _ in EXPORT_COLUMNS]
        chosen = [c for c in columns]
        unknown = [c for c in chosen if c not in _LABELS]
        if unknown:
            raise ValidationError(f"Unknown export column(s): {', '.join(unknown)}")
        if not chosen:
            raise ValidationError("Select at least one column to export.")
        return chosen

    def daily_rows(self, date: str, columns: Optional[Sequence[str]] = None) -> tuple[list[str], list[list]]:
        cols = self._columns(columns)
        materials = {m.id: m for m in self.ledger.list_materials()}
        rows: list[list] = []
        for serial, record in enumerate(self.ledger.records_for_date(date), start=1):
            m = materials.get(record.material_id)
            values = {
                "serial": serial,
                "name": m.name if m else "",
                "tags": (m.tags or "") if m else "",
                "unit": m.unit if m else "",
                "spec": m.spec if m else "",
                "yesterdayStock": record.yesterday_stock,
                "todayIn": record.today_in,
                "workshopOut": record.workshop_out,
                "storeOut": record.store_out,
                "currentStock": record.current_stock,
                "date": record.date,
            }
            rows.append([values[c] for c in cols])
        return [_LABELS[c] for c in cols], rows

    def export_daily_csv(self, path: Path | str, date: str, columns: Optional[Sequence[str]] = None) -> int:
        headers, rows = self.daily_rows(date, columns)
        if not rows:
            raise NotFoundError(f"No records found for {date}.")
        # BOM so spreadsheet apps pick up UTF-8
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.writer(fh)
            writer.writerow(headers)
            writer.writerows(rows)
        self.audit.record("Export report", f"Exported {len(rows)} record(s) for {date}")
        log.info("report_exported path=%s date=%s rows=%s", path, date, len(rows))
        return len(rows)

    def export_daily_excel(self, path: Path | str, date: str, columns: Optional[Sequence[str]] = None) -> int:
        headers, rows = self.daily_rows(date, columns)
        if not rows:
            raise NotFoundError(f"No records found for {date}.")

        wb = Workbook()
        ws = wb.active
        ws.title = date
        ws.append(headers)
        for c in ws[1]:
            c.font = Font(bold=True)
        for row in rows:
            ws.append(row)
        ws.freeze_panes = "A2"
        for idx, label in enumerate(headers, start=1):
            ws.column_dimensions[get_column_letter(idx)].width = max(10, len(label) * 3)
        wb.save(path)

        self.audit.record("Export report", f"Exported {len(rows)} record(s) for {date} (xlsx)")
        return len(rows)

    def export_database(self, path: Path | str) -> Path:
        target = Path(path)
        atomic_write_text(target, self.repo.serialized())
        self.audit.record("Export database", f"Exported full database to {target.name}")
        return target

    def import_database(self, path: Path | str) -> None:
        """Replace every section present in a full JSON export; absent sections are kept."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8-sig"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise MalformedImportFileError(f"Could not parse database export {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedImportFileError("Database export must be a JSON object.")

        with DocumentUnitOfWork(self.repo) as doc:
            merged = doc.to_dict()
            for key in ("materials", "records", "audit", "config"):
                if data.get(key) is not None:
                    merged[key] = data[key]
            try:
                incoming = self.repo.parse_dict(merged, source=str(path))
            except CorruptStoreError as exc:
                raise MalformedImportFileError(str(exc)) from exc
            doc.materials[:] = incoming.materials
            doc.records[:] = incoming.records
            doc.audit[:] = incoming.audit
            doc.config = incoming.config
        log.warning("database_imported path=%s", path)
