from __future__ import annotations

import csv
import json
import logging
import time
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from mms.config import LedgerSettings
from mms.domain.errors import MalformedImportFileError, MissingRequiredColumnError
from mms.domain.models import InventoryRecord, Material, closing_stock, record_id_for
from mms.services.ledger_service import ImportBatch

log = logging.getLogger("mms.import")

# canonical field -> lower-case header substrings, checked in this order
COLUMN_SYNONYMS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "name": ("name", "物料名称", "序号"),
    "unit": ("unit", "基本计量单位"),
    "spec": ("spec", "物料单位"),
    "category": ("category", "分类"),
    "tags": ("tag", "标签"),
    "yesterdayStock": ("yesterday", "昨日库存"),
    "todayIn": ("todayin", "今日入库"),
    "workshopOut": ("workshop", "车间出库"),
    "storeOut": ("store", "店面出库"),
    "currentStock": ("current", "今日库存", "实时库存"),
    "date": ("date", "日期"),
})

REQUIRED_COLUMNS = ("name", "unit")
STOCK_COLUMNS = ("yesterdayStock", "todayIn", "workshopOut", "storeOut", "currentStock")

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d")


@dataclass(frozen=True)
class ImportResult:
    materials: int
    records: int
    skipped_rows: int


class InvalidRow(ValueError):
    pass


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _trim(row: Sequence[Any]) -> list[str]:
    cells = [_cell_text(v) for v in row]
    while cells and not cells[-1]:
        cells.pop()
    return cells


def _is_blank(row: Sequence[str]) -> bool:
    return not any(cell.strip() for cell in row)


def _quantity(text: str, field: str) -> int:
    cleaned = text.replace(",", "").strip()
    if not cleaned:
        return 0
    try:
        number = float(cleaned)
    except ValueError as exc:
        raise InvalidRow(f"{field} is not a number: {text!r}") from exc
    if not number.is_integer():
        raise InvalidRow(f"{field} must be a whole number: {text!r}")
    return int(number)


def _date(text: str, default: str) -> str:
    if not text:
        return default
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise InvalidRow(f"unrecognized date: {text!r}")


def _closing(yesterday: int, today_in: int, workshop: int, store: int, given: Optional[int]) -> int:
    # a non-zero closing figure from the source is trusted as is
    if given:
        return given
    return closing_stock(yesterday, today_in, workshop, store)


def map_columns(header: Sequence[str]) -> dict[str, int]:
    """
    Map canonical fields to column indexes.

    Each header goes to the first field whose synonyms it contains; when two
    headers land on the same field the later column wins.
    """
    mapping: dict[str, int] = {}
    for index, cell in enumerate(header):
        lowered = (cell or "").strip().lower()
        if not lowered:
            continue
        for field_name, synonyms in COLUMN_SYNONYMS.items():
            if any(s in lowered for s in synonyms):
                mapping[field_name] = index
                break
    missing = [c for c in REQUIRED_COLUMNS if c not in mapping]
    if missing:
        raise MissingRequiredColumnError(
            f"Import needs a material name and a unit column; missing: {', '.join(missing)}"
        )
    return mapping


def transpose(rows: Sequence[Sequence[str]]) -> list[list[str]]:
    """Turn a column-major sheet into row-major, dropping rows that end up blank."""
    width = max((len(r) for r in rows), default=0)
    out: list[list[str]] = []
    for i in range(width):
        row = [r[i] if i < len(r) else "" for r in rows]
        if not _is_blank(row):
            out.append(row)
    return out


class ImportService:
    def __init__(self, ledger, settings: LedgerSettings | None = None):
        self.ledger = ledger
        self.settings = settings or LedgerSettings()

    # --- id generation ---

    def _id_factory(self):
        taken = {m.id for m in self.ledger.list_materials()}
        stamp = int(time.time() * 1000)

        def next_id(index: int) -> str:
            candidate = f"import-{stamp}-{index}"
            bump = 0
            while candidate in taken:
                bump += 1
                candidate = f"import-{stamp}-{index}-{bump}"
            taken.add(candidate)
            return candidate

        return next_id

    # --- tabular ---

    def parse_rows(
        self,
        rows: Iterable[Sequence[Any]],
        default_date: str,
        detect_columnar: bool = False,
    ) -> ImportBatch:
        lines = [_trim(r) for r in rows]
        lines = [r for r in lines if not _is_blank(r)]
        if len(lines) < max(self.settings.import_min_lines, 1):
            raise MalformedImportFileError(
                f"Expected a header and data rows (at least {self.settings.import_min_lines} lines), got {len(lines)}"
            )

        if detect_columnar and len(lines) > 1 and len(lines[1]) <= 2:
            lines = transpose(lines)
            log.info("import_columnar_detected rows=%s", len(lines))

        columns = map_columns(lines[0])
        has_stock = any(c in columns for c in STOCK_COLUMNS)
        next_id = self._id_factory()

        materials: list[Material] = []
        records: list[InventoryRecord] = []
        skipped = 0

        for index, values in enumerate(lines[1:]):
            try:
                material, record = self._parse_row(values, columns, has_stock, default_date, next_id, index)
            except InvalidRow as exc:
                skipped += 1
                log.warning("import_row_skipped row=%s reason=%s", index + 2, exc)
                continue
            materials.append(material)
            if record is not None:
                records.append(record)

        return ImportBatch(materials=materials, records=records, skipped_rows=skipped)

    def _parse_row(self, values, columns, has_stock, default_date, next_id, index):
        if len(values) < 2:
            raise InvalidRow("fewer than two cells")

        def cell(field_name: str) -> str:
            idx = columns.get(field_name)
            if idx is None or idx >= len(values):
                return ""
            return values[idx].strip()

        name, unit = cell("name"), cell("unit")
        if not name or not unit:
            raise InvalidRow("material name and unit are required")

        quantities = {f: _quantity(cell(f), f) for f in STOCK_COLUMNS}
        record_date = _date(cell("date"), default_date)

        material = Material(
            id=next_id(index),
            name=name,
            unit=unit,
            spec=cell("spec") or name,
            category=cell("category") or self.settings.default_category,
            tags=cell("tags"),
        )
        if not has_stock:
            return material, None

        yesterday = quantities["yesterdayStock"]
        record = InventoryRecord(
            id=record_id_for(material.id, record_date),
            material_id=material.id,
            date=record_date,
            yesterday_stock=yesterday,
            today_in=quantities["todayIn"],
            workshop_out=quantities["workshopOut"],
            store_out=quantities["storeOut"],
            current_stock=_closing(
                yesterday,
                quantities["todayIn"],
                quantities["workshopOut"],
                quantities["storeOut"],
                quantities["currentStock"],
            ),
        )
        return material, record

    # --- structured ---

    def parse_structured(self, payload: Any, default_date: str) -> ImportBatch:
        if isinstance(payload, list):
            raw_materials, raw_records = payload, []
        elif isinstance(payload, dict) and isinstance(payload.get("materials"), list):
            raw_materials = payload["materials"]
            raw_records = payload.get("records") or []
            if not isinstance(raw_records, list):
                raise MalformedImportFileError("'records' must be a list")
        else:
            raise MalformedImportFileError("Expected a 'materials' list or a bare list of materials")

        next_id = self._id_factory()
        materials: list[Material] = []
        skipped = 0
        for index, item in enumerate(raw_materials):
            if not isinstance(item, dict) or not str(item.get("name") or "").strip():
                skipped += 1
                continue
            data = dict(item)
            if not data.get("id"):
                data["id"] = next_id(index)
            materials.append(Material.from_dict(data))

        existing = self.ledger.list_materials()
        by_id = {m.id for m in existing} | {m.id for m in materials}
        by_name: dict[str, str] = {}
        for m in [*existing, *materials]:
            by_name.setdefault(m.name, m.id)

        records: list[InventoryRecord] = []
        for item in raw_records:
            if not isinstance(item, dict):
                skipped += 1
                continue
            material_id = item.get("materialId")
            if material_id not in by_id:
                material_id = by_name.get(str(item.get("materialName") or ""))
            if material_id is None:
                # no matching material, dropped
                continue
            try:
                record_date = _date(str(item.get("date") or ""), default_date)
                q = {f: _quantity(_cell_text(item.get(f)), f) for f in STOCK_COLUMNS}
            except InvalidRow as exc:
                skipped += 1
                log.warning("import_record_skipped material=%s reason=%s", material_id, exc)
                continue
            records.append(
                InventoryRecord(
                    id=record_id_for(material_id, record_date),
                    material_id=material_id,
                    date=record_date,
                    yesterday_stock=q["yesterdayStock"],
                    today_in=q["todayIn"],
                    workshop_out=q["workshopOut"],
                    store_out=q["storeOut"],
                    current_stock=_closing(
                        q["yesterdayStock"], q["todayIn"], q["workshopOut"], q["storeOut"], q["currentStock"]
                    ),
                )
            )
        return ImportBatch(materials=materials, records=records, skipped_rows=skipped)

    # --- readers ---

    def read_csv(self, path: Path | str) -> list[list[str]]:
        try:
            with open(path, newline="", encoding="utf-8-sig") as fh:
                return [list(row) for row in csv.reader(fh)]
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise MalformedImportFileError(f"Could not read CSV {path}: {exc}") from exc

    def read_xlsx(self, path: Path | str) -> list[list[Any]]:
        try:
            wb = load_workbook(path, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
            raise MalformedImportFileError(f"Could not read workbook {path}: {exc}") from exc
        try:
            ws = wb.worksheets[0]
            return [list(row) for row in ws.iter_rows(values_only=True)]
        finally:
            wb.close()

    def read_json(self, path: Path | str) -> Any:
        try:
            return json.loads(Path(path).read_text(encoding="utf-8-sig"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise MalformedImportFileError(f"Could not parse JSON {path}: {exc}") from exc

    # --- entry points ---

    def _merge(self, batch: ImportBatch, default_date: str, source: str) -> ImportResult:
        if not batch.materials:
            raise MalformedImportFileError(f"No valid material rows found in {source}")
        result = self.ledger.merge_import(
            batch,
            default_date,
            action="Batch import",
            describe=lambda m, r: f"Imported {m} material(s) and {r} record(s) from {source}",
        )
        log.info(
            "import_done source=%s materials=%s records=%s skipped=%s",
            source,
            result.materials_added,
            result.records_added,
            batch.skipped_rows,
        )
        return ImportResult(result.materials_added, result.records_added, batch.skipped_rows)

    def import_rows(
        self,
        rows: Iterable[Sequence[Any]],
        default_date: str | None = None,
        detect_columnar: bool = False,
        source: str = "table",
    ) -> ImportResult:
        day = default_date or self.ledger.today()
        batch = self.parse_rows(rows, day, detect_columnar=detect_columnar)
        return self._merge(batch, day, source)

    def import_structured(self, payload: Any, default_date: str | None = None, source: str = "JSON") -> ImportResult:
        day = default_date or self.ledger.today()
        batch = self.parse_structured(payload, day)
        return self._merge(batch, day, source)

    def import_file(self, path: Path | str, default_date: str | None = None) -> ImportResult:
        p = Path(path)
        suffix = p.suffix.lower()
        if suffix == ".json":
            return self.import_structured(self.read_json(p), default_date, source=p.name)
        if suffix == ".csv":
            return self.import_rows(self.read_csv(p), default_date, source=p.name)
        if suffix == ".xlsx":
            return self.import_rows(self.read_xlsx(p), default_date, detect_columnar=True, source=p.name)
        raise MalformedImportFileError(f"Unsupported import file type: {p.suffix or p.name}")
