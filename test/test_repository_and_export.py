import json
from pathlib import Path

import pytest
from openpyxl import load_workbook

from conftest import add_with_stock, make_container
from mms.domain.errors import MalformedImportFileError, NotFoundError, ValidationError
from mms.domain.models import Material


def test_new_store_is_initialized_with_default_config(tmp_path: Path):
    c = make_container(tmp_path)
    data = json.loads(c.repo.data_path.read_text(encoding="utf-8"))

    assert data["materials"] == [] and data["records"] == [] and data["audit"] == []
    assert data["config"]["warehouseName"] == "中心仓库 A-01"
    assert data["config"]["adminName"] == "管理员"


def test_corrupt_store_falls_back_and_is_quarantined(tmp_path: Path):
    data_path = tmp_path / "data" / "database.json"
    data_path.parent.mkdir(parents=True)
    data_path.write_text("{not json", encoding="utf-8")

    c = make_container(tmp_path)

    assert c.ledger.list_materials() == []
    quarantined = list(data_path.parent.glob("database.json.corrupt-*"))
    assert len(quarantined) == 1
    assert quarantined[0].read_text(encoding="utf-8") == "{not json"

    c.ledger.add_material(Material(id="m1", name="A", unit="kg"))
    assert json.loads(data_path.read_text(encoding="utf-8"))["materials"][0]["id"] == "m1"


def test_writes_leave_no_temp_files(tmp_path: Path):
    c = make_container(tmp_path)
    for i in range(3):
        add_with_stock(c.ledger, f"m{i}", f"料{i}", i, "2024-05-01")
    c.backup.backup()

    leftovers = [p.name for p in tmp_path.rglob("*.tmp")]
    assert leftovers == []


def test_daily_csv_export_has_bom_and_labels(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "面粉", 10, "2024-05-01")
    c.ledger.update_flows(rec.id, today_in=2, store_out=1)
    out = tmp_path / "daily.csv"

    assert c.reporting.export_daily_csv(out, "2024-05-01") == 1

    raw = out.read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    header, row = raw.decode("utf-8-sig").splitlines()
    assert header == "序号,物料名称,标签,基本计量单位,物料单位,昨日库存,今日入库,车间出库,店面出库,今日库存,日期"
    assert row == "1,面粉,,个,面粉,10,2,0,1,11,2024-05-01"
    assert c.audit.list_entries()[0].action == "Export report"


def test_csv_export_round_trips_through_importer(tmp_path: Path):
    source = make_container(tmp_path / "source")
    a = add_with_stock(source.ledger, "m1", "面粉", 10, "2024-05-01")
    source.ledger.update_flows(a.id, today_in=5, workshop_out=2)
    add_with_stock(source.ledger, "m2", "白糖", 4, "2024-05-01")
    out = tmp_path / "export.csv"
    source.reporting.export_daily_csv(out, "2024-05-01")

    target = make_container(tmp_path / "target")
    result = target.imports.import_file(out, default_date="2024-05-09")

    assert (result.materials, result.records, result.skipped_rows) == (2, 2, 0)
    by_name = {m.name: m for m in target.ledger.list_materials()}
    flour = target.ledger.record_for(by_name["面粉"].id, "2024-05-01")
    assert (flour.yesterday_stock, flour.today_in, flour.workshop_out, flour.current_stock) == (10, 5, 2, 13)
    assert target.ledger.record_for(by_name["白糖"].id, "2024-05-01").current_stock == 4


def test_export_column_subset_and_validation(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "盐", 3, "2024-05-01")

    headers, rows = c.reporting.daily_rows("2024-05-01", ["name", "currentStock"])
    assert headers == ["物料名称", "今日库存"]
    assert rows == [["盐", 3]]

    with pytest.raises(ValidationError):
        c.reporting.daily_rows("2024-05-01", ["name", "price"])
    with pytest.raises(NotFoundError):
        c.reporting.export_daily_csv(tmp_path / "empty.csv", "2024-06-01")


def test_daily_excel_export(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "盐", 3, "2024-05-01")
    add_with_stock(c.ledger, "m2", "糖", 5, "2024-05-01")
    out = tmp_path / "daily.xlsx"

    assert c.reporting.export_daily_excel(out, "2024-05-01") == 2

    ws = load_workbook(out).active
    assert ws.title == "2024-05-01"
    assert ws.max_row == 3
    assert ws["B1"].value == "物料名称"
    assert ws["J3"].value == 5


def test_database_export_and_import(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "盐", 3, "2024-05-01")
    out = c.reporting.export_database(tmp_path / "full.json")

    c.ledger.reset_all()
    assert c.ledger.list_materials() == []

    c.reporting.import_database(out)
    assert [m.id for m in c.ledger.list_materials()] == ["m1"]
    assert c.ledger.record_for("m1", "2024-05-01").current_stock == 3


def test_database_import_keeps_absent_sections(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "盐", 3, "2024-05-01")
    partial = tmp_path / "partial.json"
    partial.write_text(json.dumps({"materials": [{"id": "m9", "name": "新", "unit": "kg"}]}), encoding="utf-8")

    c.reporting.import_database(partial)

    assert [m.id for m in c.ledger.list_materials()] == ["m9"]
    assert len(c.repo.document.records) == 1


def test_database_import_rejects_bad_json(tmp_path: Path):
    c = make_container(tmp_path)
    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(MalformedImportFileError):
        c.reporting.import_database(bad)

    bad.write_text('{"records": [{"date": "2024-05-01"}]}', encoding="utf-8")
    with pytest.raises(MalformedImportFileError):
        c.reporting.import_database(bad)


def test_failed_save_rolls_back_the_cached_document(tmp_path: Path, monkeypatch):
    from mms.repositories import json_repo

    c = make_container(tmp_path)
    c.ledger.add_material(Material(id="m1", name="A", unit="kg"))

    def disk_full(target, text):
        raise OSError("No space left on device")

    monkeypatch.setattr(json_repo, "atomic_write_text", disk_full)
    with pytest.raises(OSError):
        c.ledger.add_material(Material(id="m2", name="B", unit="kg"))
    assert [m.id for m in c.ledger.list_materials()] == ["m1"]
    assert len(c.audit.list_entries()) == 1

    monkeypatch.undo()
    c.ledger.add_material(Material(id="m2", name="B", unit="kg"))
    stored = json.loads(c.repo.data_path.read_text(encoding="utf-8"))
    assert [m["id"] for m in stored["materials"]] == ["m1", "m2"]
