from pathlib import Path

import pytest

from conftest import add_with_stock, make_container
from mms.domain.errors import DuplicateIdError, RecordNotFoundError, UnknownMaterialError, ValidationError
from mms.domain.models import Material


def test_closing_stock_recomputed_on_every_flow_edit(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "面粉", 10, "2024-05-01")
    assert rec.id == "rec-m1-2024-05-01"
    assert (rec.yesterday_stock, rec.current_stock) == (10, 10)

    updated = c.ledger.update_flows(rec.id, today_in=5, workshop_out=3, store_out=4)
    assert updated.current_stock == 8

    updated = c.ledger.update_flows(rec.id, today_in=0)
    assert updated.current_stock == 3
    assert c.ledger.record_for("m1", "2024-05-01") == updated


def test_negative_stock_is_kept_and_reported(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "糖", 2, "2024-05-01")

    updated = c.ledger.update_flows(rec.id, store_out=5)
    assert updated.current_stock == -3

    totals = c.ledger.daily_totals("2024-05-01")
    assert totals.store_out == 5
    assert [r.id for r in totals.negative_stock] == [rec.id]


def test_duplicate_material_id_is_rejected(tmp_path: Path):
    c = make_container(tmp_path)
    c.ledger.add_material(Material(id="m1", name="盐", unit="kg"))

    with pytest.raises(DuplicateIdError):
        c.ledger.add_material(Material(id="m1", name="另一个", unit="kg"))
    with pytest.raises(ValidationError):
        c.ledger.add_material(Material(id="m2", name="  ", unit="kg"))
    assert len(c.ledger.list_materials()) == 1


def test_get_or_create_seeds_from_latest_earlier_record(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "油", 10, "2024-05-01")
    c.ledger.update_flows(rec.id, today_in=4)

    created = c.ledger.get_or_create_record("m1", "2024-05-04")
    assert created.id == "rec-m1-2024-05-04"
    assert created.yesterday_stock == 14
    assert created.current_stock == 14
    assert (created.today_in, created.workshop_out, created.store_out) == (0, 0, 0)

    again = c.ledger.get_or_create_record("m1", "2024-05-04")
    assert again == created
    assert len(c.ledger.records_for_date("2024-05-04")) == 1


def test_get_or_create_without_history_starts_at_zero(tmp_path: Path):
    c = make_container(tmp_path)
    c.ledger.add_material(Material(id="m1", name="醋", unit="瓶"))

    rec = c.ledger.get_or_create_record("m1", "2024-05-01")
    assert rec.yesterday_stock == 0 and rec.current_stock == 0


def test_get_or_create_rejects_unknown_material(tmp_path: Path):
    c = make_container(tmp_path)
    with pytest.raises(UnknownMaterialError):
        c.ledger.get_or_create_record("ghost", "2024-05-01")
    assert c.ledger.records_for_date("2024-05-01") == []


def test_update_flows_unknown_record_strict_and_lenient(tmp_path: Path):
    strict = make_container(tmp_path / "strict")
    with pytest.raises(RecordNotFoundError):
        strict.ledger.update_flows("rec-missing", today_in=1)

    lenient = make_container(tmp_path / "lenient", strict_record_lookup=False)
    assert lenient.ledger.update_flows("rec-missing", today_in=1) is None


def test_carry_forward_prefers_from_date_record_and_is_idempotent(tmp_path: Path):
    c = make_container(tmp_path)
    first = add_with_stock(c.ledger, "m1", "米", 10, "2024-05-01")
    c.ledger.update_flows(first.id, store_out=2)
    later = c.ledger.get_or_create_record("m1", "2024-05-03")
    c.ledger.update_flows(later.id, today_in=30)
    c.ledger.add_material(Material(id="m2", name="新料", unit="个"))

    created = c.ledger.carry_forward_all("2024-05-01", "2024-05-05")
    by_material = {r.material_id: r for r in created}
    assert by_material["m1"].yesterday_stock == 8
    assert by_material["m2"].yesterday_stock == 0
    audit_before = len(c.audit.list_entries())

    assert c.ledger.carry_forward_all("2024-05-01", "2024-05-05") == []
    assert len(c.audit.list_entries()) == audit_before


def test_carry_forward_falls_back_to_latest_before_target(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "豆", 6, "2024-05-02")
    c.ledger.update_flows(rec.id, today_in=1)

    created = c.ledger.carry_forward_all("2024-05-03", "2024-05-04")
    assert [r.yesterday_stock for r in created] == [7]
    assert c.audit.list_entries()[0].action == "Carry forward"


def test_carry_forward_rejects_malformed_dates(tmp_path: Path):
    c = make_container(tmp_path)
    with pytest.raises(ValidationError):
        c.ledger.carry_forward_all("2024-5-1", "2024-05-02")


def test_delete_materials_removes_their_records(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "甲", 1, "2024-05-01")
    add_with_stock(c.ledger, "m2", "乙", 2, "2024-05-01")

    assert c.ledger.delete_materials([]) == 0
    audit_before = len(c.audit.list_entries())

    assert c.ledger.delete_materials(["m1"]) == 1
    assert [m.id for m in c.ledger.list_materials()] == ["m2"]
    assert all(r.material_id == "m2" for r in c.repo.document.records)
    entries = c.audit.list_entries()
    assert len(entries) == audit_before + 1
    assert entries[0].details == "Deleted 1 material(s)"


def test_history_filters_by_range_and_name_newest_first(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "白糖", 1, "2024-05-01")
    add_with_stock(c.ledger, "m2", "红糖", 1, "2024-05-01")
    c.ledger.get_or_create_record("m1", "2024-05-03")
    c.ledger.get_or_create_record("m1", "2024-05-09")

    rows = c.ledger.history("2024-05-01", "2024-05-05", search="白")
    assert [r.date for r in rows] == ["2024-05-03", "2024-05-01"]
    assert all(r.material_id == "m1" for r in rows)


def test_search_matches_name_or_tags(tmp_path: Path):
    c = make_container(tmp_path)
    c.ledger.add_material(Material(id="m1", name="Flour", unit="kg", tags="dry,bulk"))
    c.ledger.add_material(Material(id="m2", name="Milk", unit="l"))

    assert [m.id for m in c.ledger.search_materials("BULK")] == ["m1"]
    assert [m.id for m in c.ledger.search_materials("milk")] == ["m2"]
    assert c.ledger.get_material("m1").tag_list() == ["dry", "bulk"]
    with pytest.raises(UnknownMaterialError):
        c.ledger.get_material("nope")


def test_failed_mutation_leaves_store_untouched(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "盐", 3, "2024-05-01")
    on_disk = c.repo.data_path.read_text(encoding="utf-8")

    with pytest.raises(DuplicateIdError):
        c.ledger.add_material(Material(id="m1", name="盐2", unit="kg"), opening_stock=5, date="2024-05-02")

    assert c.repo.data_path.read_text(encoding="utf-8") == on_disk
    assert c.ledger.record_for("m1", "2024-05-02") is None


def test_state_survives_a_new_container(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "面", 4, "2024-05-01")

    again = make_container(tmp_path)
    assert [m.name for m in again.ledger.list_materials()] == ["面"]
    assert again.ledger.record_for("m1", "2024-05-01").current_stock == 4
    assert again.ledger.get_config().warehouse_name == "中心仓库 A-01"


def test_seed_from_previous_day_closing_stock(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "酱油", 42, "2024-01-01")

    rec = c.ledger.get_or_create_record("m1", "2024-01-02")
    assert (rec.yesterday_stock, rec.current_stock) == (42, 42)


def test_update_flows_rejects_fractional_and_non_numeric_quantities(tmp_path: Path):
    c = make_container(tmp_path)
    rec = add_with_stock(c.ledger, "m1", "面粉", 10, "2024-05-01")

    with pytest.raises(ValidationError):
        c.ledger.update_flows(rec.id, today_in=2.7)
    with pytest.raises(ValidationError):
        c.ledger.update_flows(rec.id, store_out="abc")
    with pytest.raises(ValidationError):
        c.ledger.add_material(Material(id="m2", name="糖", unit="kg"), opening_stock=1.5, date="2024-05-01")

    assert c.ledger.record_for("m1", "2024-05-01") == rec
    assert [m.id for m in c.ledger.list_materials()] == ["m1"]
    assert c.ledger.update_flows(rec.id, today_in="3", workshop_out=2.0).current_stock == 11


def test_delete_reports_only_materials_actually_removed(tmp_path: Path):
    c = make_container(tmp_path)
    add_with_stock(c.ledger, "m1", "甲", 1, "2024-05-01")

    assert c.ledger.delete_materials(["m1", "ghost", "nope"]) == 1
    assert c.audit.list_entries()[0].details == "Deleted 1 material(s)"
