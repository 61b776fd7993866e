"""
Carry-forward rules: a day's opening stock is the closing stock of the most
recent earlier day for the same material.

Dates are zero-padded ISO strings, so plain string comparison orders them.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

from mms.domain.models import InventoryRecord, Material, record_id_for


def find_record(records: Iterable[InventoryRecord], material_id: str, date: str) -> Optional[InventoryRecord]:
    for r in records:
        if r.material_id == material_id and r.date == date:
            return r
    return None


def latest_before(records: Iterable[InventoryRecord], material_id: str, date: str) -> Optional[InventoryRecord]:
    latest: Optional[InventoryRecord] = None
    for r in records:
        if r.material_id != material_id or r.date >= date:
            continue
        if latest is None or r.date > latest.date:
            latest = r
    return latest


def opening_record(material_id: str, date: str, opening_stock: int) -> InventoryRecord:
    return InventoryRecord(
        id=record_id_for(material_id, date),
        material_id=material_id,
        date=date,
        yesterday_stock=opening_stock,
        today_in=0,
        workshop_out=0,
        store_out=0,
        current_stock=opening_stock,
    )


def seed_record(records: Sequence[InventoryRecord], material_id: str, date: str) -> InventoryRecord:
    prior = latest_before(records, material_id, date)
    return opening_record(material_id, date, prior.current_stock if prior else 0)


def plan_roll_forward(
    materials: Iterable[Material],
    records: Sequence[InventoryRecord],
    from_date: str,
    to_date: str,
) -> list[InventoryRecord]:
    """
    Records to create on ``to_date`` for every material that has none yet.

    Seeds from the material's ``from_date`` record when present, otherwise from
    its latest record before ``to_date``, otherwise zero. Materials that already
    have a ``to_date`` record are skipped, so repeated runs create nothing new.
    """
    existing = {(r.material_id, r.date) for r in records}
    planned: list[InventoryRecord] = []
    for m in materials:
        if (m.id, to_date) in existing:
            continue
        source = find_record(records, m.id, from_date) or latest_before(records, m.id, to_date)
        planned.append(opening_record(m.id, to_date, source.current_stock if source else 0))
        existing.add((m.id, to_date))
    return planned
