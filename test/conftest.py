import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_container(tmp_path: Path, **overrides):
    from mms.application.container import build_container
    from mms.config import LedgerSettings

    settings = replace(LedgerSettings(), **overrides)
    return build_container(
        tmp_path / "data" / "database.json",
        settings=settings,
        backups_dir=tmp_path / "data" / "backups",
        auth_path=tmp_path / "auth" / "users.json",
    )


def add_with_stock(ledger, material_id: str, name: str, stock: int, date: str, unit: str = "个"):
    from mms.domain.models import Material

    ledger.add_material(Material(id=material_id, name=name, unit=unit, spec=name), opening_stock=stock, date=date)
    return ledger.record_for(material_id, date)
