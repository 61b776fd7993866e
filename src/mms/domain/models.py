from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Optional
import re

_TAG_SPLIT = re.compile(r"[,，\s]+")


def as_quantity(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer quantity, got {value!r}")
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"Quantities are whole units, got {value!r}")
    return int(number)


def record_id_for(material_id: str, date: str) -> str:
    return f"rec-{material_id}-{date}"


def closing_stock(yesterday_stock: int, today_in: int, workshop_out: int, store_out: int) -> int:
    return yesterday_stock + today_in - workshop_out - store_out


@dataclass(frozen=True)
class Material:
    id: str
    name: str
    unit: str
    spec: str = ""
    category: str = ""
    tags: Optional[str] = None

    def tag_list(self) -> list[str]:
        """Display-only split of ``tags`` on comma, full-width comma or whitespace."""
        if not self.tags:
            return []
        return [t for t in _TAG_SPLIT.split(self.tags) if t]

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "spec": self.spec,
            "category": self.category,
        }
        if self.tags is not None:
            data["tags"] = self.tags
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Material":
        tags = data.get("tags")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            unit=str(data.get("unit") or ""),
            spec=str(data.get("spec") or ""),
            category=str(data.get("category") or ""),
            tags=None if tags is None else str(tags),
        )


@dataclass(frozen=True)
class InventoryRecord:
    id: str
    material_id: str
    date: str
    yesterday_stock: int = 0
    today_in: int = 0
    workshop_out: int = 0
    store_out: int = 0
    current_stock: int = 0

    def recomputed(self) -> "InventoryRecord":
        return replace(
            self,
            current_stock=closing_stock(self.yesterday_stock, self.today_in, self.workshop_out, self.store_out),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "materialId": self.material_id,
            "date": self.date,
            "yesterdayStock": self.yesterday_stock,
            "todayIn": self.today_in,
            "workshopOut": self.workshop_out,
            "storeOut": self.store_out,
            "currentStock": self.current_stock,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InventoryRecord":
        material_id = str(data["materialId"])
        date = str(data["date"])
        return cls(
            id=str(data.get("id") or record_id_for(material_id, date)),
            material_id=material_id,
            date=date,
            yesterday_stock=as_quantity(data.get("yesterdayStock")),
            today_in=as_quantity(data.get("todayIn")),
            workshop_out=as_quantity(data.get("workshopOut")),
            store_out=as_quantity(data.get("storeOut")),
            current_stock=as_quantity(data.get("currentStock")),
        )


@dataclass(frozen=True)
class AuditEntry:
    id: str
    timestamp: str
    user: str
    action: str
    details: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "user": self.user,
            "action": self.action,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            id=str(data.get("id") or ""),
            timestamp=str(data.get("timestamp") or ""),
            user=str(data.get("user") or ""),
            action=str(data.get("action") or ""),
            details=str(data.get("details") or ""),
        )


@dataclass(frozen=True)
class SystemConfig:
    warehouse_name: str
    admin_name: str
    last_backup: str

    def to_dict(self) -> dict:
        return {
            "warehouseName": self.warehouse_name,
            "adminName": self.admin_name,
            "lastBackup": self.last_backup,
        }

    @classmethod
    def from_dict(cls, data: dict, default: Optional["SystemConfig"] = None) -> "SystemConfig":
        base = default or cls("", "", "")
        return cls(
            warehouse_name=str(data.get("warehouseName", base.warehouse_name)),
            admin_name=str(data.get("adminName", base.admin_name)),
            last_backup=str(data.get("lastBackup", base.last_backup)),
        )


@dataclass(frozen=True)
class UserSession:
    is_logged_in: bool
    username: str
    login_time: str
    role: Optional[str] = None


@dataclass
class LedgerDocument:
    """The whole persisted aggregate. Always read and written as one unit."""

    config: SystemConfig
    materials: list[Material] = field(default_factory=list)
    records: list[InventoryRecord] = field(default_factory=list)
    audit: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "materials": [m.to_dict() for m in self.materials],
            "records": [r.to_dict() for r in self.records],
            "audit": [a.to_dict() for a in self.audit],
            "config": self.config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any, default_config: SystemConfig) -> "LedgerDocument":
        """
        Raises ValueError/TypeError/KeyError on a document of the wrong shape;
        the repository translates those into CorruptStoreError.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Aggregate document must be an object, got {type(data).__name__}")

        def section(key: str) -> list:
            value = data.get(key) or []
            if not isinstance(value, list):
                raise TypeError(f"'{key}' must be a list")
            return value

        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise TypeError("'config' must be an object")

        return cls(
            config=SystemConfig.from_dict(config, default=default_config),
            materials=[Material.from_dict(m) for m in section("materials")],
            records=[InventoryRecord.from_dict(r) for r in section("records")],
            audit=[AuditEntry.from_dict(a) for a in section("audit")],
        )

    def copy(self) -> "LedgerDocument":
        # entries are frozen, shallow list copies are enough
        return LedgerDocument(
            config=self.config,
            materials=list(self.materials),
            records=list(self.records),
            audit=list(self.audit),
        )
