from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    data_path: Path
    backups_dir: Path
    logs_dir: Path
    auth_path: Path


@dataclass(frozen=True)
class LedgerSettings:
    timezone: str = "Asia/Shanghai"
    audit_cap: int = 1000
    archive_keep: int = 8
    archive_retention: Optional[int] = None
    import_min_lines: int = 2
    default_category: str = "其他"
    strict_record_lookup: bool = True
    remote_base_url: Optional[str] = None
    pull_timeout: float = 3.0
    force_pull_timeout: float = 5.0
    push_timeout: float = 5.0
    login_timeout: float = 3.0
    warehouse_name: str = "中心仓库 A-01"
    admin_name: str = "管理员"


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "MaterialLedger") -> AppPaths:
    override = os.environ.get("MMS_HOME")
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    data = base / "data"
    backups = data / "backups"
    logs = base / "logs"

    for d in (base, data, backups, logs):
        d.mkdir(parents=True, exist_ok=True)

    return AppPaths(
        base_dir=base,
        data_path=data / "database.json",
        backups_dir=backups,
        logs_dir=logs,
        auth_path=base / "auth" / "users.json",
    )


def _env_int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings(env: Optional[Mapping[str, str]] = None) -> LedgerSettings:
    """Build settings from ``MMS_*`` environment variables, falling back to defaults."""
    env = os.environ if env is None else env
    base = LedgerSettings()
    return LedgerSettings(
        timezone=env.get("MMS_TIMEZONE", base.timezone),
        audit_cap=_env_int(env, "MMS_AUDIT_CAP", base.audit_cap),
        archive_keep=_env_int(env, "MMS_ARCHIVE_KEEP", base.archive_keep),
        archive_retention=_env_int(env, "MMS_ARCHIVE_RETENTION", base.archive_retention),
        import_min_lines=_env_int(env, "MMS_IMPORT_MIN_LINES", base.import_min_lines),
        default_category=env.get("MMS_DEFAULT_CATEGORY", base.default_category),
        strict_record_lookup=_env_bool(env, "MMS_STRICT_RECORD_LOOKUP", base.strict_record_lookup),
        remote_base_url=env.get("MMS_API_BASE") or base.remote_base_url,
        pull_timeout=_env_float(env, "MMS_PULL_TIMEOUT", base.pull_timeout),
        force_pull_timeout=_env_float(env, "MMS_FORCE_PULL_TIMEOUT", base.force_pull_timeout),
        push_timeout=_env_float(env, "MMS_PUSH_TIMEOUT", base.push_timeout),
        login_timeout=_env_float(env, "MMS_LOGIN_TIMEOUT", base.login_timeout),
        warehouse_name=env.get("MMS_WAREHOUSE_NAME", base.warehouse_name),
        admin_name=env.get("MMS_ADMIN_NAME", base.admin_name),
    )
