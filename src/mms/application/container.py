from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mms.config import LedgerSettings
from mms.domain.models import SystemConfig
from mms.repositories.json_repo import JsonDocumentRepository
from mms.services.audit_service import AuditTrail
from mms.services.auth_service import AuthService, CredentialStore
from mms.services.backup_service import BackupService
from mms.services.import_service import ImportService
from mms.services.ledger_service import LedgerService
from mms.services.reporting_service import ReportingService
from mms.services.sync_service import SyncClient, SyncService
from mms.time_utils import date_key, now_in


@dataclass(frozen=True)
class AppContainer:
    settings: LedgerSettings
    repo: JsonDocumentRepository
    auth: AuthService
    audit: AuditTrail
    sync: SyncService
    ledger: LedgerService
    imports: ImportService
    backup: BackupService
    reporting: ReportingService


def build_container(
    data_path: Path | str,
    settings: Optional[LedgerSettings] = None,
    backups_dir: Path | str | None = None,
    auth_path: Path | str | None = None,
) -> AppContainer:
    settings = settings or LedgerSettings()
    data_path = Path(data_path)

    def default_config() -> SystemConfig:
        return SystemConfig(
            warehouse_name=settings.warehouse_name,
            admin_name=settings.admin_name,
            last_backup=date_key(tz=settings.timezone),
        )

    repo = JsonDocumentRepository(data_path, default_config=default_config)
    repo.init_store()

    client = SyncClient(settings.remote_base_url, settings) if settings.remote_base_url else None
    credentials = CredentialStore(auth_path or data_path.parent / "auth" / "users.json")
    auth = AuthService(credentials, client=client, tz=settings.timezone)
    audit = AuditTrail(repo, session_provider=auth.current_session, cap=settings.audit_cap, tz=settings.timezone)
    sync = SyncService(repo, client)
    ledger = LedgerService(repo, audit, settings=settings, sync=sync)
    imports = ImportService(ledger, settings)
    backup = BackupService(
        repo,
        backups_dir or data_path.parent / "backups",
        retention=settings.archive_retention,
        clock=lambda: now_in(settings.timezone),
    )
    reporting = ReportingService(repo, ledger, audit)

    return AppContainer(
        settings=settings,
        repo=repo,
        auth=auth,
        audit=audit,
        sync=sync,
        ledger=ledger,
        imports=imports,
        backup=backup,
        reporting=reporting,
    )
