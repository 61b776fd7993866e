from .audit_service import AuditTrail
from .auth_service import AuthService, CredentialStore
from .backup_service import BackupService
from .import_service import ImportService
from .ledger_service import LedgerService
from .reporting_service import ReportingService
from .sync_service import SyncClient, SyncService

__all__ = [
    "AuditTrail",
    "AuthService",
    "CredentialStore",
    "BackupService",
    "ImportService",
    "LedgerService",
    "ReportingService",
    "SyncClient",
    "SyncService",
]
