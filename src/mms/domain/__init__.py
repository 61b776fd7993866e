from .models import AuditEntry, InventoryRecord, LedgerDocument, Material, SystemConfig, UserSession
from .errors import (
    AppError,
    AuthorizationError,
    ArchiveNotFoundError,
    CorruptStoreError,
    DuplicateIdError,
    MalformedImportFileError,
    MissingRequiredColumnError,
    NotFoundError,
    RecordNotFoundError,
    RemoteUnavailableError,
    UnknownMaterialError,
    ValidationError,
)

__all__ = [
    "AppError",
    "AuthorizationError",
    "Material",
    "InventoryRecord",
    "AuditEntry",
    "SystemConfig",
    "UserSession",
    "LedgerDocument",
    "ValidationError",
    "NotFoundError",
    "DuplicateIdError",
    "UnknownMaterialError",
    "RecordNotFoundError",
    "MissingRequiredColumnError",
    "MalformedImportFileError",
    "ArchiveNotFoundError",
    "RemoteUnavailableError",
    "CorruptStoreError",
]
