class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class AuthorizationError(AppError):
    pass


class DuplicateIdError(ValidationError):
    pass


class UnknownMaterialError(NotFoundError):
    pass


class RecordNotFoundError(NotFoundError):
    pass


class ArchiveNotFoundError(NotFoundError):
    pass


class MissingRequiredColumnError(ValidationError):
    pass


class MalformedImportFileError(ValidationError):
    pass


class RemoteUnavailableError(AppError):
    """Timeout or network failure talking to the remote store. Never fatal locally."""


class CorruptStoreError(AppError):
    """The persisted document (or an archive) could not be parsed into an aggregate."""
