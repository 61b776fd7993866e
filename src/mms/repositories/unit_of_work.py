from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from mms.domain.models import LedgerDocument


class UnitOfWork(Protocol):
    def __enter__(self) -> LedgerDocument: ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


@dataclass
class DocumentUnitOfWork:
    """Unit of Work over the whole ledger document.

    Entering takes the repository lock and hands out the live aggregate.
    The outermost clean exit writes the document once; an exception restores
    the aggregate as it was before the outermost block, so no partial
    mutation is ever persisted.
    """

    repo: object

    def __enter__(self) -> LedgerDocument:
        return self.repo.begin()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.repo.end(commit=exc_type is None)
        return None
