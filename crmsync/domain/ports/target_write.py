from __future__ import annotations

from typing import Protocol, Sequence

from crmsync.domain.models import MappedCompany, WriteOutcome


class DuplicateCheckerProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт проверки наличия компании в системе-приёмнике.
    """

    def isDuplicate(self, company: MappedCompany) -> bool:
        ...


class BatchWriterProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт пакетной записи компаний в систему-приёмник.
    Контракт:
        - Ошибки API не бросаются, а возвращаются в WriteOutcome.error.
    """

    def writeBatch(self, batch: Sequence[MappedCompany]) -> WriteOutcome:
        ...
