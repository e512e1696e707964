from __future__ import annotations

from typing import Protocol

from crmsync.domain.models import SourcePage


class SourcePageReaderProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт постраничного чтения компаний из системы-источника.
    Взаимодействия:
        Используется CompanySyncUseCase; реализация скрывает транспорт и формат API.
    """

    def fetchPage(self, cursor: str | None) -> SourcePage:
        """
        Контракт:
            - cursor=None -> первая страница.
            - next_cursor=None в ответе -> листинг исчерпан.
            - Ошибки транспорта/HTTP пробрасываются как ApiError.
        """
        ...
