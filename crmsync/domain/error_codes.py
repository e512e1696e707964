from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок для отчётов и логов синхронизации.
    """

    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    INVALID_JSON = "INVALID_JSON"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    API_ERROR = "API_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    REPEATED_CURSOR = "REPEATED_CURSOR"
    MAX_PAGES_EXCEEDED = "MAX_PAGES_EXCEEDED"
    DUPLICATE_CHECK_FAILED = "DUPLICATE_CHECK_FAILED"
    BATCH_WRITE_FAILED = "BATCH_WRITE_FAILED"

    @classmethod
    def from_status(cls, status_code: int | None) -> "ErrorCode":
        """
        Назначение:
            Подбор общего кода по HTTP-статусу.
        """
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.FORBIDDEN
        if status_code == 429:
            return cls.RATE_LIMITED
        if status_code is not None and 500 <= status_code <= 599:
            return cls.SERVER_ERROR
        return cls.HTTP_ERROR

    @classmethod
    def from_api_code(cls, code: str | None, status_code: int | None) -> "ErrorCode":
        """
        Алгоритм:
            - Известные строковые коды ApiError маппятся напрямую.
            - HTTP_* уточняются по статусу.
            - Иначе API_ERROR.
        """
        if not code:
            return cls.API_ERROR
        if code == "NETWORK_ERROR":
            return cls.NETWORK_ERROR
        if code == "INVALID_JSON":
            return cls.INVALID_JSON
        if code == "INVALID_RESPONSE":
            return cls.INVALID_RESPONSE
        if code.startswith("HTTP_"):
            return cls.from_status(status_code)
        return cls.API_ERROR
