from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class AppError(Exception):
    """
    Унифицированная ошибка приложения.
    """

    category: str
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }


class ConfigError(AppError):
    def __init__(self, message: str, field_name: str | None = None):
        """
        Назначение:
            Ошибка значения настройки (неверный тип/диапазон/enum).
        """
        super().__init__(
            category="config",
            code="INVALID_SETTING",
            message=message,
            retryable=False,
            details={"field": field_name} if field_name else {},
        )
        self.field_name = field_name


__all__ = ["AppError", "ConfigError"]
