from __future__ import annotations

from typing import Any, Iterable

SECRET_PLACEHOLDER = "***"

# Ключи настроек/заголовков, значения которых никогда не печатаются как есть.
SECRET_KEYS = frozenset(
    {
        "source_token",
        "target_token",
        "token",
        "access_token",
        "api_key",
        "authorization",
    }
)


def maskSecret(value: str | None) -> str | None:
    """
    Назначение:
        Заменяет токен HubSpot/Twenty плейсхолдером для вывода в stdout и отчёт.
        None остаётся None, чтобы было видно, что токен не задан.
    """
    if value is None:
        return None
    return SECRET_PLACEHOLDER


def redactSecrets(text: str, secrets: Iterable[str | None]) -> str:
    """
    Назначение:
        Вычищает значения токенов из произвольного текста (сообщения логов,
        тела ответов API, тексты исключений).
    """
    for secret in secrets:
        if secret:
            text = text.replace(secret, SECRET_PLACEHOLDER)
    return text


def truncateText(value: str | None, limit: int = 500) -> str | None:
    """Обрезает тело ответа API до limit символов (с '...' в конце)."""
    if value is None or len(value) <= limit:
        return value
    if limit <= 3:
        return value[:limit]
    return value[: limit - 3] + "..."


def maskSecretsInObject(obj: Any, keys: frozenset[str] = SECRET_KEYS) -> Any:
    """
    Назначение:
        Возвращает копию структуры (dict/list/tuple) с замаскированными
        значениями по ключам из keys. Используется для отчёта и заголовка запуска.
    """
    if isinstance(obj, dict):
        return {
            k: maskSecret(None if v is None else str(v)) if str(k).lower() in keys else maskSecretsInObject(v, keys)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [maskSecretsInObject(item, keys) for item in obj]
    return obj
