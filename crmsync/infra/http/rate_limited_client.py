from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable

import httpx

from crmsync.errors import AppError
from crmsync.infra.logging.setup import logEvent

DEFAULT_RETRY_AFTER_SECONDS = 5.0
MAX_RETRY_AFTER_SECONDS = 3600.0


class ApiError(AppError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
        retryable: bool = False,
        details: dict | None = None,
        code: str | None = None,
        api_message: str | None = None,
    ):
        """
        Назначение:
            Исключение для ошибок HTTP/API уровня RateLimitedClient.
        Контракт:
            - code: строковый код (HTTP_*, NETWORK_ERROR, INVALID_JSON и т.п.).
            - status_code/body_snippet используются для диагностики.
            - api_message: поле message из полного тела ответа (до усечения), если есть.
        """
        super().__init__(
            category="api",
            code=code or (f"HTTP_{status_code}" if status_code else "API_ERROR"),
            message=message,
            retryable=retryable,
            details=details or {},
        )
        self.status_code = status_code
        self.body_snippet = body_snippet
        self.api_message = api_message


class NetworkError(ApiError):
    def __init__(self, message: str = "Network error"):
        super().__init__(message, status_code=None, retryable=False, code="NETWORK_ERROR")


class HttpError(ApiError):
    def __init__(self, status_code: int, body_snippet: str | None = None, api_message: str | None = None):
        """
        Назначение:
            Не-2xx ответ удалённой стороны (кроме обработанного 429).
        """
        super().__init__(
            f"HTTP {status_code}",
            status_code=status_code,
            body_snippet=body_snippet,
            retryable=status_code == 429 or 500 <= status_code <= 599,
            details={"body_snippet": body_snippet},
            api_message=api_message,
        )

    @property
    def status(self) -> int:
        return self.status_code or 0

    @property
    def body(self) -> str | None:
        return self.body_snippet


def parseRetryAfter(value: str | None, default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """
    Назначение:
        Разбирает заголовок retry-after (секунды).

    Поведение:
        - Отсутствует, не число (например, HTTP-date) или не конечно (nan, inf) -> default.
        - Отрицательное значение -> 0, больше MAX_RETRY_AFTER_SECONDS -> MAX_RETRY_AFTER_SECONDS.
    """
    if value is None:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    if not math.isfinite(seconds):
        return default
    return min(max(seconds, 0.0), MAX_RETRY_AFTER_SECONDS)


def extractApiMessage(resp: httpx.Response) -> str | None:
    """Поле message JSON-тела ошибки (HubSpot/Twenty), разобранного целиком."""
    if not resp.content:
        return None
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return None


class RateLimitedClient:
    def __init__(
        self,
        baseUrl: str,
        token: str,
        timeoutSeconds: float = 20.0,
        defaultRetryAfterSeconds: float = DEFAULT_RETRY_AFTER_SECONDS,
        maxRateLimitRetries: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
        runId: str = "",
        name: str = "http",
    ):
        """
        Назначение:
            HTTP-клиент с bearer-аутентификацией и повтором запроса на 429.
        Контракт:
            - baseUrl и token обязательны.
            - На 429 ждёт retry-after (или defaultRetryAfterSeconds) и повторяет
              тот же запрос. Без ограничения числа попыток, если
              maxRateLimitRetries не задан явно.
            - sleep внедряется для детерминированных тестов.
        """
        self.baseUrl = baseUrl.rstrip("/")
        self.token = token
        self.defaultRetryAfterSeconds = defaultRetryAfterSeconds
        self.maxRateLimitRetries = maxRateLimitRetries
        self.rate_limit_waits = 0
        self._sleep = sleep
        self._logger = logger
        self._runId = runId
        self._name = name

        self.client = httpx.Client(
            base_url=self.baseUrl,
            timeout=timeoutSeconds,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def getRateLimitWaits(self) -> int:
        """Возвращает количество ожиданий по 429 за время жизни клиента."""
        return self.rate_limit_waits

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _log(self, level: int, message: str) -> None:
        if self._logger is not None:
            logEvent(self._logger, level, self._runId, self._name, message)

    def send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        """
        Назначение:
            Выполняет запрос, прозрачно переживая ограничение частоты (429).

        Алгоритм:
            - Запрос собирается один раз и повторно отправляется без изменений.
            - Транспортная ошибка -> NetworkError.
            - 429 -> sleep(retry-after) и повтор.
            - 2xx -> ответ как есть; иначе HttpError.
        """
        request = self.client.build_request(
            method.upper(),
            path,
            params={k: v for k, v in (params or {}).items() if v is not None},
            json=json,
            headers=self._headers(),
        )
        attempts = 0
        while True:
            try:
                resp = self.client.send(request)
            except httpx.TransportError as exc:
                self._log(logging.ERROR, f"{request.method} {request.url.path} network error: {exc}")
                raise NetworkError(f"Network error: {exc}") from exc

            if resp.status_code == 429:
                if self.maxRateLimitRetries is not None and attempts >= self.maxRateLimitRetries:
                    raise HttpError(429, resp.text[:200] if resp.text else None, extractApiMessage(resp))
                delay = parseRetryAfter(resp.headers.get("retry-after"), self.defaultRetryAfterSeconds)
                self._log(logging.WARNING, f"Rate limited on {request.method} {request.url.path}. Retrying after {delay:g} seconds")
                self.rate_limit_waits += 1
                attempts += 1
                self._sleep(delay)
                continue

            if 200 <= resp.status_code <= 299:
                return resp

            body_snippet = resp.text[:200] if resp.text else None
            raise HttpError(resp.status_code, body_snippet, extractApiMessage(resp))

    def getJson(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET JSON, парсит ответ или бросает ApiError."""
        return self.requestJson("GET", path, params=params)

    def requestJson(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> Any:
        """
        Универсальный JSON-запрос. Пустое тело -> None, невалидный JSON -> ApiError(INVALID_JSON).
        """
        resp = self.send(method, path, params=params, json=json)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ApiError(
                "Invalid JSON response",
                status_code=resp.status_code,
                body_snippet=resp.text[:200],
                retryable=False,
                code="INVALID_JSON",
            ) from exc
