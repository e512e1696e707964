from __future__ import annotations

import logging
from typing import Any, Sequence

from crmsync.common.sanitize import truncateText
from crmsync.domain.models import MappedCompany, WriteOutcome
from crmsync.domain.ports.target_write import BatchWriterProtocol, DuplicateCheckerProtocol
from crmsync.infra.http.rate_limited_client import ApiError, RateLimitedClient
from crmsync.infra.logging.setup import logEvent

DUPLICATES_PATH = "/rest/companies/duplicates"
BATCH_PATH = "/rest/batch/companies"

FAIL_OPEN = "fail-open"
FAIL_CLOSED = "fail-closed"


def describeApiError(exc: ApiError) -> str:
    """Короткое описание ошибки API для логов и отчёта."""
    parts = [exc.message]
    if exc.body_snippet:
        parts.append(exc.body_snippet)
    return truncateText(" | ".join(parts)) or exc.code


class TwentyDuplicateChecker(DuplicateCheckerProtocol):
    """
    Назначение/ответственность:
        Проверка наличия компании в Twenty через endpoint поиска дублей.
    Ограничения:
        - fail-open: ошибка запроса логируется и трактуется как «не дубль».
        - fail-closed: ошибка пробрасывается вызывающему.
    """

    def __init__(
        self,
        client: RateLimitedClient,
        policy: str = FAIL_OPEN,
        logger: logging.Logger | None = None,
        run_id: str = "",
    ):
        if policy not in (FAIL_OPEN, FAIL_CLOSED):
            raise ValueError(f"Unsupported duplicate check policy: {policy}")
        self.client = client
        self.policy = policy
        self.logger = logger
        self.run_id = run_id

    def isDuplicate(self, company: MappedCompany) -> bool:
        try:
            data = self.client.requestJson("POST", DUPLICATES_PATH, json={"data": [company.to_payload()]})
        except ApiError as exc:
            if self.policy == FAIL_CLOSED:
                raise
            if self.logger is not None:
                logEvent(
                    self.logger,
                    logging.WARNING,
                    self.run_id,
                    "dedup",
                    f"Duplicate check failed for company={company.name!r} source_id={company.source_id}: "
                    f"{describeApiError(exc)}; treating as not duplicate",
                )
            return False
        matches = data.get("data") if isinstance(data, dict) else None
        return isinstance(matches, list) and len(matches) > 0


class TwentyBatchWriter(BatchWriterProtocol):
    """
    Назначение/ответственность:
        Запись батча компаний одним вызовом bulk-insert Twenty.
    Контракт:
        - Тело запроса: голый список записей.
        - Любая ошибка API -> WriteOutcome(written=0, error=...), исключение не выходит наружу.
    """

    def __init__(self, client: RateLimitedClient):
        self.client = client

    def writeBatch(self, batch: Sequence[MappedCompany]) -> WriteOutcome:
        payload = [company.to_payload() for company in batch]
        try:
            self.client.requestJson("POST", BATCH_PATH, json=payload)
        except ApiError as exc:
            return WriteOutcome(written=0, error=describeApiError(exc), status_code=exc.status_code)
        return WriteOutcome(written=len(batch))


class TwentyRecordGateway:
    """
    Назначение/ответственность:
        Листинг и удаление записей произвольного объекта Twenty (cleanup).
    """

    def __init__(self, client: RateLimitedClient):
        self.client = client

    def listIds(self, object_name: str) -> list[str]:
        data = self.client.getJson(f"/rest/{object_name}")
        items = _extract_items(data, object_name)
        return [str(item["id"]) for item in items if isinstance(item, dict) and item.get("id") is not None]

    def deleteRecord(self, object_name: str, record_id: str) -> Any:
        return self.client.requestJson("DELETE", f"/rest/{object_name}/{record_id}")


def _extract_items(data: Any, object_name: str) -> list[Any]:
    """Ответ листинга: {"data": {"<object>": [...]}}; допускаем и {"data": [...]}."""
    if isinstance(data, dict):
        inner = data.get("data")
        if isinstance(inner, dict) and isinstance(inner.get(object_name), list):
            return inner[object_name]
        if isinstance(inner, list):
            return inner
    raise ApiError("Unexpected response format: no items array", code="INVALID_RESPONSE", retryable=False)
