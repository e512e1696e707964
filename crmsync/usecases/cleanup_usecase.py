from __future__ import annotations

import logging
from dataclasses import dataclass, field

from crmsync.infra.http.rate_limited_client import ApiError
from crmsync.infra.logging.setup import logEvent
from crmsync.infra.target.twenty_gateway import TwentyRecordGateway, describeApiError


@dataclass
class CleanupResult:
    deleted: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)


class CleanupUseCase:
    """
    Назначение/ответственность:
        Удаление всех записей объекта в приёмнике по одной.
    Ограничения:
        - Ошибка листинга пробрасывается (ApiError), ошибка удаления записи учитывается и не прерывает цикл.
    """

    def __init__(self, gateway: TwentyRecordGateway):
        self.gateway = gateway

    def run(self, object_name: str, logger: logging.Logger, report, run_id: str) -> CleanupResult:
        ids = self.gateway.listIds(object_name)
        logEvent(logger, logging.INFO, run_id, "cleanup", f"Found {len(ids)} {object_name} to delete")

        result = CleanupResult()
        for record_id in ids:
            try:
                self.gateway.deleteRecord(object_name, record_id)
            except ApiError as exc:
                reason = describeApiError(exc)
                result.failed += 1
                result.failures.append((record_id, reason))
                report.add_item(status="FAILED", key=f"{object_name}:{record_id}", error=reason)
                logEvent(logger, logging.ERROR, run_id, "cleanup", f"Error deleting {object_name} id={record_id}: {reason}")
                continue
            result.deleted += 1
            logEvent(logger, logging.INFO, run_id, "cleanup", f"Deleted {object_name} id={record_id}")

        report.add_op("delete", ok=result.deleted, failed=result.failed, count=len(ids))
        return result
