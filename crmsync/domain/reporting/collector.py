from __future__ import annotations

from dataclasses import asdict
from typing import Any, Mapping

from crmsync.common.time import getNowIso
from crmsync.domain.reporting.models import ReportEnvelope, ReportItem, ReportMeta, ReportSummary


class ReportCollector:
    """
    Назначение/ответственность:
        Единый сборщик отчётов для всех команд (sync/seed/cleanup).
    """

    def __init__(self, run_id: str, command: str, started_at: str | None = None) -> None:
        self.meta = ReportMeta(
            run_id=run_id,
            command=command,
            started_at=started_at or getNowIso(),
        )
        self.summary = ReportSummary()
        self.items: list[ReportItem] = []
        self.context: dict[str, Any] = {}
        self.status: str | None = None

    def set_meta(self, *, items_limit: int | None = None) -> None:
        if items_limit is not None:
            self.meta.items_limit = items_limit

    def set_context(self, name: str, value: dict[str, Any]) -> None:
        self.context[name] = value

    def add_op(self, name: str, *, ok: int = 0, failed: int = 0, count: int = 0) -> None:
        entry = self.summary.ops.setdefault(name, {"ok": 0, "failed": 0, "count": 0})
        entry["ok"] += ok
        entry["failed"] += failed
        entry["count"] += count

    def add_item(
        self,
        *,
        status: str,
        key: str,
        error_code: str | None = None,
        error: str | None = None,
        payload: Mapping[str, Any] | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """
        Назначение:
            Учитывает запись в summary и сохраняет её в items,
            пока не достигнут items_limit.
        """
        self.summary.items_total += 1
        if status == "FAILED":
            self.summary.items_failed += 1
        elif status == "OK":
            self.summary.items_ok += 1
        elif status == "SKIPPED":
            self.summary.items_skipped += 1

        if self._should_store_item():
            self.items.append(
                ReportItem(
                    status=status,
                    key=key,
                    error_code=error_code,
                    error=error,
                    payload=payload,
                    meta=meta or {},
                )
            )
        else:
            self.meta.items_truncated = True

    def set_status(self, status: str) -> None:
        self.status = status

    def finish(self, finished_at: str | None = None, duration_ms: int | None = None) -> None:
        self.meta.finished_at = finished_at or getNowIso()
        self.meta.duration_ms = duration_ms
        if self.status is None:
            self.status = self._derive_status()

    def build(self) -> ReportEnvelope:
        return ReportEnvelope(
            status=self.status or self._derive_status(),
            meta=self.meta,
            summary=self.summary,
            items=self.items,
            context=self.context,
        )

    def _should_store_item(self) -> bool:
        limit = self.meta.items_limit
        if limit is None:
            return True
        return len(self.items) < limit

    def _derive_status(self) -> str:
        failed = self.summary.items_failed + sum(op["failed"] for op in self.summary.ops.values())
        ok = self.summary.items_ok + sum(op["ok"] for op in self.summary.ops.values())
        if failed == 0:
            return "SUCCESS"
        if ok > 0:
            return "PARTIAL"
        return "FAILED"


def asdict_report(envelope: ReportEnvelope) -> dict[str, Any]:
    """
    Назначение:
        Сериализация отчёта в dict для json.dump.
    """
    return {
        "status": envelope.status,
        "meta": asdict(envelope.meta),
        "summary": asdict(envelope.summary),
        "items": [asdict(item) for item in envelope.items],
        "context": envelope.context,
    }
