from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass
class ReportMeta:
    """
    Назначение:
        Метаданные запуска команды.
    """

    run_id: str
    command: str
    started_at: str
    finished_at: str | None = None
    duration_ms: int | None = None
    items_limit: int | None = None
    items_truncated: bool = False


@dataclass
class ReportSummary:
    """
    Назначение:
        Счётчики выполнения: записи (ok/failed) и операции по именам.
    """

    items_total: int = 0
    items_ok: int = 0
    items_failed: int = 0
    items_skipped: int = 0
    ops: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass
class ReportItem:
    """
    Назначение:
        Единица отчёта: батч или отдельная запись.
    """

    status: str
    key: str
    error_code: str | None = None
    error: str | None = None
    payload: Mapping[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReportEnvelope:
    status: str
    meta: ReportMeta
    summary: ReportSummary
    items: list[ReportItem]
    context: dict[str, Any] = field(default_factory=dict)
