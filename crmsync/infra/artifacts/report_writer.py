from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Mapping

from crmsync.common.sanitize import maskSecretsInObject
from crmsync.config.config import Settings
from crmsync.domain.reporting.collector import ReportCollector, asdict_report


def settingsSnapshot(settings: Settings) -> dict[str, Any]:
    """Итоговые настройки запуска для отчёта; токены замаскированы."""
    return maskSecretsInObject(dataclasses.asdict(settings))


def createEmptyReport(runId: str, command: str, settings: Settings, configSources: list[str]) -> ReportCollector:
    """
    Назначение:
        Отчёт-скелет команды: лимит items из настроек и контекст "config"
        (источники настроек и их итоговые значения без секретов).
    """
    collector = ReportCollector(run_id=runId, command=command)
    collector.set_meta(items_limit=settings.report_items_limit)
    collector.set_context("config", {"sources": list(configSources), "settings": settingsSnapshot(settings)})
    return collector


def finalizeReport(
    report: ReportCollector,
    durationMs: int,
    logFile: str | None,
    reportDir: str,
    rateLimitWaits: Mapping[str, int] | None = None,
) -> None:
    """
    Назначение:
        Закрывает отчёт перед записью на диск.

    Алгоритм:
        - rateLimitWaits ({"source": n, "target": m}) -> контекст "http"
          с ожиданиями по 429 на каждого клиента и суммой.
        - Контекст "runtime": пути к логу и каталогу отчётов.
        - finish(): время окончания, длительность, статус (если не задан явно).
    """
    if rateLimitWaits:
        http = {f"{name}_rate_limit_waits": waits for name, waits in rateLimitWaits.items()}
        http["total_rate_limit_waits"] = sum(rateLimitWaits.values())
        report.set_context("http", http)
    report.set_context("runtime", {"log_file": logFile, "report_dir": reportDir})
    report.finish(duration_ms=durationMs)


def writeReportJson(report: ReportCollector, reportDir: str, fileBaseName: str) -> str:
    """
    Назначение:
        Пишет <reportDir>/<fileBaseName>.json. Перед записью весь отчёт
        проходит через maskSecretsInObject.

    Выходные данные:
        Путь к файлу отчёта.
    """
    reportPath = Path(reportDir) / f"{fileBaseName}.json"
    reportPath.parent.mkdir(parents=True, exist_ok=True)

    data = maskSecretsInObject(asdict_report(report.build()))
    reportPath.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    return str(reportPath)
