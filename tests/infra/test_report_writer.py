from __future__ import annotations

import json

from crmsync.config.config import Settings
from crmsync.infra.artifacts.report_writer import createEmptyReport, finalizeReport, writeReportJson


def test_report_masks_tokens_and_records_rate_limit_waits(tmp_path):
    settings = Settings(source_token="hs-secret-123", target_token="tw-secret-456", report_items_limit=5)
    report = createEmptyReport(runId="r1", command="sync", settings=settings, configSources=["env", "cli"])
    report.add_item(status="FAILED", key="batch:1", error="HTTP 500", meta={"authorization": "Bearer tw-secret-456"})

    finalizeReport(report, durationMs=12, logFile="logs/sync_r1.log", reportDir=str(tmp_path), rateLimitWaits={"source": 0, "target": 3})
    path = writeReportJson(report, str(tmp_path), "report_sync_r1")

    text = (tmp_path / "report_sync_r1.json").read_text(encoding="utf-8")
    data = json.loads(text)
    assert path.endswith("report_sync_r1.json")
    assert "hs-secret-123" not in text
    assert "tw-secret-456" not in text
    assert data["context"]["config"]["sources"] == ["env", "cli"]
    assert data["context"]["config"]["settings"]["source_token"] == "***"
    assert data["context"]["config"]["settings"]["batch_size"] == 100
    assert data["items"][0]["meta"]["authorization"] == "***"
    assert data["context"]["http"] == {"source_rate_limit_waits": 0, "target_rate_limit_waits": 3, "total_rate_limit_waits": 3}
    assert data["meta"]["items_limit"] == 5
    assert data["meta"]["duration_ms"] == 12
    assert data["status"] == "FAILED"


def test_missing_token_stays_none_in_report(tmp_path):
    report = createEmptyReport(runId="r2", command="seed", settings=Settings(), configSources=[])
    finalizeReport(report, durationMs=0, logFile=None, reportDir=str(tmp_path))

    writeReportJson(report, str(tmp_path), "report_seed_r2")
    data = json.loads((tmp_path / "report_seed_r2.json").read_text(encoding="utf-8"))

    assert data["context"]["config"]["settings"]["source_token"] is None
    assert "http" not in data["context"]
    assert data["status"] == "SUCCESS"
