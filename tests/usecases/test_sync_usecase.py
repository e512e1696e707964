from __future__ import annotations

import logging

import httpx
import pytest

from crmsync.domain.models import SourcePage, SourceRecord, WriteOutcome
from crmsync.domain.reporting.collector import ReportCollector
from crmsync.domain.transform.company_mapper import CompanyMapper
from crmsync.infra.http.rate_limited_client import HttpError, NetworkError, RateLimitedClient
from crmsync.infra.target.twenty_gateway import TwentyDuplicateChecker
from crmsync.usecases.sync_usecase import CompanySyncUseCase

logger = logging.getLogger("test.sync")


def make_records(start: int, count: int) -> list[SourceRecord]:
    return [SourceRecord(record_id=str(i), properties={"name": f"Company {i}"}) for i in range(start, start + count)]


class FakeReader:
    """Страницы задаются списком (records, next_cursor); элемент-исключение бросается."""

    def __init__(self, pages):
        self.pages = list(pages)
        self.calls: list[str | None] = []

    def fetchPage(self, cursor):
        self.calls.append(cursor)
        item = self.pages[len(self.calls) - 1]
        if isinstance(item, Exception):
            raise item
        records, next_cursor = item
        return SourcePage(records=records, next_cursor=next_cursor)


class FakeWriter:
    def __init__(self, fail_on: set[int] | None = None, fail_names: set[str] | None = None):
        self.batches: list[list] = []
        self.fail_on = fail_on or set()
        self.fail_names = fail_names or set()

    def writeBatch(self, batch):
        self.batches.append(list(batch))
        if len(self.batches) in self.fail_on:
            return WriteOutcome(written=0, error="HTTP 500", status_code=500)
        if any(c.name in self.fail_names for c in batch):
            return WriteOutcome(written=0, error="HTTP 400", status_code=400)
        return WriteOutcome(written=len(batch))


class FakeChecker:
    def __init__(self, duplicates: set[str] = frozenset(), errors: set[str] = frozenset()):
        self.duplicates = duplicates
        self.errors = errors
        self.checked: list[str] = []

    def isDuplicate(self, company):
        self.checked.append(company.name)
        if company.name in self.errors:
            raise HttpError(503, "unavailable")
        return company.name in self.duplicates


def run(usecase: CompanySyncUseCase, check_duplicates: bool = False):
    report = ReportCollector(run_id="r", command="sync")
    result = usecase.run(check_duplicates=check_duplicates, logger=logger, report=report, run_id="r")
    return result, report


def test_three_pages_without_duplicates_are_written_in_three_batches():
    reader = FakeReader(
        [
            (make_records(0, 100), "c1"),
            (make_records(100, 100), "c2"),
            (make_records(200, 50), None),
        ]
    )
    writer = FakeWriter()

    result, report = run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    assert reader.calls == [None, "c1", "c2"]
    assert [len(b) for b in writer.batches] == [100, 100, 50]
    assert result.records_fetched == 250
    assert result.records_written == 250
    assert result.records_failed == 0
    assert result.records_skipped_duplicate == 0
    assert result.aborted is False
    assert report.build().status == "SUCCESS"


def test_batches_preserve_arrival_order():
    reader = FakeReader([(make_records(0, 60), "c1"), (make_records(60, 60), None)])
    writer = FakeWriter()

    run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    names = [c.name for batch in writer.batches for c in batch]
    assert names == [f"Company {i}" for i in range(120)]
    assert [len(b) for b in writer.batches] == [100, 20]


def test_duplicates_are_excluded_from_final_batch():
    reader = FakeReader([(make_records(0, 50), None)])
    writer = FakeWriter()
    duplicates = {f"Company {i}" for i in range(0, 50, 5)}
    checker = FakeChecker(duplicates=duplicates)

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker), check_duplicates=True)

    assert len(writer.batches) == 1
    assert len(writer.batches[0]) == 40
    assert all(c.name not in duplicates for c in writer.batches[0])
    assert result.records_written == 40
    assert result.records_skipped_duplicate == 10
    assert len(checker.checked) == 50


def test_second_batch_failure_does_not_abort_run():
    reader = FakeReader([(make_records(0, 100), "c1"), (make_records(100, 100), None)])
    writer = FakeWriter(fail_on={2})

    result, report = run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    assert result.records_written == 100
    assert result.records_failed == 100
    assert result.batches_failed == 1
    assert result.batch_failures[0].batch_index == 2
    assert result.batch_failures[0].status_code == 500
    assert result.aborted is False
    assert report.build().status == "PARTIAL"
    assert report.items[0].key == "batch:2"


def test_split_policy_retries_records_individually():
    reader = FakeReader([(make_records(0, 3), None)])
    writer = FakeWriter(fail_names={"Company 1"})

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer, batch_failure_policy="split"))

    assert [len(b) for b in writer.batches] == [3, 1, 1, 1]
    assert result.records_written == 2
    assert result.records_failed == 1


def test_fetch_error_stops_sync_and_flushes_accumulator():
    reader = FakeReader([(make_records(0, 30), "c1"), NetworkError("down")])
    writer = FakeWriter()

    result, report = run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    assert reader.calls == [None, "c1"]
    assert result.aborted is True
    assert "NETWORK_ERROR" in (result.abort_reason or "")
    assert [len(b) for b in writer.batches] == [30]
    assert result.records_written == 30
    assert report.build().status == "PARTIAL"


def test_repeated_cursor_terminates():
    reader = FakeReader(
        [
            (make_records(0, 10), "c1"),
            (make_records(10, 10), "c2"),
            (make_records(20, 10), "c1"),
            (make_records(30, 10), "c2"),
        ]
    )
    writer = FakeWriter()

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    assert reader.calls == [None, "c1", "c2"]
    assert result.aborted is True
    assert "REPEATED_CURSOR" in (result.abort_reason or "")
    assert result.records_written == 30


def test_max_pages_guard():
    reader = FakeReader([(make_records(0, 5), "c1"), (make_records(5, 5), "c2"), (make_records(10, 5), None)])
    writer = FakeWriter()

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer, max_pages=2))

    assert reader.calls == [None, "c1"]
    assert result.aborted is True
    assert result.records_written == 10


def test_batch_size_invariant_with_large_pages():
    reader = FakeReader([(make_records(0, 100), "c1"), (make_records(100, 100), "c2"), (make_records(200, 17), None)])
    writer = FakeWriter()
    checker = FakeChecker(duplicates={"Company 3", "Company 150"})

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker, batch_size=30), check_duplicates=True)

    sizes = [len(b) for b in writer.batches]
    assert all(0 < size <= 30 for size in sizes)
    assert sum(sizes) == result.records_fetched - result.records_skipped_duplicate
    assert result.records_written == 215


def test_dedup_error_under_default_policy_record_is_written():
    calls: list[str] = []

    def responder(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(500, text="duplicates endpoint down")

    client = RateLimitedClient(
        baseUrl="https://twenty.local",
        token="tw",
        sleep=lambda _s: None,
        transport=httpx.MockTransport(responder),
    )
    checker = TwentyDuplicateChecker(client, logger=logger, run_id="r")
    reader = FakeReader([(make_records(0, 2), None)])
    writer = FakeWriter()

    result, report = run(CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker), check_duplicates=True)

    assert calls == ["/rest/companies/duplicates", "/rest/companies/duplicates"]
    assert [c.name for c in writer.batches[0]] == ["Company 0", "Company 1"]
    assert result.records_written == 2
    assert result.records_failed == 0
    assert result.records_skipped_duplicate == 0
    assert report.items == []


def test_dedup_error_under_fail_closed_excludes_record_as_failed():
    reader = FakeReader([(make_records(0, 3), None)])
    writer = FakeWriter()
    checker = FakeChecker(errors={"Company 1"})

    result, report = run(CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker), check_duplicates=True)

    assert [c.name for c in writer.batches[0]] == ["Company 0", "Company 2"]
    assert result.records_failed == 1
    assert report.items[0].error_code == "DUPLICATE_CHECK_FAILED"


def test_parallel_dedup_preserves_order():
    reader = FakeReader([(make_records(0, 40), None)])
    writer = FakeWriter()
    checker = FakeChecker(duplicates={"Company 7", "Company 21"})

    result, _ = run(
        CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker, dedup_concurrency=8),
        check_duplicates=True,
    )

    expected = [f"Company {i}" for i in range(40) if i not in (7, 21)]
    assert [c.name for c in writer.batches[0]] == expected
    assert result.records_skipped_duplicate == 2


def test_all_duplicates_sends_nothing():
    reader = FakeReader([(make_records(0, 2), None)])
    writer = FakeWriter()
    checker = FakeChecker(duplicates={"Company 0", "Company 1"})

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer, checker=checker), check_duplicates=True)

    assert writer.batches == []
    assert result.records_skipped_duplicate == 2


def test_empty_source():
    reader = FakeReader([([], None)])
    writer = FakeWriter()

    result, _ = run(CompanySyncUseCase(reader, CompanyMapper(), writer))

    assert writer.batches == []
    assert result.records_fetched == 0
    assert result.pages_fetched == 1


def test_check_duplicates_without_checker_is_rejected():
    usecase = CompanySyncUseCase(FakeReader([]), CompanyMapper(), FakeWriter())

    with pytest.raises(ValueError):
        run(usecase, check_duplicates=True)


@pytest.mark.parametrize("batch_size", [0, 101])
def test_batch_size_bounds(batch_size):
    with pytest.raises(ValueError):
        CompanySyncUseCase(FakeReader([]), CompanyMapper(), FakeWriter(), batch_size=batch_size)
