from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from crmsync.domain.error_codes import ErrorCode
from crmsync.domain.models import BatchFailure, MappedCompany, SourceRecord, SyncResult
from crmsync.domain.ports.source_read import SourcePageReaderProtocol
from crmsync.domain.ports.target_write import BatchWriterProtocol, DuplicateCheckerProtocol
from crmsync.domain.transform.company_mapper import CompanyMapper
from crmsync.infra.http.rate_limited_client import ApiError
from crmsync.infra.logging.setup import logEvent
from crmsync.infra.target.twenty_gateway import describeApiError

MAX_BATCH_SIZE = 100

BATCH_POLICY_DROP = "drop"
BATCH_POLICY_SPLIT = "split"


class CompanySyncUseCase:
    """
    Назначение/ответственность:
        Сквозная синхронизация компаний: страницы источника -> накопитель ->
        (проверка дублей) -> пакетная запись в приёмник.
    Взаимодействия:
        - SourcePageReaderProtocol для чтения страниц по курсору.
        - CompanyMapper для преобразования схемы.
        - DuplicateCheckerProtocol (опционально) и BatchWriterProtocol для приёмника.
    Ограничения:
        - Ошибка чтения страницы прерывает синхронизацию (fail-stop), накопленный
          остаток всё равно отправляется.
        - Ошибка записи батча не прерывает синхронизацию (fail-soft).
        - Без возобновления с места остановки.
    """

    def __init__(
        self,
        reader: SourcePageReaderProtocol,
        mapper: CompanyMapper,
        writer: BatchWriterProtocol,
        checker: DuplicateCheckerProtocol | None = None,
        batch_size: int = MAX_BATCH_SIZE,
        max_pages: int | None = None,
        dedup_concurrency: int = 1,
        batch_failure_policy: str = BATCH_POLICY_DROP,
    ):
        if not 0 < batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be in 1..{MAX_BATCH_SIZE}, got {batch_size}")
        if batch_failure_policy not in (BATCH_POLICY_DROP, BATCH_POLICY_SPLIT):
            raise ValueError(f"Unsupported batch failure policy: {batch_failure_policy}")
        self.reader = reader
        self.mapper = mapper
        self.writer = writer
        self.checker = checker
        self.batch_size = batch_size
        self.max_pages = max_pages
        self.dedup_concurrency = max(1, dedup_concurrency)
        self.batch_failure_policy = batch_failure_policy

    def run(
        self,
        check_duplicates: bool,
        logger: logging.Logger,
        report,
        run_id: str,
    ) -> SyncResult:
        """
        Контракт (вход/выход):
            Вход: флаг проверки дублей, логгер, отчёт, run_id.
            Выход: SyncResult с накопленными счётчиками.
        Алгоритм:
            - Читает страницы начиная с cursor=None, пока курсор не исчерпан.
            - Каждый раз, когда накопитель достигает batch_size, отрезает ровно
              один батч с начала и отправляет его.
            - Повтор уже виденного курсора или превышение max_pages -> останов.
            - После выхода из цикла отправляет остаток одним финальным батчем.
        """
        if check_duplicates and self.checker is None:
            raise ValueError("Duplicate checking requested but no checker configured")

        result = SyncResult()
        accumulator: list[SourceRecord] = []
        seen_cursors: set[str] = set()
        cursor: str | None = None
        batch_index = 0

        logEvent(
            logger,
            logging.INFO,
            run_id,
            "sync",
            f"sync start batch_size={self.batch_size} max_pages={self.max_pages} "
            f"check_duplicates={check_duplicates} dedup_concurrency={self.dedup_concurrency} "
            f"batch_failure_policy={self.batch_failure_policy}",
        )

        while True:
            try:
                page = self.reader.fetchPage(cursor)
            except ApiError as exc:
                code = ErrorCode.from_api_code(exc.code, exc.status_code)
                self._abort(result, report, logger, run_id, code, f"Error fetching source page after={cursor}: {describeApiError(exc)}")
                break

            result.pages_fetched += 1
            result.records_fetched += len(page.records)
            accumulator.extend(page.records)
            logEvent(logger, logging.INFO, run_id, "fetch", f"Fetched {result.records_fetched} companies so far.")

            while len(accumulator) >= self.batch_size:
                batch = accumulator[: self.batch_size]
                del accumulator[: self.batch_size]
                batch_index += 1
                self._process_batch(batch, batch_index, check_duplicates, result, logger, report, run_id)

            next_cursor = page.next_cursor
            if next_cursor is None:
                break
            if next_cursor in seen_cursors or next_cursor == cursor:
                self._abort(
                    result, report, logger, run_id, ErrorCode.REPEATED_CURSOR, f"Source returned repeated cursor after={next_cursor}"
                )
                break
            if self.max_pages is not None and result.pages_fetched >= self.max_pages:
                self._abort(
                    result, report, logger, run_id, ErrorCode.MAX_PAGES_EXCEEDED, f"max pages exceeded ({self.max_pages})"
                )
                break
            seen_cursors.add(next_cursor)
            cursor = next_cursor

        if accumulator:
            batch_index += 1
            remainder = list(accumulator)
            accumulator.clear()
            self._process_batch(remainder, batch_index, check_duplicates, result, logger, report, run_id)
            logEvent(logger, logging.INFO, run_id, "sync", f"Processed final batch of {len(remainder)} companies.")

        self._report_result(result, report)
        logEvent(
            logger,
            logging.ERROR if result.aborted else logging.INFO,
            run_id,
            "sync",
            f"sync done fetched={result.records_fetched} written={result.records_written} "
            f"skipped_duplicate={result.records_skipped_duplicate} failed={result.records_failed} "
            f"pages={result.pages_fetched} aborted={result.aborted}",
        )
        return result

    def _process_batch(
        self,
        records: list[SourceRecord],
        batch_index: int,
        check_duplicates: bool,
        result: SyncResult,
        logger: logging.Logger,
        report,
        run_id: str,
    ) -> None:
        mapped = self.mapper.map_many(records)
        candidates = mapped
        if check_duplicates and self.checker is not None:
            candidates = self._filter_duplicates(self.checker, mapped, result, logger, report, run_id)
        if not candidates:
            logEvent(logger, logging.INFO, run_id, "write", f"batch={batch_index} nothing to write after duplicate check")
            return

        outcome = self.writer.writeBatch(candidates)
        if outcome.ok:
            result.records_written += len(candidates)
            result.batches_written += 1
            logEvent(logger, logging.INFO, run_id, "write", f"batch={batch_index} sent {len(candidates)} companies to destination.")
            return

        logEvent(
            logger,
            logging.ERROR,
            run_id,
            "write",
            f"batch={batch_index} size={len(candidates)} write failed status={outcome.status_code}: {outcome.error}",
        )
        if self.batch_failure_policy == BATCH_POLICY_SPLIT and len(candidates) > 1:
            self._write_one_by_one(candidates, batch_index, result, logger, report, run_id)
            return

        result.records_failed += len(candidates)
        result.batches_failed += 1
        result.batch_failures.append(
            BatchFailure(batch_index=batch_index, size=len(candidates), error=outcome.error or "", status_code=outcome.status_code)
        )
        report.add_item(
            status="FAILED",
            key=f"batch:{batch_index}",
            error_code=ErrorCode.BATCH_WRITE_FAILED.value,
            error=outcome.error,
            meta={"size": len(candidates), "status_code": outcome.status_code},
        )

    def _write_one_by_one(
        self,
        candidates: Sequence[MappedCompany],
        batch_index: int,
        result: SyncResult,
        logger: logging.Logger,
        report,
        run_id: str,
    ) -> None:
        """Политика split: повторная запись каждой компании отдельным батчем из одной записи."""
        failed_here = 0
        for company in candidates:
            outcome = self.writer.writeBatch([company])
            if outcome.ok:
                result.records_written += 1
                continue
            failed_here += 1
            result.records_failed += 1
            report.add_item(
                status="FAILED",
                key=f"company:{company.source_id}",
                error_code=ErrorCode.BATCH_WRITE_FAILED.value,
                error=outcome.error,
                meta={"batch": batch_index, "name": company.name, "status_code": outcome.status_code},
            )
            logEvent(
                logger,
                logging.ERROR,
                run_id,
                "write",
                f"batch={batch_index} company={company.name!r} source_id={company.source_id} write failed: {outcome.error}",
            )
        if failed_here:
            result.batches_failed += 1
            result.batch_failures.append(
                BatchFailure(batch_index=batch_index, size=failed_here, error="split retry: records failed individually")
            )
        else:
            result.batches_written += 1

    def _filter_duplicates(
        self,
        checker: DuplicateCheckerProtocol,
        mapped: list[MappedCompany],
        result: SyncResult,
        logger: logging.Logger,
        report,
        run_id: str,
    ) -> list[MappedCompany]:
        """
        Алгоритм:
            - Проверяет каждую запись (последовательно или через ограниченный пул),
              порядок результатов совпадает с порядком записей.
            - Дубли исключаются и учитываются как skipped.
            - Ошибка проверки (только при fail-closed) исключает запись как failed.
        """

        def check(company: MappedCompany) -> tuple[bool, ApiError | None]:
            try:
                return checker.isDuplicate(company), None
            except ApiError as exc:
                return False, exc

        if self.dedup_concurrency > 1 and len(mapped) > 1:
            with ThreadPoolExecutor(max_workers=self.dedup_concurrency) as pool:
                outcomes = list(pool.map(check, mapped))
        else:
            outcomes = [check(company) for company in mapped]

        unique: list[MappedCompany] = []
        for company, (is_duplicate, error) in zip(mapped, outcomes):
            if error is not None:
                result.records_failed += 1
                message = describeApiError(error)
                report.add_item(
                    status="FAILED",
                    key=f"company:{company.source_id}",
                    error_code=ErrorCode.DUPLICATE_CHECK_FAILED.value,
                    error=message,
                    meta={"name": company.name},
                )
                logEvent(
                    logger,
                    logging.ERROR,
                    run_id,
                    "dedup",
                    f"Duplicate check failed for company={company.name!r} source_id={company.source_id}: {message}; record excluded",
                )
                continue
            if is_duplicate:
                result.records_skipped_duplicate += 1
                logEvent(logger, logging.INFO, run_id, "dedup", f"Company {company.name} already exists. Skipping.")
                continue
            unique.append(company)
        return unique

    def _abort(self, result: SyncResult, report, logger: logging.Logger, run_id: str, code: ErrorCode, message: str) -> None:
        result.aborted = True
        result.abort_reason = f"{code.value}: {message}"
        report.add_item(status="FAILED", key="fetch", error_code=code.value, error=message, meta={"pages_fetched": result.pages_fetched})
        logEvent(logger, logging.ERROR, run_id, "fetch", f"Error during sync: {message}")

    def _report_result(self, result: SyncResult, report) -> None:
        report.add_op("fetch", ok=result.pages_fetched, failed=1 if result.aborted else 0, count=result.records_fetched)
        report.add_op("write", ok=result.records_written, failed=result.records_failed, count=result.batches_written + result.batches_failed)
        report.add_op("dedup", ok=0, failed=0, count=result.records_skipped_duplicate)
        report.set_context(
            "sync",
            {**result.as_counters(), "aborted": result.aborted, "abort_reason": result.abort_reason},
        )
        if result.aborted:
            report.set_status("PARTIAL" if result.records_written > 0 else "FAILED")
