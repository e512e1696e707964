from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Callable

import typer

from crmsync.common.run_id import generate_run_id
from crmsync.common.sanitize import maskSecretsInObject
from crmsync.common.time import getDurationMs
from crmsync.config.config import Settings, loadSettings, validateSettings
from crmsync.domain.transform.company_mapper import CompanyMapper, CompanyMappingSpec
from crmsync.errors import ConfigError
from crmsync.infra.artifacts.report_writer import createEmptyReport, finalizeReport, writeReportJson
from crmsync.infra.http.rate_limited_client import ApiError, RateLimitedClient
from crmsync.infra.logging.setup import closeCommandLogger, createCommandLogger, logEvent, teeStdStreams
from crmsync.infra.source.hubspot_reader import HubSpotCompanyReader
from crmsync.infra.target.twenty_gateway import (
    TwentyBatchWriter,
    TwentyDuplicateChecker,
    TwentyRecordGateway,
    describeApiError,
)
from crmsync.usecases.cleanup_usecase import CleanupUseCase
from crmsync.usecases.seed_usecase import SeedUseCase
from crmsync.usecases.sync_usecase import CompanySyncUseCase

app = typer.Typer(no_args_is_help=True, add_completion=False)

ClientOpener = Callable[[str], RateLimitedClient]


def ensureDir(path: str) -> None:
    """
    Назначение:
        Создаёт каталог, если он отсутствует.
    """
    Path(path).mkdir(parents=True, exist_ok=True)


def missingTokens(settings: Settings, needSource: bool, needTarget: bool) -> list[str]:
    """Имена переменных окружения токенов, которых не хватает команде."""
    missing = []
    if needSource and not settings.source_token:
        missing.append("HUBSPOT_ACCESS_TOKEN")
    if needTarget and not settings.target_token:
        missing.append("TWENTY_API_KEY")
    return missing


def printRunHeader(runId: str, command: str, settings: Settings, sources: list[str]) -> None:
    """
    Назначение:
        Печатает сводку параметров запуска; токены проходят через maskSecretsInObject.
    """
    header = maskSecretsInObject(
        {
            "run_id": runId,
            "command": command,
            "source": settings.source_base_url,
            "source_token": settings.source_token,
            "target": settings.target_base_url,
            "target_token": settings.target_token,
            "sources": sources,
            "log_level": settings.log_level,
        }
    )
    typer.echo(" ".join(f"{key}={value}" for key, value in header.items()))


def createClient(settings: Settings, baseUrl: str, token: str, logger: logging.Logger, runId: str, name: str) -> RateLimitedClient:
    return RateLimitedClient(
        baseUrl=baseUrl,
        token=token,
        timeoutSeconds=settings.timeout_seconds,
        defaultRetryAfterSeconds=settings.retry_after_default,
        maxRateLimitRetries=settings.max_rate_limit_retries,
        logger=logger,
        runId=runId,
        name=name,
    )


def runWithReport(
    ctx: typer.Context,
    commandName: str,
    settings: Settings,
    requiresSource: bool,
    requiresTarget: bool,
    runner: Callable[[logging.Logger, object, ClientOpener], int],
) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - логгер + файл лога (токены вычищаются из сообщений)
        - report.json skeleton с замаскированными настройками
        - проверка токенов API
        - stdout/stderr дублируются в лог
        - HTTP-клиенты открываются через opener ("source"/"target") и
          закрываются здесь же; их ожидания по 429 попадают в отчёт
        - отчёт пишется в finally
    """
    runId = ctx.obj["runId"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
        secrets=(settings.source_token, settings.target_token),
    )
    report = createEmptyReport(runId=runId, command=commandName, settings=settings, configSources=sources)

    clients: dict[str, RateLimitedClient] = {}

    def openClient(name: str) -> RateLimitedClient:
        if name == "source":
            baseUrl, token = settings.source_base_url, settings.source_token
        else:
            baseUrl, token = settings.target_base_url, settings.target_token
        client = createClient(settings, baseUrl, token or "", logger, runId, name)
        clients[name] = client
        return client

    exitCode: int | None = None

    try:
        with teeStdStreams(logger, runId):
            try:
                logEvent(logger, logging.INFO, runId, "core", "Command started")
                printRunHeader(runId, commandName, settings, sources)

                missing = missingTokens(settings, requiresSource, requiresTarget)
                if missing:
                    typer.echo(f"Missing required environment variables: {', '.join(missing)}", err=True)
                    logEvent(logger, logging.ERROR, runId, "config", f"Missing API tokens: {', '.join(missing)}")
                    report.set_status("FAILED")
                    exitCode = 2
                else:
                    exitCode = runner(logger, report, openClient)
            finally:
                for client in clients.values():
                    client.close()
                finalizeReport(
                    report=report,
                    durationMs=getDurationMs(startMonotonic, time.monotonic()),
                    logFile=logFilePath,
                    reportDir=settings.report_dir,
                    rateLimitWaits={name: client.getRateLimitWaits() for name, client in clients.items()},
                )
                reportPath = writeReportJson(report, settings.report_dir, f"report_{commandName}_{runId}")
                logEvent(logger, logging.INFO, runId, "report", f"Report written: {reportPath}")
    finally:
        closeCommandLogger(logger)

    if exitCode:
        raise typer.Exit(code=exitCode)


def applyOverrides(settings: Settings, overrides: dict) -> Settings:
    """
    Назначение:
        Накладывает параметры подкоманды поверх глобальных настроек.

    Поведение:
        - Невалидное итоговое значение -> сообщение в stderr и exit code 2.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    updated = dataclasses.replace(settings, **values) if values else settings
    try:
        validateSettings(updated)
    except ConfigError as exc:
        typer.echo(f"ERROR: {exc.message}", err=True)
        raise typer.Exit(code=2)
    return updated


def runSyncCommand(ctx: typer.Context, settings: Settings, assumeYes: bool) -> None:
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger, report, openClient: ClientOpener) -> int:
        checkDuplicates = settings.check_duplicates
        if checkDuplicates is None:
            checkDuplicates = typer.confirm("Do you want to check for duplicates before migrating?", default=False)
        if not assumeYes and not typer.confirm("Do you want to start the sync?", default=False):
            typer.echo("Sync not started.")
            logEvent(logger, logging.INFO, runId, "sync", "Sync declined by user")
            report.set_status("SKIPPED")
            return 0

        sourceClient = openClient("source")
        targetClient = openClient("target")
        checker = None
        if checkDuplicates:
            checker = TwentyDuplicateChecker(
                targetClient,
                policy=settings.duplicate_check_policy,
                logger=logger,
                run_id=runId,
            )
        usecase = CompanySyncUseCase(
            reader=HubSpotCompanyReader(sourceClient, page_size=settings.page_size),
            mapper=CompanyMapper(CompanyMappingSpec(currency_code=settings.currency_code)),
            writer=TwentyBatchWriter(targetClient),
            checker=checker,
            batch_size=settings.batch_size,
            max_pages=settings.max_pages,
            dedup_concurrency=settings.dedup_concurrency,
            batch_failure_policy=settings.batch_failure_policy,
        )
        result = usecase.run(check_duplicates=checkDuplicates, logger=logger, report=report, run_id=runId)

        typer.echo(
            f"All companies synced. Total fetched: {result.records_fetched}. "
            f"written={result.records_written} skipped_duplicate={result.records_skipped_duplicate} "
            f"failed={result.records_failed}"
        )
        if result.aborted:
            typer.echo(f"ERROR: sync aborted: {result.abort_reason} (see logs/report)", err=True)
            return 1
        return 0

    runWithReport(ctx, "sync", settings, requiresSource=True, requiresTarget=True, runner=execute)


def runSeedCommand(ctx: typer.Context, settings: Settings, count: int, concurrency: int, delaySeconds: float) -> None:
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger, report, openClient: ClientOpener) -> int:
        usecase = SeedUseCase(HubSpotCompanyReader(openClient("source")))
        try:
            result = usecase.run(
                count=count,
                concurrency=concurrency,
                delay_seconds=delaySeconds,
                logger=logger,
                report=report,
                run_id=runId,
            )
        except ValueError as exc:
            typer.echo(f"ERROR: {exc}", err=True)
            return 2

        typer.echo("Seeding Summary:")
        typer.echo(f"Successfully added: {result.successful}")
        typer.echo(f"Failed: {result.failed}")
        if result.failures:
            typer.echo("Failed Companies:")
            for name, reason in result.failures:
                typer.echo(f"- {name}: {reason}")
        return 0

    runWithReport(ctx, "seed", settings, requiresSource=True, requiresTarget=False, runner=execute)


def runCleanupCommand(ctx: typer.Context, settings: Settings, objectName: str, assumeYes: bool) -> None:
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger, report, openClient: ClientOpener) -> int:
        if not assumeYes and not typer.confirm(f"Delete ALL {objectName} in the destination?", default=False):
            typer.echo("Cleanup not started.")
            report.set_status("SKIPPED")
            return 0

        try:
            result = CleanupUseCase(TwentyRecordGateway(openClient("target"))).run(
                objectName, logger=logger, report=report, run_id=runId
            )
        except ApiError as exc:
            logEvent(logger, logging.ERROR, runId, "cleanup", f"Error fetching {objectName}: {describeApiError(exc)}")
            typer.echo(f"ERROR: failed to list {objectName} (see logs/report)", err=True)
            report.set_status("FAILED")
            return 2

        typer.echo(f"Deleted: {result.deleted}")
        typer.echo(f"Failed: {result.failed}")
        for recordId, reason in result.failures:
            typer.echo(f"- {recordId}: {reason}")
        return 0

    runWithReport(ctx, "cleanup", settings, requiresSource=False, requiresTarget=True, runner=execute)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier (UUID). If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    reportDir: str | None = typer.Option(None, "--report-dir", help="Directory for reports."),
    sourceToken: str | None = typer.Option(None, "--source-token", help="HubSpot access token (avoid; use env)"),
    targetToken: str | None = typer.Option(None, "--target-token", help="Twenty API key (avoid; use env)"),
    sourceBaseUrl: str | None = typer.Option(None, "--source-base-url", help="HubSpot API base URL"),
    targetBaseUrl: str | None = typer.Option(None, "--target-base-url", help="Twenty API base URL"),
    timeoutSeconds: float | None = typer.Option(None, "--timeout-seconds", help="API timeout in seconds"),
    retryAfterDefault: float | None = typer.Option(
        None, "--retry-after-default", help="Seconds to wait on 429 without retry-after header"
    ),
    maxRateLimitRetries: int | None = typer.Option(
        None, "--max-rate-limit-retries", help="Cap on consecutive 429 retries (unbounded if omitted)"
    ),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/report
        - сохраняет всё в ctx.obj для подкоманд
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "log_level": logLevel,
        "log_dir": logDir,
        "report_dir": reportDir,
        "source_token": sourceToken,
        "target_token": targetToken,
        "source_base_url": sourceBaseUrl,
        "target_base_url": targetBaseUrl,
        "timeout_seconds": timeoutSeconds,
        "retry_after_default": retryAfterDefault,
        "max_rate_limit_retries": maxRateLimitRetries,
    }
    try:
        loaded = loadSettings(config_path=config, cli_overrides=cliOverrides)
    except ConfigError as exc:
        typer.echo(f"ERROR: {exc.message}", err=True)
        raise typer.Exit(code=2)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.report_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@app.command("sync")
def sync(
    ctx: typer.Context,
    checkDuplicates: bool | None = typer.Option(
        None,
        "--check-duplicates/--no-check-duplicates",
        help="Check destination for duplicates before writing (prompted if omitted)",
        show_default=False,
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Start the sync without confirmation"),
    batchSize: int | None = typer.Option(None, "--batch-size", help="Records per destination batch (1..100)"),
    pageSize: int | None = typer.Option(None, "--page-size", help="Records per source page (1..100)"),
    maxPages: int | None = typer.Option(None, "--max-pages", help="Stop after this many source pages"),
    dedupConcurrency: int | None = typer.Option(None, "--dedup-concurrency", help="Parallel duplicate checks"),
    duplicateCheckPolicy: str | None = typer.Option(
        None, "--duplicate-check-policy", help="fail-open|fail-closed"
    ),
    batchFailurePolicy: str | None = typer.Option(None, "--batch-failure-policy", help="drop|split"),
):
    settings = applyOverrides(
        ctx.obj["settings"],
        {
            "check_duplicates": checkDuplicates,
            "batch_size": batchSize,
            "page_size": pageSize,
            "max_pages": maxPages,
            "dedup_concurrency": dedupConcurrency,
            "duplicate_check_policy": duplicateCheckPolicy,
            "batch_failure_policy": batchFailurePolicy,
        },
    )
    runSyncCommand(ctx, settings, assumeYes=yes)


@app.command("seed")
def seed(
    ctx: typer.Context,
    count: int = typer.Option(150, "--count", help="Number of synthetic companies to create"),
    concurrency: int = typer.Option(50, "--concurrency", help="Companies created in parallel per group"),
    delaySeconds: float = typer.Option(1.0, "--delay-seconds", help="Pause between groups"),
):
    runSeedCommand(ctx, ctx.obj["settings"], count=count, concurrency=concurrency, delaySeconds=delaySeconds)


@app.command("cleanup")
def cleanup(
    ctx: typer.Context,
    objectName: str = typer.Option("companies", "--object", help="Destination object to purge (e.g. companies, people)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without confirmation"),
):
    runCleanupCommand(ctx, ctx.obj["settings"], objectName=objectName, assumeYes=yes)
