from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from crmsync.common.sanitize import redactSecrets

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s cmd=%(command)s comp=%(component)s msg=%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class RunContextFilter(logging.Filter):
    """
    Назначение:
        Дополняет запись лога контекстом запуска (runId, command, component)
        и вычищает из текста значения токенов API.

    Контракт:
        - Поля, переданные через extra, не перезаписываются.
        - Если сообщение содержало токен, record.msg заменяется уже
          отформатированным текстом без токена (args сбрасываются).
    """

    def __init__(self, runId: str, command: str, secrets: Iterable[str | None] = ()):
        super().__init__()
        self.runId = runId
        self.command = command
        self.secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "runId"):
            record.runId = self.runId
        if not hasattr(record, "component"):
            record.component = "core"
        record.command = self.command

        if self.secrets:
            message = record.getMessage()
            redacted = redactSecrets(message, self.secrets)
            if redacted != message:
                record.msg = redacted
                record.args = None
        return True


class LineLogWriter:
    """
    Назначение:
        file-like объект: накапливает текст и пишет в лог каждую завершённую строку.
    """

    def __init__(self, logger: logging.Logger, level: int, runId: str, component: str):
        self.logger = logger
        self.level = level
        self.extra = {"runId": runId, "component": component}
        self._pending = ""

    def write(self, text: str) -> int:
        if not text:
            return 0
        *lines, self._pending = (self._pending + text).split("\n")
        for line in lines:
            self._emit(line)
        return len(text)

    def flush(self) -> None:
        if self._pending:
            self._emit(self._pending)
            self._pending = ""

    def _emit(self, line: str) -> None:
        if line.strip():
            self.logger.log(self.level, line.rstrip(), extra=self.extra)


class TeeWriter:
    """Пишет одновременно в исходный поток консоли и в LineLogWriter."""

    def __init__(self, console, mirror: LineLogWriter):
        self.console = console
        self.mirror = mirror

    def write(self, text: str) -> int:
        written = self.console.write(text)
        self.mirror.write(text)
        return written

    def flush(self) -> None:
        self.console.flush()
        self.mirror.flush()


@contextmanager
def teeStdStreams(logger: logging.Logger, runId: str) -> Iterator[None]:
    """
    Назначение:
        На время блока дублирует stdout (INFO) и stderr (ERROR) команды в её лог.
        Исходные потоки восстанавливаются даже при исключении.
    """
    consoleOut, consoleErr = sys.stdout, sys.stderr
    outMirror = LineLogWriter(logger, logging.INFO, runId, "stdout")
    errMirror = LineLogWriter(logger, logging.ERROR, runId, "stderr")
    sys.stdout = TeeWriter(consoleOut, outMirror)
    sys.stderr = TeeWriter(consoleErr, errMirror)
    try:
        yield
    finally:
        outMirror.flush()
        errMirror.flush()
        sys.stdout, sys.stderr = consoleOut, consoleErr


def mapLogLevel(levelName: str) -> int:
    """ERROR|WARN|WARNING|INFO|DEBUG -> уровень logging; иначе ValueError."""
    level = _LEVELS.get((levelName or "").strip().upper())
    if level is None:
        raise ValueError(f"Unsupported log level: {levelName}")
    return level


def createCommandLogger(
    commandName: str,
    logDir: str,
    runId: str,
    logLevel: str,
    secrets: Iterable[str | None] = (),
) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Логгер команды (sync/seed/cleanup) с файлом <logDir>/<command>_<runId>.log.

    Контракт:
        - Повторный вызов с тем же runId переоткрывает файл (старые handlers закрываются).
        - secrets (токены) вычищаются из всех сообщений файла.

    Выходные данные:
        (logger, путь к log-файлу)
    """
    level = mapLogLevel(logLevel)
    logPath = Path(logDir) / f"{commandName}_{runId}.log"
    logPath.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"crmsync.{commandName}.{runId}")
    closeCommandLogger(logger)
    logger.setLevel(level)
    logger.propagate = False

    handler = logging.FileHandler(logPath, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.addFilter(RunContextFilter(runId=runId, command=commandName, secrets=secrets))
    logger.addHandler(handler)

    return logger, str(logPath)


def closeCommandLogger(logger: logging.Logger) -> None:
    """Снимает и закрывает handlers логгера команды."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def logEvent(logger: logging.Logger, level: int, runId: str, component: str, message: str) -> None:
    logger.log(level, message, extra={"runId": runId, "component": component})
