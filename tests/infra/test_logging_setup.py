from __future__ import annotations

import logging
import sys

import pytest

from crmsync.infra.logging.setup import closeCommandLogger, createCommandLogger, logEvent, mapLogLevel, teeStdStreams


def test_command_log_has_run_context_and_no_tokens(tmp_path):
    logger, logPath = createCommandLogger("sync", str(tmp_path), "run-1", "INFO", secrets=("hs-secret", None))
    try:
        logEvent(logger, logging.INFO, "run-1", "fetch", "GET failed with header Bearer hs-secret")
        logger.debug("hidden at INFO")
    finally:
        closeCommandLogger(logger)

    text = open(logPath, encoding="utf-8").read()
    assert logPath.endswith("sync_run-1.log")
    assert "runId=run-1 cmd=sync comp=fetch" in text
    assert "Bearer ***" in text
    assert "hs-secret" not in text
    assert "hidden at INFO" not in text


def test_std_streams_are_mirrored_into_log_and_restored(tmp_path):
    logger, logPath = createCommandLogger("seed", str(tmp_path), "run-2", "DEBUG")
    originalOut, originalErr = sys.stdout, sys.stderr
    try:
        with teeStdStreams(logger, "run-2"):
            print("Seeding Summary:")
            print("partial line without newline", end="")
            print("boom", file=sys.stderr)
    finally:
        closeCommandLogger(logger)

    assert sys.stdout is originalOut
    assert sys.stderr is originalErr
    text = open(logPath, encoding="utf-8").read()
    assert "INFO runId=run-2 cmd=seed comp=stdout msg=Seeding Summary:" in text
    assert "partial line without newline" in text
    assert "ERROR runId=run-2 cmd=seed comp=stderr msg=boom" in text


@pytest.mark.parametrize("name, level", [("warn", logging.WARNING), ("WARNING", logging.WARNING), ("Debug", logging.DEBUG)])
def test_map_log_level(name, level):
    assert mapLogLevel(name) == level


def test_map_log_level_rejects_unknown():
    with pytest.raises(ValueError):
        mapLogLevel("TRACE")
