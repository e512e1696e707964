from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable

import yaml

from crmsync.errors import ConfigError

DUPLICATE_CHECK_POLICIES = ("fail-open", "fail-closed")
BATCH_FAILURE_POLICIES = ("drop", "split")


@dataclass(frozen=True)
class Settings:
    # Source (HubSpot)
    source_base_url: str = "https://api.hubapi.com"
    source_token: str | None = None

    # Destination (Twenty)
    target_base_url: str = "https://api.twenty.com"
    target_token: str | None = None

    # HTTP
    timeout_seconds: float = 20.0
    retry_after_default: float = 5.0
    max_rate_limit_retries: int | None = None

    # Sync
    page_size: int = 100
    batch_size: int = 100
    max_pages: int | None = None
    check_duplicates: bool | None = None
    dedup_concurrency: int = 1
    duplicate_check_policy: str = "fail-open"
    batch_failure_policy: str = "drop"
    currency_code: str = "USD"

    # Paths / logging
    log_dir: str = "./logs"
    report_dir: str = "./reports"
    log_level: str = "INFO"
    report_items_limit: int = 200


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


ENV_NAMES: dict[str, str] = {
    "source_base_url": "CRMSYNC_SOURCE_BASE_URL",
    "source_token": "HUBSPOT_ACCESS_TOKEN",
    "target_base_url": "CRMSYNC_TARGET_BASE_URL",
    "target_token": "TWENTY_API_KEY",
    "timeout_seconds": "CRMSYNC_TIMEOUT_SECONDS",
    "retry_after_default": "CRMSYNC_RETRY_AFTER_DEFAULT",
    "max_rate_limit_retries": "CRMSYNC_MAX_RATE_LIMIT_RETRIES",
    "page_size": "CRMSYNC_PAGE_SIZE",
    "batch_size": "CRMSYNC_BATCH_SIZE",
    "max_pages": "CRMSYNC_MAX_PAGES",
    "check_duplicates": "CRMSYNC_CHECK_DUPLICATES",
    "dedup_concurrency": "CRMSYNC_DEDUP_CONCURRENCY",
    "duplicate_check_policy": "CRMSYNC_DUPLICATE_CHECK_POLICY",
    "batch_failure_policy": "CRMSYNC_BATCH_FAILURE_POLICY",
    "currency_code": "CRMSYNC_CURRENCY_CODE",
    "log_dir": "CRMSYNC_LOG_DIR",
    "report_dir": "CRMSYNC_REPORT_DIR",
    "log_level": "CRMSYNC_LOG_LEVEL",
    "report_items_limit": "CRMSYNC_REPORT_ITEMS_LIMIT",
}


def _read_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def _env_get(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    vv = str(v).strip().lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ValueError(f"Invalid boolean value: {v}")


_PARSERS: dict[str, Callable[[Any], Any]] = {
    "timeout_seconds": float,
    "retry_after_default": float,
    "max_rate_limit_retries": int,
    "page_size": int,
    "batch_size": int,
    "max_pages": int,
    "check_duplicates": parse_bool,
    "dedup_concurrency": int,
    "report_items_limit": int,
}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    parser = _PARSERS.get(name, str)
    try:
        return parser(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}", field_name=name) from exc


def validateSettings(settings: Settings) -> None:
    """
    Назначение:
        Проверка диапазонов и допустимых значений после мерджа.
    """
    if not 1 <= settings.batch_size <= 100:
        raise ConfigError(f"batch_size must be in 1..100, got {settings.batch_size}", field_name="batch_size")
    if not 1 <= settings.page_size <= 100:
        raise ConfigError(f"page_size must be in 1..100, got {settings.page_size}", field_name="page_size")
    if settings.dedup_concurrency < 1:
        raise ConfigError("dedup_concurrency must be >= 1", field_name="dedup_concurrency")
    if settings.max_pages is not None and settings.max_pages < 1:
        raise ConfigError("max_pages must be >= 1", field_name="max_pages")
    if settings.max_rate_limit_retries is not None and settings.max_rate_limit_retries < 0:
        raise ConfigError("max_rate_limit_retries must be >= 0", field_name="max_rate_limit_retries")
    if settings.retry_after_default < 0:
        raise ConfigError("retry_after_default must be >= 0", field_name="retry_after_default")
    if settings.duplicate_check_policy not in DUPLICATE_CHECK_POLICIES:
        raise ConfigError(
            f"duplicate_check_policy must be one of {', '.join(DUPLICATE_CHECK_POLICIES)}",
            field_name="duplicate_check_policy",
        )
    if settings.batch_failure_policy not in BATCH_FAILURE_POLICIES:
        raise ConfigError(
            f"batch_failure_policy must be one of {', '.join(BATCH_FAILURE_POLICIES)}",
            field_name="batch_failure_policy",
        )


def loadSettings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    defaults = Settings()
    known = [f.name for f in fields(Settings)]

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    merged: dict[str, Any] = {name: getattr(defaults, name) for name in known}
    # null in YAML means "not set": the default stays
    for name in known:
        if cfg.get(name) is not None:
            merged[name] = _coerce(name, cfg[name])

    # 2) env
    env = {name: _env_get(envName) for name, envName in ENV_NAMES.items()}
    if any(v is not None for v in env.values()):
        sources.append("env")
    for name, value in env.items():
        if value is not None:
            merged[name] = _coerce(name, value)

    # 3) CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")
    for k, v in cli_overrides.items():
        if v is None or k not in merged:
            continue
        merged[k] = _coerce(k, v)

    settings = Settings(**merged)
    validateSettings(settings)
    return LoadedSettings(settings=settings, sources_used=sources)
