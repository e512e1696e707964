from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from crmsync.infra.http.rate_limited_client import ApiError
from crmsync.infra.logging.setup import logEvent
from crmsync.infra.source.hubspot_reader import HubSpotCompanyReader
from crmsync.infra.target.twenty_gateway import describeApiError

_NAME_HEADS = ("Acme", "Globex", "Initech", "Umbrella", "Stark", "Wayne", "Hooli", "Vandelay", "Soylent", "Tyrell")
_NAME_TAILS = ("Labs", "Group", "Systems", "Holdings", "Partners", "Logistics", "Dynamics", "Works")
_SUFFIXES = ("Inc", "LLC", "Ltd", "GmbH", "SA")
_STREETS = ("Main St", "Oak Ave", "Pine Rd", "Maple Dr", "Cedar Ln", "Elm St", "Lake View")
_CITIES = ("Springfield", "Riverside", "Franklin", "Greenville", "Bristol", "Clinton", "Fairview")
_COUNTRIES = ("United States", "Germany", "France", "Canada", "Spain", "Netherlands", "Poland")
_PRODUCTS = ("analytics platform", "logistics software", "payment gateway", "CRM add-on", "data warehouse")


@dataclass
class SeedResult:
    """
    Назначение:
        Итог наполнения источника синтетическими компаниями.
    """

    successful: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)


def generateFakeCompany(rng: random.Random) -> dict[str, Any]:
    """
    Назначение:
        Генерирует свойства синтетической компании в схеме источника.
    """
    name = f"{rng.choice(_NAME_HEADS)} {rng.choice(_NAME_TAILS)} {rng.choice(_SUFFIXES)}"
    slug = name.lower().replace(" ", "-")
    return {
        "address": f"{rng.randint(1, 9999)} {rng.choice(_STREETS)}",
        "annualrevenue": f"{rng.randint(1_000, 10_000_000)}.{rng.randint(0, 99):02d}",
        "city": rng.choice(_CITIES),
        "country": rng.choice(_COUNTRIES),
        "description": f"{name} builds a {rng.choice(_PRODUCTS)}.",
        "name": name,
        "numberofemployees": rng.randint(1, 1000),
        "phone": f"+1-{rng.randint(200, 999)}-{rng.randint(200, 999)}-{rng.randint(1000, 9999)}",
        "website": f"https://{slug}-{rng.randint(1, 9999)}.example.com",
        "zip": f"{rng.randint(10000, 99999)}",
    }


def failureReason(exc: ApiError) -> str:
    """Сообщение API (поле message тела ответа), иначе описание ошибки."""
    if exc.api_message:
        return exc.api_message
    return describeApiError(exc)


class SeedUseCase:
    """
    Назначение/ответственность:
        Наполнение источника синтетическими компаниями для проверки синхронизации.
    Ограничения:
        - Группы по concurrency записей отправляются параллельно, между группами пауза.
    """

    def __init__(
        self,
        reader: HubSpotCompanyReader,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.reader = reader
        self.rng = rng or random.Random()
        self.sleep = sleep

    def run(
        self,
        count: int,
        concurrency: int,
        delay_seconds: float,
        logger: logging.Logger,
        report,
        run_id: str,
    ) -> SeedResult:
        if count < 0:
            raise ValueError("count must be >= 0")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        result = SeedResult()
        logEvent(logger, logging.INFO, run_id, "seed", f"Starting to seed {count} companies concurrency={concurrency}")

        def create(properties: dict[str, Any]) -> str | None:
            try:
                self.reader.createCompany(properties)
            except ApiError as exc:
                return failureReason(exc)
            return None

        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            for start in range(0, count, concurrency):
                group = [generateFakeCompany(self.rng) for _ in range(min(concurrency, count - start))]
                errors = list(pool.map(create, group))
                for offset, (properties, error) in enumerate(zip(group, errors)):
                    position = start + offset + 1
                    if error is None:
                        result.successful += 1
                        logEvent(logger, logging.INFO, run_id, "seed", f"Added company ({position}/{count}): {properties['name']}")
                        continue
                    result.failed += 1
                    result.failures.append((properties["name"], error))
                    report.add_item(status="FAILED", key=f"seed:{position}", error=error, meta={"name": properties["name"]})
                    logEvent(logger, logging.ERROR, run_id, "seed", f"Failed to add company ({position}/{count}): {properties['name']}: {error}")
                if start + concurrency < count and delay_seconds > 0:
                    self.sleep(delay_seconds)

        report.add_op("seed", ok=result.successful, failed=result.failed, count=count)
        return result
