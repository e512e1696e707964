from __future__ import annotations

import json
import logging
import random
import threading

import httpx
import pytest

from crmsync.domain.reporting.collector import ReportCollector
from crmsync.infra.http.rate_limited_client import HttpError, RateLimitedClient
from crmsync.infra.source.hubspot_reader import HubSpotCompanyReader
from crmsync.infra.target.twenty_gateway import TwentyRecordGateway
from crmsync.usecases.cleanup_usecase import CleanupUseCase
from crmsync.usecases.seed_usecase import SeedUseCase, generateFakeCompany

logger = logging.getLogger("test.tools")


def make_client(responder) -> RateLimitedClient:
    return RateLimitedClient(
        baseUrl="https://api.local",
        token="t",
        sleep=lambda _s: None,
        transport=httpx.MockTransport(responder),
    )


def test_generate_fake_company_has_source_schema():
    props = generateFakeCompany(random.Random(1))

    assert set(props) >= {"name", "website", "numberofemployees", "annualrevenue", "city", "zip", "country", "address"}
    assert 1 <= props["numberofemployees"] <= 1000


def test_seed_counts_successes_and_failure_reasons():
    lock = threading.Lock()
    bodies: list[dict] = []

    def responder(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        with lock:
            bodies.append(body)
            index = len(bodies)
        if index == 3:
            return httpx.Response(400, json={"message": "Property values were not valid"})
        return httpx.Response(201, json={"id": str(index)})

    sleeps: list[float] = []
    usecase = SeedUseCase(HubSpotCompanyReader(make_client(responder)), rng=random.Random(7), sleep=sleeps.append)
    report = ReportCollector(run_id="r", command="seed")

    result = usecase.run(count=5, concurrency=2, delay_seconds=1.0, logger=logger, report=report, run_id="r")

    assert result.successful == 4
    assert result.failed == 1
    assert result.failures[0][1] == "Property values were not valid"
    assert all("properties" in body for body in bodies)
    # три группы (2, 2, 1) -> две паузы между ними
    assert sleeps == [1.0, 1.0]
    assert report.summary.ops["seed"] == {"ok": 4, "failed": 1, "count": 5}


def test_seed_rejects_bad_concurrency():
    usecase = SeedUseCase(HubSpotCompanyReader(make_client(lambda r: httpx.Response(201, json={}))))

    with pytest.raises(ValueError):
        usecase.run(count=1, concurrency=0, delay_seconds=0, logger=logger, report=ReportCollector("r", "seed"), run_id="r")


def test_cleanup_deletes_each_record_and_keeps_going_on_failure():
    def responder(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"data": {"companies": [{"id": "a"}, {"id": "b"}, {"id": "c"}]}})
        if request.url.path.endswith("/b"):
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json={})

    report = ReportCollector(run_id="r", command="cleanup")
    result = CleanupUseCase(TwentyRecordGateway(make_client(responder))).run("companies", logger, report, "r")

    assert result.deleted == 2
    assert result.failed == 1
    assert result.failures[0][0] == "b"
    assert report.items[0].key == "companies:b"


def test_cleanup_listing_error_propagates():
    def responder(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="unauthorized")

    with pytest.raises(HttpError):
        CleanupUseCase(TwentyRecordGateway(make_client(responder))).run(
            "companies", logger, ReportCollector(run_id="r", command="cleanup"), "r"
        )


def test_seed_failure_reason_uses_message_of_long_error_body():
    long_error = {
        "status": "error",
        "message": "Property values were not valid",
        "correlationId": "8d2f6a1c-41b7-4e0a-9c3d-5b7e2f1a0c94",
        "category": "VALIDATION_ERROR",
        "errors": [{"message": "Property \"numberofemployees\" " + "x" * 180, "code": "INVALID_INTEGER"}],
    }

    def responder(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=long_error)

    usecase = SeedUseCase(HubSpotCompanyReader(make_client(responder)), rng=random.Random(3), sleep=lambda _s: None)

    result = usecase.run(
        count=1, concurrency=1, delay_seconds=0, logger=logger, report=ReportCollector(run_id="r", command="seed"), run_id="r"
    )

    assert result.failed == 1
    assert result.failures[0][1] == "Property values were not valid"
