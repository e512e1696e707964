from __future__ import annotations

from typing import Any

from crmsync.domain.models import SourcePage, SourceRecord
from crmsync.domain.ports.source_read import SourcePageReaderProtocol
from crmsync.infra.http.rate_limited_client import ApiError, RateLimitedClient

COMPANIES_PATH = "/crm/v3/objects/companies"
DEFAULT_PAGE_SIZE = 100

COMPANY_PROPERTIES = (
    "name",
    "website",
    "phone",
    "city",
    "description",
    "annualrevenue",
    "numberofemployees",
    "zip",
    "country",
    "industry",
    "address",
    "linkedin",
    "xlink",
)


class HubSpotCompanyReader(SourcePageReaderProtocol):
    """
    Назначение/ответственность:
        Чтение страниц компаний из HubSpot CRM v3 по курсору `after`.
    Взаимодействия:
        Использует RateLimitedClient; ошибки клиента пробрасывает без изменений,
        решение о прерывании принимает оркестратор.
    """

    def __init__(
        self,
        client: RateLimitedClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        properties: tuple[str, ...] = COMPANY_PROPERTIES,
        path: str = COMPANIES_PATH,
    ):
        self.client = client
        self.page_size = page_size
        self.properties = properties
        self.path = path

    def fetchPage(self, cursor: str | None) -> SourcePage:
        """
        Алгоритм:
            - GET path?limit=&properties=[&after=cursor].
            - results -> SourceRecord, paging.next.after -> следующий курсор.
        """
        params: dict[str, Any] = {
            "limit": self.page_size,
            "properties": ",".join(self.properties),
        }
        if cursor:
            params["after"] = cursor
        data = self.client.getJson(self.path, params=params)
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise ApiError("Unexpected response format: no results array", code="INVALID_RESPONSE", retryable=False)

        records = [SourceRecord.from_api(item) for item in data["results"] if isinstance(item, dict)]
        return SourcePage(records=records, next_cursor=_next_cursor(data))

    def createCompany(self, properties: dict[str, Any]) -> Any:
        """POST одной компании в источник (используется seed)."""
        return self.client.requestJson("POST", self.path, json={"properties": properties})


def _next_cursor(data: dict[str, Any]) -> str | None:
    paging = data.get("paging")
    if not isinstance(paging, dict):
        return None
    nxt = paging.get("next")
    if not isinstance(nxt, dict):
        return None
    after = nxt.get("after")
    if after is None or after == "":
        return None
    return str(after)
