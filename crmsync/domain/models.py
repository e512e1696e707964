from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class SourceRecord:
    """
    Назначение:
        Сырая запись компании из системы-источника (набор свойств как есть).
    Инварианты:
        - properties доступны только на чтение.
    """

    record_id: str | None
    properties: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties or {})))

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> "SourceRecord":
        """Собирает запись из элемента results листинга источника."""
        record_id = item.get("id")
        properties = item.get("properties") or {}
        if not isinstance(properties, Mapping):
            properties = {}
        return cls(record_id=str(record_id) if record_id is not None else None, properties=properties)

    def get(self, name: str) -> Any:
        return self.properties.get(name)


@dataclass(frozen=True)
class SourcePage:
    """
    Назначение:
        Одна страница листинга источника.
    Контракт:
        - next_cursor=None означает, что листинг исчерпан.
    """

    records: list[SourceRecord]
    next_cursor: str | None


@dataclass(frozen=True)
class Link:
    label: str
    url: str

    def to_payload(self) -> dict[str, Any]:
        return {"primaryLinkLabel": self.label, "primaryLinkUrl": self.url}


@dataclass(frozen=True)
class Money:
    amount_micros: int
    currency_code: str

    def to_payload(self) -> dict[str, Any]:
        return {"amountMicros": self.amount_micros, "currencyCode": self.currency_code}


@dataclass(frozen=True)
class Address:
    street1: str
    city: str
    postcode: str
    country: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "addressStreet1": self.street1,
            "addressCity": self.city,
            "addressPostcode": self.postcode,
            "addressCountry": self.country,
        }


@dataclass(frozen=True)
class MappedCompany:
    """
    Назначение:
        Компания в схеме системы-приёмника.
    Инварианты:
        - Все поля заполнены (для отсутствующих данных подставлены значения по умолчанию).
    """

    name: str
    domain: Link
    employees: int
    linkedin: Link
    x_link: Link
    annual_revenue: Money
    address: Address
    ideal_customer_profile: bool
    created_by_source: str
    source_id: str | None = field(default=None, compare=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "domainName": self.domain.to_payload(),
            "employees": self.employees,
            "linkedinLink": self.linkedin.to_payload(),
            "xLink": self.x_link.to_payload(),
            "annualRecurringRevenue": self.annual_revenue.to_payload(),
            "address": self.address.to_payload(),
            "idealCustomerProfile": self.ideal_customer_profile,
            "createdBy": {"source": self.created_by_source},
        }


@dataclass(frozen=True)
class WriteOutcome:
    """
    Назначение:
        Результат записи одного батча в приёмник.
    Контракт:
        - error=None -> батч принят, written записей.
        - error задан -> written=0, весь батч считается неуспешным.
    """

    written: int
    error: str | None = None
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchFailure:
    batch_index: int
    size: int
    error: str
    status_code: int | None = None


@dataclass
class SyncResult:
    """
    Назначение:
        Накопитель счётчиков одного запуска синхронизации.
    Инварианты:
        - Изменяется только оркестратором, счётчики только растут.
    """

    records_fetched: int = 0
    records_written: int = 0
    records_skipped_duplicate: int = 0
    records_failed: int = 0
    pages_fetched: int = 0
    batches_written: int = 0
    batches_failed: int = 0
    aborted: bool = False
    abort_reason: str | None = None
    batch_failures: list[BatchFailure] = field(default_factory=list)

    def as_counters(self) -> dict[str, int]:
        return {
            "fetched": self.records_fetched,
            "written": self.records_written,
            "skipped_duplicate": self.records_skipped_duplicate,
            "failed": self.records_failed,
            "pages": self.pages_fetched,
            "batches_written": self.batches_written,
            "batches_failed": self.batches_failed,
        }
