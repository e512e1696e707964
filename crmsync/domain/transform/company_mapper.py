from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from crmsync.domain.models import Address, Link, MappedCompany, Money, SourceRecord

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class CompanyMappingSpec:
    """
    Назначение:
        Значения по умолчанию и фиксированные поля маппинга компании.
    """

    currency_code: str = "USD"
    ideal_customer_profile: bool = True
    created_by_source: str = "EMAIL"
    no_name: str = "NO NAME"
    no_website: str = "NO WEBSITE"
    no_linkedin: str = "NO LINKEDIN"
    no_x_link: str = "NO X LINK"
    no_address: str = "NO ADDRESS"
    no_city: str = "NO CITY"
    no_zip: str = "NO ZIP"
    no_country: str = "NO COUNTRY"


class CompanyMapper:
    """
    Назначение/ответственность:
        Чистое преобразование записи источника в схему приёмника.
    Инварианты/гарантии:
        - Без I/O, не бросает исключений.
        - Отсутствующие/пустые поля заменяются значениями из CompanyMappingSpec.
        - Одинаковый вход даёт одинаковый выход.
    """

    def __init__(self, spec: CompanyMappingSpec | None = None) -> None:
        self.spec = spec or CompanyMappingSpec()

    def map(self, record: SourceRecord) -> MappedCompany:
        spec = self.spec
        return MappedCompany(
            name=_text(record.get("name"), spec.no_name),
            domain=Link("Website", _text(record.get("website"), spec.no_website)),
            employees=parseLeadingInt(record.get("numberofemployees")),
            linkedin=Link("LinkedIn", _text(record.get("linkedin"), spec.no_linkedin)),
            x_link=Link("X Link", _text(record.get("xlink"), spec.no_x_link)),
            annual_revenue=Money(parseLeadingInt(record.get("annualrevenue")), spec.currency_code),
            address=Address(
                street1=_text(record.get("address"), spec.no_address),
                city=_text(record.get("city"), spec.no_city),
                postcode=_text(record.get("zip"), spec.no_zip),
                country=_text(record.get("country"), spec.no_country),
            ),
            ideal_customer_profile=spec.ideal_customer_profile,
            created_by_source=spec.created_by_source,
            source_id=record.record_id,
        )

    def map_many(self, records: list[SourceRecord]) -> list[MappedCompany]:
        return [self.map(record) for record in records]


def parseLeadingInt(value: Any, default: int = 0) -> int:
    """
    Назначение:
        Разбирает целое из начала строкового представления значения.

    Поведение:
        - "1200.50" -> 1200, "12 staff" -> 12, "abc"/None/"" -> default.
        - bool не считается числом.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return default
        return int(value)
    match = _LEADING_INT_RE.match(str(value))
    if not match:
        return default
    return int(match.group(1))


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value)
    return text if text else default
