"""Reporting-ready views: day buckets with a headline total, and text search."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable

from tallyflow.classify.partition import effective_timestamp
from tallyflow.records.models import TransactionRecord

DEFAULT_CURRENCY = "GBP"


def _timestamp(tx: TransactionRecord) -> float:
    # Records without a transaction date fall back to their recency stamp
    # so they still land in some day.
    if tx.summary.transaction_date is not None:
        return tx.summary.transaction_date
    return effective_timestamp(tx)


def _day(tx: TransactionRecord) -> date:
    return datetime.fromtimestamp(_timestamp(tx) / 1000, tz=timezone.utc).date()


@dataclass
class DayGroup:
    """Records sharing one transaction day, with the day's dominant total."""
    day: date
    items: list[TransactionRecord] = field(default_factory=list)
    totals: dict[str, Decimal] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.day:%A} {self.day.day} {self.day:%B}"

    @property
    def currency(self) -> str:
        """Currency with the largest absolute total; ties go to the first seen."""
        best, best_total = DEFAULT_CURRENCY, Decimal("0")
        for currency, total in self.totals.items():
            if total > best_total:
                best, best_total = currency, total
        return best

    @property
    def total(self) -> Decimal:
        return self.totals.get(self.currency, Decimal("0"))


def group_by_day(records: Iterable[TransactionRecord]) -> list[DayGroup]:
    """Bucket records by UTC transaction day, newest day and record first.

    Each day sums absolute amounts per currency (missing currency counts as
    GBP); ``DayGroup.total`` reports the dominant one.
    """
    days: dict[date, DayGroup] = {}
    for tx in sorted(records, key=_timestamp, reverse=True):
        day = _day(tx)
        group = days.get(day)
        if group is None:
            group = days[day] = DayGroup(day=day)
        group.items.append(tx)
        currency = tx.summary.currency or DEFAULT_CURRENCY
        amount = abs(tx.summary.total_amount or Decimal("0"))
        group.totals[currency] = group.totals.get(currency, Decimal("0")) + amount
    return sorted(days.values(), key=lambda g: g.day, reverse=True)


def search(records: Iterable[TransactionRecord], query: str | None) -> list[TransactionRecord]:
    """Case-insensitive match on party name, description or amount.

    A blank query returns every record.
    """
    records = list(records)
    needle = (query or "").strip().lower()
    if not needle:
        return records

    def matches(tx: TransactionRecord) -> bool:
        fields = [tx.summary.third_party_name, tx.summary.description]
        if tx.summary.total_amount is not None:
            fields.append(str(tx.summary.total_amount))
        return any(needle in value.lower() for value in fields if value)

    return [tx for tx in records if matches(tx)]
