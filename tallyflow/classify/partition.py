"""Collection partitioner: group records by stage and order them by recency."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from tallyflow.classify.stages import (
    UNCLASSIFIED,
    Category,
    as_category,
    category_of,
    classify_transaction,
    stage_table,
)
from tallyflow.records.models import TransactionRecord

if TYPE_CHECKING:
    from tallyflow.config import Config

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_LIMIT = 3


def effective_timestamp(tx: TransactionRecord) -> float:
    """updatedAt, else createdAt, else transactionDate, else 0 (epoch ms)."""
    for value in (
        tx.metadata.updated_at,
        tx.metadata.created_at,
        tx.summary.transaction_date,
    ):
        if value is not None:
            return value
    return 0.0


def sort_by_recency(records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Newest first. Stable: equal timestamps keep their input order."""
    return sorted(records, key=effective_timestamp, reverse=True)


@dataclass
class StageGroup:
    """All records in one stage, newest first.

    ``preview`` is always a prefix of ``full``; both come from the same list.
    """
    stage: str
    label: str
    full: list[TransactionRecord] = field(default_factory=list)
    preview_limit: int = DEFAULT_PREVIEW_LIMIT

    @property
    def preview(self) -> list[TransactionRecord]:
        return self.full[: self.preview_limit]

    @property
    def count(self) -> int:
        return len(self.full)

    def totals_by_currency(self) -> dict[str, Decimal]:
        """Sum of summary.totalAmount per currency code, unformatted."""
        totals: dict[str, Decimal] = {}
        for tx in self.full:
            amount = tx.summary.total_amount
            if amount is None:
                continue
            currency = tx.summary.currency or ""
            totals[currency] = totals.get(currency, Decimal("0")) + amount
        return totals


@dataclass
class Partition:
    """Stage groups for one category, in the category's stage order."""
    category: str
    groups: dict[str, StageGroup]
    unclassified: list[TransactionRecord] = field(default_factory=list)
    uncategorized: list[TransactionRecord] = field(default_factory=list)

    def __getitem__(self, stage: str) -> StageGroup:
        return self.groups[stage]


def preview_limit_for(config: Config | None) -> int:
    if config is None:
        return DEFAULT_PREVIEW_LIMIT
    return config.preview_limit


def split_by_category(
    records: Iterable[TransactionRecord],
) -> tuple[dict[Category, list[TransactionRecord]], list[TransactionRecord]]:
    """Bucket records by business category, keeping input order.

    Records that resolve to no category are returned separately and each
    one is logged, so they never vanish from every pipeline unnoticed.
    """
    by_category: dict[Category, list[TransactionRecord]] = defaultdict(list)
    uncategorized = []
    for tx in records:
        category = category_of(tx)
        if category is None:
            logger.warning(
                "Transaction %s fits no category (kind=%s, source=%s)",
                tx.id, tx.classification.kind, tx.capture.source,
            )
            uncategorized.append(tx)
            continue
        by_category[category].append(tx)
    return by_category, uncategorized


def partition(
    records: Iterable[TransactionRecord],
    category,
    config: Config | None = None,
) -> Partition:
    """Classify records of ``category`` and group them by stage.

    Records belonging to another category are ignored; records belonging to
    no category are kept in ``uncategorized``. Every stage of the category's
    table appears in the result, empty or not.
    """
    category = as_category(category)
    table = stage_table(category, config)
    limit = preview_limit_for(config)

    by_category, uncategorized = split_by_category(records)
    skipped = sum(len(txs) for cat, txs in by_category.items() if cat is not category)
    if skipped:
        logger.debug("Ignored %d records outside category %s", skipped, category.value)

    buckets: dict[str, list[TransactionRecord]] = defaultdict(list)
    for tx in by_category.get(category, []):
        buckets[classify_transaction(tx, category, config)].append(tx)

    groups = {
        rule.stage: StageGroup(
            stage=rule.stage,
            label=rule.label,
            full=sort_by_recency(buckets.get(rule.stage, [])),
            preview_limit=limit,
        )
        for rule in table
    }
    unclassified = sort_by_recency(buckets.get(UNCLASSIFIED, []))
    if unclassified:
        logger.warning(
            "%d %s records could not be classified", len(unclassified), category.value
        )
    return Partition(
        category=category.value,
        groups=groups,
        unclassified=unclassified,
        uncategorized=sort_by_recency(uncategorized),
    )
