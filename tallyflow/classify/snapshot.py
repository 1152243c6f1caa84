"""Pipeline snapshot builder.

Merges the record batches a caller fetched (pending and source-of-truth
collections, possibly overlapping), partitions them for one category, and
builds the cross-category "reporting ready" aggregate.

Also describes which backend queries feed each category. No I/O happens
here; callers run the queries and hand back the results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from tallyflow.classify.partition import (
    Partition,
    StageGroup,
    partition,
    preview_limit_for,
    split_by_category,
    sort_by_recency,
)
from tallyflow.classify.stages import (
    DEFAULT_REPORTING_STAGES,
    Category,
    as_category,
)
from tallyflow.records.models import TransactionRecord

if TYPE_CHECKING:
    from tallyflow.config import Config

logger = logging.getLogger(__name__)

REPORTING_READY = "ReportingReady"
REPORTING_READY_LABEL = "Reporting ready (all sources)"

PENDING = "pending"
SOURCE_OF_TRUTH = "source_of_truth"
COLLECTIONS = (PENDING, SOURCE_OF_TRUTH)

DEFAULT_FETCH_LIMIT = 200


# ── Fetch plans ───────────────────────────────────────────


@dataclass(frozen=True)
class SourceQuery:
    """One backend list query: which collection and which filters."""
    collection: str
    kind: str
    status: str | None = None
    source: str | None = None
    page: int = 1
    limit: int = DEFAULT_FETCH_LIMIT

    def params(self, business_id: str) -> dict[str, str]:
        """Query-string parameters for the transactions list endpoint."""
        params = {
            "businessId": business_id,
            "page": str(self.page),
            "limit": str(self.limit),
            "kind": self.kind,
        }
        if self.status:
            params["status"] = self.status
        if self.source:
            params["source"] = self.source
        return params


_STATEMENT_PLAN = [
    {"collection": PENDING, "kind": "statement_entry", "status": "verification:unverified"},
    {"collection": SOURCE_OF_TRUTH, "kind": "statement_entry", "status": "verification:verified"},
]

DEFAULT_FETCH_PLANS: dict[Category, list[dict]] = {
    Category.PURCHASE: [
        {"collection": PENDING, "kind": "purchase", "status": "verification:unverified"},
        {"collection": SOURCE_OF_TRUTH, "kind": "purchase", "status": "reconciliation:pending_bank_match"},
        {"collection": SOURCE_OF_TRUTH, "kind": "purchase", "status": "verification:verified"},
        {"collection": SOURCE_OF_TRUTH, "kind": "purchase", "status": "reconciliation:reconciled"},
        {"collection": SOURCE_OF_TRUTH, "kind": "purchase", "status": "reconciliation:not_required"},
    ],
    Category.BANK: _STATEMENT_PLAN,
    Category.CARD: _STATEMENT_PLAN,
    Category.SALE: [
        {"collection": PENDING, "kind": "sale", "status": "verification:unverified"},
        {"collection": SOURCE_OF_TRUTH, "kind": "sale"},
    ],
}


def build_queries(entries: list[dict], limit: int = DEFAULT_FETCH_LIMIT) -> list[SourceQuery]:
    """Validate and convert fetch-plan entries into SourceQuery objects."""
    if not isinstance(entries, list) or not entries:
        raise ValueError("Fetch plan must be a non-empty list")
    queries = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("kind"):
            raise ValueError(f"Fetch plan entry needs a 'kind': {entry!r}")
        collection = entry.get("collection")
        if collection not in COLLECTIONS:
            raise ValueError(
                f"Fetch plan collection must be one of {COLLECTIONS}, got {collection!r}"
            )
        queries.append(SourceQuery(
            collection=collection,
            kind=entry["kind"],
            status=entry.get("status"),
            source=entry.get("source"),
            page=int(entry.get("page", 1)),
            limit=int(entry.get("limit", limit)),
        ))
    return queries


def fetch_plan(category, config: Config | None = None) -> list[SourceQuery]:
    """Backend queries whose results feed the category's snapshot."""
    category = as_category(category)
    if config is not None:
        override = config.fetch_plans.get(category)
        if override is not None:
            return override
        return build_queries(DEFAULT_FETCH_PLANS[category], limit=config.fetch_limit)
    return build_queries(DEFAULT_FETCH_PLANS[category])


# ── Merging ───────────────────────────────────────────────


def merge_batches(*batches: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    """Concatenate batches, keeping the first occurrence of each id."""
    seen: set[str] = set()
    merged = []
    for batch in batches:
        for tx in batch:
            if tx.id in seen:
                logger.debug("Dropping repeated transaction %s", tx.id)
                continue
            seen.add(tx.id)
            merged.append(tx)
    return merged


# ── Snapshots ─────────────────────────────────────────────


@dataclass
class PipelineSnapshot:
    """Everything the presentation layer needs for one category."""
    category: str
    partition: Partition
    reporting_stages: list[str]

    @property
    def stages(self) -> dict[str, StageGroup]:
        return self.partition.groups

    @property
    def unclassified(self) -> list[TransactionRecord]:
        return self.partition.unclassified

    @property
    def uncategorized(self) -> list[TransactionRecord]:
        return self.partition.uncategorized

    @property
    def reporting_ready(self) -> StageGroup | None:
        """The category's reporting stages combined, newest first."""
        groups = [self.stages[s] for s in self.reporting_stages if s in self.stages]
        if not groups:
            return None
        if len(groups) == 1:
            return groups[0]
        return StageGroup(
            stage=REPORTING_READY,
            label=REPORTING_READY_LABEL,
            full=sort_by_recency(merge_batches(*(g.full for g in groups))),
            preview_limit=groups[0].preview_limit,
        )

    def as_dict(self) -> dict[str, dict]:
        """{stage: {"label", "preview", "full"}} in stage order."""
        return {
            stage: {"label": group.label, "preview": group.preview, "full": group.full}
            for stage, group in self.partition.groups.items()
        }


@dataclass
class ReportingReadyGroup(StageGroup):
    """The cross-category reporting list plus records no pipeline claims."""
    uncategorized: list[TransactionRecord] = field(default_factory=list)


def reporting_stages_for(category, config: Config | None = None) -> list[str]:
    category = as_category(category)
    if config is not None:
        stages = config.reporting_ready_stages.get(category)
        if stages is not None:
            return stages
    return DEFAULT_REPORTING_STAGES[category]


def build_snapshot(
    category,
    *batches: Iterable[TransactionRecord],
    config: Config | None = None,
) -> PipelineSnapshot:
    """Merge batches (first occurrence wins) and partition them."""
    category = as_category(category)
    records = merge_batches(*batches)
    return PipelineSnapshot(
        category=category.value,
        partition=partition(records, category, config),
        reporting_stages=reporting_stages_for(category, config),
    )


def reporting_ready(
    *batches: Iterable[TransactionRecord],
    config: Config | None = None,
) -> ReportingReadyGroup:
    """Union of every category's reporting stages, deduplicated, newest first.

    Records that belong to no category are listed in ``uncategorized``.
    """
    by_category, uncategorized = split_by_category(merge_batches(*batches))
    collected = []
    for category in Category:
        groups = partition(by_category.get(category, []), category, config).groups
        for stage in reporting_stages_for(category, config):
            group = groups.get(stage)
            if group is None:
                logger.warning(
                    "Reporting stage %s not in %s table; skipping", stage, category.value
                )
                continue
            collected.append(group.full)
    return ReportingReadyGroup(
        stage=REPORTING_READY,
        label=REPORTING_READY_LABEL,
        full=sort_by_recency(merge_batches(*collected)),
        preview_limit=preview_limit_for(config),
        uncategorized=sort_by_recency(uncategorized),
    )
