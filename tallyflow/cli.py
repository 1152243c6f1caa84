"""CLI entry point for tallyflow.

Works on JSON dumps of backend list responses, so pipeline classification
can be inspected without the mobile client.

Commands:
    tallyflow classify CATEGORY FILE...   Stage groups for one category
    tallyflow reporting FILE... [--search TEXT] [--by-day]
                                          Reporting-ready list across categories
    tallyflow plan CATEGORY --business-id ID
                                          Backend queries feeding a category
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

CATEGORIES = ("purchase", "bank", "card", "sale")


def _setup_logging() -> None:
    """Configure logging based on TALLYFLOW_LOG_LEVEL env var."""
    level = os.environ.get("TALLYFLOW_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_config():
    """Load config from TALLYFLOW_CONFIG_DIR, or None to use built-in defaults.

    Every section is read up front so a broken file fails here rather than
    halfway through a command.
    """
    config_dir = os.environ.get("TALLYFLOW_CONFIG_DIR")
    if not config_dir:
        return None
    from tallyflow.config import Config

    config = Config(config_dir=config_dir)
    _ = config.preview_limit, config.stage_tables, config.fetch_plans
    _ = config.reporting_ready_stages
    return config


def _load_config_or_report():
    """(ok, config); prints the problem to stderr when the config is unusable."""
    try:
        return True, _get_config()
    except (FileNotFoundError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return False, None


def _load_batches(paths: list[Path]) -> list[list] | None:
    """Read each response dump into a record batch. None if any file fails."""
    from tallyflow.records.payload import PayloadLoader

    loader = PayloadLoader()
    batches = []
    for path in paths:
        try:
            with open(path) as f:
                batches.append(loader.load(json.load(f)))
        except (OSError, ValueError) as e:
            print(f"Cannot read {path}: {e}", file=sys.stderr)
            return None
    if loader.skipped_count:
        print(f"Skipped {loader.skipped_count} payloads without an id", file=sys.stderr)
    return batches


def _format_row(tx) -> str:
    from tallyflow.classify.predicates import is_credit_to_account

    ts = tx.summary.transaction_date
    date = (
        datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        if ts is not None else "----------"
    )
    name = tx.summary.third_party_name or tx.summary.description or "Unknown"
    amount = tx.summary.total_amount
    amount_str = f"{amount}" if amount is not None else "-"
    # Money coming in is shown with a leading "+".
    if amount is not None and is_credit_to_account(tx):
        amount_str = f"+{amount_str}"
    return f"    {date}  {name[:24]:<24}  {amount_str:>12} {tx.summary.currency or '':<3}  {tx.id}"


def _print_uncategorized(records) -> None:
    if records:
        print(f"\n  Uncategorized: {len(records)}")
        for tx in records:
            print(_format_row(tx))


def cmd_classify(args: argparse.Namespace) -> int:
    """Print each stage of a category with its preview or full list."""
    from tallyflow.classify.snapshot import build_snapshot

    ok, config = _load_config_or_report()
    if not ok:
        return 1
    batches = _load_batches(args.files)
    if batches is None:
        return 1
    snapshot = build_snapshot(args.category, *batches, config=config)

    print(f"{args.category.capitalize()} pipeline")
    print("=" * 60)
    for group in snapshot.stages.values():
        print(f"  {group.label} ({group.count})")
        for tx in group.full if args.all else group.preview:
            print(_format_row(tx))
    if snapshot.unclassified:
        print(f"\n  Unclassified: {len(snapshot.unclassified)}")
        for tx in snapshot.unclassified:
            print(_format_row(tx))
    _print_uncategorized(snapshot.uncategorized)
    return 0


def cmd_reporting(args: argparse.Namespace) -> int:
    """Print the reporting-ready aggregate and per-currency totals."""
    from tallyflow.classify.partition import StageGroup
    from tallyflow.classify.reporting import group_by_day, search
    from tallyflow.classify.snapshot import reporting_ready

    ok, config = _load_config_or_report()
    if not ok:
        return 1
    batches = _load_batches(args.files)
    if batches is None:
        return 1
    group = reporting_ready(*batches, config=config)
    records = search(group.full, args.search)

    if args.search:
        print(f"{group.label} matching {args.search!r} ({len(records)} of {group.count})")
    else:
        print(f"{group.label} ({group.count})")
    print("-" * 60)
    if args.by_day:
        for day in group_by_day(records):
            print(f"  {day.label}  {day.total} {day.currency}")
            for tx in day.items:
                print(_format_row(tx))
    else:
        shown = records if args.all else records[: group.preview_limit]
        for tx in shown:
            print(_format_row(tx))

    totals = StageGroup(stage=group.stage, label=group.label, full=records).totals_by_currency()
    if totals:
        print()
        for currency, total in sorted(totals.items()):
            print(f"  Total ready {currency or '???'}: {total}")
    _print_uncategorized(group.uncategorized)
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the backend queries that feed a category."""
    from tallyflow.classify.snapshot import fetch_plan

    ok, config = _load_config_or_report()
    if not ok:
        return 1
    for query in fetch_plan(args.category, config=config):
        params = "&".join(f"{k}={v}" for k, v in query.params(args.business_id).items())
        print(f"  {query.collection:<16} {params}")
    return 0


_COMMANDS = {
    "classify": cmd_classify,
    "reporting": cmd_reporting,
    "plan": cmd_plan,
}


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="tallyflow",
        description="Transaction pipeline classification for bookkeeping records",
    )
    subparsers = parser.add_subparsers(dest="command")

    # classify
    classify_p = subparsers.add_parser("classify", help="Group records of one category by stage")
    classify_p.add_argument("category", choices=CATEGORIES)
    classify_p.add_argument("files", nargs="+", type=Path, help="JSON response dumps")
    classify_p.add_argument("--all", action="store_true", help="Show every record, not just previews")

    # reporting
    reporting_p = subparsers.add_parser("reporting", help="Reporting-ready records across categories")
    reporting_p.add_argument("files", nargs="+", type=Path, help="JSON response dumps")
    reporting_p.add_argument("--all", action="store_true", help="Show every record, not just previews")
    reporting_p.add_argument("--search", metavar="TEXT", help="Only records whose name, description or amount match")
    reporting_p.add_argument("--by-day", action="store_true", help="Group records by transaction day")

    # plan
    plan_p = subparsers.add_parser("plan", help="Show backend queries feeding a category")
    plan_p.add_argument("category", choices=CATEGORIES)
    plan_p.add_argument("--business-id", required=True)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
