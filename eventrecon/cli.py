import argparse
import json
import logging
from typing import Any, List, Optional

from eventrecon.config import load_config
from eventrecon.ingest.catalog import refresh_catalog_cache
from eventrecon.match.similarity import normalize_title, similarity
from eventrecon.models import InternalEvent, VenueMapping
from eventrecon.reconcile import ReconciliationOptions, run_reconciliation
from eventrecon.sales import list_sale_alerts
from eventrecon.storage import CacheEmptyError, from_iso, init_db, log_db_stats, upsert_events
from eventrecon.venues import load_venue_mappings, resolve_venue_slug


logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="eventrecon")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    refresh_parser = sub.add_parser("refresh", help="Rebuild the external catalog cache")
    refresh_parser.add_argument("--months", type=int, default=None, help="Months ahead to fetch")

    reconcile_parser = sub.add_parser("reconcile", help="Match internal events against the catalog cache")
    reconcile_parser.add_argument("--limit", type=int, default=None)
    reconcile_parser.add_argument("--venue", default=None, help="Only events at this venue slug")
    reconcile_parser.add_argument("--title", default=None, help="Only events whose title contains this text")
    reconcile_parser.add_argument("--dry-run", action="store_true", help="Report decisions without saving")
    reconcile_parser.add_argument("--fresh", action="store_true", help="Ignore prior decisions")

    load_parser = sub.add_parser("load-events", help="Load internal events from a JSON file")
    load_parser.add_argument("path")

    presales_parser = sub.add_parser("presales", help="List active and upcoming sale windows")
    presales_parser.add_argument("--partners", action="store_true", help="Include card/partner presales")

    similarity_parser = sub.add_parser("similarity", help="Score two titles")
    similarity_parser.add_argument("title_a")
    similarity_parser.add_argument("title_b")

    sub.add_parser("status", help="Show cache and decision counts")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if args.cmd == "similarity":
        return _run_similarity(args.title_a, args.title_b)

    config = load_config()
    if args.cmd == "refresh":
        if args.months is not None:
            config.catalog_months_ahead = args.months
        return _run_refresh(config)
    if args.cmd == "reconcile":
        return _run_reconcile(config, args)
    if args.cmd == "load-events":
        return _run_load_events(config, args.path)
    if args.cmd == "presales":
        if args.partners:
            config.include_partner_presales = True
        return _run_presales(config)
    if args.cmd == "status":
        return _run_status(config)
    return 1


def _run_refresh(config) -> int:
    summary = refresh_catalog_cache(config)
    if summary.skipped:
        return 0
    if not summary.cache_replaced:
        logger.error("Catalog cache not replaced")
        return 1
    return 0


def _run_reconcile(config, args) -> int:
    options = ReconciliationOptions(
        limit=args.limit or config.reconcile_limit,
        venue_filter=args.venue,
        title_filter=args.title,
        dry_run=args.dry_run,
        fresh=args.fresh,
    )
    try:
        summary = run_reconciliation(config, options)
    except CacheEmptyError as exc:
        logger.error("%s", exc)
        return 1
    print(
        f"processed={summary.processed} matched={summary.matched} unmatched={summary.unmatched} "
        f"reused={summary.reused} auto={summary.auto} arbitrated={summary.arbitrated} "
        f"errored={summary.errored} oracle_calls={summary.oracle_calls}"
    )
    return 0


def _run_load_events(config, path: str) -> int:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except OSError as exc:
        logger.error("Cannot read events file %s: %s", path, exc)
        return 1
    except json.JSONDecodeError as exc:
        logger.error("Events file is not valid JSON %s: %s", path, exc)
        return 1
    if not isinstance(raw, list):
        logger.error("Events file must contain a JSON list: %s", path)
        return 1
    mappings = load_venue_mappings(config.venue_mapping_path)
    events = parse_internal_events(raw, mappings)
    init_db(config.db_path)
    count = upsert_events(config.db_path, events)
    logger.info("Internal events loaded: %d (skipped=%d)", count, len(raw) - count)
    return 0


def parse_internal_events(raw: List[Any], mappings: Optional[List[VenueMapping]] = None) -> List[InternalEvent]:
    events: List[InternalEvent] = []
    for item in raw:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object event record: %r", item)
            continue
        venue = item.get("venue")
        if not isinstance(venue, dict):
            venue = {}
        slug = venue.get("slug")
        if mappings:
            # Unknown venues keep their raw slug.
            slug = resolve_venue_slug(mappings, slug) or resolve_venue_slug(mappings, venue.get("name")) or slug
        start = from_iso(item.get("startDateTime"))
        if not item.get("id") or not item.get("title") or not slug or start is None:
            logger.warning("Skipping incomplete event record id=%s", item.get("id"))
            continue
        events.append(
            InternalEvent(
                id=str(item["id"]),
                title=str(item["title"]),
                venue_slug=str(slug),
                venue_name=str(venue.get("name") or slug),
                start_time=start,
                status=str(item.get("status") or "scheduled"),
            )
        )
    return events


def _run_presales(config) -> int:
    init_db(config.db_path)
    alerts = list_sale_alerts(config.db_path, include_partners=config.include_partner_presales)
    if not alerts:
        print("No presales or upcoming on-sales")
        return 0
    for alert in alerts:
        at = alert.at.isoformat() if alert.at else "-"
        window = f" [{alert.window_name}]" if alert.window_name else ""
        print(f"{alert.kind.value:<17} {at:<26} {alert.title} @ {alert.venue_name}{window}")
    return 0


def _run_similarity(title_a: str, title_b: str) -> int:
    print(f"normalized: {normalize_title(title_a)!r} vs {normalize_title(title_b)!r}")
    print(f"similarity: {similarity(title_a, title_b):.3f}")
    return 0


def _run_status(config) -> int:
    init_db(config.db_path)
    stats = log_db_stats(config.db_path)
    for key, value in stats.items():
        print(f"{key}: {value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
