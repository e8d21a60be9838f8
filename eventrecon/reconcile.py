import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from eventrecon.config import Config
from eventrecon.match.engine import (
    OUTCOME_ARBITRATED,
    OUTCOME_AUTO,
    OUTCOME_REUSED,
    decide,
)
from eventrecon.match.oracle import ArbitrationOracle
from eventrecon.models import InternalEvent
from eventrecon.storage import (
    CacheEmptyError,
    count_catalog_cache,
    fetch_candidates,
    fetch_decision,
    fetch_events,
    init_db,
    upsert_decision,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationOptions:
    limit: int = 500
    venue_filter: Optional[str] = None
    title_filter: Optional[str] = None
    dry_run: bool = False
    fresh: bool = False


@dataclass
class ReconciliationSummary:
    processed: int = 0
    matched: int = 0
    unmatched: int = 0
    reused: int = 0
    auto: int = 0
    arbitrated: int = 0
    errored: int = 0
    oracle_calls: int = 0
    skipped: bool = False


def local_date(value: datetime, tz: tzinfo) -> str:
    return value.astimezone(tz).date().isoformat()


def run_reconciliation(
    config: Config,
    options: Optional[ReconciliationOptions] = None,
    oracle: Optional[ArbitrationOracle] = None,
    now: Optional[datetime] = None,
) -> ReconciliationSummary:
    options = options or ReconciliationOptions(limit=config.reconcile_limit)
    summary = ReconciliationSummary()
    if not config.catalog_enabled:
        logger.warning("CATALOG_API_KEY not set; reconciliation skipped")
        summary.skipped = True
        return summary

    init_db(config.db_path)
    cached = count_catalog_cache(config.db_path)
    if cached == 0:
        raise CacheEmptyError("Catalog cache is empty; run the refresh command first")

    oracle = oracle or ArbitrationOracle(config)
    calls_before = oracle.calls
    tz = ZoneInfo(config.local_timezone)
    now = now or datetime.now(timezone.utc)

    events = fetch_events(
        config.db_path,
        since=now,
        venue_slug=options.venue_filter,
        title_contains=options.title_filter,
        limit=options.limit,
    )
    logger.info(
        "Reconciling events=%d cache_entries=%d dry_run=%s fresh=%s",
        len(events),
        cached,
        options.dry_run,
        options.fresh,
    )

    for event in events:
        try:
            _reconcile_event(config, options, oracle, event, tz, now, summary)
        except Exception:
            summary.errored += 1
            logger.exception("Reconciliation failed event=%s title=%s", event.id, event.title)

    summary.oracle_calls = oracle.calls - calls_before
    logger.info(
        "Reconciliation complete: processed=%d matched=%d unmatched=%d reused=%d auto=%d arbitrated=%d "
        "errored=%d oracle_calls=%d",
        summary.processed,
        summary.matched,
        summary.unmatched,
        summary.reused,
        summary.auto,
        summary.arbitrated,
        summary.errored,
        summary.oracle_calls,
    )
    return summary


def _reconcile_event(
    config: Config,
    options: ReconciliationOptions,
    oracle: ArbitrationOracle,
    event: InternalEvent,
    tz: tzinfo,
    now: datetime,
    summary: ReconciliationSummary,
) -> None:
    day = local_date(event.start_time, tz)
    candidates = fetch_candidates(config.db_path, event.venue_slug, day)
    prior = fetch_decision(config.db_path, event.id)
    result = decide(
        event,
        candidates,
        prior,
        oracle,
        now,
        fresh=options.fresh,
        tz=tz,
        auto_accept_threshold=config.auto_accept_threshold,
        prefer_title_length_ratio=config.prefer_title_length_ratio,
    )
    decision = result.decision

    summary.processed += 1
    if decision.matched:
        summary.matched += 1
    else:
        summary.unmatched += 1
    if result.outcome == OUTCOME_REUSED:
        summary.reused += 1
    elif result.outcome == OUTCOME_AUTO:
        summary.auto += 1
    elif result.outcome == OUTCOME_ARBITRATED:
        summary.arbitrated += 1

    if decision.matched:
        logger.info(
            "Event %s: %s title=%s external=%s confidence=%.2f prefer_external_title=%s",
            result.outcome,
            event.id,
            event.title,
            decision.external_name,
            decision.confidence,
            decision.prefer_external_title,
        )
    else:
        logger.info(
            "Event unmatched: %s title=%s venue=%s date=%s candidates=%d reason=%s",
            event.id,
            event.title,
            event.venue_slug,
            day,
            len(candidates),
            result.reason or result.outcome,
        )

    if options.dry_run:
        return
    upsert_decision(config.db_path, decision)
