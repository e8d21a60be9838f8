import logging
from dataclasses import dataclass, replace
from datetime import datetime, tzinfo
from typing import List, Optional, Sequence

from eventrecon.match.oracle import OracleCandidate
from eventrecon.match.similarity import rank_candidates
from eventrecon.models import (
    DecisionSource,
    ExternalCatalogEntry,
    InternalEvent,
    MatchDecision,
    RankedCandidate,
)

logger = logging.getLogger(__name__)

# Policy values, not derived ones. Titles scoring this high are accepted without
# arbitration.
AUTO_ACCEPT_THRESHOLD = 0.85
# Auto path only: an external title this many times longer than ours is assumed
# to carry extra detail (opponent, tour name). The arbitrated path uses the
# oracle's own judgment instead.
PREFER_TITLE_LENGTH_RATIO = 1.5
# Confidence recorded for oracle-approved matches whose title similarity is low.
ARBITRATED_CONFIDENCE_FLOOR = 0.75
# Arbitrated confidence stays this far below the auto-accept threshold.
ARBITRATED_THRESHOLD_MARGIN = 0.01
# Confidence assumed for a reused decision stored without one.
REUSED_CONFIDENCE_DEFAULT = 0.85

OUTCOME_REUSED = "reused"
OUTCOME_AUTO = "auto"
OUTCOME_ARBITRATED = "arbitrated"
OUTCOME_NO_CANDIDATES = "no_candidates"
OUTCOME_REJECTED = "rejected"


@dataclass
class EngineResult:
    decision: MatchDecision
    outcome: str
    ranked: List[RankedCandidate]
    oracle_called: bool = False
    reason: Optional[str] = None


def decide(
    event: InternalEvent,
    candidates: Sequence[ExternalCatalogEntry],
    prior: Optional[MatchDecision],
    oracle,
    now: datetime,
    fresh: bool = False,
    tz: Optional[tzinfo] = None,
    auto_accept_threshold: float = AUTO_ACCEPT_THRESHOLD,
    prefer_title_length_ratio: float = PREFER_TITLE_LENGTH_RATIO,
) -> EngineResult:
    if not candidates:
        return EngineResult(decision=unmatched_decision(event.id, now), outcome=OUTCOME_NO_CANDIDATES, ranked=[])

    reusable = None if fresh else reusable_candidate(prior, candidates)
    if reusable is not None:
        decision = decision_from_entry(
            event.id,
            reusable,
            confidence=prior.confidence or REUSED_CONFIDENCE_DEFAULT,
            source=prior.source,
            prefer_external_title=prior.prefer_external_title,
            now=now,
        )
        return EngineResult(decision=decision, outcome=OUTCOME_REUSED, ranked=[])

    ranked = rank_candidates(event.title, candidates)
    top = ranked[0]
    if top.similarity >= auto_accept_threshold:
        prefer = len(top.entry.name) > len(event.title) * prefer_title_length_ratio
        decision = decision_from_entry(
            event.id,
            top.entry,
            confidence=top.similarity,
            source=DecisionSource.AUTO,
            prefer_external_title=prefer,
            now=now,
        )
        return EngineResult(decision=decision, outcome=OUTCOME_AUTO, ranked=ranked)

    oracle_candidates = [
        OracleCandidate(name=item.entry.name, time=format_local_time(item.entry.start_time, tz))
        for item in ranked
    ]
    result = oracle.arbitrate(
        event.title,
        event.venue_name,
        format_local_time(event.start_time, tz),
        oracle_candidates,
    )
    if result.match_index is None or not 0 <= result.match_index < len(ranked):
        return EngineResult(
            decision=unmatched_decision(event.id, now),
            outcome=OUTCOME_REJECTED,
            ranked=ranked,
            oracle_called=True,
            reason=result.reason,
        )

    picked = ranked[result.match_index]
    decision = decision_from_entry(
        event.id,
        picked.entry,
        confidence=arbitrated_confidence(picked.similarity, auto_accept_threshold),
        source=DecisionSource.ARBITRATED,
        prefer_external_title=result.prefer_external_title,
        now=now,
    )
    return EngineResult(
        decision=decision,
        outcome=OUTCOME_ARBITRATED,
        ranked=ranked,
        oracle_called=True,
        reason=result.reason,
    )


def arbitrated_confidence(similarity: float, auto_accept_threshold: float = AUTO_ACCEPT_THRESHOLD) -> float:
    confidence = max(ARBITRATED_CONFIDENCE_FLOOR, similarity)
    ceiling = auto_accept_threshold - ARBITRATED_THRESHOLD_MARGIN
    if confidence >= auto_accept_threshold and ceiling > 0:
        return max(similarity, ceiling)
    return confidence


def reusable_candidate(
    prior: Optional[MatchDecision], candidates: Sequence[ExternalCatalogEntry]
) -> Optional[ExternalCatalogEntry]:
    if prior is None or not prior.matched or not prior.external_id:
        return None
    for candidate in candidates:
        if candidate.id == prior.external_id:
            if candidate.name == prior.external_name:
                return candidate
            logger.info(
                "Prior match renamed id=%s old=%s new=%s", candidate.id, prior.external_name, candidate.name
            )
            return None
    return None


def decision_from_entry(
    event_id: str,
    entry: ExternalCatalogEntry,
    confidence: float,
    source: DecisionSource,
    prefer_external_title: bool,
    now: datetime,
) -> MatchDecision:
    return MatchDecision(
        event_id=event_id,
        matched=True,
        confidence=confidence,
        source=source,
        last_checked=now,
        prefer_external_title=prefer_external_title,
        external_id=entry.id,
        external_name=entry.name,
        url=entry.url,
        price_min=entry.price_min,
        price_max=entry.price_max,
        price_currency=entry.price_currency,
        on_sale_start=entry.on_sale_start,
        on_sale_end=entry.on_sale_end,
        sale_windows=[replace(window) for window in entry.sale_windows],
        image_url=entry.image_url,
        seatmap_url=entry.seatmap_url,
        attraction_id=entry.attraction_id,
        attraction_name=entry.attraction_name,
        supporting_acts=list(entry.supporting_acts),
        genre=entry.genre,
        sub_genre=entry.sub_genre,
        segment=entry.segment,
        external_links=dict(entry.external_links),
        status=entry.status,
        info=entry.info,
        please_note=entry.please_note,
        ticket_limit=entry.ticket_limit,
        timezone=entry.timezone,
        promoter_id=entry.promoter_id,
        promoter_name=entry.promoter_name,
    )


def unmatched_decision(event_id: str, now: datetime) -> MatchDecision:
    return MatchDecision(
        event_id=event_id,
        matched=False,
        confidence=0.0,
        source=DecisionSource.NONE,
        last_checked=now,
    )


def format_local_time(value: Optional[datetime], tz: Optional[tzinfo] = None) -> Optional[str]:
    if value is None:
        return None
    local = value.astimezone(tz) if tz is not None else value
    return local.strftime("%I:%M %p").lstrip("0")
