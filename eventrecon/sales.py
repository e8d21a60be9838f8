import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from eventrecon.models import (
    InternalEvent,
    MatchDecision,
    SalePhase,
    SaleSignal,
    SaleSignalKind,
    SaleWindow,
)
from eventrecon.storage import fetch_events_with_decisions


logger = logging.getLogger(__name__)

# "presale" contains "resale": deny rules must run before allow rules.
_DENY_CONTAINS = ("vip package", "platinum", "public onsale")
_DENY_CONTAINS_PARTNER = ("standard admission", "general admission")
_ALLOW_CONTAINS = (
    "presale",
    "pre-sale",
    "fan club",
    "early access",
    "preferred tickets",
    "preferred seating",
    "select seats",
)
_ALLOW_PARTNERS = (
    "member",
    "citi",
    "amex",
    "chase",
    "capital one",
    "mastercard",
    "visa",
    "verizon",
    "spotify",
    "live nation",
)


@dataclass
class SaleAlert:
    event_id: str
    title: str
    venue_name: str
    start_time: datetime
    kind: SaleSignalKind
    at: Optional[datetime]
    window_name: Optional[str] = None


def is_relevant_sale_window(name: Optional[str], include_partners: bool = False) -> bool:
    if not name:
        return False
    lowered = name.strip().lower()

    if lowered == "resale":
        return False
    if any(token in lowered for token in _DENY_CONTAINS):
        return False
    if lowered == "onsale" or lowered.endswith(" onsale"):
        return False
    if include_partners and any(token in lowered for token in _DENY_CONTAINS_PARTNER):
        return False

    if any(token in lowered for token in _ALLOW_CONTAINS):
        return True
    if include_partners and any(token in lowered for token in _ALLOW_PARTNERS):
        return True
    return False


def classify(window: SaleWindow, now: datetime) -> SalePhase:
    if window.start_time is None:
        return SalePhase.UNKNOWN
    if window.start_time > now:
        return SalePhase.UPCOMING
    if window.end_time is None or window.end_time > now:
        return SalePhase.ACTIVE
    return SalePhase.ENDED


def relevant_windows(windows: Iterable[SaleWindow], include_partners: bool = False) -> List[SaleWindow]:
    return [w for w in windows if is_relevant_sale_window(w.name, include_partners=include_partners)]


def sale_status(
    windows: Iterable[SaleWindow],
    on_sale_start: Optional[datetime],
    now: datetime,
    include_partners: bool = False,
) -> Optional[SaleSignal]:
    relevant = relevant_windows(windows, include_partners=include_partners)

    for window in relevant:
        if classify(window, now) == SalePhase.ACTIVE:
            return SaleSignal(kind=SaleSignalKind.ACTIVE_PRESALE, at=window.end_time, window=window)

    upcoming = [w for w in relevant if classify(w, now) == SalePhase.UPCOMING]
    if upcoming:
        upcoming.sort(key=lambda w: w.start_time)
        nxt = upcoming[0]
        return SaleSignal(kind=SaleSignalKind.UPCOMING_PRESALE, at=nxt.start_time, window=nxt)

    if on_sale_start is not None and on_sale_start > now:
        return SaleSignal(kind=SaleSignalKind.FUTURE_ONSALE, at=on_sale_start)

    return None


def display_title(event: InternalEvent, decision: Optional[MatchDecision]) -> str:
    if decision and decision.matched and decision.prefer_external_title and decision.external_name:
        return decision.external_name
    return event.title


def short_window_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    trimmed = re.sub(r"presale$", "", name.strip(), flags=re.IGNORECASE).strip()
    return trimmed or None


def list_sale_alerts(
    db_path: str,
    now: Optional[datetime] = None,
    include_partners: bool = False,
) -> List[SaleAlert]:
    now = now or datetime.now(timezone.utc)
    alerts: List[SaleAlert] = []
    for event, decision in fetch_events_with_decisions(db_path, since=now, status="scheduled"):
        if decision is None or not decision.matched:
            continue
        if not decision.sale_windows and decision.on_sale_start is None:
            continue
        signal = sale_status(
            decision.sale_windows,
            decision.on_sale_start,
            now,
            include_partners=include_partners,
        )
        if signal is None:
            continue
        alerts.append(
            SaleAlert(
                event_id=event.id,
                title=display_title(event, decision),
                venue_name=event.venue_name,
                start_time=event.start_time,
                kind=signal.kind,
                at=signal.at,
                window_name=short_window_name(signal.window.name) if signal.window else None,
            )
        )

    alerts.sort(key=_alert_sort_key)
    logger.info("Sale alerts: total=%d", len(alerts))
    return alerts


def _alert_sort_key(alert: SaleAlert) -> tuple:
    active_rank = 0 if alert.kind == SaleSignalKind.ACTIVE_PRESALE else 1
    at = alert.at or datetime.max.replace(tzinfo=timezone.utc)
    return (active_rank, at)
