import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from eventrecon.config import Config
from eventrecon.http_client import RateLimiter, get_json
from eventrecon.models import ExternalCatalogEntry, SaleWindow, VenueMapping
from eventrecon.storage import from_iso, init_db, replace_catalog_cache
from eventrecon.venues import load_venue_mappings, mapped_venues

logger = logging.getLogger(__name__)

# The provider refuses pages whose offset reaches this many results.
MAX_RESULT_WINDOW = 1000
_LINK_KEYS = ("homepage", "spotify", "youtube", "instagram", "facebook", "twitter", "wiki")


class CatalogRequestError(RuntimeError):
    pass


@dataclass
class RefreshSummary:
    venues_total: int = 0
    venues_failed: int = 0
    venues_partial: int = 0
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    missing_start: int = 0
    missing_identity: int = 0
    malformed: int = 0
    cache_replaced: bool = False
    skipped: bool = False


class CatalogClient:
    def __init__(self, config: Config, limiter: Optional[RateLimiter] = None) -> None:
        self.config = config
        self.limiter = limiter or RateLimiter(config.catalog_min_request_interval)

    @property
    def enabled(self) -> bool:
        return self.config.catalog_enabled

    def search_events(self, params: Dict[str, Any]) -> Tuple[Optional[dict], Optional[int]]:
        url = self.config.catalog_base_url.rstrip("/") + "/events.json"
        query = {"apikey": self.config.catalog_api_key}
        query.update({k: v for k, v in params.items() if v not in (None, "")})
        return get_json(
            url,
            params=query,
            timeout=self.config.http_timeout_seconds,
            limiter=self.limiter,
        )

    def fetch_venue_events(
        self, external_venue_id: str, start: datetime, end: datetime
    ) -> Tuple[List[dict], bool]:
        """Fetch every page for one venue. Returns ``(events, complete)``."""
        page_size = max(1, self.config.catalog_page_size)
        events: List[dict] = []
        page = 0
        while True:
            if page * page_size >= MAX_RESULT_WINDOW:
                logger.warning(
                    "Catalog paging capped venue=%s page=%d fetched=%d", external_venue_id, page, len(events)
                )
                return events, True
            data, status = self.search_events(
                {
                    "venueId": external_venue_id,
                    "startDateTime": _provider_time(start),
                    "endDateTime": _provider_time(end),
                    "size": page_size,
                    "page": page,
                    "sort": "date,asc",
                    "includeTBA": "yes",
                    "includeTBD": "yes",
                }
            )
            if data is None:
                if status == 401:
                    logger.error("Catalog API rejected the API key venue=%s", external_venue_id)
                elif status == 429:
                    logger.error("Catalog API rate limit exceeded venue=%s page=%d", external_venue_id, page)
                else:
                    logger.warning(
                        "Catalog request failed venue=%s page=%d status=%s", external_venue_id, page, status
                    )
                if page == 0:
                    raise CatalogRequestError(f"venue {external_venue_id}: status {status}")
                return events, False

            batch = (data.get("_embedded") or {}).get("events") or []
            events.extend(item for item in batch if isinstance(item, dict))
            total_pages = int((data.get("page") or {}).get("totalPages") or 0)
            page += 1
            if not batch or page >= total_pages:
                return events, True


def refresh_catalog_cache(
    config: Config,
    client: Optional[CatalogClient] = None,
    venues: Optional[List[VenueMapping]] = None,
    now: Optional[datetime] = None,
) -> RefreshSummary:
    summary = RefreshSummary()
    client = client or CatalogClient(config)
    if not client.enabled:
        logger.warning("CATALOG_API_KEY not set; catalog refresh skipped")
        summary.skipped = True
        return summary

    init_db(config.db_path)
    if venues is None:
        venues = load_venue_mappings(config.venue_mapping_path)
    venues = mapped_venues(venues)
    summary.venues_total = len(venues)

    now = now or datetime.now(timezone.utc)
    end = _add_months(now, config.catalog_months_ahead)
    logger.info(
        "Catalog refresh window start=%s end=%s venues=%d",
        _provider_time(now),
        _provider_time(end),
        len(venues),
    )

    entries: List[ExternalCatalogEntry] = []
    for idx, venue in enumerate(venues):
        if idx > 0:
            client.limiter.pause(config.catalog_venue_delay_seconds)
        try:
            raw_events, complete = client.fetch_venue_events(venue.external_venue_id, now, end)
        except CatalogRequestError as exc:
            summary.venues_failed += 1
            logger.warning("Catalog venue skipped venue=%s error=%s", venue.slug, exc)
            continue
        if not complete:
            summary.venues_partial += 1
        summary.fetched += len(raw_events)
        logger.info("Catalog venue fetched venue=%s count=%d", venue.slug, len(raw_events))
        for raw in raw_events:
            if not raw.get("id") or not raw.get("name"):
                summary.missing_identity += 1
                logger.info("Catalog entry skipped (no id or name) venue=%s id=%s", venue.slug, raw.get("id"))
                continue
            try:
                entry = parse_catalog_entry(raw, venue)
            except (TypeError, ValueError, AttributeError) as exc:
                summary.malformed += 1
                logger.warning("Catalog entry malformed id=%s name=%s error=%s", raw.get("id"), raw.get("name"), exc)
                continue
            if entry is None:
                summary.missing_start += 1
                logger.info("Catalog entry skipped (no start date) id=%s name=%s", raw.get("id"), raw.get("name"))
                continue
            entries.append(entry)

    if venues and summary.venues_failed == len(venues):
        logger.error("Catalog refresh failed for every venue; keeping previous cache")
        return summary

    inserted, duplicates = replace_catalog_cache(config.db_path, entries)
    summary.inserted = inserted
    summary.duplicates = duplicates
    summary.cache_replaced = True
    logger.info(
        "Catalog refresh complete: venues=%d failed=%d partial=%d fetched=%d inserted=%d duplicates=%d missing_start=%d "
        "missing_identity=%d malformed=%d",
        summary.venues_total,
        summary.venues_failed,
        summary.venues_partial,
        summary.fetched,
        summary.inserted,
        summary.duplicates,
        summary.missing_start,
        summary.missing_identity,
        summary.malformed,
    )
    return summary


def parse_catalog_entry(raw: Dict[str, Any], venue: VenueMapping) -> Optional[ExternalCatalogEntry]:
    event_id = raw.get("id")
    name = raw.get("name")
    if not event_id or not name:
        return None

    dates = raw.get("dates") or {}
    start = dates.get("start") or {}
    local_date = start.get("localDate")
    start_time = from_iso(start.get("dateTime"))
    if start_time is None and local_date:
        start_time = from_iso(local_date)
    if start_time is None or not local_date:
        return None

    sales = raw.get("sales") or {}
    public = sales.get("public") or {}
    classification = primary_classification(raw)
    prices = standard_price_range(raw)
    attractions = (raw.get("_embedded") or {}).get("attractions") or []
    main_attraction = attractions[0] if attractions and isinstance(attractions[0], dict) else {}
    accessibility = raw.get("accessibility") or {}
    promoter = raw.get("promoter") or {}

    return ExternalCatalogEntry(
        id=str(event_id),
        venue_slug=venue.slug,
        external_venue_id=venue.external_venue_id,
        name=str(name),
        local_date=str(local_date),
        start_time=start_time,
        end_time=from_iso((dates.get("end") or {}).get("dateTime")),
        url=raw.get("url") or None,
        price_min=prices[0],
        price_max=prices[1],
        price_currency=prices[2],
        on_sale_start=from_iso(public.get("startDateTime")),
        on_sale_end=from_iso(public.get("endDateTime")),
        sale_windows=parse_sale_windows(sales.get("presales")),
        image_url=best_image_url(raw),
        seatmap_url=(raw.get("seatmap") or {}).get("staticUrl") or None,
        attraction_id=main_attraction.get("id") or None,
        attraction_name=main_attraction.get("name") or None,
        supporting_acts=supporting_acts(raw),
        genre=classification["genre"],
        sub_genre=classification["sub_genre"],
        segment=classification["segment"],
        external_links=external_links(raw),
        status=((dates.get("status") or {}).get("code")) or None,
        info=raw.get("info") or None,
        please_note=raw.get("pleaseNote") or None,
        ticket_limit=_optional_int(accessibility.get("ticketLimit")),
        timezone=dates.get("timezone") or None,
        promoter_id=promoter.get("id") or None,
        promoter_name=promoter.get("name") or None,
    )


def parse_sale_windows(raw: Any) -> List[SaleWindow]:
    if not isinstance(raw, list):
        return []
    windows = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        windows.append(
            SaleWindow(
                name=item.get("name"),
                start_time=from_iso(item.get("startDateTime")),
                end_time=from_iso(item.get("endDateTime")),
                description=item.get("description"),
                url=item.get("url"),
            )
        )
    return windows


def best_image_url(raw: Dict[str, Any]) -> Optional[str]:
    images = [img for img in raw.get("images") or [] if isinstance(img, dict) and img.get("url")]
    if not images:
        return None

    def _rank(img: Dict[str, Any]) -> Tuple[int, int]:
        wide = 0 if img.get("ratio") == "16_9" else 1
        area = int(img.get("width") or 0) * int(img.get("height") or 0)
        return (wide, -area)

    return sorted(images, key=_rank)[0]["url"]


def primary_classification(raw: Dict[str, Any]) -> Dict[str, Optional[str]]:
    classifications = [c for c in raw.get("classifications") or [] if isinstance(c, dict)]
    primary = next((c for c in classifications if c.get("primary")), None)
    if primary is None and classifications:
        primary = classifications[0]
    primary = primary or {}
    return {
        "segment": (primary.get("segment") or {}).get("name") or None,
        "genre": (primary.get("genre") or {}).get("name") or None,
        "sub_genre": (primary.get("subGenre") or {}).get("name") or None,
    }


def standard_price_range(raw: Dict[str, Any]) -> Tuple[Optional[float], Optional[float], Optional[str]]:
    ranges = [
        p
        for p in raw.get("priceRanges") or []
        if isinstance(p, dict) and (not p.get("type") or p.get("type") == "standard")
    ]
    if not ranges:
        return None, None, None
    mins = [float(p["min"]) for p in ranges if p.get("min") is not None]
    maxes = [float(p["max"]) for p in ranges if p.get("max") is not None]
    return (
        min(mins) if mins else None,
        max(maxes) if maxes else None,
        ranges[0].get("currency") or "USD",
    )


def supporting_acts(raw: Dict[str, Any]) -> List[str]:
    attractions = (raw.get("_embedded") or {}).get("attractions") or []
    # First attraction is the headliner.
    return [str(a.get("name")) for a in attractions[1:] if isinstance(a, dict) and a.get("name")]


def external_links(raw: Dict[str, Any]) -> Dict[str, str]:
    links = raw.get("externalLinks") or {}
    result: Dict[str, str] = {}
    for key in _LINK_KEYS:
        items = links.get(key) or []
        if items and isinstance(items[0], dict) and items[0].get("url"):
            result[key] = str(items[0]["url"])
    return result


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _provider_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, _days_in_month(year, month))
    return value.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (datetime(year, month + 1, 1) - timedelta(days=1)).day
