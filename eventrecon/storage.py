import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from eventrecon.models import (
    DecisionSource,
    ExternalCatalogEntry,
    InternalEvent,
    MatchDecision,
    SaleWindow,
)


logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    venue_slug TEXT NOT NULL,
    venue_name TEXT,
    start_ts TEXT NOT NULL,
    status TEXT
);

CREATE INDEX IF NOT EXISTS idx_events_start ON events (start_ts);

CREATE TABLE IF NOT EXISTS catalog_cache (
    id TEXT PRIMARY KEY,
    venue_slug TEXT NOT NULL,
    external_venue_id TEXT,
    name TEXT NOT NULL,
    local_date TEXT NOT NULL,
    start_ts TEXT NOT NULL,
    end_ts TEXT,
    url TEXT,
    price_min REAL,
    price_max REAL,
    price_currency TEXT,
    on_sale_start TEXT,
    on_sale_end TEXT,
    sale_windows_json TEXT,
    image_url TEXT,
    seatmap_url TEXT,
    attraction_id TEXT,
    attraction_name TEXT,
    supporting_acts_json TEXT,
    genre TEXT,
    sub_genre TEXT,
    segment TEXT,
    external_links_json TEXT,
    status TEXT,
    info TEXT,
    please_note TEXT,
    ticket_limit INTEGER,
    timezone TEXT,
    promoter_id TEXT,
    promoter_name TEXT
);

CREATE INDEX IF NOT EXISTS idx_catalog_cache_venue_date ON catalog_cache (venue_slug, local_date);

CREATE TABLE IF NOT EXISTS enrichments (
    event_id TEXT PRIMARY KEY,
    external_id TEXT,
    external_name TEXT,
    matched INTEGER NOT NULL DEFAULT 0,
    confidence REAL NOT NULL DEFAULT 0,
    source TEXT NOT NULL DEFAULT 'none',
    prefer_external_title INTEGER NOT NULL DEFAULT 0,
    last_checked TEXT,
    url TEXT,
    price_min REAL,
    price_max REAL,
    price_currency TEXT,
    on_sale_start TEXT,
    on_sale_end TEXT,
    sale_windows_json TEXT,
    image_url TEXT,
    seatmap_url TEXT,
    attraction_id TEXT,
    attraction_name TEXT,
    supporting_acts_json TEXT,
    genre TEXT,
    sub_genre TEXT,
    segment TEXT,
    external_links_json TEXT,
    status TEXT,
    info TEXT,
    please_note TEXT,
    ticket_limit INTEGER,
    timezone TEXT,
    promoter_id TEXT,
    promoter_name TEXT
);
"""


class CacheEmptyError(RuntimeError):
    pass


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    conn = _connect(db_path)
    try:
        conn.executescript(SCHEMA)
        _ensure_column(conn, "events", "status", "TEXT")
        _ensure_column(conn, "enrichments", "prefer_external_title", "INTEGER NOT NULL DEFAULT 0")
        _ensure_column(conn, "enrichments", "last_checked", "TEXT")
        conn.commit()
    finally:
        conn.close()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, col_type: str) -> None:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    existing = {row["name"] for row in rows}
    if column not in existing:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def sale_windows_to_json(windows: Iterable[SaleWindow]) -> Optional[str]:
    payload = [
        {
            "name": w.name,
            "startDateTime": to_iso(w.start_time),
            "endDateTime": to_iso(w.end_time),
            "description": w.description,
            "url": w.url,
        }
        for w in windows
    ]
    if not payload:
        return None
    return json.dumps(payload, sort_keys=True)


def sale_windows_from_json(raw: Optional[str]) -> List[SaleWindow]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Stored sale windows are not JSON: %s", raw[:80])
        return []
    if not isinstance(data, list):
        return []
    windows: List[SaleWindow] = []
    for item in data:
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


def _json_or_none(value: Any) -> Optional[str]:
    if not value:
        return None
    return json.dumps(value, sort_keys=True)


def _enrichment_values(source: Any) -> Tuple:
    return (
        source.url,
        source.price_min,
        source.price_max,
        source.price_currency,
        to_iso(source.on_sale_start),
        to_iso(source.on_sale_end),
        sale_windows_to_json(source.sale_windows),
        source.image_url,
        source.seatmap_url,
        source.attraction_id,
        source.attraction_name,
        _json_or_none(source.supporting_acts),
        source.genre,
        source.sub_genre,
        source.segment,
        _json_or_none(source.external_links),
        source.status,
        source.info,
        source.please_note,
        source.ticket_limit,
        source.timezone,
        source.promoter_id,
        source.promoter_name,
    )


def _enrichment_kwargs(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "url": row["url"],
        "price_min": row["price_min"],
        "price_max": row["price_max"],
        "price_currency": row["price_currency"],
        "on_sale_start": from_iso(row["on_sale_start"]),
        "on_sale_end": from_iso(row["on_sale_end"]),
        "sale_windows": sale_windows_from_json(row["sale_windows_json"]),
        "image_url": row["image_url"],
        "seatmap_url": row["seatmap_url"],
        "attraction_id": row["attraction_id"],
        "attraction_name": row["attraction_name"],
        "supporting_acts": json.loads(row["supporting_acts_json"]) if row["supporting_acts_json"] else [],
        "genre": row["genre"],
        "sub_genre": row["sub_genre"],
        "segment": row["segment"],
        "external_links": json.loads(row["external_links_json"]) if row["external_links_json"] else {},
        "status": row["status"],
        "info": row["info"],
        "please_note": row["please_note"],
        "ticket_limit": row["ticket_limit"],
        "timezone": row["timezone"],
        "promoter_id": row["promoter_id"],
        "promoter_name": row["promoter_name"],
    }


# Internal events


def upsert_events(db_path: str, events: Iterable[InternalEvent]) -> int:
    rows = [
        (e.id, e.title, e.venue_slug, e.venue_name, to_iso(e.start_time), e.status)
        for e in events
    ]
    conn = _connect(db_path)
    try:
        conn.executemany(
            """
            INSERT INTO events (id, title, venue_slug, venue_name, start_ts, status)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title=excluded.title,
                venue_slug=excluded.venue_slug,
                venue_name=excluded.venue_name,
                start_ts=excluded.start_ts,
                status=excluded.status
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()
    return len(rows)


def fetch_events(
    db_path: str,
    since: Optional[datetime] = None,
    venue_slug: Optional[str] = None,
    title_contains: Optional[str] = None,
    status: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[InternalEvent]:
    clauses: List[str] = []
    params: List[Any] = []
    if since is not None:
        clauses.append("start_ts >= ?")
        params.append(to_iso(since))
    if venue_slug:
        clauses.append("venue_slug = ?")
        params.append(venue_slug)
    if title_contains:
        clauses.append("instr(lower(title), lower(?)) > 0")
        params.append(title_contains)
    if status:
        clauses.append("lower(coalesce(status, '')) = lower(?)")
        params.append(status)
    sql = "SELECT * FROM events"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY start_ts ASC, id ASC"
    if limit is not None and limit > 0:
        sql += " LIMIT ?"
        params.append(limit)

    conn = _connect(db_path)
    try:
        rows = conn.execute(sql, params).fetchall()
        return [_event_from_row(row) for row in rows]
    finally:
        conn.close()


def _event_from_row(row: sqlite3.Row) -> InternalEvent:
    return InternalEvent(
        id=row["id"],
        title=row["title"],
        venue_slug=row["venue_slug"],
        venue_name=row["venue_name"] or row["venue_slug"],
        start_time=from_iso(row["start_ts"]),
        status=row["status"] or "scheduled",
    )


# External catalog cache


def replace_catalog_cache(db_path: str, entries: Iterable[ExternalCatalogEntry]) -> Tuple[int, int]:
    """Replace the whole cache with ``entries`` in a single transaction.

    Rows that fail to insert (duplicate provider ids) are logged and skipped.
    Returns ``(inserted, skipped)``.
    """
    inserted = 0
    skipped = 0
    conn = _connect(db_path)
    try:
        deleted = conn.execute("DELETE FROM catalog_cache").rowcount
        logger.info("Catalog cache cleared rows=%d", deleted)
        for entry in entries:
            try:
                conn.execute(
                    """
                    INSERT INTO catalog_cache (
                        id, venue_slug, external_venue_id, name, local_date, start_ts, end_ts,
                        url, price_min, price_max, price_currency, on_sale_start, on_sale_end,
                        sale_windows_json, image_url, seatmap_url, attraction_id, attraction_name,
                        supporting_acts_json, genre, sub_genre, segment, external_links_json,
                        status, info, please_note, ticket_limit, timezone, promoter_id, promoter_name
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.id,
                        entry.venue_slug,
                        entry.external_venue_id,
                        entry.name,
                        entry.local_date,
                        to_iso(entry.start_time),
                        to_iso(entry.end_time),
                    )
                    + _enrichment_values(entry),
                )
                inserted += 1
            except sqlite3.IntegrityError as exc:
                skipped += 1
                logger.warning("Catalog cache insert skipped id=%s name=%s error=%s", entry.id, entry.name, exc)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return inserted, skipped


def count_catalog_cache(db_path: str) -> int:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT COUNT(*) AS n FROM catalog_cache").fetchone()
        return int(row["n"])
    finally:
        conn.close()


def fetch_candidates(db_path: str, venue_slug: str, local_date: str) -> List[ExternalCatalogEntry]:
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """
            SELECT * FROM catalog_cache
            WHERE venue_slug=? AND local_date=?
            ORDER BY start_ts ASC, id ASC
            """,
            (venue_slug, local_date),
        ).fetchall()
        return [_entry_from_row(row) for row in rows]
    finally:
        conn.close()


def fetch_catalog_entry(db_path: str, entry_id: str) -> Optional[ExternalCatalogEntry]:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM catalog_cache WHERE id=?", (entry_id,)).fetchone()
        return _entry_from_row(row) if row else None
    finally:
        conn.close()


def _entry_from_row(row: sqlite3.Row) -> ExternalCatalogEntry:
    return ExternalCatalogEntry(
        id=row["id"],
        venue_slug=row["venue_slug"],
        external_venue_id=row["external_venue_id"],
        name=row["name"],
        local_date=row["local_date"],
        start_time=from_iso(row["start_ts"]),
        end_time=from_iso(row["end_ts"]),
        **_enrichment_kwargs(row),
    )


# Match decisions


def upsert_decision(db_path: str, decision: MatchDecision) -> None:
    conn = _connect(db_path)
    try:
        conn.execute(
            """
            INSERT INTO enrichments (
                event_id, external_id, external_name, matched, confidence, source,
                prefer_external_title, last_checked,
                url, price_min, price_max, price_currency, on_sale_start, on_sale_end,
                sale_windows_json, image_url, seatmap_url, attraction_id, attraction_name,
                supporting_acts_json, genre, sub_genre, segment, external_links_json,
                status, info, please_note, ticket_limit, timezone, promoter_id, promoter_name
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(event_id) DO UPDATE SET
                external_id=excluded.external_id,
                external_name=excluded.external_name,
                matched=excluded.matched,
                confidence=excluded.confidence,
                source=excluded.source,
                prefer_external_title=excluded.prefer_external_title,
                last_checked=excluded.last_checked,
                url=excluded.url,
                price_min=excluded.price_min,
                price_max=excluded.price_max,
                price_currency=excluded.price_currency,
                on_sale_start=excluded.on_sale_start,
                on_sale_end=excluded.on_sale_end,
                sale_windows_json=excluded.sale_windows_json,
                image_url=excluded.image_url,
                seatmap_url=excluded.seatmap_url,
                attraction_id=excluded.attraction_id,
                attraction_name=excluded.attraction_name,
                supporting_acts_json=excluded.supporting_acts_json,
                genre=excluded.genre,
                sub_genre=excluded.sub_genre,
                segment=excluded.segment,
                external_links_json=excluded.external_links_json,
                status=excluded.status,
                info=excluded.info,
                please_note=excluded.please_note,
                ticket_limit=excluded.ticket_limit,
                timezone=excluded.timezone,
                promoter_id=excluded.promoter_id,
                promoter_name=excluded.promoter_name
            """,
            (
                decision.event_id,
                decision.external_id,
                decision.external_name,
                1 if decision.matched else 0,
                float(decision.confidence),
                decision.source.value,
                1 if decision.prefer_external_title else 0,
                to_iso(decision.last_checked),
            )
            + _enrichment_values(decision),
        )
        conn.commit()
    finally:
        conn.close()


def fetch_decision(db_path: str, event_id: str) -> Optional[MatchDecision]:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM enrichments WHERE event_id=?", (event_id,)).fetchone()
        return _decision_from_row(row) if row else None
    finally:
        conn.close()


def fetch_decision_rows(db_path: str) -> List[Dict[str, Any]]:
    conn = _connect(db_path)
    try:
        rows = conn.execute("SELECT * FROM enrichments ORDER BY event_id").fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def _decision_from_row(row: sqlite3.Row) -> MatchDecision:
    try:
        source = DecisionSource(row["source"])
    except ValueError:
        logger.warning("Unknown decision source %s for event %s", row["source"], row["event_id"])
        source = DecisionSource.NONE
    return MatchDecision(
        event_id=row["event_id"],
        external_id=row["external_id"],
        external_name=row["external_name"],
        matched=bool(row["matched"]),
        confidence=float(row["confidence"] or 0.0),
        source=source,
        prefer_external_title=bool(row["prefer_external_title"]),
        last_checked=from_iso(row["last_checked"]),
        **_enrichment_kwargs(row),
    )


def fetch_events_with_decisions(
    db_path: str,
    since: Optional[datetime] = None,
    status: Optional[str] = None,
) -> List[Tuple[InternalEvent, Optional[MatchDecision]]]:
    events = fetch_events(db_path, since=since, status=status)
    conn = _connect(db_path)
    try:
        rows = conn.execute("SELECT * FROM enrichments").fetchall()
        by_event = {row["event_id"]: _decision_from_row(row) for row in rows}
    finally:
        conn.close()
    return [(event, by_event.get(event.id)) for event in events]


def log_db_stats(db_path: str) -> Dict[str, int]:
    conn = _connect(db_path)
    try:
        events = conn.execute("SELECT COUNT(*) AS n FROM events").fetchone()["n"]
        cache = conn.execute("SELECT COUNT(*) AS n FROM catalog_cache").fetchone()["n"]
        venues = conn.execute("SELECT COUNT(DISTINCT venue_slug) AS n FROM catalog_cache").fetchone()["n"]
        decisions = conn.execute("SELECT COUNT(*) AS n FROM enrichments").fetchone()["n"]
        matched = conn.execute("SELECT COUNT(*) AS n FROM enrichments WHERE matched=1").fetchone()["n"]
        by_source = {
            row["source"]: row["n"]
            for row in conn.execute(
                "SELECT source, COUNT(*) AS n FROM enrichments GROUP BY source"
            ).fetchall()
        }
    finally:
        conn.close()
    logger.info("Events: total=%d", events)
    logger.info("Catalog cache: entries=%d venues=%d", cache, venues)
    logger.info(
        "Decisions: total=%d matched=%d auto=%d arbitrated=%d none=%d",
        decisions,
        matched,
        by_source.get("auto", 0),
        by_source.get("arbitrated", 0),
        by_source.get("none", 0),
    )
    return {
        "events": int(events),
        "cache_entries": int(cache),
        "cache_venues": int(venues),
        "decisions": int(decisions),
        "matched": int(matched),
    }
