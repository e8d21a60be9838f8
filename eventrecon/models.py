from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class DecisionSource(str, Enum):
    AUTO = "auto"
    ARBITRATED = "arbitrated"
    NONE = "none"


class SalePhase(str, Enum):
    ACTIVE = "active"
    UPCOMING = "upcoming"
    ENDED = "ended"
    UNKNOWN = "unknown"


class SaleSignalKind(str, Enum):
    ACTIVE_PRESALE = "active_presale"
    UPCOMING_PRESALE = "upcoming_presale"
    FUTURE_ONSALE = "future_onsale"


@dataclass
class InternalEvent:
    id: str
    title: str
    venue_slug: str
    venue_name: str
    start_time: datetime
    status: str = "scheduled"


@dataclass
class SaleWindow:
    name: Optional[str]
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    description: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ExternalCatalogEntry:
    id: str
    venue_slug: str
    external_venue_id: str
    name: str
    local_date: str
    start_time: datetime
    end_time: Optional[datetime] = None
    url: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_currency: Optional[str] = None
    on_sale_start: Optional[datetime] = None
    on_sale_end: Optional[datetime] = None
    sale_windows: List[SaleWindow] = field(default_factory=list)
    image_url: Optional[str] = None
    seatmap_url: Optional[str] = None
    attraction_id: Optional[str] = None
    attraction_name: Optional[str] = None
    supporting_acts: List[str] = field(default_factory=list)
    genre: Optional[str] = None
    sub_genre: Optional[str] = None
    segment: Optional[str] = None
    external_links: Dict[str, str] = field(default_factory=dict)
    status: Optional[str] = None
    info: Optional[str] = None
    please_note: Optional[str] = None
    ticket_limit: Optional[int] = None
    timezone: Optional[str] = None
    promoter_id: Optional[str] = None
    promoter_name: Optional[str] = None


@dataclass
class MatchDecision:
    event_id: str
    matched: bool
    confidence: float
    source: DecisionSource
    last_checked: datetime
    prefer_external_title: bool = False
    external_id: Optional[str] = None
    external_name: Optional[str] = None
    url: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    price_currency: Optional[str] = None
    on_sale_start: Optional[datetime] = None
    on_sale_end: Optional[datetime] = None
    sale_windows: List[SaleWindow] = field(default_factory=list)
    image_url: Optional[str] = None
    seatmap_url: Optional[str] = None
    attraction_id: Optional[str] = None
    attraction_name: Optional[str] = None
    supporting_acts: List[str] = field(default_factory=list)
    genre: Optional[str] = None
    sub_genre: Optional[str] = None
    segment: Optional[str] = None
    external_links: Dict[str, str] = field(default_factory=dict)
    status: Optional[str] = None
    info: Optional[str] = None
    please_note: Optional[str] = None
    ticket_limit: Optional[int] = None
    timezone: Optional[str] = None
    promoter_id: Optional[str] = None
    promoter_name: Optional[str] = None


@dataclass
class RankedCandidate:
    entry: ExternalCatalogEntry
    similarity: float


@dataclass
class ArbitrationResult:
    match_index: Optional[int]
    prefer_external_title: bool = False
    reason: Optional[str] = None


@dataclass
class SaleSignal:
    kind: SaleSignalKind
    at: Optional[datetime]
    window: Optional[SaleWindow] = None


@dataclass
class VenueMapping:
    slug: str
    external_venue_id: str
    external_venue_name: str
    aliases: List[str] = field(default_factory=list)
