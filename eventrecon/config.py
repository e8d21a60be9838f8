import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid int for {name}: {raw}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float for {name}: {raw}") from exc


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw


def _env_first(names: list[str], default: str = "") -> str:
    for name in names:
        raw = os.getenv(name)
        if raw is not None and raw.strip():
            return raw
    return default


@dataclass
class Config:
    # Core
    db_path: str = "eventrecon.db"
    http_timeout_seconds: float = 20.0
    local_timezone: str = "America/Chicago"
    venue_mapping_path: Optional[str] = None

    # External catalog
    catalog_base_url: str = "https://app.ticketmaster.com/discovery/v2"
    catalog_api_key: str = ""
    catalog_page_size: int = 200
    catalog_months_ahead: int = 6
    catalog_min_request_interval: float = 0.25
    catalog_venue_delay_seconds: float = 0.3

    # Arbitration oracle
    oracle_url: str = "https://api.openai.com/v1/chat/completions"
    oracle_api_key: str = ""
    oracle_model: str = "gpt-4o"
    oracle_timeout_seconds: float = 30.0

    # Matching policy
    auto_accept_threshold: float = 0.85
    prefer_title_length_ratio: float = 1.5
    reconcile_limit: int = 500
    include_partner_presales: bool = False

    @property
    def catalog_enabled(self) -> bool:
        return bool(self.catalog_api_key.strip())

    @property
    def oracle_enabled(self) -> bool:
        return bool(self.oracle_api_key.strip())


def load_config() -> Config:
    load_dotenv()

    return Config(
        db_path=_env_str("EVENTRECON_DB_PATH", "eventrecon.db"),
        http_timeout_seconds=_env_float("EVENTRECON_HTTP_TIMEOUT", 20.0),
        local_timezone=_env_str("LOCAL_TIMEZONE", "America/Chicago"),
        venue_mapping_path=os.getenv("VENUE_MAPPING_PATH") or None,
        catalog_base_url=_env_str("CATALOG_BASE_URL", "https://app.ticketmaster.com/discovery/v2"),
        catalog_api_key=_env_first(["CATALOG_API_KEY", "TICKETMASTER_API_KEY"], ""),
        catalog_page_size=_env_int("CATALOG_PAGE_SIZE", 200),
        catalog_months_ahead=_env_int("CATALOG_MONTHS_AHEAD", 6),
        catalog_min_request_interval=_env_float("CATALOG_MIN_REQUEST_INTERVAL", 0.25),
        catalog_venue_delay_seconds=_env_float("CATALOG_VENUE_DELAY_SECONDS", 0.3),
        oracle_url=_env_str("ORACLE_URL", "https://api.openai.com/v1/chat/completions"),
        oracle_api_key=_env_first(["ORACLE_API_KEY", "OPENAI_API_KEY"], ""),
        oracle_model=_env_str("ORACLE_MODEL", "gpt-4o"),
        oracle_timeout_seconds=_env_float("ORACLE_TIMEOUT_SECONDS", 30.0),
        auto_accept_threshold=_env_float("AUTO_ACCEPT_THRESHOLD", 0.85),
        prefer_title_length_ratio=_env_float("PREFER_TITLE_LENGTH_RATIO", 1.5),
        reconcile_limit=_env_int("RECONCILE_LIMIT", 500),
        include_partner_presales=_env_bool("INCLUDE_PARTNER_PRESALES", False),
    )
