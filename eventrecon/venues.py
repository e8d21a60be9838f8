from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import yaml

from eventrecon.models import VenueMapping

DEFAULT_MAPPING_PATH = Path(__file__).resolve().parent / "data" / "venues.yaml"


def _optional_str(value):
    if value is None:
        return None
    return str(value)


def _parse_venue(slug: str, details: dict) -> VenueMapping:
    aliases = details.get("aliases") or []
    if not isinstance(aliases, list):
        raise ValueError(f"aliases must be a list for venue {slug}")
    return VenueMapping(
        slug=str(slug),
        external_venue_id=str(details.get("external_venue_id") or ""),
        external_venue_name=_optional_str(details.get("external_venue_name")) or str(slug),
        aliases=[str(alias) for alias in aliases],
    )


def load_venue_mappings(path: Optional[str] = None) -> list[VenueMapping]:
    mapping_path = Path(path) if path else DEFAULT_MAPPING_PATH
    with open(mapping_path, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)

    if not isinstance(raw, dict) or "venues" not in raw:
        raise ValueError(f"{mapping_path.name} must have top-level 'venues'")

    venues = raw.get("venues") or {}
    if not isinstance(venues, dict):
        raise ValueError("'venues' must map venue slugs to details")

    mappings = []
    for slug, details in venues.items():
        if not isinstance(details, dict):
            raise ValueError(f"Invalid mapping for venue {slug}")
        mappings.append(_parse_venue(slug, details))
    _validate_mappings(mappings)
    return mappings


def mapped_venues(mappings: Iterable[VenueMapping]) -> list[VenueMapping]:
    return [mapping for mapping in mappings if mapping.external_venue_id]


def resolve_venue_slug(mappings: Iterable[VenueMapping], value: Optional[str]) -> Optional[str]:
    """Map a venue slug, display name or alias to its canonical slug."""
    key = str(value or "").strip().lower()
    if not key:
        return None
    for mapping in mappings:
        names = {mapping.slug.lower(), mapping.external_venue_name.lower()}
        names.update(alias.lower() for alias in mapping.aliases)
        if key in names:
            return mapping.slug
    return None


def _validate_mappings(mappings: Iterable[VenueMapping]) -> None:
    seen_ids: dict[str, str] = {}
    for mapping in mappings:
        if not mapping.slug:
            raise ValueError("venue slug is required")
        if not mapping.external_venue_id:
            continue
        other = seen_ids.get(mapping.external_venue_id)
        if other:
            raise ValueError(
                f"External venue id {mapping.external_venue_id} mapped twice ({other}, {mapping.slug})"
            )
        seen_ids[mapping.external_venue_id] = mapping.slug
