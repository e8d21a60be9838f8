import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from eventrecon.config import Config
from eventrecon.http_client import post_json
from eventrecon.models import ArbitrationResult

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


@dataclass
class OracleCandidate:
    name: str
    time: Optional[str] = None


NO_MATCH = ArbitrationResult(match_index=None, prefer_external_title=False)


class ArbitrationOracle:
    """Asks a chat-completions model which catalog listing, if any, is our event."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.calls = 0

    @property
    def enabled(self) -> bool:
        return self.config.oracle_enabled

    def arbitrate(
        self,
        title: str,
        venue_name: str,
        event_time: str,
        candidates: Sequence[OracleCandidate],
    ) -> ArbitrationResult:
        if not candidates:
            return NO_MATCH
        if not self.enabled:
            logger.warning("ORACLE_API_KEY not set; treating as no match title=%s", title)
            return NO_MATCH

        self.calls += 1
        payload = {
            "model": self.config.oracle_model,
            "messages": [{"role": "user", "content": build_prompt(title, venue_name, event_time, candidates)}],
            "temperature": 0,
            "max_tokens": 400,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.oracle_api_key}",
        }
        data, status = post_json(
            self.config.oracle_url,
            payload,
            headers=headers,
            timeout=self.config.oracle_timeout_seconds,
        )
        if data is None:
            logger.warning("Oracle request failed status=%s title=%s", status, title)
            return NO_MATCH

        content = _message_content(data)
        if content is None:
            logger.warning("Oracle response missing message content title=%s", title)
            return NO_MATCH
        return parse_response(content, len(candidates))


def build_prompt(
    title: str,
    venue_name: str,
    event_time: str,
    candidates: Sequence[OracleCandidate],
) -> str:
    lines: List[str] = []
    for idx, candidate in enumerate(candidates, start=1):
        suffix = f" ({candidate.time})" if candidate.time else ""
        lines.append(f'  {idx}. "{candidate.name}"{suffix}')
    candidate_list = "\n".join(lines)
    return f"""We have an event from a venue website and need to match it to the correct ticketing listing.

The titles may look different due to:
- Abbreviations (Texas MBB vs UT MBB vs Texas Longhorns Mens Basketball)
- Home/away formatting (team name only vs "Team A vs Team B")
- Tour names (artist vs "Artist - Tour Name 2025")
- Supporting acts included or not

Red flags: different gender (men's vs women's), completely different performers.

Our event: "{title}"
Venue: {venue_name}
Time: {event_time}

Ticketing candidates (same venue & date):
{candidate_list}

Think step by step:
1. Is our event the same performer/team as any candidate? (Consider abbreviations)
2. If yes, which one? If the listing title adds info (opponent, tour), prefer it.

JSON response:
{{"reason": "brief explanation of match logic", "match": <1-{len(candidates)}> or null, "preferExternalTitle": true/false}}"""


def parse_response(content: str, candidate_count: int) -> ArbitrationResult:
    text = strip_code_fence(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Oracle response not JSON: %s", text[:200])
        return NO_MATCH
    if not isinstance(parsed, dict):
        logger.warning("Oracle response not an object: %s", text[:200])
        return NO_MATCH

    reason = parsed.get("reason")
    reason = str(reason) if reason else None
    match = parsed.get("match")
    # bool is an int subclass; "true" is not an index.
    if isinstance(match, bool) or not isinstance(match, int) or not 1 <= match <= candidate_count:
        if match is not None:
            logger.warning("Oracle returned invalid candidate index %r (candidates=%d)", match, candidate_count)
        return ArbitrationResult(match_index=None, prefer_external_title=False, reason=reason)

    prefer = parsed.get("preferExternalTitle", parsed.get("preferTMTitle", False))
    return ArbitrationResult(match_index=match - 1, prefer_external_title=bool(prefer), reason=reason)


def strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def _message_content(data: dict) -> Optional[str]:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        return None
    return content
