from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum spacing between outbound requests.

    The clock and sleep functions are injectable so tests can drive the
    limiter without real delays.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None

    def wait(self) -> float:
        waited = 0.0
        now = self._clock()
        if self._last_request is not None:
            elapsed = now - self._last_request
            if elapsed < self.min_interval_seconds:
                waited = self.min_interval_seconds - elapsed
                self._sleep(waited)
                now = self._clock()
        self._last_request = now
        return waited

    def pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def reset(self) -> None:
        self._last_request = None


def get_json(
    url: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = 10.0,
    retries: int = 3,
    backoff: float = 0.5,
    limiter: Optional[RateLimiter] = None,
) -> tuple[Optional[dict], Optional[int]]:
    for attempt in range(retries):
        if limiter is not None:
            limiter.wait()
        try:
            resp = requests.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            if attempt < retries - 1:
                time.sleep(backoff * (2 ** attempt))
                continue
            logger.warning("GET failed url=%s error=%s", url, exc)
            return None, None
        if (resp.status_code >= 500 or resp.status_code == 429) and attempt < retries - 1:
            time.sleep(backoff * (2 ** attempt))
            continue
        if resp.status_code != 200:
            return None, resp.status_code
        try:
            return resp.json(), resp.status_code
        except ValueError:
            return None, resp.status_code
    return None, None


def post_json(
    url: str,
    payload: dict,
    headers: Optional[dict] = None,
    timeout: float = 10.0,
) -> tuple[Optional[dict], Optional[int]]:
    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("POST failed url=%s error=%s", url, exc)
        return None, None
    if resp.status_code < 200 or resp.status_code >= 300:
        return None, resp.status_code
    try:
        return resp.json(), resp.status_code
    except ValueError:
        return None, resp.status_code
