"""OpenStreetMap Nominatim adapter for proximity search.

This module intentionally uses only the Python standard library.

Important:
    - Public Nominatim is rate-limited. Respect the usage policy: keep a request
      interval of at least 1s and set a descriptive User-Agent.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from gym_presence.geo import bounding_box
from gym_presence.models import Coordinate
from gym_presence.search import SearchHit

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NominatimConfig:
    """Configuration for the Nominatim search API."""

    base_url: str = "https://nominatim.openstreetmap.org/search"
    accept_language: str = "en"
    limit: int = 40
    timeout_seconds: float = 20.0
    min_interval_seconds: float = 1.0
    user_agent: str = "gym-presence/0.1.0 (nearby-search; please set your own UA)"


def nominatim_search_raw(query: str, center: Coordinate, radius_m: float, cfg: NominatimConfig) -> list[dict[str, Any]]:
    """Call Nominatim /search bounded to a box around ``center``.

    Raises:
        OSError: Network failure (urllib.error.URLError is a subclass).
        ValueError: Response body is not a JSON array.
    """

    min_lon, min_lat, max_lon, max_lat = bounding_box(center, radius_m)
    params = {
        "q": query,
        "format": "jsonv2",
        "addressdetails": "1",
        "limit": str(cfg.limit),
        "bounded": "1",
        # left,top,right,bottom
        "viewbox": f"{min_lon:.6f},{max_lat:.6f},{max_lon:.6f},{min_lat:.6f}",
        "accept-language": cfg.accept_language,
    }
    url = f"{cfg.base_url}?{urllib.parse.urlencode(params)}"
    req = urllib.request.Request(
        url,
        headers={
            "User-Agent": cfg.user_agent,
            "Accept": "application/json",
        },
        method="GET",
    )
    with urllib.request.urlopen(req, timeout=cfg.timeout_seconds) as resp:  # noqa: S310
        body = resp.read().decode("utf-8", errors="replace")
    raw = json.loads(body)
    if not isinstance(raw, list):
        raise ValueError(f"Unexpected Nominatim response type: {type(raw).__name__}")
    return raw


def hit_from_raw(item: dict[str, Any]) -> SearchHit | None:
    """Map one Nominatim result to a SearchHit. Returns None if it has no position."""

    try:
        coord = Coordinate(float(item["lat"]), float(item["lon"]))
    except (KeyError, TypeError, ValueError):
        return None
    addr = item.get("address") or {}
    name = item.get("name") or None
    if not name:
        display = str(item.get("display_name", "") or "")
        name = display.split(",", 1)[0].strip() or None
    locality = addr.get("city") or addr.get("town") or addr.get("village") or addr.get("suburb")
    components = tuple(
        str(part)
        for part in (addr.get("house_number"), addr.get("road"), locality, addr.get("state"))
        if part
    )
    return SearchHit(name=name, coordinate=coord, address_components=components)


class NominatimSearchProvider:
    """ProximitySearchProvider backed by Nominatim, throttled across calls."""

    def __init__(self, config: NominatimConfig | None = None) -> None:
        self._cfg = config or NominatimConfig()
        self._last_request_at = 0.0
        self._throttle = threading.Lock()

    async def search(self, query: str, center: Coordinate, radius_m: float) -> list[SearchHit]:
        return await asyncio.to_thread(self._search_blocking, query, center, radius_m)

    def _search_blocking(self, query: str, center: Coordinate, radius_m: float) -> list[SearchHit]:
        self._sleep_if_needed()
        raw = nominatim_search_raw(query, center, radius_m, self._cfg)
        hits = [h for h in (hit_from_raw(item) for item in raw) if h is not None]
        logger.debug("Nominatim %r r=%.0fm -> %d hit(s)", query, radius_m, len(hits))
        return hits

    def _sleep_if_needed(self) -> None:
        with self._throttle:
            now = time.time()
            wait = self._cfg.min_interval_seconds - (now - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
            self._last_request_at = time.time()
