"""Proximity search: query fan-out, radius expansion, classification, dedup, paging."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from gym_presence.cache import SearchCache
from gym_presence.config import EngineConfig
from gym_presence.errors import LocationUnavailable, SearchFailed
from gym_presence.geo import coord_key, distance_m
from gym_presence.models import CandidateLocation, Coordinate, LocationCategory, new_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A raw point of interest returned by a search provider."""

    name: str | None
    coordinate: Coordinate
    address_components: tuple[str, ...] = field(default=())

    @property
    def address(self) -> str:
        return " ".join(part for part in self.address_components if part)


class ProximitySearchProvider(Protocol):
    """Free-text point-of-interest search around a centre. May raise per call."""

    async def search(self, query: str, center: Coordinate, radius_m: float) -> Sequence[SearchHit]: ...


GENERIC_TERMS: tuple[str, ...] = ("gym", "fitness")

# Query suffix per category, used to widen free-text searches.
CATEGORY_TERMS: dict[LocationCategory, str] = {
    LocationCategory.CROSSFIT: "crossfit",
    LocationCategory.YOGA: "yoga",
    LocationCategory.MARTIAL_ARTS: "martial arts",
}

# Checked in this order; the first match wins.
CLASSIFICATION_RULES: tuple[tuple[LocationCategory, tuple[str, ...]], ...] = (
    (LocationCategory.YOGA, ("yoga", "pilates")),
    (LocationCategory.CROSSFIT, ("crossfit", "cross fit")),
    (
        LocationCategory.MARTIAL_ARTS,
        ("martial", "karate", "jiu", "judo", "taekwondo", "kickbox", "boxing", "mma", "dojo"),
    ),
)

DEFAULT_CATEGORY = LocationCategory.FITNESS
UNKNOWN_NAME = "Unknown Gym"

_WS = re.compile(r"\s+")


def normalize_query(text: str) -> str:
    """Cache key for a query: trimmed, lower-case, single-spaced."""

    return _WS.sub(" ", text.strip()).lower()


def classify(name: str) -> LocationCategory:
    lowered = name.lower()
    for category, keywords in CLASSIFICATION_RULES:
        if any(k in lowered for k in keywords):
            return category
    return DEFAULT_CATEGORY


def build_query_variants(text: str) -> list[str]:
    """Fixed fan-out: canonical terms for an empty query, else text and text+category."""

    raw = _WS.sub(" ", text.strip())
    if not raw:
        variants = [*GENERIC_TERMS, *CATEGORY_TERMS.values()]
    else:
        variants = [raw, *(f"{raw} {term}" for term in CATEGORY_TERMS.values())]
    # keep order, drop repeats (e.g. text == "yoga")
    seen: set[str] = set()
    out: list[str] = []
    for v in variants:
        k = v.lower()
        if k not in seen:
            seen.add(k)
            out.append(v)
    return out


def rank_hits(hits: Sequence[SearchHit], user: Coordinate, precision: int = 4) -> list[CandidateLocation]:
    """Classify, measure, grid-dedup (first occurrence wins) and sort by distance."""

    seen: set[str] = set()
    ranked: list[CandidateLocation] = []
    for hit in hits:
        cell = coord_key(hit.coordinate.latitude, hit.coordinate.longitude, precision)
        if cell in seen:
            continue
        seen.add(cell)
        name = hit.name or UNKNOWN_NAME
        ranked.append(
            CandidateLocation(
                id=new_id(),
                name=name,
                coordinate=hit.coordinate,
                address=hit.address,
                distance_m=distance_m(user, hit.coordinate),
                category=classify(name),
            )
        )
    ranked.sort(key=lambda c: c.distance_m)
    return ranked


def paginate(results: Sequence[CandidateLocation], page: int, page_size: int) -> list[CandidateLocation]:
    """1-based page slice. Past the end yields an empty list."""

    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    start = (page - 1) * page_size
    return list(results[start : start + page_size])


class ProximitySearchEngine:
    """Ranked, cached, paged nearby-gym search."""

    def __init__(
        self,
        provider: ProximitySearchProvider,
        cache: SearchCache[CandidateLocation],
        config: EngineConfig | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._config = config or EngineConfig()

    async def search(self, near: Coordinate | None, text: str = "", page: int = 1) -> list[CandidateLocation]:
        """Return one page of candidates near ``near`` matching ``text``.

        Raises:
            LocationUnavailable: ``near`` is None.
            SearchFailed: Every provider call failed.
            ValueError: ``page`` < 1.
        """

        if near is None:
            raise LocationUnavailable()
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")

        key = normalize_query(text)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %r (%d results)", key, len(cached))
            return paginate(cached, page, self._config.page_size)

        ranked = await self._fetch_ranked(near, text)
        self._cache.put(key, ranked)
        return paginate(ranked, page, self._config.page_size)

    async def _fetch_ranked(self, near: Coordinate, text: str) -> list[CandidateLocation]:
        cfg = self._config
        variants = build_query_variants(text)

        hits, ok = await self._run_pass(variants, near, cfg.initial_search_radius_m)
        ranked = rank_hits(hits, near, cfg.dedup_precision)
        if len(ranked) < cfg.min_results_before_expand:
            logger.info(
                "Only %d result(s) within %.0fm, expanding to %.0fm",
                len(ranked),
                cfg.initial_search_radius_m,
                cfg.full_search_radius_m,
            )
            wide_hits, wide_ok = await self._run_pass(variants, near, cfg.full_search_radius_m)
            hits.extend(wide_hits)
            ok += wide_ok
            ranked = rank_hits(hits, near, cfg.dedup_precision)

        if ok == 0:
            raise SearchFailed(f"All {len(variants)} query variant(s) failed for {text!r}")
        logger.info("Search %r near %s: %d unique result(s)", text, near, len(ranked))
        return ranked

    async def _run_pass(self, variants: list[str], near: Coordinate, radius_m: float) -> tuple[list[SearchHit], int]:
        """Run every variant concurrently. Returns (merged hits, successful call count)."""

        results = await asyncio.gather(
            *(self._provider.search(q, near, radius_m) for q in variants),
            return_exceptions=True,
        )
        merged: list[SearchHit] = []
        ok = 0
        for query, res in zip(variants, results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                logger.warning("Query variant %r failed: %s", query, res)
                continue
            ok += 1
            merged.extend(res)
        return merged, ok
