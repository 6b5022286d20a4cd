"""
Google Places nearby search for work-spot categories.

Uses the Places API (New) text search restricted to a rectangle around the
center, one request per category, no caching.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from workhaven.config import settings
from workhaven.models.spots import Candidate, Coordinate, SpotCategory
from workhaven.utils.geo import bounding_box

logger = logging.getLogger(__name__)

# Upper bound on results kept per category search
MAX_RESULTS_PER_CATEGORY = 15
# Fewer results than this is logged but not widened or retried
MIN_RESULTS_PER_CATEGORY = 10

# Natural-language query -> stored category tag, in search order
SEARCH_CATEGORIES: Dict[str, SpotCategory] = {
    "coffee shop": SpotCategory.COFFEE,
    "library": SpotCategory.LIBRARY,
    "park": SpotCategory.PARK,
    "co-working space": SpotCategory.COWORKING,
}

FIELD_MASK = "places.displayName,places.formattedAddress,places.location"


class SearchFailed(Exception):
    """A category search failed at the provider or network level."""

    def __init__(self, category: str, cause: BaseException):
        super().__init__(f"Search failed for {category}: {cause}")
        self.category = category
        self.cause = cause


class PlacesSearchAdapter:
    """Search the places provider for one category around a point."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.google_places_api_key
        self.base_url = base_url or settings.places_search_url
        self.timeout = timeout if timeout is not None else settings.places_timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key or "",
            "X-Goog-FieldMask": FIELD_MASK,
        }

    def _build_body(self, category: str, center: Coordinate, radius_meters: float) -> Dict[str, Any]:
        bbox = bounding_box(center.latitude, center.longitude, radius_meters)
        return {
            "textQuery": category,
            "maxResultCount": MAX_RESULTS_PER_CATEGORY,
            "locationRestriction": {
                "rectangle": {
                    "low": {"latitude": bbox.min_lat, "longitude": bbox.min_lon},
                    "high": {"latitude": bbox.max_lat, "longitude": bbox.max_lon},
                }
            },
        }

    async def search(self, category: str, center: Coordinate, radius_meters: float) -> List[Candidate]:
        """
        Search one category around ``center``.

        Args:
            category: One of ``SEARCH_CATEGORIES``
            center: Center of the search region
            radius_meters: Half-width of the search rectangle, must be positive

        Returns:
            Up to ``MAX_RESULTS_PER_CATEGORY`` candidates in provider order

        Raises:
            ValueError: On an unknown category or non-positive radius
            SearchFailed: On any provider, network or payload error
        """
        if radius_meters <= 0:
            raise ValueError(f"radius_meters must be positive, got {radius_meters}")
        if category not in SEARCH_CATEGORIES:
            raise ValueError(f"Unsupported search category: {category!r}")

        if not self.api_key:
            logger.warning("Google Places API key not configured")
            return []

        body = self._build_body(category, center, radius_meters)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=body, headers=self._headers())
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                f"Places search error for {category}: {exc.response.status_code} - {exc.response.text}"
            )
            raise SearchFailed(category, exc) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Places search failed for {category}: {exc}")
            raise SearchFailed(category, exc) from exc

        if not isinstance(data, dict):
            raise SearchFailed(category, ValueError("Unexpected places payload"))

        results = self._parse_places(data.get("places") or [], SEARCH_CATEGORIES[category])
        results = results[:MAX_RESULTS_PER_CATEGORY]
        if len(results) < MIN_RESULTS_PER_CATEGORY:
            logger.info(f"Only {len(results)} {category} results (below {MIN_RESULTS_PER_CATEGORY})")
        else:
            logger.info(f"Found {len(results)} {category} results")
        return results

    def _parse_places(self, raw_places: List[Any], tag: SpotCategory) -> List[Candidate]:
        candidates: List[Candidate] = []
        for place in raw_places:
            if not isinstance(place, dict):
                continue
            display_name = place.get("displayName") or {}
            name = display_name.get("text", "") if isinstance(display_name, dict) else display_name
            address = place.get("formattedAddress") or ""
            location = place.get("location") or {}
            if not isinstance(name, str) or not isinstance(address, str) or not isinstance(location, dict):
                logger.debug(f"Skipping malformed place: {place}")
                continue
            try:
                candidate = Candidate(
                    name=name.strip(),
                    address=address.strip(),
                    latitude=float(location.get("latitude", 0.0)),
                    longitude=float(location.get("longitude", 0.0)),
                    category=tag,
                )
            except (TypeError, ValueError):
                logger.debug(f"Skipping unparseable place: {place}")
                continue
            if not candidate.is_valid:
                logger.debug(f"Skipping incomplete place: {place}")
                continue
            candidates.append(candidate)
        return candidates
