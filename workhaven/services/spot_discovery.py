"""
Spot Discovery Service
Finds work-friendly spots around a point and reconciles them with the store.

A run moves through fixed phases:

    IDLE → LOADING_EXISTING → SEARCHING → CLASSIFYING → ENRICHING → MERGING → DONE
              ↘──────────────────────── FAILED ─────────────────────────↗

Search results are classified against the spots already stored in range
(new / stale / fresh duplicate). Only new and stale candidates are enriched,
then merged back: stale spots are updated in place, new ones inserted, and
duplicates inside the run dropped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from pydantic import ValidationError

from workhaven.enrichment.grok_client import GrokEnrichmentClient
from workhaven.models.spots import (
    Candidate,
    Coordinate,
    EnrichmentResult,
    PlaceRecord,
    utcnow,
)
from workhaven.services.places_search import SEARCH_CATEGORIES, PlacesSearchAdapter, SearchFailed
from workhaven.services.region_lock import RegionLock
from workhaven.services.spot_store import PROXIMITY_METERS, SaveResult, SpotStore
from workhaven.utils.geo import haversine_meters
from workhaven.utils.scoring import needs_refresh

logger = logging.getLogger(__name__)

# 20 miles
DEFAULT_RADIUS_METERS = 32186.88

# Pause between category searches to stay under provider rate limits
CATEGORY_DELAY_SECONDS = 0.1

ProgressCallback = Callable[[str], None]


class DiscoveryState(str, Enum):
    IDLE = "IDLE"
    LOADING_EXISTING = "LOADING_EXISTING"
    SEARCHING = "SEARCHING"
    CLASSIFYING = "CLASSIFYING"
    ENRICHING = "ENRICHING"
    MERGING = "MERGING"
    DONE = "DONE"
    FAILED = "FAILED"


_STATE_ORDER = [
    DiscoveryState.IDLE,
    DiscoveryState.LOADING_EXISTING,
    DiscoveryState.SEARCHING,
    DiscoveryState.CLASSIFYING,
    DiscoveryState.ENRICHING,
    DiscoveryState.MERGING,
    DiscoveryState.DONE,
]


class CandidateClass(str, Enum):
    NEW = "new"
    STALE = "stale"
    FRESH_DUPLICATE = "fresh_duplicate"


class DiscoveryFailed(Exception):
    """A discovery run aborted; ``progress`` is the last status it reported."""

    def __init__(self, cause: BaseException, progress: str = ""):
        super().__init__(f"Discovery failed: {cause}")
        self.cause = cause
        self.progress = progress


@dataclass
class DiscoveryResult:
    spots: List[PlaceRecord]
    inserted: List[PlaceRecord] = field(default_factory=list)
    updated: List[PlaceRecord] = field(default_factory=list)
    message: str = ""
    state: DiscoveryState = DiscoveryState.DONE
    search_failures: List[str] = field(default_factory=list)


class DiscoveryRun:
    """State owned by a single ``discover`` call, never shared between calls."""

    def __init__(self, on_progress: Optional[ProgressCallback] = None):
        self.state = DiscoveryState.IDLE
        self.progress = ""
        self.events: List[Tuple[DiscoveryState, str]] = []
        self.existing_spots_cache: List[PlaceRecord] = []
        self.seen_keys: Set[Tuple[str, str]] = set()
        self.search_failures: List[str] = []
        self._on_progress = on_progress

    def transition(self, state: DiscoveryState, message: str) -> None:
        if state != DiscoveryState.FAILED:
            if self.state == DiscoveryState.FAILED or (
                _STATE_ORDER.index(state) < _STATE_ORDER.index(self.state)
            ):
                raise RuntimeError(f"Illegal discovery transition {self.state.value} -> {state.value}")
        self.state = state
        self.report(message)

    def report(self, message: str) -> None:
        self.progress = message
        self.events.append((self.state, message))
        logger.info(f"[Discovery] {self.state.value}: {message}")
        if self._on_progress:
            self._on_progress(message)


def find_match(candidate: Candidate, records: Sequence[PlaceRecord]) -> Optional[PlaceRecord]:
    """First record with the same composite key or closer than ``PROXIMITY_METERS``."""
    key = candidate.composite_key
    for record in records:
        if record.composite_key == key:
            return record
        distance = haversine_meters(
            record.latitude, record.longitude, candidate.latitude, candidate.longitude
        )
        if distance < PROXIMITY_METERS:
            return record
    return None


def classify(
    candidate: Candidate, records: Sequence[PlaceRecord], now: datetime
) -> Tuple[CandidateClass, Optional[PlaceRecord]]:
    match = find_match(candidate, records)
    if match is None:
        return CandidateClass.NEW, None
    if match.is_stale(now):
        return CandidateClass.STALE, match
    return CandidateClass.FRESH_DUPLICATE, match


class SpotDiscoveryService:
    """Fetch → diff → enrich → reconcile pipeline for work spots."""

    def __init__(
        self,
        store: SpotStore,
        search_adapter: PlacesSearchAdapter,
        enrichment_client: Optional[GrokEnrichmentClient] = None,
        region_lock: Optional[RegionLock] = None,
        category_delay: float = CATEGORY_DELAY_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.search_adapter = search_adapter
        self.enrichment_client = enrichment_client
        self.region_lock = region_lock or RegionLock()
        self.category_delay = category_delay
        self.clock = clock

    async def discover(
        self,
        center: Coordinate,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[PlaceRecord]:
        """Discover spots around ``center`` and return every stored spot in range."""
        result = await self.discover_spots(center, radius_meters, on_progress)
        return result.spots

    async def discover_spots(
        self,
        center: Coordinate,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryResult:
        """
        Run one discovery pass.

        Args:
            center: Center of the discovery region
            radius_meters: Radius of the region, must be positive
            on_progress: Called with a human-readable status on every step

        Returns:
            DiscoveryResult with the in-range spots and what changed

        Raises:
            ValueError: If ``radius_meters`` is not positive
            DiscoveryFailed: If the spot store could not be read or written
        """
        if radius_meters <= 0:
            raise ValueError(f"radius_meters must be positive, got {radius_meters}")

        run = DiscoveryRun(on_progress)
        logger.info(
            f"Starting spot discovery near {center.latitude}, {center.longitude} "
            f"with radius {radius_meters}m"
        )
        async with self.region_lock.hold(center, radius_meters):
            try:
                return await self._run(run, center, radius_meters)
            except DiscoveryFailed as exc:
                run.transition(DiscoveryState.FAILED, "Discovery failed")
                logger.error(f"Spot discovery failed: {exc.cause}")
                raise
            except asyncio.CancelledError:
                run.transition(DiscoveryState.FAILED, "Discovery cancelled")
                raise
            except Exception:
                run.transition(DiscoveryState.FAILED, "Discovery failed")
                logger.exception("Spot discovery failed unexpectedly")
                raise

    async def load_or_discover(
        self,
        center: Coordinate,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryResult:
        """Return stored spots when they are all fresh, otherwise run discovery first."""
        if radius_meters <= 0:
            raise ValueError(f"radius_meters must be positive, got {radius_meters}")
        try:
            existing = await self.store.fetch_within_radius(
                center.latitude, center.longitude, radius_meters
            )
        except Exception as exc:
            raise DiscoveryFailed(exc, "Checking existing spots...") from exc

        if needs_refresh(existing, self.clock()):
            logger.info("Spots need refresh or none found, discovering")
            return await self.discover_spots(center, radius_meters, on_progress)

        logger.info(f"Using existing spots ({len(existing)} found)")
        return DiscoveryResult(spots=existing, message="Using existing spots")

    async def _run(self, run: DiscoveryRun, center: Coordinate, radius_meters: float) -> DiscoveryResult:
        now = self.clock()

        run.transition(DiscoveryState.LOADING_EXISTING, "Checking existing spots...")
        try:
            run.existing_spots_cache = await self.store.fetch_within_radius(
                center.latitude, center.longitude, radius_meters
            )
        except Exception as exc:
            raise DiscoveryFailed(exc, run.progress) from exc
        logger.info(f"Found {len(run.existing_spots_cache)} existing spots within radius")

        run.transition(DiscoveryState.SEARCHING, "Searching for spots...")
        discovered = await self._search_all(run, center, radius_meters)

        run.transition(DiscoveryState.CLASSIFYING, "Checking for new and stale spots...")
        queued = self._classify_all(run, discovered, now)
        if not queued:
            run.transition(DiscoveryState.DONE, "No new spots added")
            return DiscoveryResult(
                spots=list(run.existing_spots_cache),
                message=run.progress,
                search_failures=run.search_failures,
            )

        run.transition(DiscoveryState.ENRICHING, "Enriching locations with AI...")
        enrichments = await self._enrich(run, queued)

        run.transition(DiscoveryState.MERGING, "Saving spots...")
        inserts, updates = self._merge(run, queued, enrichments, now)
        try:
            outcome: SaveResult = await self.store.save(inserts=inserts, updates=updates)
        except Exception as exc:
            raise DiscoveryFailed(exc, run.progress) from exc

        spots = list(run.existing_spots_cache) + outcome.inserted
        run.transition(DiscoveryState.DONE, "Discovery complete")
        logger.info(
            f"Total spots after discovery: {len(spots)} (existing: {len(run.existing_spots_cache)}, "
            f"new: {len(outcome.inserted)}, updated: {len(outcome.updated)})"
        )
        return DiscoveryResult(
            spots=spots,
            inserted=outcome.inserted,
            updated=outcome.updated,
            message=run.progress,
            search_failures=run.search_failures,
        )

    async def _search_all(
        self, run: DiscoveryRun, center: Coordinate, radius_meters: float
    ) -> List[Candidate]:
        discovered: List[Candidate] = []
        total = len(SEARCH_CATEGORIES)
        for index, category in enumerate(SEARCH_CATEGORIES):
            if index > 0 and self.category_delay > 0:
                await asyncio.sleep(self.category_delay)
            run.report(f"Searching {category}s... ({index + 1}/{total})")
            try:
                found = await self.search_adapter.search(category, center, radius_meters)
            except SearchFailed as exc:
                logger.warning(f"Skipping {category}: {exc}")
                run.search_failures.append(str(exc))
                continue
            discovered.extend(found)
        return discovered

    def _classify_all(
        self, run: DiscoveryRun, discovered: Sequence[Candidate], now: datetime
    ) -> List[Candidate]:
        queued: List[Candidate] = []
        counts: Dict[CandidateClass, int] = {kind: 0 for kind in CandidateClass}
        for candidate in discovered:
            kind, match = classify(candidate, run.existing_spots_cache, now)
            counts[kind] += 1
            if kind == CandidateClass.FRESH_DUPLICATE:
                logger.debug(f"Found fresh spot: {candidate.name} - skipping")
                continue
            if kind == CandidateClass.STALE:
                logger.info(f"Found stale spot: {candidate.name} - will update")
            queued.append(candidate)
        logger.info(
            f"Found {len(queued)} spots to process (new: {counts[CandidateClass.NEW]}, "
            f"stale: {counts[CandidateClass.STALE]}, fresh: {counts[CandidateClass.FRESH_DUPLICATE]})"
        )
        return queued

    async def _enrich(self, run: DiscoveryRun, queued: Sequence[Candidate]) -> List[EnrichmentResult]:
        client = self.enrichment_client
        if client is None or not client.is_configured:
            logger.warning("Enrichment API key not configured, using default enrichment")
            return [EnrichmentResult.default() for _ in queued]
        return await client.enrich_all(queued, on_progress=run.report)

    def _merge(
        self,
        run: DiscoveryRun,
        queued: Sequence[Candidate],
        enrichments: Sequence[EnrichmentResult],
        now: datetime,
    ) -> Tuple[List[PlaceRecord], List[PlaceRecord]]:
        """Split enriched candidates into inserts and in-place updates of stale spots."""
        inserts: List[PlaceRecord] = []
        updates: List[PlaceRecord] = []

        for candidate, enrichment in zip(queued, enrichments):
            key = candidate.composite_key
            if key in run.seen_keys:
                logger.info(f"Skipping exact duplicate in batch: {candidate.name} at {candidate.address}")
                continue

            match = find_match(candidate, run.existing_spots_cache)
            if match is not None:
                # An updated spot is fresh again, so a repeat match falls through to the skip
                run.seen_keys.add(key)
                if match.is_stale(now):
                    logger.info(f"Updating stale spot: {match.name} at {match.address}")
                    match.apply_enrichment(enrichment, now)
                    updates.append(match)
                else:
                    logger.info(f"Skipping fresh spot: {candidate.name} at {candidate.address}")
                continue

            duplicate = next(
                (
                    record
                    for record in inserts
                    if haversine_meters(
                        record.latitude, record.longitude, candidate.latitude, candidate.longitude
                    ) < PROXIMITY_METERS
                ),
                None,
            )
            if duplicate is not None:
                logger.info(
                    f"Skipping proximity duplicate: {candidate.name} at {candidate.address} "
                    f"(near {duplicate.name})"
                )
                continue

            try:
                record = PlaceRecord.from_candidate(candidate, enrichment, now)
            except ValidationError as exc:
                logger.warning(f"Dropping invalid candidate {candidate.name!r}: {exc}")
                continue

            run.seen_keys.add(key)
            inserts.append(record)

        logger.info(f"Merged {len(queued)} candidates into {len(inserts)} new and {len(updates)} updated spots")
        return inserts, updates
