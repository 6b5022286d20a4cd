from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workhaven.database import init_db
from workhaven.models.spots import (
    Candidate,
    EnrichmentResult,
    PlaceRecord,
    SpotCategory,
    UserRating,
)
from workhaven.services.places_search import SearchFailed
from workhaven.services.spot_store import PROXIMITY_METERS, SaveResult, SpotNotFound, SpotStore, SqlSpotStore
from workhaven.utils.geo import BoundingBox, composite_key, haversine_meters

# Fixed "now" so staleness checks are deterministic
NOW = datetime(2025, 6, 1, 12, 0, 0)

SF_LAT, SF_LON = 37.7749, -122.4194


def make_candidate(
    name: str = "Blue Bottle Coffee",
    address: str = "66 Mint St, San Francisco, CA",
    latitude: float = 37.7825,
    longitude: float = -122.4071,
    category: SpotCategory = SpotCategory.COFFEE,
) -> Candidate:
    return Candidate(name=name, address=address, latitude=latitude, longitude=longitude, category=category)


def make_record(
    name: str = "Blue Bottle Coffee",
    address: str = "66 Mint St, San Francisco, CA",
    latitude: float = 37.7825,
    longitude: float = -122.4071,
    last_seeded: Optional[datetime] = NOW,
    **kwargs,
) -> PlaceRecord:
    return PlaceRecord(
        name=name,
        address=address,
        latitude=latitude,
        longitude=longitude,
        category=kwargs.pop("category", SpotCategory.COFFEE),
        last_seeded=last_seeded,
        last_modified=kwargs.pop("last_modified", last_seeded or NOW),
        **kwargs,
    )


def days_ago(days: int) -> datetime:
    return NOW - timedelta(days=days)


class InMemorySpotStore(SpotStore):
    """Dict-backed store with switches for failure injection."""

    def __init__(self, records: Iterable[PlaceRecord] = ()):
        self.records: Dict[str, PlaceRecord] = {r.id: r.model_copy() for r in records}
        self.ratings: List[UserRating] = []
        self.saves: List[tuple] = []
        self.fail_fetch = False
        self.fail_save = False

    async def fetch_in_bbox(self, bbox: BoundingBox) -> List[PlaceRecord]:
        if self.fail_fetch:
            raise RuntimeError("store offline")
        return [r.model_copy() for r in self.records.values() if bbox.contains(r.latitude, r.longitude)]

    async def fetch_by_composite_key(self, name: str, address: str) -> Optional[PlaceRecord]:
        key = composite_key(name, address)
        for record in self.records.values():
            if record.composite_key == key:
                return record.model_copy()
        return None

    async def get(self, spot_id: str) -> Optional[PlaceRecord]:
        record = self.records.get(spot_id)
        return record.model_copy() if record else None

    async def save(self, inserts: Sequence[PlaceRecord] = (), updates: Sequence[PlaceRecord] = ()) -> SaveResult:
        if self.fail_save:
            raise RuntimeError("disk full")
        self.saves.append((list(inserts), list(updates)))
        outcome = SaveResult()
        for record in updates:
            if record.id not in self.records:
                outcome.skipped.append(record)
                continue
            self.records[record.id] = record.model_copy()
            outcome.updated.append(record)
        for record in inserts:
            conflict = any(
                existing.composite_key == record.composite_key
                or haversine_meters(existing.latitude, existing.longitude, record.latitude, record.longitude)
                < PROXIMITY_METERS
                for existing in self.records.values()
            )
            if conflict:
                outcome.skipped.append(record)
                continue
            self.records[record.id] = record.model_copy()
            outcome.inserted.append(record)
        return outcome

    async def delete(self, spot_ids: Iterable[str]) -> int:
        ids = set(spot_ids)
        removed = [spot_id for spot_id in ids if self.records.pop(spot_id, None) is not None]
        self.ratings = [r for r in self.ratings if r.spot_id not in ids]
        return len(removed)

    async def delete_all(self) -> int:
        count = len(self.records)
        self.records.clear()
        self.ratings.clear()
        return count

    async def add_rating(self, rating: UserRating) -> UserRating:
        if rating.spot_id not in self.records:
            raise SpotNotFound(rating.spot_id)
        stored = rating.model_copy(update={"created_at": rating.created_at or NOW})
        self.ratings.append(stored)
        return stored

    async def ratings_for(self, spot_ids: Iterable[str]) -> Dict[str, List[UserRating]]:
        grouped: Dict[str, List[UserRating]] = {spot_id: [] for spot_id in spot_ids}
        for rating in self.ratings:
            if rating.spot_id in grouped:
                grouped[rating.spot_id].append(rating)
        return grouped


class FakeSearchAdapter:
    """Returns canned candidates per category; categories in ``failing`` raise SearchFailed."""

    def __init__(self, results: Optional[Dict[str, List[Candidate]]] = None, failing: Iterable[str] = ()):
        self.results = results or {}
        self.failing = set(failing)
        self.calls: List[str] = []

    async def search(self, category, center, radius_meters):
        self.calls.append(category)
        if category in self.failing:
            raise SearchFailed(category, RuntimeError("HTTP 503"))
        return [c.model_copy() for c in self.results.get(category, [])]


class FakeEnrichmentClient:
    """Records every candidate it is asked to enrich."""

    def __init__(self, results: Optional[Dict[str, EnrichmentResult]] = None, configured: bool = True):
        self.results = results or {}
        self.configured = configured
        self.calls: List[List[Candidate]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def enrich_all(self, candidates, on_progress=None):
        self.calls.append(list(candidates))
        if on_progress:
            on_progress("Enriching batch 1/1...")
        return [
            self.results.get(c.name, EnrichmentResult(wifi=4, noise="Low", plugs=True, tip="Enriched"))
            for c in candidates
        ]

    @property
    def enriched_names(self) -> List[str]:
        return [c.name for batch in self.calls for c in batch]


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'spots.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def sql_store(session_factory):
    return SqlSpotStore(session_factory)


@pytest.fixture
def memory_store():
    return InMemorySpotStore()
