"""
Persistent store for work spots and their user ratings.

`SpotStore` is the contract the discovery pipeline and the routers depend on;
`SqlSpotStore` implements it on top of the async SQLAlchemy session factory.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workhaven.database import AsyncSessionLocal
from workhaven.models.spots import PlaceRecord, SpotCategory, UserRating, utcnow
from workhaven.models.tables import SpotRow, UserRatingRow
from workhaven.utils.geo import BoundingBox, bounding_box, composite_key, haversine_meters

logger = logging.getLogger(__name__)

# Two records closer than this are the same physical place.
PROXIMITY_METERS = 100.0


class SpotNotFound(LookupError):
    """Raised when a rating targets a spot that does not exist."""

    def __init__(self, spot_id: str):
        super().__init__(f"Spot {spot_id} not found")
        self.spot_id = spot_id


@dataclass
class SaveResult:
    """What a save actually persisted."""

    inserted: List[PlaceRecord] = field(default_factory=list)
    updated: List[PlaceRecord] = field(default_factory=list)
    skipped: List[PlaceRecord] = field(default_factory=list)


class SpotStore(ABC):
    """Queryable record store for spots."""

    @abstractmethod
    async def fetch_in_bbox(self, bbox: BoundingBox) -> List[PlaceRecord]:
        ...

    @abstractmethod
    async def fetch_by_composite_key(self, name: str, address: str) -> Optional[PlaceRecord]:
        ...

    @abstractmethod
    async def get(self, spot_id: str) -> Optional[PlaceRecord]:
        ...

    @abstractmethod
    async def save(
        self,
        inserts: Sequence[PlaceRecord] = (),
        updates: Sequence[PlaceRecord] = (),
    ) -> SaveResult:
        """Persist updates and inserts as one logical save."""

    @abstractmethod
    async def delete(self, spot_ids: Iterable[str]) -> int:
        ...

    @abstractmethod
    async def delete_all(self) -> int:
        ...

    @abstractmethod
    async def add_rating(self, rating: UserRating) -> UserRating:
        ...

    @abstractmethod
    async def ratings_for(self, spot_ids: Iterable[str]) -> Dict[str, List[UserRating]]:
        ...

    async def fetch_within_radius(
        self, latitude: float, longitude: float, radius_meters: float
    ) -> List[PlaceRecord]:
        """Bounding-box fetch narrowed to true great-circle distance."""
        candidates = await self.fetch_in_bbox(bounding_box(latitude, longitude, radius_meters))
        return [
            record
            for record in candidates
            if record.distance_to(latitude, longitude) <= radius_meters
        ]


def _row_to_record(row: SpotRow) -> PlaceRecord:
    try:
        category = SpotCategory(row.category)
    except ValueError:
        category = SpotCategory.UNKNOWN
    return PlaceRecord(
        id=row.id,
        name=row.name,
        address=row.address,
        latitude=row.latitude,
        longitude=row.longitude,
        category=category,
        wifi_rating=row.wifi_rating,
        noise_rating=row.noise_rating,
        outlets=row.outlets,
        tips=row.tips,
        last_modified=row.last_modified,
        last_seeded=row.last_seeded,
        cloud_record_id=row.cloud_record_id,
    )


def _record_to_row(record: PlaceRecord) -> SpotRow:
    name_key, address_key = record.composite_key
    return SpotRow(
        id=record.id,
        name=record.name,
        address=record.address,
        latitude=record.latitude,
        longitude=record.longitude,
        category=record.category.value,
        wifi_rating=record.wifi_rating,
        noise_rating=record.noise_rating,
        outlets=record.outlets,
        tips=record.tips,
        last_modified=record.last_modified,
        last_seeded=record.last_seeded,
        cloud_record_id=record.cloud_record_id,
        name_key=name_key,
        address_key=address_key,
    )


def _rating_from_row(row: UserRatingRow) -> UserRating:
    return UserRating(
        id=row.id,
        spot_id=row.spot_id,
        wifi=row.wifi,
        noise=row.noise,
        plugs=row.plugs,
        tip=row.tip,
        created_at=row.created_at,
    )


def _bbox_clause(bbox: BoundingBox):
    lon_clauses = [
        SpotRow.longitude.between(low, high) for low, high in bbox.longitude_ranges()
    ]
    return and_(SpotRow.latitude.between(bbox.min_lat, bbox.max_lat), or_(*lon_clauses))


class SqlSpotStore(SpotStore):
    """SQLAlchemy-backed spot store.

    Writes go through a single asyncio lock and one transaction per save, and
    every insert is re-checked against persisted rows, so concurrent discovery
    runs in this process cannot both insert the same place.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    async def fetch_in_bbox(self, bbox: BoundingBox) -> List[PlaceRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(SpotRow).where(_bbox_clause(bbox)))
            rows = result.scalars().all()
        logger.debug(f"fetch_in_bbox {bbox} returned {len(rows)} rows")
        return [_row_to_record(row) for row in rows]

    async def fetch_by_composite_key(self, name: str, address: str) -> Optional[PlaceRecord]:
        name_key, address_key = composite_key(name, address)
        async with self._session_factory() as session:
            result = await session.execute(
                select(SpotRow)
                .where(SpotRow.name_key == name_key, SpotRow.address_key == address_key)
                .limit(1)
            )
            row = result.scalars().first()
        return _row_to_record(row) if row else None

    async def get(self, spot_id: str) -> Optional[PlaceRecord]:
        async with self._session_factory() as session:
            row = await session.get(SpotRow, spot_id)
        return _row_to_record(row) if row else None

    async def _find_conflict(self, session: AsyncSession, record: PlaceRecord) -> Optional[SpotRow]:
        name_key, address_key = record.composite_key
        result = await session.execute(
            select(SpotRow)
            .where(SpotRow.name_key == name_key, SpotRow.address_key == address_key)
            .limit(1)
        )
        row = result.scalars().first()
        if row is not None:
            return row

        nearby = await session.execute(
            select(SpotRow).where(
                _bbox_clause(bounding_box(record.latitude, record.longitude, PROXIMITY_METERS))
            )
        )
        for row in nearby.scalars():
            if haversine_meters(row.latitude, row.longitude, record.latitude, record.longitude) < PROXIMITY_METERS:
                return row
        return None

    async def save(
        self,
        inserts: Sequence[PlaceRecord] = (),
        updates: Sequence[PlaceRecord] = (),
    ) -> SaveResult:
        outcome = SaveResult()
        if not inserts and not updates:
            return outcome

        async with self._write_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    for record in updates:
                        row = await session.get(SpotRow, record.id)
                        if row is None:
                            logger.warning(f"Spot {record.id} vanished before update, skipping")
                            outcome.skipped.append(record)
                            continue
                        row.wifi_rating = record.wifi_rating
                        row.noise_rating = record.noise_rating
                        row.outlets = record.outlets
                        row.tips = record.tips
                        row.last_seeded = record.last_seeded
                        row.last_modified = record.last_modified
                        outcome.updated.append(record)

                    for record in inserts:
                        conflict = await self._find_conflict(session, record)
                        if conflict is not None:
                            logger.info(
                                f"Skipping insert of {record.name} at {record.address}: "
                                f"already stored as {conflict.id}"
                            )
                            outcome.skipped.append(record)
                            continue
                        session.add(_record_to_row(record))
                        await session.flush()
                        outcome.inserted.append(record)

        logger.info(
            f"Saved spots: {len(outcome.inserted)} inserted, {len(outcome.updated)} updated, "
            f"{len(outcome.skipped)} skipped"
        )
        return outcome

    async def delete(self, spot_ids: Iterable[str]) -> int:
        ids = list(spot_ids)
        if not ids:
            return 0
        async with self._write_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(UserRatingRow).where(UserRatingRow.spot_id.in_(ids)))
                    result = await session.execute(delete(SpotRow).where(SpotRow.id.in_(ids)))
        logger.info(f"Deleted {result.rowcount} spots")
        return result.rowcount

    async def delete_all(self) -> int:
        async with self._write_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(UserRatingRow))
                    result = await session.execute(delete(SpotRow))
        logger.info(f"Deleted all spots ({result.rowcount})")
        return result.rowcount

    async def add_rating(self, rating: UserRating) -> UserRating:
        async with self._session_factory() as session:
            async with session.begin():
                spot = await session.get(SpotRow, rating.spot_id)
                if spot is None:
                    raise SpotNotFound(rating.spot_id)
                row = UserRatingRow(
                    id=rating.id,
                    spot_id=rating.spot_id,
                    wifi=rating.wifi,
                    noise=rating.noise,
                    plugs=rating.plugs,
                    tip=rating.tip,
                    created_at=rating.created_at or utcnow(),
                )
                session.add(row)
                await session.flush()
                stored = _rating_from_row(row)
        return stored

    async def ratings_for(self, spot_ids: Iterable[str]) -> Dict[str, List[UserRating]]:
        ids = list(spot_ids)
        grouped: Dict[str, List[UserRating]] = {spot_id: [] for spot_id in ids}
        if not ids:
            return grouped
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserRatingRow)
                .where(UserRatingRow.spot_id.in_(ids))
                .order_by(UserRatingRow.created_at)
            )
            for row in result.scalars():
                grouped.setdefault(row.spot_id, []).append(_rating_from_row(row))
        return grouped
