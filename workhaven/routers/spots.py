"""Spots router - discovery, listing and user ratings."""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from workhaven.models.spots import (
    Coordinate,
    DiscoverRequest,
    DiscoveryResponse,
    PlaceRecord,
    RatingCreateRequest,
    RatingResponse,
    SpotListResponse,
    SpotResponse,
    UserRating,
)
from workhaven.dependencies import get_discovery_service, get_spot_store
from workhaven.services.spot_discovery import (
    DEFAULT_RADIUS_METERS,
    DiscoveryFailed,
    DiscoveryResult,
    SpotDiscoveryService,
)
from workhaven.services.spot_store import SpotNotFound, SpotStore
from workhaven.utils import scoring

router = APIRouter(prefix="/spots", tags=["spots"])
logger = logging.getLogger(__name__)


def _spot_response(
    spot: PlaceRecord,
    ratings: List[UserRating],
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> SpotResponse:
    distance = spot.distance_to(lat, lon) if lat is not None and lon is not None else None
    return SpotResponse(
        id=spot.id,
        name=spot.name,
        address=spot.address,
        latitude=spot.latitude,
        longitude=spot.longitude,
        category=spot.category,
        wifi_rating=spot.wifi_rating,
        noise_rating=spot.noise_rating,
        outlets=spot.outlets,
        tips=spot.tips,
        last_modified=spot.last_modified,
        last_seeded=spot.last_seeded,
        average_wifi_rating=scoring.average_wifi_rating(spot, ratings),
        common_noise_rating=scoring.common_noise_rating(spot, ratings),
        outlet_availability_percentage=scoring.outlet_availability_percentage(spot, ratings),
        overall_rating=round(scoring.overall_rating(spot, ratings), 2),
        rating_count=len(ratings),
        distance_m=round(distance, 1) if distance is not None else None,
    )


async def _ranked_responses(
    store: SpotStore,
    spots: List[PlaceRecord],
    lat: Optional[float],
    lon: Optional[float],
) -> List[SpotResponse]:
    ratings: Dict[str, List[UserRating]] = await store.ratings_for(s.id for s in spots)
    ranked = scoring.sort_spots(spots, ratings, lat, lon)
    return [_spot_response(s, ratings.get(s.id, []), lat, lon) for s in ranked]


async def _discovery_response(
    store: SpotStore, result: DiscoveryResult, lat: float, lon: float
) -> DiscoveryResponse:
    responses = await _ranked_responses(store, result.spots, lat, lon)
    return DiscoveryResponse(
        spots=responses,
        total=len(responses),
        inserted=len(result.inserted),
        updated=len(result.updated),
        message=result.message,
    )


@router.get("", response_model=SpotListResponse)
async def list_spots(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_m: float = Query(DEFAULT_RADIUS_METERS, gt=0),
    store: SpotStore = Depends(get_spot_store),
):
    """List stored spots within ``radius_m`` of a point, closest and best first."""
    spots = await store.fetch_within_radius(lat, lon, radius_m)
    responses = await _ranked_responses(store, spots, lat, lon)
    return SpotListResponse(spots=responses, total=len(responses))


@router.get("/load", response_model=DiscoveryResponse)
async def load_spots(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_m: float = Query(DEFAULT_RADIUS_METERS, gt=0),
    store: SpotStore = Depends(get_spot_store),
    service: SpotDiscoveryService = Depends(get_discovery_service),
):
    """Return stored spots, discovering first when the area is empty or stale."""
    center = Coordinate(latitude=lat, longitude=lon)
    try:
        result = await service.load_or_discover(center, radius_m)
    except DiscoveryFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{exc} (last status: {exc.progress})",
        ) from exc
    return await _discovery_response(store, result, lat, lon)


@router.post("/discover", response_model=DiscoveryResponse)
async def discover_spots(
    request: DiscoverRequest,
    store: SpotStore = Depends(get_spot_store),
    service: SpotDiscoveryService = Depends(get_discovery_service),
):
    """Search, enrich and store spots around a point."""
    center = Coordinate(latitude=request.latitude, longitude=request.longitude)
    radius = request.radius_m or DEFAULT_RADIUS_METERS
    try:
        result = await service.discover_spots(center, radius)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except DiscoveryFailed as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{exc} (last status: {exc.progress})",
        ) from exc
    return await _discovery_response(store, result, request.latitude, request.longitude)


@router.delete("")
async def reset_spots(store: SpotStore = Depends(get_spot_store)):
    """Delete every spot and rating."""
    deleted = await store.delete_all()
    return {"deleted": deleted}


@router.get("/{spot_id}", response_model=SpotResponse)
async def get_spot(spot_id: str, store: SpotStore = Depends(get_spot_store)):
    """Get a single spot with its rating aggregates."""
    spot = await store.get(spot_id)
    if spot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Spot not found")
    ratings = await store.ratings_for([spot_id])
    return _spot_response(spot, ratings.get(spot_id, []))


@router.post(
    "/{spot_id}/ratings",
    response_model=RatingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def rate_spot(
    spot_id: str,
    payload: RatingCreateRequest,
    store: SpotStore = Depends(get_spot_store),
):
    """Append a user rating to a spot."""
    rating = UserRating(
        spot_id=spot_id,
        wifi=payload.wifi,
        noise=payload.noise,
        plugs=payload.plugs,
        tip=payload.tip,
    )
    try:
        stored = await store.add_rating(rating)
    except SpotNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info(f"Rated spot {spot_id}: wifi={stored.wifi} noise={stored.noise}")
    return RatingResponse(**stored.model_dump())
