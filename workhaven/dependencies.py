"""Dependencies for FastAPI routes."""
from functools import lru_cache

from fastapi import Depends

from workhaven.enrichment.grok_client import GrokEnrichmentClient
from workhaven.services.places_search import PlacesSearchAdapter
from workhaven.services.region_lock import RegionLock, build_region_lock
from workhaven.services.spot_discovery import SpotDiscoveryService
from workhaven.services.spot_store import SpotStore, SqlSpotStore


@lru_cache
def get_spot_store() -> SpotStore:
    """Spot store bound to the application's session factory."""
    return SqlSpotStore()


@lru_cache
def get_region_lock() -> RegionLock:
    return build_region_lock()


def get_discovery_service(
    store: SpotStore = Depends(get_spot_store),
    region_lock: RegionLock = Depends(get_region_lock),
) -> SpotDiscoveryService:
    """
    Build the discovery service for a request.

    Adapters read their credentials from settings; a missing Grok key leaves the
    client unconfigured and discovery falls back to default enrichment.
    """
    return SpotDiscoveryService(
        store=store,
        search_adapter=PlacesSearchAdapter(),
        enrichment_client=GrokEnrichmentClient(),
        region_lock=region_lock,
    )
