"""Pydantic models for work spots, discovery candidates and user ratings."""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from workhaven.utils.geo import composite_key, haversine_meters

# A record whose last enrichment is older than this is "stale".
STALE_AFTER = timedelta(days=7)

DEFAULT_WIFI_RATING = 3
DEFAULT_NOISE_RATING = "Medium"
DEFAULT_OUTLETS = False
DEFAULT_TIP = "Auto-discovered"

NOISE_LEVELS = ("Low", "Medium", "High")


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clamp_wifi(value: int) -> int:
    return max(1, min(5, int(value)))


class SpotCategory(str, Enum):
    """Fixed set of spot categories."""
    COFFEE = "coffee"
    PARK = "park"
    LIBRARY = "library"
    COWORKING = "coworking"
    UNKNOWN = "unknown"


class Coordinate(BaseModel):
    """A point in WGS84 degrees."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def distance_to(self, other: "Coordinate") -> float:
        return haversine_meters(self.latitude, self.longitude, other.latitude, other.longitude)


class Candidate(BaseModel):
    """A transient place returned by a nearby search, not yet persisted."""

    name: str
    address: str
    latitude: float
    longitude: float
    category: SpotCategory = SpotCategory.UNKNOWN

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)

    @property
    def composite_key(self) -> Tuple[str, str]:
        return composite_key(self.name, self.address)

    @property
    def description(self) -> str:
        return f"{self.name} at {self.address}"

    @property
    def is_valid(self) -> bool:
        return bool(
            self.name.strip()
            and self.address.strip()
            and self.latitude != 0.0
            and self.longitude != 0.0
        )


class EnrichmentResult(BaseModel):
    """Work-friendliness attributes derived for one candidate."""

    wifi: int = DEFAULT_WIFI_RATING
    noise: str = DEFAULT_NOISE_RATING
    plugs: bool = DEFAULT_OUTLETS
    tip: str = DEFAULT_TIP

    @field_validator("wifi", mode="before")
    @classmethod
    def _clamp_wifi(cls, value):
        return clamp_wifi(value)

    @classmethod
    def default(cls) -> "EnrichmentResult":
        return cls()

    @property
    def is_default(self) -> bool:
        return self == EnrichmentResult.default()


class PlaceRecord(BaseModel):
    """A persisted work spot."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    address: str
    latitude: float
    longitude: float
    category: SpotCategory = SpotCategory.UNKNOWN
    wifi_rating: int = DEFAULT_WIFI_RATING
    noise_rating: str = DEFAULT_NOISE_RATING
    outlets: bool = DEFAULT_OUTLETS
    tips: str = DEFAULT_TIP
    last_modified: datetime = Field(default_factory=utcnow)
    last_seeded: Optional[datetime] = None
    # None until a sync backend assigns one.
    cloud_record_id: Optional[str] = None

    @field_validator("name", "address")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("wifi_rating", mode="before")
    @classmethod
    def _clamp_wifi(cls, value):
        return clamp_wifi(value)

    @model_validator(mode="after")
    def _require_coordinate(self) -> "PlaceRecord":
        if self.latitude == 0.0 or self.longitude == 0.0:
            raise ValueError("Valid coordinates are required")
        return self

    @classmethod
    def from_candidate(
        cls,
        candidate: Candidate,
        enrichment: EnrichmentResult,
        now: Optional[datetime] = None,
    ) -> "PlaceRecord":
        now = now or utcnow()
        return cls(
            name=candidate.name.strip(),
            address=candidate.address.strip(),
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            category=candidate.category,
            wifi_rating=enrichment.wifi,
            noise_rating=enrichment.noise,
            outlets=enrichment.plugs,
            tips=enrichment.tip,
            last_modified=now,
            last_seeded=now,
        )

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)

    @property
    def composite_key(self) -> Tuple[str, str]:
        return composite_key(self.name, self.address)

    def distance_to(self, latitude: float, longitude: float) -> float:
        return haversine_meters(self.latitude, self.longitude, latitude, longitude)

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        if self.last_seeded is None:
            return True
        return self.last_seeded < (now or utcnow()) - STALE_AFTER

    def apply_enrichment(self, enrichment: EnrichmentResult, now: Optional[datetime] = None) -> None:
        """Overwrite the enrichment fields and bump both timestamps."""
        now = now or utcnow()
        self.wifi_rating = enrichment.wifi
        self.noise_rating = enrichment.noise
        self.outlets = enrichment.plugs
        self.tips = enrichment.tip
        self.last_seeded = now
        self.last_modified = now


class UserRating(BaseModel):
    """One user's feedback on a spot."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    spot_id: str
    wifi: int = Field(..., description="Connectivity rating, clamped to 1-5")
    noise: str
    plugs: bool = False
    tip: str = ""
    created_at: Optional[datetime] = None

    @field_validator("wifi", mode="before")
    @classmethod
    def _clamp_wifi(cls, value):
        return clamp_wifi(value)

    @field_validator("noise", "tip")
    @classmethod
    def _strip(cls, value: str) -> str:
        return (value or "").strip()


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------


class DiscoverRequest(BaseModel):
    """Request model for spot discovery."""
    latitude: float = Field(..., ge=-90, le=90, description="Center latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Center longitude")
    radius_m: Optional[float] = Field(None, gt=0, description="Search radius in meters")


class RatingCreateRequest(BaseModel):
    """Payload for rating a spot."""
    wifi: int = Field(..., description="Connectivity rating, clamped to 1-5")
    noise: str = Field(..., min_length=1)
    plugs: bool = False
    tip: str = ""


class RatingResponse(BaseModel):
    """Stored rating returned to clients."""
    id: str
    spot_id: str
    wifi: int
    noise: str
    plugs: bool
    tip: str
    created_at: Optional[datetime] = None


class SpotResponse(BaseModel):
    """Response model for a spot."""
    id: str
    name: str
    address: str
    latitude: float
    longitude: float
    category: SpotCategory
    wifi_rating: int
    noise_rating: str
    outlets: bool
    tips: str
    last_modified: datetime
    last_seeded: Optional[datetime] = None

    # Computed fields for UI
    average_wifi_rating: float
    common_noise_rating: str
    outlet_availability_percentage: float
    overall_rating: float
    rating_count: int = 0
    distance_m: Optional[float] = None


class SpotListResponse(BaseModel):
    """List of spots around a point."""
    spots: List[SpotResponse]
    total: int


class DiscoveryResponse(BaseModel):
    """Outcome of a discovery run."""
    spots: List[SpotResponse]
    total: int
    inserted: int
    updated: int
    message: str
