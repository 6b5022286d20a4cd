"""SQLAlchemy tables backing the spot store."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from workhaven.database import Base
from workhaven.models.spots import utcnow


class SpotRow(Base):
    __tablename__ = "spots"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    category = Column(String, nullable=False, default="unknown")
    wifi_rating = Column(Integer, nullable=False, default=3)
    noise_rating = Column(String, nullable=False, default="Medium")
    outlets = Column(Boolean, nullable=False, default=False)
    tips = Column(Text, nullable=False, default="")
    last_modified = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_seeded = Column(DateTime, nullable=True)
    cloud_record_id = Column(String, nullable=True)

    # Lowercased, trimmed name/address for exact duplicate checks
    name_key = Column(String, nullable=False)
    address_key = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("name_key", "address_key", name="uq_spots_composite_key"),
        Index("ix_spots_lat_lon", "latitude", "longitude"),
    )


class UserRatingRow(Base):
    __tablename__ = "user_ratings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    spot_id = Column(String, ForeignKey("spots.id", ondelete="CASCADE"), nullable=False, index=True)
    wifi = Column(Integer, nullable=False)
    noise = Column(String, nullable=False)
    plugs = Column(Boolean, nullable=False, default=False)
    tip = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)
