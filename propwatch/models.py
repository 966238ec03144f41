# propwatch/models.py
"""SQLAlchemy ORM models for persisted entities.

`Property` is the canonical entity; every other table hangs off it or off its
natural `(source, external_id)` key.
"""
import enum

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum, Float, ForeignKey, Index, Integer,
    JSON, Text, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .db import Base
from .utils import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ListingStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    REMOVED = "REMOVED"


TERMINAL_STATUSES = (ListingStatus.SOLD, ListingStatus.REMOVED)


class Confidence(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("source", "external_id", "generation", name="uq_property_source_listing"),
    )

    id = Column(Integer, primary_key=True, index=True)
    source = Column(Text, nullable=False)
    external_id = Column(Text, nullable=False)
    # bumped when a closed (source, external_id) comes back as a new listing
    generation = Column(Integer, nullable=False, default=1)

    title = Column(Text, nullable=False, default="")
    description = Column(Text)
    price = Column(Float, nullable=False, default=0)
    price_per_m2 = Column(Float, nullable=False, default=0)
    area_m2 = Column(Float, nullable=False, default=0)
    city = Column(Text, nullable=False)
    district = Column(Text, nullable=False, default="")
    street = Column(Text)
    rooms = Column(Integer)
    floor = Column(Integer)
    condition = Column(Text)
    listing_type = Column(Text)
    source_url = Column(Text)

    status = Column(Enum(ListingStatus, native_enum=False), nullable=False, default=ListingStatus.ACTIVE)
    removal_reason = Column(Text)
    priority_score = Column(Integer, nullable=False, default=50)
    check_count_today = Column(Integer, nullable=False, default=0)
    check_count_date = Column(Date)
    last_checked_at = Column(DateTime)
    last_seen_at = Column(DateTime)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    days_on_market = Column(Integer, nullable=False, default=0)
    first_listed_at = Column(DateTime, default=utcnow)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    fingerprint = relationship("Fingerprint", back_populates="property", uselist=False,
                               cascade="all, delete-orphan")
    price_history = relationship("PriceHistory", back_populates="property",
                                 order_by="PriceHistory.recorded_at", cascade="all, delete-orphan")
    watchers = relationship("PropertyWatch", cascade="all, delete-orphan")
    market_gap = relationship("MarketGap", back_populates="property", uselist=False,
                              cascade="all, delete-orphan")

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<Property {self.id} {self.source}:{self.external_id} {self.status.value}>"


Index("idx_properties_schedule", Property.status, Property.priority_score, Property.last_checked_at)
Index("idx_properties_location", Property.city, Property.district, Property.street)


class Fingerprint(Base):
    __tablename__ = "property_fingerprints"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, unique=True)
    address_normalized = Column(Text, nullable=False, default="")
    city_district = Column(Text, nullable=False)
    area_range = Column(Text, nullable=False)
    price_range = Column(Text)
    rooms_range = Column(Text)
    floor_range = Column(Text)
    title_normalized = Column(Text)
    description_hash = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    property = relationship("Property", back_populates="fingerprint")


Index("idx_fingerprints_bucket", Fingerprint.city_district, Fingerprint.area_range)


class PropertyMatch(Base):
    """Scored cross-source link; always stored with primary_id < matched_id."""
    __tablename__ = "property_matches"
    __table_args__ = (
        UniqueConstraint("primary_id", "matched_id", name="uq_property_match_pair"),
    )

    id = Column(Integer, primary_key=True)
    primary_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    matched_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    confidence = Column(Enum(Confidence, native_enum=False), nullable=False)
    reasons = Column(JSONType, nullable=False, default=list)
    is_confirmed = Column(Boolean)
    confirmed_by = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    primary = relationship("Property", foreign_keys=[primary_id])
    matched = relationship("Property", foreign_keys=[matched_id])


class PriceHistory(Base):
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    price = Column(Float, nullable=False)
    price_per_m2 = Column(Float, nullable=False)
    recorded_at = Column(DateTime, nullable=False, default=utcnow)

    property = relationship("Property", back_populates="price_history")


class MarketGap(Base):
    __tablename__ = "market_gaps"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, unique=True)
    gap_percentage = Column(Float, nullable=False)
    reference_price = Column(Float, nullable=False)
    reference_level = Column(Text, nullable=False)
    comparable_count = Column(Integer, nullable=False, default=0)
    confidence = Column(Enum(Confidence, native_enum=False), nullable=False)
    potential_profit = Column(Float, nullable=False)
    reasons = Column(JSONType, nullable=False, default=list)
    notified = Column(Boolean, nullable=False, default=False)
    notified_at = Column(DateTime)
    detected_at = Column(DateTime, nullable=False, default=utcnow)

    property = relationship("Property", back_populates="market_gap")


class PropertyLifecycle(Base):
    """Terminal summary of one source listing, keyed apart from the canonical id."""
    __tablename__ = "property_lifecycles"
    __table_args__ = (
        UniqueConstraint("source", "external_id", "version", name="uq_lifecycle_source_listing"),
    )

    id = Column(Integer, primary_key=True)
    source = Column(Text, nullable=False)
    external_id = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="SET NULL"))
    city = Column(Text)
    title = Column(Text)
    status = Column(Enum(ListingStatus, native_enum=False), nullable=False)
    removal_reason = Column(Text)
    initial_price = Column(Float, nullable=False)
    final_price = Column(Float, nullable=False)
    price_change = Column(Float, nullable=False, default=0)
    price_change_percent = Column(Float, nullable=False, default=0)
    days_on_market = Column(Integer, nullable=False, default=0)
    first_seen_at = Column(DateTime)
    last_seen_at = Column(DateTime)
    notified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())


class ScanCursorState(Base):
    __tablename__ = "scan_cursors"

    source = Column(Text, primary_key=True)
    category = Column(Text, nullable=False)
    page = Column(Integer, nullable=False, default=1)
    cycle_count = Column(Integer, nullable=False, default=0)
    total_scraped = Column(Integer, nullable=False, default=0)
    total_errors = Column(Integer, nullable=False, default=0)
    last_run_at = Column(DateTime)


class DailyResetMarker(Base):
    __tablename__ = "daily_reset_markers"

    reset_date = Column(Date, primary_key=True)
    reset_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class PropertyWatch(Base):
    __tablename__ = "property_watches"
    __table_args__ = (
        UniqueConstraint("property_id", "user_ref", name="uq_property_watch"),
    )

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    user_ref = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class JobRun(Base):
    __tablename__ = "job_runs"

    id = Column(Integer, primary_key=True)
    job = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False)
    stats = Column(JSONType)
    error = Column(Text)
    duration_ms = Column(Integer)
    started_at = Column(DateTime, nullable=False, default=utcnow)
