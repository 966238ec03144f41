# propwatch/schemas.py
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import Confidence, ListingStatus


class ListingRecord(BaseModel):
    """One normalized listing as produced by a source adapter."""
    source: str = Field(..., min_length=1)
    external_id: str = Field(..., min_length=1, max_length=255)
    title: str = ""
    price: float = Field(0, ge=0)
    area_m2: float = Field(..., gt=0)
    city: str = Field(..., min_length=1)
    district: str = ""
    street: Optional[str] = None
    rooms: Optional[int] = None
    floor: Optional[int] = None
    condition: Optional[str] = None
    listing_type: Optional[str] = None
    source_url: Optional[str] = None
    description: Optional[str] = None


class HealthCheckTarget(BaseModel):
    id: int
    source_url: Optional[str]
    source: str
    price: float


class HealthCheckResult(BaseModel):
    is_active: bool = True
    removal_reason: Optional[str] = None
    price_changed: bool = False
    new_price: Optional[float] = None
    error: Optional[str] = None
    response_code: Optional[int] = None


class ReferencePrices(BaseModel):
    street_avg: Optional[float] = None
    street_count: int = 0
    district_avg: Optional[float] = None
    district_count: int = 0


class PropertyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    external_id: str
    generation: int
    title: str
    price: float
    price_per_m2: float
    area_m2: float
    city: str
    district: str
    street: Optional[str]
    rooms: Optional[int]
    floor: Optional[int]
    source_url: Optional[str]
    status: ListingStatus
    removal_reason: Optional[str]
    priority_score: int
    check_count_today: int
    last_checked_at: Optional[datetime]
    consecutive_failures: int
    days_on_market: int
    first_listed_at: Optional[datetime]


class PriceHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    price: float
    price_per_m2: float
    recorded_at: datetime


class MatchOut(BaseModel):
    id: int
    matched_property_id: int
    score: int
    confidence: Confidence
    reasons: List[str]
    is_confirmed: Optional[bool]


class MatchConfirm(BaseModel):
    confirmed: bool
    user_ref: str


class WatchIn(BaseModel):
    user_ref: str = Field(..., min_length=1)


class MarketGapOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    property_id: int
    gap_percentage: float
    reference_price: float
    reference_level: str
    comparable_count: int
    confidence: Confidence
    potential_profit: float
    reasons: List[str]
    notified: bool
    detected_at: datetime


class ScanCursorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: str
    category: str
    page: int
    cycle_count: int
    total_scraped: int
    total_errors: int
    last_run_at: Optional[datetime]


class JobRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job: str
    status: str
    stats: Optional[dict]
    error: Optional[str]
    duration_ms: Optional[int]
    started_at: datetime


class SchedulerState(BaseModel):
    last_reset_date: Optional[date]
    recent_runs: List[JobRunOut]


class IngestResult(BaseModel):
    ingested: List[int]
    errors: int
