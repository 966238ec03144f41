# propwatch/crud.py
"""Persistence helpers for the canonical property store.

Writes that can be replayed by a retried trigger go through INSERT .. ON
CONFLICT keyed by natural identifiers, so a duplicate call converges on the
same rows instead of adding new ones.
"""
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from .db import upsert_insert
from .fingerprint import MATERIAL_FIELDS
from .models import (
    DailyResetMarker, JobRun, ListingStatus, MarketGap, PriceHistory, Property,
    PropertyWatch, ScanCursorState,
)
from .schemas import ListingRecord
from .utils import utcnow

LISTING_FIELDS = (
    "title", "description", "price", "area_m2", "city", "district", "street", "rooms",
    "floor", "condition", "listing_type", "source_url",
)


def unit_price(price, area_m2):
    return price / area_m2 if area_m2 and area_m2 > 0 else 0


def latest_generation(db: Session, source: str, external_id: str) -> Optional[Property]:
    return (
        db.query(Property)
        .filter(Property.source == source, Property.external_id == external_id)
        .order_by(Property.generation.desc())
        .first()
    )


def upsert_property(db: Session, record: ListingRecord) -> Tuple[Property, bool, Dict[str, Any]]:
    """Insert or refresh the property for a listing record.

    Returns ``(property, created, previous)`` where ``previous`` holds the
    material attributes before the update (empty for a new property). A
    closed (SOLD/REMOVED) listing that reappears gets a new generation rather
    than being re-activated.
    """
    latest = latest_generation(db, record.source, record.external_id)
    if latest is None:
        generation, existing = 1, None
    elif latest.is_terminal:
        generation, existing = latest.generation + 1, None
    else:
        generation, existing = latest.generation, latest
    previous = {f: getattr(existing, f) for f in MATERIAL_FIELDS} if existing else {}

    now = utcnow()
    data = {f: getattr(record, f) for f in LISTING_FIELDS}
    data["title"] = data["title"] or ""
    data["price_per_m2"] = unit_price(record.price, record.area_m2)
    data["last_seen_at"] = now
    data["updated_at"] = now

    table = Property.__table__
    stmt = upsert_insert(db, table).values(
        source=record.source,
        external_id=record.external_id,
        generation=generation,
        status=ListingStatus.ACTIVE,
        first_listed_at=now,
        **data,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["source", "external_id", "generation"],
        set_={k: stmt.excluded[k] for k in data},
    )
    db.execute(stmt)
    db.commit()

    prop = (
        db.query(Property)
        .filter(
            Property.source == record.source,
            Property.external_id == record.external_id,
            Property.generation == generation,
        )
        .one()
    )
    db.refresh(prop)
    return prop, existing is None, previous


def append_price_point(db: Session, prop: Property, recorded_at=None, commit: bool = True):
    point = PriceHistory(
        property_id=prop.id,
        price=prop.price,
        price_per_m2=prop.price_per_m2,
        recorded_at=recorded_at or utcnow(),
    )
    db.add(point)
    if commit:
        db.commit()
    return point


def latest_price_point(db: Session, property_id: int) -> Optional[PriceHistory]:
    return (
        db.query(PriceHistory)
        .filter(PriceHistory.property_id == property_id)
        .order_by(PriceHistory.recorded_at.desc(), PriceHistory.id.desc())
        .first()
    )


def earliest_price_point(db: Session, property_id: int) -> Optional[PriceHistory]:
    return (
        db.query(PriceHistory)
        .filter(PriceHistory.property_id == property_id)
        .order_by(PriceHistory.recorded_at.asc(), PriceHistory.id.asc())
        .first()
    )


def ensure_price_point(db: Session, prop: Property) -> bool:
    """Append a history point unless the latest one already carries the current price."""
    latest = latest_price_point(db, prop.id)
    if latest is not None and latest.price == prop.price:
        return False
    append_price_point(db, prop)
    return True


def get_property(db: Session, property_id: int) -> Optional[Property]:
    return db.query(Property).filter(Property.id == property_id).first()


def list_properties(db: Session, skip: int = 0, limit: int = 50, filters: Dict = None):
    q = db.query(Property)
    if filters:
        conds = []
        if filters.get("status"):
            conds.append(Property.status == filters["status"])
        if filters.get("source"):
            conds.append(Property.source == filters["source"])
        if filters.get("city"):
            conds.append(Property.city.ilike(f"%{filters['city']}%"))
        if filters.get("district"):
            conds.append(Property.district.ilike(f"%{filters['district']}%"))
        if filters.get("min_price") is not None:
            conds.append(Property.price >= filters["min_price"])
        if filters.get("max_price") is not None:
            conds.append(Property.price <= filters["max_price"])
        if conds:
            q = q.filter(and_(*conds))
    total = q.count()
    items = q.order_by(Property.id).offset(skip).limit(limit).all()
    return {"total": total, "items": items}


def get_price_history(db: Session, property_id: int):
    return (
        db.query(PriceHistory)
        .filter(PriceHistory.property_id == property_id)
        .order_by(PriceHistory.recorded_at.asc(), PriceHistory.id.asc())
        .all()
    )


def add_watch(db: Session, property_id: int, user_ref: str) -> bool:
    stmt = upsert_insert(db, PropertyWatch.__table__).values(property_id=property_id, user_ref=user_ref)
    stmt = stmt.on_conflict_do_nothing(index_elements=["property_id", "user_ref"])
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def watch_count(db: Session, property_id: int) -> int:
    return db.query(func.count(PropertyWatch.id)).filter(PropertyWatch.property_id == property_id).scalar()


def list_market_gaps(db: Session, confidence=None, notified=None, skip: int = 0, limit: int = 50):
    q = db.query(MarketGap)
    if confidence is not None:
        q = q.filter(MarketGap.confidence == confidence)
    if notified is not None:
        q = q.filter(MarketGap.notified == notified)
    return q.order_by(MarketGap.gap_percentage.desc()).offset(skip).limit(limit).all()


def list_scan_cursors(db: Session):
    return db.query(ScanCursorState).order_by(ScanCursorState.source).all()


def last_reset_marker(db: Session) -> Optional[DailyResetMarker]:
    return db.query(DailyResetMarker).order_by(DailyResetMarker.reset_date.desc()).first()


def record_job_run(db: Session, job: str, status: str, stats: Dict = None, error: str = None,
                   duration_ms: int = None, started_at=None) -> JobRun:
    run = JobRun(job=job, status=status, stats=stats, error=error, duration_ms=duration_ms,
                 started_at=started_at or utcnow())
    db.add(run)
    db.commit()
    return run


def recent_job_runs(db: Session, limit: int = 20):
    return db.query(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(limit).all()
