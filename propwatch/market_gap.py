# propwatch/market_gap.py
"""Flags listings priced well below their locality's reference unit price.

Reference resolution falls back from street level to district (then city)
level. The flag is one row per property, recomputed every pass; `notified`
only ever flips to True, after the notifier confirms a hand-off.
"""
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import config
from .db import upsert_insert
from .errors import ReferencePriceError
from .models import Confidence, ListingStatus, MarketGap, Property
from .schemas import ReferencePrices
from .utils import logger, normalize_text, utcnow

HIGH_MIN_COMPARABLES = 10
MEDIUM_MIN_COMPARABLES = 5
LEVEL_STREET = "street"
LEVEL_DISTRICT = "district"


class ReferencePriceProvider(Protocol):
    def lookup(self, city: str, district: str, street: Optional[str] = None) -> ReferencePrices: ...


class GapResult:
    def __init__(self, gap_percentage, reference_price, reference_level, comparable_count,
                 confidence, potential_profit, reasons):
        self.gap_percentage = gap_percentage
        self.reference_price = reference_price
        self.reference_level = reference_level
        self.comparable_count = comparable_count
        self.confidence = confidence
        self.potential_profit = potential_profit
        self.reasons = reasons

    def as_values(self):
        return {
            "gap_percentage": self.gap_percentage,
            "reference_price": self.reference_price,
            "reference_level": self.reference_level,
            "comparable_count": self.comparable_count,
            "confidence": self.confidence,
            "potential_profit": self.potential_profit,
            "reasons": self.reasons,
        }


class StoreReferencePrices:
    """Reference aggregates computed from active listings in the store."""

    def __init__(self, db: Session, min_street_sample: int = None):
        self.db = db
        self.min_street_sample = min_street_sample or config.MARKET_GAP_MIN_STREET_SAMPLE

    def _aggregate(self, *conds):
        avg, count = (
            self.db.query(func.avg(Property.price_per_m2), func.count(Property.id))
            .filter(Property.status == ListingStatus.ACTIVE, Property.price_per_m2 > 0, *conds)
            .one()
        )
        return (float(avg) if avg is not None else None), count

    def lookup(self, city, district, street=None) -> ReferencePrices:
        prices = ReferencePrices()
        if street:
            avg, count = self._aggregate(Property.city == city, Property.district == district,
                                         Property.street == street)
            if count >= self.min_street_sample:
                prices.street_avg, prices.street_count = avg, count
        avg, count = self._aggregate(Property.city == city, Property.district == district)
        if not count:
            avg, count = self._aggregate(Property.city == city)
        prices.district_avg, prices.district_count = avg, count
        return prices


def gap_confidence(level: str, comparable_count: int) -> Confidence:
    if level == LEVEL_STREET and comparable_count >= HIGH_MIN_COMPARABLES:
        return Confidence.HIGH
    if comparable_count >= MEDIUM_MIN_COMPARABLES:
        return Confidence.MEDIUM
    return Confidence.LOW


def detect_market_gap(price_per_m2: float, area_m2: float, prices: ReferencePrices,
                      min_gap_percent: float = None, condition: str = None) -> Optional[GapResult]:
    """Pure gap computation; None when there is no reference or no qualifying gap."""
    if min_gap_percent is None:
        min_gap_percent = config.MARKET_GAP_MIN_PERCENT
    if prices.street_avg:
        reference, level, count = prices.street_avg, LEVEL_STREET, prices.street_count
    elif prices.district_avg:
        reference, level, count = prices.district_avg, LEVEL_DISTRICT, prices.district_count
    else:
        return None
    if not price_per_m2 or price_per_m2 <= 0:
        return None

    gap = (reference - price_per_m2) / reference * 100
    if gap < min_gap_percent:
        return None

    reasons = []
    if gap >= 25:
        reasons.append("far below market price (>25%)")
    elif gap >= 20:
        reasons.append("significantly below market price (>20%)")
    else:
        reasons.append(f"below market price (>{min_gap_percent:g}%)")
    if condition and normalize_text(condition) in ("povodny", "povodny stav", "original"):
        reasons.append("original condition, renovation potential")
    if level == LEVEL_STREET:
        reasons.append(f"compared with {count} listings on the street")
    else:
        reasons.append(f"compared with {count} listings in the district")

    return GapResult(
        gap_percentage=round(gap, 1),
        reference_price=round(reference, 2),
        reference_level=level,
        comparable_count=count,
        confidence=gap_confidence(level, count),
        potential_profit=round((reference - price_per_m2) * area_m2, 2),
        reasons=reasons,
    )


def save_market_gap(db: Session, property_id: int, gap: GapResult):
    values = dict(gap.as_values(), property_id=property_id, detected_at=utcnow())
    stmt = upsert_insert(db, MarketGap.__table__).values(**values)
    # notified is never overwritten by a recompute
    stmt = stmt.on_conflict_do_update(
        index_elements=["property_id"],
        set_={k: stmt.excluded[k] for k in values if k != "property_id"},
    )
    db.execute(stmt)


def clear_stale_gap(db: Session, property_id: int) -> int:
    return (
        db.query(MarketGap)
        .filter(MarketGap.property_id == property_id, MarketGap.notified.is_(False))
        .delete(synchronize_session=False)
    )


def clear_terminal_gaps(db: Session) -> int:
    """Drop unsent flags left on listings that have since closed."""
    closed = select(Property.id).where(Property.status != ListingStatus.ACTIVE)
    return (
        db.query(MarketGap)
        .filter(MarketGap.notified.is_(False), MarketGap.property_id.in_(closed))
        .delete(synchronize_session=False)
    )


def lookup_or_raise(provider: ReferencePriceProvider, city, district, street=None) -> ReferencePrices:
    try:
        return provider.lookup(city, district, street)
    except Exception as e:
        raise ReferencePriceError(f"reference lookup failed for {city}/{district}/{street}: {e}") from e


def run_market_gap_pass(db: Session, provider: ReferencePriceProvider = None,
                        min_gap_percent: float = None) -> dict:
    provider = provider or StoreReferencePrices(db)
    props = (
        db.query(Property)
        .filter(Property.status == ListingStatus.ACTIVE, Property.price_per_m2 > 0)
        .order_by(Property.id)
        .all()
    )
    cache = {}
    stats = {"analyzed": 0, "flagged": 0, "cleared": 0, "reference_errors": 0, "errors": 0}
    stats["cleared"] += clear_terminal_gaps(db)
    db.commit()
    for prop in props:
        key = (prop.city, prop.district, prop.street)
        try:
            if key not in cache:
                cache[key] = lookup_or_raise(provider, prop.city, prop.district, prop.street)
            prices = cache[key]
        except ReferencePriceError as e:
            # a failed location is retried on the next pass
            stats["reference_errors"] += 1
            logger.warning("Reference price lookup failed for %s: %s", key, e)
            continue

        try:
            gap = detect_market_gap(prop.price_per_m2, prop.area_m2, prices, min_gap_percent, prop.condition)
            stats["analyzed"] += 1
            if gap is None:
                stats["cleared"] += clear_stale_gap(db, prop.id)
            else:
                save_market_gap(db, prop.id, gap)
                stats["flagged"] += 1
            db.commit()
        except Exception:
            db.rollback()
            stats["errors"] += 1
            logger.exception("Market gap analysis failed for property %s", prop.id)

    stats["status"] = gap_pass_status(stats, len(props))
    level = logger.error if stats["status"] == "error" else logger.info
    level("Market gap pass complete: %s", stats)
    return stats


def gap_pass_status(stats: dict, total: int) -> str:
    failures = stats["reference_errors"] + stats["errors"]
    if total and failures >= total:
        return "error"
    if failures:
        return "partial"
    return "success"
