# propwatch/priority.py
"""Re-check urgency scoring.

Scale 0-100; the score decides how many checks a property gets per day:

- 80-100: 3 checks, at least 4 hours apart (hot)
- 50-79: 2 checks, 6 hours apart
- 20-49: 1 check, 12 hours apart
- 0-19: 1 check every 2 days (cold)
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import config, crud
from .models import ListingStatus, Property
from .utils import days_between, logger, utcnow

BASE_SCORE = 50
FAILURE_WEIGHT = 4
NEVER_CHECKED_DAYS = 999.0

# (min score, checks per day, min hours between checks)
CHECK_ALLOWANCE = [
    (80, 3, 4),
    (50, 2, 6),
    (20, 1, 12),
    (0, 1, 48),
]


@dataclass
class PriorityFactors:
    days_on_market: float
    days_since_last_check: float
    price_change_count: int = 0
    recent_price_drop_percent: float = 0.0
    watcher_count: int = 0
    has_description: bool = False
    consecutive_failures: int = 0


def calculate_priority_score(factors: PriorityFactors) -> int:
    score = BASE_SCORE

    # recency of listing
    if factors.days_on_market < 3:
        score += 25
    elif factors.days_on_market < 7:
        score += 15
    elif factors.days_on_market < 14:
        score += 10
    elif factors.days_on_market < 30:
        score += 5
    elif factors.days_on_market > 90:
        score -= 15
    elif factors.days_on_market > 60:
        score -= 10

    # staleness
    if factors.days_since_last_check > 2:
        score += 20
    elif factors.days_since_last_check > 1:
        score += 10

    # volatility
    if factors.price_change_count > 0:
        score += 10
        if factors.price_change_count >= 3:
            score += 10
        elif factors.price_change_count >= 2:
            score += 5
    if factors.recent_price_drop_percent >= 10:
        score += 15
    elif factors.recent_price_drop_percent >= 5:
        score += 10
    elif factors.recent_price_drop_percent > 0:
        score += 5

    # external interest
    if factors.watcher_count >= 5:
        score += 15
    elif factors.watcher_count >= 3:
        score += 10
    elif factors.watcher_count >= 1:
        score += 5

    if factors.has_description:
        score += 3

    score -= FAILURE_WEIGHT * factors.consecutive_failures
    return max(0, min(100, round(score)))


def allowance(priority_score: int):
    for floor, per_day, min_hours in CHECK_ALLOWANCE:
        if priority_score >= floor:
            return per_day, min_hours
    return CHECK_ALLOWANCE[-1][1:]


def should_check_now(priority_score: int, check_count_today: int, last_checked_at, now=None) -> bool:
    """Eligibility gate: daily allotment first, then the minimum interval."""
    per_day, min_hours = allowance(priority_score)
    if check_count_today >= per_day:
        return False
    if last_checked_at is not None:
        now = now or utcnow()
        if now - last_checked_at < timedelta(hours=min_hours):
            return False
    return True


def extract_priority_factors(db: Session, prop: Property, now=None) -> PriorityFactors:
    now = now or utcnow()
    history = crud.get_price_history(db, prop.id)
    recent_drop = 0.0
    if len(history) >= 2:
        previous, current = history[-2].price, history[-1].price
        if previous and previous > current:
            recent_drop = (previous - current) / previous * 100
    first_listed = prop.first_listed_at or prop.created_at or now
    return PriorityFactors(
        days_on_market=days_between(first_listed, now),
        days_since_last_check=(days_between(prop.last_checked_at, now)
                               if prop.last_checked_at else NEVER_CHECKED_DAYS),
        price_change_count=max(0, len(history) - 1),
        recent_price_drop_percent=recent_drop,
        watcher_count=crud.watch_count(db, prop.id),
        has_description=bool(prop.description) and len(prop.description) > 50,
        consecutive_failures=prop.consecutive_failures or 0,
    )


def rescore_property(db: Session, prop: Property, now=None, force: bool = False) -> Optional[int]:
    """Recompute and persist the score when it moved by at least the persist delta.

    Returns the new score when written, else None. While a property has
    unresolved failed checks its score can only go down.
    """
    new_score = calculate_priority_score(extract_priority_factors(db, prop, now))
    if prop.consecutive_failures:
        new_score = min(new_score, prop.priority_score)
    if not force and abs(new_score - prop.priority_score) < config.PRIORITY_PERSIST_DELTA:
        return None
    prop.priority_score = new_score
    db.commit()
    return new_score


def update_priority_scores(db: Session, property_ids=None, now=None) -> dict:
    q = db.query(Property)
    if property_ids:
        q = q.filter(Property.id.in_(property_ids))
    else:
        q = q.filter(Property.status == ListingStatus.ACTIVE)
    updated = 0
    props = q.all()
    for prop in props:
        if rescore_property(db, prop, now) is not None:
            updated += 1
    logger.info("Priority scores: %d of %d updated", updated, len(props))
    return {"scanned": len(props), "updated": updated}


def refresh_days_on_market(db: Session, now=None) -> int:
    now = now or utcnow()
    props = db.query(Property).filter(Property.status == ListingStatus.ACTIVE).all()
    updated = 0
    for prop in props:
        if not prop.first_listed_at:
            prop.first_listed_at = prop.created_at or now
        days = max(0, int(days_between(prop.first_listed_at, now)))
        if days != prop.days_on_market:
            prop.days_on_market = days
            updated += 1
    db.commit()
    return updated
