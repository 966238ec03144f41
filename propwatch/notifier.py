# propwatch/notifier.py
"""Hands pending market-gap flags and lifecycle records to a notifier.

A row's `notified` flag flips only after the notifier reports success, so a
failed hand-off is picked up again by the next pass and a delivered one is
never sent twice.
"""
from typing import Protocol

from sqlalchemy.orm import Session

from .errors import NotificationError
from .models import ListingStatus, MarketGap, Property, PropertyLifecycle
from .utils import logger, utcnow


class Notifier(Protocol):
    def send_market_gap(self, flag: MarketGap) -> bool: ...

    def send_lifecycle(self, record: PropertyLifecycle) -> bool: ...


class LogNotifier:
    """Default notifier: writes one log line per event."""

    def send_market_gap(self, flag):
        logger.info("Market gap: property %s is %.1f%% below %s reference (%s confidence, profit %.0f)",
                    flag.property_id, flag.gap_percentage, flag.reference_level,
                    flag.confidence.value, flag.potential_profit)
        return True

    def send_lifecycle(self, record):
        logger.info("Lifecycle: %s:%s v%s closed as %s after %d days (%+.1f%%)",
                    record.source, record.external_id, record.version, record.status.value,
                    record.days_on_market, record.price_change_percent)
        return True


def _deliver(send, item) -> bool:
    try:
        ok = send(item)
    except Exception as e:
        raise NotificationError(f"notifier failed for {type(item).__name__} {item.id}: {e}") from e
    return bool(ok)


def notify_pending(db: Session, notifier: Notifier = None, limit: int = 100) -> dict:
    notifier = notifier or LogNotifier()
    stats = {"gaps_sent": 0, "lifecycles_sent": 0, "failed": 0}

    gaps = (
        db.query(MarketGap)
        .join(Property, Property.id == MarketGap.property_id)
        .filter(MarketGap.notified.is_(False), Property.status == ListingStatus.ACTIVE)
        .order_by(MarketGap.gap_percentage.desc(), MarketGap.id)
        .limit(limit)
        .all()
    )
    for flag in gaps:
        try:
            if not _deliver(notifier.send_market_gap, flag):
                stats["failed"] += 1
                continue
        except NotificationError as e:
            stats["failed"] += 1
            logger.warning("%s", e)
            continue
        flag.notified = True
        flag.notified_at = utcnow()
        db.commit()
        stats["gaps_sent"] += 1

    records = (
        db.query(PropertyLifecycle)
        .filter(PropertyLifecycle.notified.is_(False))
        .order_by(PropertyLifecycle.id)
        .limit(limit)
        .all()
    )
    for record in records:
        try:
            if not _deliver(notifier.send_lifecycle, record):
                stats["failed"] += 1
                continue
        except NotificationError as e:
            stats["failed"] += 1
            logger.warning("%s", e)
            continue
        record.notified = True
        db.commit()
        stats["lifecycles_sent"] += 1

    logger.info("Notification pass complete: %s", stats)
    return stats
