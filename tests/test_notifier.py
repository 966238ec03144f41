# tests/test_notifier.py
from propwatch.lifecycle import handle_removed
from propwatch.market_gap import run_market_gap_pass
from propwatch.models import ListingStatus, MarketGap, Property, PropertyLifecycle
from propwatch.notifier import LogNotifier, notify_pending


class RecordingNotifier:
    def __init__(self, fail_gaps=False, raise_on_lifecycle=False):
        self.fail_gaps = fail_gaps
        self.raise_on_lifecycle = raise_on_lifecycle
        self.gaps, self.lifecycles = [], []

    def send_market_gap(self, flag):
        self.gaps.append(flag.property_id)
        return not self.fail_gaps

    def send_lifecycle(self, record):
        if self.raise_on_lifecycle:
            raise TimeoutError("webhook timed out")
        self.lifecycles.append(record.external_id)
        return True


def _seed(db):
    for i in range(5):
        db.add(Property(source="portal-a", external_id=f"ref-{i}", title="", price=100000, price_per_m2=2000,
                        area_m2=50, city="Kosice", district="Juh"))
    cheap = Property(source="portal-a", external_id="cheap", title="", price=50000, price_per_m2=1000,
                     area_m2=50, city="Kosice", district="Juh")
    db.add(cheap)
    db.commit()
    run_market_gap_pass(db)
    handle_removed(db, db.query(Property).filter(Property.external_id == "ref-0").one(), "sold")
    return cheap


def test_pending_items_are_sent_once(db):
    _seed(db)
    notifier = RecordingNotifier()
    stats = notify_pending(db, notifier)
    assert stats == {"gaps_sent": 1, "lifecycles_sent": 1, "failed": 0}
    assert db.query(MarketGap).one().notified_at is not None

    again = notify_pending(db, notifier)
    assert again["gaps_sent"] == 0 and again["lifecycles_sent"] == 0
    assert len(notifier.gaps) == 1
    assert notifier.lifecycles == ["ref-0"]


def test_failed_delivery_is_retried_next_pass(db):
    _seed(db)
    stats = notify_pending(db, RecordingNotifier(fail_gaps=True, raise_on_lifecycle=True))
    assert stats["failed"] == 2
    assert db.query(MarketGap).one().notified is False
    assert db.query(PropertyLifecycle).one().notified is False

    stats = notify_pending(db, RecordingNotifier())
    assert stats["gaps_sent"] == 1
    assert stats["lifecycles_sent"] == 1


def test_log_notifier_accepts_everything(db):
    _seed(db)
    stats = notify_pending(db, LogNotifier())
    assert stats["failed"] == 0
    assert stats["gaps_sent"] == 1


def test_closing_a_flagged_listing_drops_its_unsent_gap(db):
    cheap = _seed(db)
    handle_removed(db, cheap, "sold")
    assert db.query(MarketGap).count() == 0

    assert run_market_gap_pass(db)["flagged"] == 0
    stats = notify_pending(db, RecordingNotifier())
    assert stats["gaps_sent"] == 0
    assert stats["lifecycles_sent"] == 2


def test_gap_left_on_closed_listing_is_never_sent(db):
    cheap = _seed(db)
    db.query(Property).filter(Property.id == cheap.id).update({Property.status: ListingStatus.REMOVED})
    db.commit()

    notifier = RecordingNotifier()
    assert notify_pending(db, notifier)["gaps_sent"] == 0
    assert notifier.gaps == []

    assert run_market_gap_pass(db)["cleared"] == 1
    assert db.query(MarketGap).count() == 0
