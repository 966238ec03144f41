# tests/test_priority.py
from datetime import timedelta

import pytest

from propwatch import crud
from propwatch.lifecycle import handle_check_error
from propwatch.priority import (
    PriorityFactors, allowance, calculate_priority_score, refresh_days_on_market,
    rescore_property, should_check_now, update_priority_scores,
)
from propwatch.services import ingest_listing

from conftest import NOW


def test_fresh_never_checked_listing_is_hot():
    factors = PriorityFactors(days_on_market=1, days_since_last_check=999)
    assert calculate_priority_score(factors) == 95


def test_score_is_clamped():
    hot = PriorityFactors(days_on_market=1, days_since_last_check=5, price_change_count=3,
                          recent_price_drop_percent=12, watcher_count=6, has_description=True)
    assert calculate_priority_score(hot) == 100
    cold = PriorityFactors(days_on_market=200, days_since_last_check=0.1, consecutive_failures=20)
    assert calculate_priority_score(cold) == 0


def test_stale_listing_scores_low():
    factors = PriorityFactors(days_on_market=120, days_since_last_check=0.5)
    assert calculate_priority_score(factors) == 35


@pytest.mark.parametrize("score,expected", [(100, 3), (80, 3), (79, 2), (50, 2), (49, 1), (20, 1), (5, 1)])
def test_checks_per_day(score, expected):
    assert allowance(score)[0] == expected


def test_should_check_now_respects_allowance_and_interval():
    assert should_check_now(85, 0, None, NOW)
    assert not should_check_now(85, 3, None, NOW)
    assert not should_check_now(85, 1, NOW - timedelta(hours=3), NOW)
    assert should_check_now(85, 1, NOW - timedelta(hours=4), NOW)
    assert not should_check_now(30, 0, NOW - timedelta(hours=11), NOW)
    assert not should_check_now(10, 0, NOW - timedelta(hours=47), NOW)
    assert should_check_now(10, 0, NOW - timedelta(hours=48), NOW)


@pytest.fixture
def prop(db, record):
    p = ingest_listing(db, record())
    p.first_listed_at = NOW - timedelta(days=20)
    p.last_checked_at = NOW - timedelta(hours=2)
    p.priority_score = 55
    db.commit()
    return p


def test_small_moves_are_not_persisted(db, prop):
    # 50 + 5 (recency) = 55: unchanged
    assert rescore_property(db, prop, now=NOW) is None
    prop.priority_score = 52
    db.commit()
    assert rescore_property(db, prop, now=NOW) is None
    assert prop.priority_score == 52


def test_large_moves_are_persisted(db, prop):
    for i in range(5):
        crud.add_watch(db, prop.id, f"user-{i}")
    assert rescore_property(db, prop, now=NOW) == 70
    assert prop.priority_score == 70


def test_failing_property_score_never_increases(db, prop):
    handle_check_error(db, prop, "timeout", now=NOW)
    for i in range(5):
        crud.add_watch(db, prop.id, f"user-{i}")
    assert rescore_property(db, prop, now=NOW) is None
    assert prop.priority_score == 55


def test_bulk_update_and_days_on_market(db, prop, record):
    other = ingest_listing(db, record(external_id="a-2"))
    other.first_listed_at = NOW - timedelta(days=100)
    other.last_checked_at = NOW - timedelta(hours=1)
    db.commit()

    stats = update_priority_scores(db, now=NOW)
    assert stats["scanned"] == 2
    assert other.priority_score == 35

    assert refresh_days_on_market(db, now=NOW) == 2
    assert prop.days_on_market == 20
    assert other.days_on_market == 100
