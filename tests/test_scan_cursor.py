# tests/test_scan_cursor.py
from propwatch.models import Property, ScanCursorState
from propwatch.scan_cursor import ScanCursor, advance, load_cursor, run_paginated_crawl

CATEGORIES = ("flats", "houses")


def test_advance_moves_through_pages_categories_and_cycles():
    cursor = ScanCursor("portal-a", CATEGORIES)
    cursor = advance(cursor, page_was_empty=False)
    assert (cursor.category, cursor.page, cursor.cycle_count) == ("flats", 2, 0)
    cursor = advance(cursor, page_was_empty=True)
    assert (cursor.category, cursor.page, cursor.cycle_count) == ("houses", 1, 0)
    cursor = advance(cursor, page_was_empty=True)
    assert (cursor.category, cursor.page, cursor.cycle_count) == ("flats", 1, 1)


def test_advance_is_pure():
    cursor = ScanCursor("portal-a", CATEGORIES)
    advance(cursor, page_was_empty=False)
    assert cursor.page == 1


class FakeAdapter:
    def __init__(self, pages, record, fail_on=None):
        self.pages = pages
        self.record = record
        self.fail_on = fail_on
        self.calls = []

    def fetch_page(self, source, category, page):
        self.calls.append((category, page))
        if (category, page) == self.fail_on:
            raise ConnectionError("portal unreachable")
        count = self.pages.get(category, 0)
        if page > count:
            return []
        return [self.record(source=source, external_id=f"{category}-{page}-{i}") for i in range(2)]


def test_crawl_stops_on_empty_page_and_persists_cursor(db, record, clock):
    adapter = FakeAdapter({"flats": 2}, record)
    stats = run_paginated_crawl(db, "portal-a", CATEGORIES, adapter, pages_per_run=10,
                                delay_seconds=2, sleep=clock.sleep)
    assert adapter.calls == [("flats", 1), ("flats", 2), ("flats", 3)]
    assert stats["ingested"] == 4
    assert db.query(Property).count() == 4
    state = db.get(ScanCursorState, "portal-a")
    assert (state.category, state.page, state.cycle_count) == ("houses", 1, 0)
    assert state.total_scraped == 4
    assert clock.sleeps == [2, 2]


def test_crawl_resumes_where_it_stopped(db, record, clock):
    adapter = FakeAdapter({"flats": 5}, record)
    run_paginated_crawl(db, "portal-a", CATEGORIES, adapter, pages_per_run=2, sleep=clock.sleep)
    cursor = load_cursor(db, "portal-a", CATEGORIES)
    assert (cursor.category, cursor.page) == ("flats", 3)

    run_paginated_crawl(db, "portal-a", CATEGORIES, adapter, pages_per_run=2, sleep=clock.sleep)
    assert adapter.calls[2:] == [("flats", 3), ("flats", 4)]


def test_adapter_error_does_not_advance(db, record, clock):
    adapter = FakeAdapter({"flats": 5}, record, fail_on=("flats", 2))
    stats = run_paginated_crawl(db, "portal-a", CATEGORIES, adapter, pages_per_run=5, sleep=clock.sleep)
    assert stats["fetch_failed"] is True
    state = db.get(ScanCursorState, "portal-a")
    assert (state.category, state.page) == ("flats", 2)
    assert state.total_errors == 1


def test_last_category_wraps_and_counts_cycle(db, record, clock):
    db.add(ScanCursorState(source="portal-a", category="houses", page=1, cycle_count=3))
    db.commit()
    adapter = FakeAdapter({}, record)
    run_paginated_crawl(db, "portal-a", CATEGORIES, adapter, pages_per_run=5, sleep=clock.sleep)
    state = db.get(ScanCursorState, "portal-a")
    db.refresh(state)
    assert (state.category, state.page, state.cycle_count) == ("flats", 1, 4)
