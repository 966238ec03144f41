# propwatch/scan_cursor.py
"""Resumable position of the exhaustive per-source crawl.

The cursor walks every category page by page; an empty page ends a category
and after the last category the walk wraps around and `cycle_count` goes up.
`advance` is pure. `run_paginated_crawl` persists the cursor after every page
so an interrupted run resumes where it stopped.
"""
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Protocol, Sequence

from sqlalchemy.orm import Session

from . import config
from .models import ScanCursorState
from .schemas import ListingRecord
from .services import ingest_listing
from .utils import logger, utcnow


class SourceAdapter(Protocol):
    def fetch_page(self, source: str, category: str, page: int) -> List[ListingRecord]: ...


@dataclass(frozen=True)
class ScanCursor:
    source: str
    categories: tuple
    category_index: int = 0
    page: int = 1
    cycle_count: int = 0

    @property
    def category(self):
        return self.categories[self.category_index]


def advance(cursor: ScanCursor, page_was_empty: bool) -> ScanCursor:
    if not page_was_empty:
        return replace(cursor, page=cursor.page + 1)
    next_index = cursor.category_index + 1
    if next_index >= len(cursor.categories):
        return replace(cursor, category_index=0, page=1, cycle_count=cursor.cycle_count + 1)
    return replace(cursor, category_index=next_index, page=1)


def load_cursor(db: Session, source: str, categories: Sequence[str]) -> ScanCursor:
    if not categories:
        raise ValueError("at least one category is required")
    categories = tuple(categories)
    state = db.get(ScanCursorState, source)
    if state is None:
        return ScanCursor(source, categories)
    if state.category not in categories:
        # category list changed since the last run
        logger.warning("Stored category %r for %s is no longer configured, restarting at %r",
                       state.category, source, categories[0])
        return ScanCursor(source, categories, cycle_count=state.cycle_count)
    return ScanCursor(source, categories, categories.index(state.category), state.page, state.cycle_count)


def save_cursor(db: Session, cursor: ScanCursor, scraped: int = 0, errors: int = 0):
    state = db.get(ScanCursorState, cursor.source)
    if state is None:
        state = ScanCursorState(source=cursor.source, total_scraped=0, total_errors=0)
        db.add(state)
    state.category = cursor.category
    state.page = cursor.page
    state.cycle_count = cursor.cycle_count
    state.total_scraped = (state.total_scraped or 0) + scraped
    state.total_errors = (state.total_errors or 0) + errors
    state.last_run_at = utcnow()
    db.commit()
    return state


def run_paginated_crawl(db: Session, source: str, categories: Sequence[str], adapter: SourceAdapter,
                        pages_per_run: int = None, delay_seconds: float = None,
                        sleep: Callable = time.sleep) -> dict:
    pages_per_run = pages_per_run or config.CRAWL_PAGES_PER_RUN
    delay_seconds = config.CRAWL_DELAY_SECONDS if delay_seconds is None else delay_seconds
    cursor = load_cursor(db, source, categories)
    stats = {"pages": 0, "found": 0, "ingested": 0, "errors": 0, "fetch_failed": False}
    logger.info("Crawling %s from %s page %d (cycle %d)", source, cursor.category, cursor.page, cursor.cycle_count)

    for i in range(pages_per_run):
        if i and delay_seconds:
            sleep(delay_seconds)
        try:
            records = adapter.fetch_page(source, cursor.category, cursor.page)
        except Exception:
            # cursor stays put; the same page is fetched next run
            logger.exception("Fetching %s %s page %d failed", source, cursor.category, cursor.page)
            stats["fetch_failed"] = True
            stats["errors"] += 1
            save_cursor(db, cursor, errors=1)
            break

        stats["pages"] += 1
        stats["found"] += len(records)
        page_errors = 0
        for record in records:
            try:
                ingest_listing(db, record)
                stats["ingested"] += 1
            except Exception:
                db.rollback()
                page_errors += 1
                logger.exception("Ingesting %s:%s failed", record.source, record.external_id)
        stats["errors"] += page_errors

        cursor = advance(cursor, page_was_empty=not records)
        save_cursor(db, cursor, scraped=len(records), errors=page_errors)
        if not records:
            logger.info("Empty page, %s moves on to %s page %d", source, cursor.category, cursor.page)
            break

    stats["next_category"] = cursor.category
    stats["next_page"] = cursor.page
    stats["cycle_count"] = cursor.cycle_count
    logger.info("Crawl of %s complete: %s", source, stats)
    return stats
