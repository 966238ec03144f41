# propwatch/api/routes.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..db import get_db
from ..jobs import STAGES, run_job
from ..lifecycle import get_property_timeline
from ..matching import confirm_match, get_property_matches
from ..models import Confidence, ListingStatus
from ..priority import rescore_property
from ..services import ingest_batch
from ..utils import logger

router = APIRouter()


def _property_or_404(db: Session, property_id: int):
    obj = crud.get_property(db, property_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Property not found")
    return obj


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/listings", response_model=schemas.IngestResult)
def ingest_listings(records: List[schemas.ListingRecord], db: Session = Depends(get_db)):
    return ingest_batch(db, records)


@router.get("/properties", response_model=List[schemas.PropertyOut])
def properties(
    skip: int = 0,
    limit: int = Query(50, le=500),
    status: Optional[ListingStatus] = Query(None),
    source: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    district: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    db: Session = Depends(get_db)
):
    filters = {
        "status": status,
        "source": source,
        "city": city,
        "district": district,
        "min_price": min_price,
        "max_price": max_price,
    }
    res = crud.list_properties(db, skip=skip, limit=limit, filters=filters)
    return res["items"]


@router.get("/properties/{property_id}", response_model=schemas.PropertyOut)
def get_property(property_id: int, db: Session = Depends(get_db)):
    return _property_or_404(db, property_id)


@router.get("/properties/{property_id}/price-history", response_model=List[schemas.PriceHistoryOut])
def price_history(property_id: int, db: Session = Depends(get_db)):
    _property_or_404(db, property_id)
    return crud.get_price_history(db, property_id)


@router.get("/properties/{property_id}/timeline")
def timeline(property_id: int, db: Session = Depends(get_db)):
    return get_property_timeline(db, _property_or_404(db, property_id))


@router.get("/properties/{property_id}/matches", response_model=List[schemas.MatchOut])
def matches(property_id: int, db: Session = Depends(get_db)):
    _property_or_404(db, property_id)
    return get_property_matches(db, property_id)


@router.post("/properties/{property_id}/watchers")
def add_watcher(property_id: int, payload: schemas.WatchIn, db: Session = Depends(get_db)):
    prop = _property_or_404(db, property_id)
    added = crud.add_watch(db, property_id, payload.user_ref)
    if added and not prop.is_terminal:
        rescore_property(db, prop)
    return {"added": added, "watchers": crud.watch_count(db, property_id), "priority_score": prop.priority_score}


@router.post("/matches/{match_id}/confirm")
def confirm(match_id: int, payload: schemas.MatchConfirm, db: Session = Depends(get_db)):
    edge = confirm_match(db, match_id, payload.confirmed, payload.user_ref)
    if not edge:
        raise HTTPException(status_code=404, detail="Match not found")
    return {"id": edge.id, "is_confirmed": edge.is_confirmed, "confirmed_by": edge.confirmed_by}


@router.get("/market-gaps", response_model=List[schemas.MarketGapOut])
def market_gaps(
    confidence: Optional[Confidence] = Query(None),
    notified: Optional[bool] = Query(None),
    skip: int = 0,
    limit: int = Query(50, le=500),
    db: Session = Depends(get_db)
):
    return crud.list_market_gaps(db, confidence=confidence, notified=notified, skip=skip, limit=limit)


@router.get("/scan-cursors", response_model=List[schemas.ScanCursorOut])
def scan_cursors(db: Session = Depends(get_db)):
    return crud.list_scan_cursors(db)


@router.get("/scheduler/state", response_model=schemas.SchedulerState)
def scheduler_state(db: Session = Depends(get_db)):
    marker = crud.last_reset_marker(db)
    return {
        "last_reset_date": marker.reset_date if marker else None,
        "recent_runs": crud.recent_job_runs(db),
    }


@router.post("/jobs/{name}")
def trigger_job(name: str):
    if name not in STAGES:
        raise HTTPException(status_code=404, detail="Unknown job")
    result = run_job(name)
    if result["status"] == "error":
        logger.error("Job %s triggered via API failed: %s", name, result["error"])
        raise HTTPException(status_code=500, detail=f"Job {name} failed")
    return result
