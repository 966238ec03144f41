# propwatch/services.py
from typing import Iterable

from sqlalchemy.orm import Session

from . import crud
from .fingerprint import MATERIAL_FIELDS, generate_and_save
from .matching import match_property
from .priority import rescore_property
from .schemas import ListingRecord
from .utils import logger


def ingest_listing(db: Session, record: ListingRecord):
    """Upsert one listing, keep its price history and fingerprint current, then match it."""
    prop, created, previous = crud.upsert_property(db, record)
    if crud.ensure_price_point(db, prop) and not created:
        logger.info("Price change on ingest: %s %s -> %s", prop.id, previous.get("price"), prop.price)

    changed = [f for f in MATERIAL_FIELDS if previous.get(f) != getattr(prop, f)] if previous else []
    if prop.fingerprint is None or changed:
        generate_and_save(db, prop)

    if created:
        rescore_property(db, prop, force=True)
        logger.info("Ingested new property %s (%s:%s gen %d)", prop.id, prop.source,
                    prop.external_id, prop.generation)
    match_property(db, prop)
    return prop


def ingest_batch(db: Session, records: Iterable[ListingRecord]):
    ids, errors = [], 0
    for record in records:
        try:
            ids.append(ingest_listing(db, record).id)
        except Exception:
            db.rollback()
            errors += 1
            logger.exception("Failed to ingest %s:%s", record.source, record.external_id)
    return {"ingested": ids, "errors": errors}
