# propwatch/fingerprint.py
"""Normalized, bucketed summaries of a property used for candidate retrieval.

The bucket key (`city_district`, `area_range`) is the only index the matcher
uses to pull candidates, so two listings of one flat that fall into adjacent
area bands are never compared. Missing optional attributes leave their band
as None; the matcher treats None as "no signal", not as a mismatch.
"""
import hashlib
import re

from sqlalchemy.orm import Session

from .db import upsert_insert
from .models import Fingerprint, Property
from .utils import logger, normalize_text, utcnow

ADDRESS_STOP_WORDS = {"ulica", "ul", "nam", "namestie", "cesta", "trieda", "ulice"}
TITLE_STOP_WORDS = {"predaj", "prenajom", "byt", "dom", "izba", "izbovy", "m2", "euro", "eur"}

AREA_BANDS = [(30, "0-30"), (50, "30-50"), (70, "50-70"), (90, "70-90"), (120, "90-120"), (150, "120-150")]
PRICE_BANDS = [
    (50_000, "0-50k"), (100_000, "50-100k"), (150_000, "100-150k"), (200_000, "150-200k"),
    (300_000, "200-300k"), (500_000, "300-500k"),
]

# attributes whose change invalidates a stored fingerprint
MATERIAL_FIELDS = ("price", "area_m2", "city", "district", "street", "rooms", "floor", "title", "description")


def _strip_words(text, stop_words):
    return " ".join(tok for tok in text.split(" ") if tok and tok not in stop_words)


def normalize_address(street) -> str:
    normalized = normalize_text(street)
    normalized = re.sub(r"\d{3}\s?\d{2}", " ", normalized)  # postal code
    normalized = re.sub(r"\d+/?[a-z]?\b", " ", normalized)  # house number
    normalized = re.sub(r"[^\w\s]", " ", normalized)
    return _strip_words(re.sub(r"\s+", " ", normalized).strip(), ADDRESS_STOP_WORDS)


def normalize_title(title) -> str:
    normalized = re.sub(r"\d+", " ", normalize_text(title))
    normalized = re.sub(r"[^\w\s]", " ", normalized)
    return _strip_words(re.sub(r"\s+", " ", normalized).strip(), TITLE_STOP_WORDS)


def city_district_key(city, district) -> str:
    return f"{normalize_text(city)}-{normalize_text(district).replace(' ', '-')}"


def area_range(area_m2) -> str:
    for upper, label in AREA_BANDS:
        if area_m2 < upper:
            return label
    return "150+"


def price_range(price):
    # 0 means "price on request"
    if not price or price <= 0:
        return None
    for upper, label in PRICE_BANDS:
        if price < upper:
            return label
    return "500k+"


def floor_range(floor):
    if floor is None:
        return None
    if floor <= 0:
        return "ground"
    if floor <= 3:
        return "1-3"
    if floor <= 6:
        return "4-6"
    return "7+"


def rooms_range(rooms):
    return str(rooms) if rooms else None


def description_hash(description):
    if not description:
        return None
    normalized = normalize_text(description)[:500].strip()
    if not normalized:
        return None
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


def create_fingerprint(prop) -> dict:
    """Build the fingerprint columns for any object carrying property attributes."""
    address = normalize_address(prop.street)
    bucket = city_district_key(prop.city, prop.district)
    area = area_range(prop.area_m2 or 0)
    rooms = rooms_range(prop.rooms)
    return {
        "address_normalized": address,
        "city_district": bucket,
        "area_range": area,
        "price_range": price_range(prop.price),
        "rooms_range": rooms,
        "floor_range": floor_range(prop.floor),
        "title_normalized": normalize_title(prop.title) or None,
        "description_hash": description_hash(prop.description),
    }


def save_fingerprint(db: Session, property_id: int, data: dict):
    table = Fingerprint.__table__
    values = dict(data, property_id=property_id, updated_at=utcnow())
    stmt = upsert_insert(db, table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["property_id"],
        set_={k: stmt.excluded[k] for k in values if k != "property_id"},
    )
    db.execute(stmt)
    db.commit()
    return db.query(Fingerprint).filter(Fingerprint.property_id == property_id).one()


def generate_and_save(db: Session, prop: Property):
    fp = save_fingerprint(db, prop.id, create_fingerprint(prop))
    db.expire(prop, ["fingerprint"])
    return fp


def generate_missing_fingerprints(db: Session, limit: int = None) -> int:
    q = db.query(Property).filter(~Property.fingerprint.has()).order_by(Property.id)
    if limit:
        q = q.limit(limit)
    count = 0
    for prop in q.all():
        generate_and_save(db, prop)
        count += 1
    if count:
        logger.info("Generated %d missing fingerprints", count)
    return count
