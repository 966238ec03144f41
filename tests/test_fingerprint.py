# tests/test_fingerprint.py
from types import SimpleNamespace

from propwatch.fingerprint import (
    area_range, city_district_key, create_fingerprint, description_hash, floor_range,
    generate_missing_fingerprints, normalize_address, normalize_title, price_range,
)
from propwatch.models import Fingerprint, Property


def _listing(**overrides):
    data = dict(street="Hlavná ulica 12, 811 01", city="Bratislava", district="Staré Mesto",
                area_m2=65, price=120000, rooms=2, floor=3, title="Predaj 2-izbový byt, Hlavná",
                description="Pekný slnečný byt po rekonštrukcii.")
    data.update(overrides)
    return SimpleNamespace(**data)


def test_normalize_address_strips_numbers_and_stop_words():
    assert normalize_address("Hlavná ulica 12, 811 01") == "hlavna"
    assert normalize_address("Nám. SNP 14/B") == "snp"
    assert normalize_address(None) == ""


def test_normalize_title_drops_digits_and_listing_words():
    assert normalize_title("Predaj 2-izbový byt, Hlavná") == "hlavna"
    assert normalize_title(None) == ""


def test_bands():
    assert area_range(29.9) == "0-30"
    assert area_range(65) == "50-70"
    assert area_range(150) == "150+"
    assert price_range(0) is None
    assert price_range(120000) == "100-150k"
    assert price_range(750000) == "500k+"
    assert floor_range(0) == "ground"
    assert floor_range(7) == "7+"
    assert floor_range(None) is None
    assert city_district_key("Bratislava", "Staré Mesto") == "bratislava-stare-mesto"


def test_description_hash_ignores_case_and_diacritics():
    assert description_hash("Pekný  BYT") == description_hash("pekny byt")
    assert description_hash("") is None
    assert description_hash("x" * 600) == description_hash("x" * 500 + "y" * 100)


def test_fingerprint_is_deterministic():
    assert create_fingerprint(_listing()) == create_fingerprint(_listing())


def test_fingerprint_keys_are_stored_columns():
    columns = {c.name for c in Fingerprint.__table__.columns}
    assert set(create_fingerprint(_listing())) == columns - {"id", "property_id", "updated_at"}


def test_missing_attributes_leave_bands_empty():
    fp = create_fingerprint(_listing(street=None, rooms=None, floor=None, price=0, description=None))
    assert fp["address_normalized"] == ""
    assert fp["rooms_range"] is None
    assert fp["floor_range"] is None
    assert fp["price_range"] is None
    assert fp["description_hash"] is None
    assert fp["area_range"] == "50-70"


def test_generate_missing_fingerprints_backfills(db):
    for i in range(3):
        db.add(Property(source="portal-a", external_id=f"x-{i}", title="", price=100000,
                        price_per_m2=2000, area_m2=50, city="Kosice", district="Juh"))
    db.commit()
    assert generate_missing_fingerprints(db) == 3
    assert db.query(Fingerprint).count() == 3
    assert generate_missing_fingerprints(db) == 0
