# propwatch/matching.py
"""Cross-source candidate matching.

Every signal is a named rule returning ``(points, reason)``; ``score_pair``
applies the same-source rejection and the city+district gate, then sums the
rules in ``SCORING_RULES`` order and clamps to [0, 100]. Edges are stored with
``primary_id < matched_id`` so a pair has exactly one row whichever side
discovered it.
"""
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import config
from .db import upsert_insert
from .fingerprint import create_fingerprint, generate_missing_fingerprints
from .models import Confidence, Fingerprint, Property, PropertyMatch
from .utils import logger, normalize_text, utcnow

Rule = Tuple[int, Optional[str]]
NO_SIGNAL: Rule = (0, None)

HIGH_SCORE = 80
MEDIUM_SCORE = 70
# rules whose firing counts as address-level corroboration
ADDRESS_RULES = ("street", "address")
FP_COLUMNS = ("address_normalized", "city_district", "title_normalized", "description_hash")


def fingerprint_of(prop) -> dict:
    """Stored fingerprint columns, or freshly computed ones for unsaved objects."""
    fp = getattr(prop, "fingerprint", None)
    if fp is None:
        return create_fingerprint(prop)
    return {c: getattr(fp, c) for c in FP_COLUMNS}


def jaccard(a, b) -> float:
    if not a or not b:
        return 0.0
    words_a, words_b = set(a.split()), set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def relative_diff(a, b) -> float:
    top = max(a, b)
    if top <= 0:
        return 0.0
    return abs(a - b) / top


def same_location(a, b) -> bool:
    return (normalize_text(a.city) == normalize_text(b.city)
            and normalize_text(a.district) == normalize_text(b.district))


def rule_area(a, b, fa, fb) -> Rule:
    if not a.area_m2 or not b.area_m2:
        return NO_SIGNAL
    diff = relative_diff(a.area_m2, b.area_m2)
    if diff < 0.02:
        return 25, "area within 2% (+25)"
    if diff < 0.05:
        return 15, "area within 5% (+15)"
    if diff < 0.10:
        return 5, "area within 10% (+5)"
    return NO_SIGNAL


def rule_price(a, b, fa, fb) -> Rule:
    # price on request: neither credit nor penalty
    if not a.price or not b.price:
        return NO_SIGNAL
    diff = relative_diff(a.price, b.price)
    if diff < 0.02:
        return 20, "price within 2% (+20)"
    if diff < 0.05:
        return 15, "price within 5% (+15)"
    if diff < 0.10:
        return 8, "price within 10% (+8)"
    return NO_SIGNAL


def rule_rooms(a, b, fa, fb) -> Rule:
    if a.rooms and b.rooms and a.rooms == b.rooms:
        return 15, "same room count (+15)"
    return NO_SIGNAL


def rule_floor(a, b, fa, fb) -> Rule:
    if a.floor is not None and b.floor is not None and a.floor == b.floor:
        return 10, "same floor (+10)"
    return NO_SIGNAL


def rule_street(a, b, fa, fb) -> Rule:
    street_a, street_b = normalize_text(a.street), normalize_text(b.street)
    if not street_a or not street_b:
        return NO_SIGNAL
    if street_a == street_b:
        return 20, "same street (+20)"
    if street_a in street_b or street_b in street_a:
        return 10, "similar street (+10)"
    return NO_SIGNAL


def rule_address(a, b, fa, fb) -> Rule:
    similarity = jaccard(fa["address_normalized"], fb["address_normalized"])
    if similarity > 0.8:
        return 15, f"address similarity {round(similarity * 100)}% (+15)"
    if similarity > 0.6:
        return 8, f"address similarity {round(similarity * 100)}% (+8)"
    return NO_SIGNAL


def rule_title(a, b, fa, fb) -> Rule:
    similarity = jaccard(fa["title_normalized"], fb["title_normalized"])
    if similarity > 0.8:
        return 10, f"title similarity {round(similarity * 100)}% (+10)"
    if similarity > 0.6:
        return 5, f"title similarity {round(similarity * 100)}% (+5)"
    return NO_SIGNAL


def rule_description(a, b, fa, fb) -> Rule:
    hash_a, hash_b = fa["description_hash"], fb["description_hash"]
    if hash_a and hash_a == hash_b:
        return 25, "identical description (+25)"
    return NO_SIGNAL


SCORING_RULES = [
    ("area", rule_area),
    ("price", rule_price),
    ("rooms", rule_rooms),
    ("floor", rule_floor),
    ("street", rule_street),
    ("address", rule_address),
    ("title", rule_title),
    ("description", rule_description),
]


class PairScore:
    def __init__(self, score=0, reasons=None, fired=()):
        self.score = score
        self.reasons = reasons or []
        self.fired = tuple(fired)

    @property
    def address_corroborated(self):
        return any(name in ADDRESS_RULES for name in self.fired)

    def confidence(self):
        if self.score >= HIGH_SCORE and self.address_corroborated:
            return Confidence.HIGH
        if self.score >= MEDIUM_SCORE:
            return Confidence.MEDIUM
        return Confidence.LOW

    def __repr__(self):
        return f"<PairScore {self.score} {self.fired}>"


def score_pair(a, b) -> PairScore:
    if a.source == b.source:
        return PairScore(0, ["same source"])
    if not same_location(a, b):
        return PairScore(0, ["different city/district"])

    fa, fb = fingerprint_of(a), fingerprint_of(b)
    score, reasons, fired = 20, ["same city and district (+20)"], []
    for name, rule in SCORING_RULES:
        points, reason = rule(a, b, fa, fb)
        if points:
            score += points
            reasons.append(reason)
            fired.append(name)
    return PairScore(max(0, min(100, score)), reasons, fired)


def canonical_pair(id_a, id_b):
    return (id_a, id_b) if id_a < id_b else (id_b, id_a)


def find_candidates(db: Session, prop: Property, min_score: int = None) -> List[Tuple[Property, PairScore]]:
    """Score `prop` against every other property sharing its bucket key."""
    if min_score is None:
        min_score = config.MATCH_MIN_SCORE
    fp = prop.fingerprint
    if fp is None:
        logger.warning("Property %s has no fingerprint, skipping candidate search", prop.id)
        return []

    others = (
        db.query(Property)
        .join(Fingerprint, Fingerprint.property_id == Property.id)
        .filter(
            Fingerprint.city_district == fp.city_district,
            Fingerprint.area_range == fp.area_range,
            Property.id != prop.id,
            Property.source != prop.source,
        )
        .all()
    )
    scored = []
    for other in others:
        result = score_pair(prop, other)
        if result.score >= min_score:
            scored.append((other, result))
    scored.sort(key=lambda pair: pair[1].score, reverse=True)
    return scored


def save_match(db: Session, id_a: int, id_b: int, result: PairScore, commit: bool = True):
    if id_a == id_b:
        raise ValueError("cannot match a property with itself")
    primary_id, matched_id = canonical_pair(id_a, id_b)
    table = PropertyMatch.__table__
    values = {
        "primary_id": primary_id,
        "matched_id": matched_id,
        "score": result.score,
        "confidence": result.confidence(),
        "reasons": result.reasons,
        "updated_at": utcnow(),
    }
    stmt = upsert_insert(db, table).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["primary_id", "matched_id"],
        set_={k: stmt.excluded[k] for k in ("score", "confidence", "reasons", "updated_at")},
    )
    db.execute(stmt)
    if commit:
        db.commit()


def match_property(db: Session, prop: Property, min_score: int = None) -> int:
    """Find and persist edges for one property. Returns the number of edges written."""
    candidates = find_candidates(db, prop, min_score)
    for other, result in candidates:
        save_match(db, prop.id, other.id, result, commit=False)
    db.commit()
    if candidates:
        logger.info("Property %s matched %d candidate(s)", prop.id, len(candidates))
    return len(candidates)


def run_reconciliation(db: Session, min_score: int = None) -> dict:
    """Backfill fingerprints, then match every property that has no edge yet.

    Only idempotent upserts are issued, so re-running on an unchanged corpus
    leaves the edge set untouched.
    """
    fingerprints_created = generate_missing_fingerprints(db)

    has_edge = or_(
        db.query(PropertyMatch.id).filter(PropertyMatch.primary_id == Property.id).exists(),
        db.query(PropertyMatch.id).filter(PropertyMatch.matched_id == Property.id).exists(),
    )
    unmatched = db.query(Property).filter(Property.fingerprint.has(), ~has_edge).order_by(Property.id).all()

    processed = set()
    matches_found = 0
    errors = 0
    for prop in unmatched:
        try:
            for other, result in find_candidates(db, prop, min_score):
                pair = canonical_pair(prop.id, other.id)
                if pair in processed:
                    continue
                processed.add(pair)
                save_match(db, prop.id, other.id, result, commit=False)
                matches_found += 1
            db.commit()
        except Exception:
            db.rollback()
            errors += 1
            logger.exception("Reconciliation failed for property %s", prop.id)

    stats = {
        "fingerprints_created": fingerprints_created,
        "properties_scanned": len(unmatched),
        "matches_found": matches_found,
        "errors": errors,
    }
    logger.info("Reconciliation complete: %s", stats)
    return stats


def get_property_matches(db: Session, property_id: int) -> List[dict]:
    edges = (
        db.query(PropertyMatch)
        .filter(or_(PropertyMatch.primary_id == property_id, PropertyMatch.matched_id == property_id))
        .order_by(PropertyMatch.score.desc())
        .all()
    )
    return [
        {
            "id": edge.id,
            "matched_property_id": edge.matched_id if edge.primary_id == property_id else edge.primary_id,
            "score": edge.score,
            "confidence": edge.confidence,
            "reasons": edge.reasons or [],
            "is_confirmed": edge.is_confirmed,
        }
        for edge in edges
    ]


def confirm_match(db: Session, match_id: int, confirmed: bool, user_ref: str):
    edge = db.query(PropertyMatch).filter(PropertyMatch.id == match_id).first()
    if not edge:
        return None
    edge.is_confirmed = confirmed
    edge.confirmed_by = user_ref
    db.commit()
    db.refresh(edge)
    return edge
