# tests/test_api.py
import pytest
from fastapi.testclient import TestClient

from propwatch.main import app
from propwatch.models import PropertyMatch


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


def _listing(**overrides):
    data = {
        "source": "portal-a", "external_id": "a-1", "price": 120000, "area_m2": 65,
        "city": "Bratislava", "district": "Ruzinov", "rooms": 2,
        "source_url": "https://portal-a.example/a-1",
    }
    data.update(overrides)
    return data


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_ingest_and_read_back(client, db):
    r = client.post("/listings", json=[
        _listing(),
        _listing(source="portal-b", external_id="b-1", area_m2=64, price=119500),
    ])
    assert r.status_code == 200
    ids = r.json()["ingested"]
    assert len(ids) == 2 and r.json()["errors"] == 0

    r = client.get(f"/properties/{ids[0]}")
    assert r.status_code == 200
    assert r.json()["status"] == "ACTIVE"

    r = client.get(f"/properties/{ids[0]}/matches")
    assert r.json()[0]["matched_property_id"] == ids[1]
    assert r.json()[0]["confidence"] == "MEDIUM"

    history = client.get(f"/properties/{ids[0]}/price-history").json()
    assert [p["price"] for p in history] == [120000]

    timeline = client.get(f"/properties/{ids[0]}/timeline").json()
    assert timeline["events"][0]["type"] == "LISTED"


def test_invalid_listing_is_rejected(client):
    r = client.post("/listings", json=[_listing(area_m2=0)])
    assert r.status_code == 422


def test_unknown_property_is_404(client):
    assert client.get("/properties/999").status_code == 404
    assert client.get("/properties/999/timeline").status_code == 404


def test_list_properties_filters(client):
    client.post("/listings", json=[_listing(), _listing(external_id="a-2", city="Kosice")])
    r = client.get("/properties", params={"city": "Kosice"})
    assert [p["external_id"] for p in r.json()] == ["a-2"]


def test_watchers_and_match_confirmation(client, db):
    ids = client.post("/listings", json=[
        _listing(),
        _listing(source="portal-b", external_id="b-1", area_m2=64, price=119500),
    ]).json()["ingested"]

    r = client.post(f"/properties/{ids[0]}/watchers", json={"user_ref": "u1"})
    assert r.json()["added"] is True
    r = client.post(f"/properties/{ids[0]}/watchers", json={"user_ref": "u1"})
    assert r.json()["added"] is False
    assert r.json()["watchers"] == 1

    edge_id = db.query(PropertyMatch).one().id
    r = client.post(f"/matches/{edge_id}/confirm", json={"confirmed": True, "user_ref": "ops"})
    assert r.json() == {"id": edge_id, "is_confirmed": True, "confirmed_by": "ops"}
    assert client.post("/matches/999/confirm", json={"confirmed": False, "user_ref": "ops"}).status_code == 404


def test_jobs_and_scheduler_state(client):
    assert client.post("/jobs/nope").status_code == 404

    r = client.post("/jobs/reset_counters")
    assert r.status_code == 200
    assert r.json()["status"] == "success"
    assert client.post("/jobs/reset_counters").json()["status"] == "skipped"

    client.post("/listings", json=[_listing(price=50000), *[
        _listing(external_id=f"ref-{i}", price=130000) for i in range(5)
    ]])
    assert client.post("/jobs/market_gaps").json()["stats"]["flagged"] == 1
    gaps = client.get("/market-gaps").json()
    assert gaps[0]["reference_level"] == "district"
    assert gaps[0]["notified"] is False

    state = client.get("/scheduler/state").json()
    assert state["last_reset_date"] is not None
    assert [run["job"] for run in state["recent_runs"]][:3] == ["market_gaps", "reset_counters", "reset_counters"]
    assert client.get("/scan-cursors").json() == []
