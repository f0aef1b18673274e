"""HTTP surface tests: routing, actor header and error mapping."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from medqueue.main import app
from medqueue.utils import utcnow

ACTOR = {"X-Actor-Id": "nurse-1"}


@pytest.fixture
def client(db):
    # No context manager: lifespan would connect to a real MongoDB
    return TestClient(app)


@pytest.fixture
def station(client):
    response = client.post(
        "/stations",
        json={"code": "CONS_A", "name": "Consultation A", "kind": "consultation", "max_capacity": 2},
        headers=ACTOR,
    )
    assert response.status_code == 201
    return response.json()


def _add(client, station, patient_id, name="Kiran Rao", **triage):
    return client.post(
        "/queue/entries",
        json={
            "patient_id": patient_id,
            "patient_name": name,
            "station_id": station["id"],
            "triage": triage,
        },
        headers=ACTOR,
    )


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"


class TestStationsApi:

    def test_duplicate_code_is_409(self, client, station):
        response = client.post(
            "/stations", json={"code": "CONS_A", "name": "Again", "kind": "consultation"}
        )
        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    def test_unknown_station_is_404(self, client):
        response = client.get("/stations/000000000000000000000000")
        assert response.status_code == 404
        assert response.json() == {"detail": "Station not found", "kind": "not_found"}

    def test_call_next_on_empty_station_is_404(self, client, station):
        response = client.post(f"/stations/{station['id']}/call-next", headers=ACTOR)
        assert response.status_code == 404

    def test_pause_blocks_intake_with_400(self, client, station):
        response = client.post(
            f"/stations/{station['id']}/pause", json={"reason": "Break"}, headers=ACTOR
        )
        assert response.status_code == 200
        assert response.json()["is_paused"] is True

        response = _add(client, station, "p1")
        assert response.status_code == 400
        assert response.json()["kind"] == "capacity"


class TestQueueApi:

    def test_add_records_actor(self, client, station):
        response = _add(client, station, "p1")

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "waiting"
        assert body["position"] == 1
        assert body["entry"]["created_by"] == "nurse-1"
        assert body["entry"]["display_token"] == "C-001"

    def test_missing_patient_is_422(self, client, station):
        response = client.post("/queue/entries", json={"station_id": station["id"]})
        assert response.status_code == 422

    def test_capacity_is_400(self, client, station):
        assert _add(client, station, "p1").status_code == 201
        assert _add(client, station, "p2").status_code == 201

        response = _add(client, station, "p3")
        assert response.status_code == 400
        assert response.json()["kind"] == "capacity"

    def test_duplicate_is_409(self, client, station):
        _add(client, station, "p1")
        response = _add(client, station, "p1")
        assert response.status_code == 409

    def test_lifecycle_round_trip(self, client, station):
        entry_id = _add(client, station, "p1").json()["entry"]["id"]
        _add(client, station, "p2")

        called = client.post(f"/stations/{station['id']}/call-next", headers=ACTOR)
        assert called.status_code == 200
        assert called.json()["entry"]["id"] == entry_id

        second = client.post(f"/stations/{station['id']}/call-next", headers=ACTOR)
        assert second.status_code == 409

        assert client.post(f"/queue/entries/{entry_id}/start-serving", headers=ACTOR).status_code == 200
        done = client.post(f"/queue/entries/{entry_id}/complete", headers=ACTOR)
        assert done.status_code == 200
        assert done.json()["status"] == "completed"

    def test_invalid_transition_is_409(self, client, station):
        entry_id = _add(client, station, "p1").json()["entry"]["id"]

        response = client.post(f"/queue/entries/{entry_id}/complete", headers=ACTOR)
        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    def test_unknown_entry_is_404(self, client):
        response = client.get("/queue/entries/not-an-id")
        assert response.status_code == 404

    def test_change_priority_validation_is_400(self, client, station):
        entry_id = _add(client, station, "p1").json()["entry"]["id"]

        response = client.post(
            f"/queue/entries/{entry_id}/change-priority", json={"priority": "critical"}, headers=ACTOR
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    def test_lookup_by_queue_number_and_public_status(self, client, station):
        queue_number = _add(client, station, "p1").json()["entry"]["queue_number"]

        private = client.get(f"/queue/entries/number/{queue_number}")
        public = client.get(f"/public/status/{queue_number}")

        assert private.status_code == public.status_code == 200
        assert public.json()["estimated_wait"] == "15 minutes"


class TestPublicAndAnalyticsApi:

    def test_public_display(self, client, station):
        _add(client, station, "p1", name="Divya Menon")

        response = client.get("/public/display/CONS_A")

        assert response.status_code == 200
        body = response.json()
        assert body["next_in_line"][0]["patient_name"] == "Divya"
        assert body["total_waiting"] == 1

    def test_analytics(self, client, station):
        entry_id = _add(client, station, "p1").json()["entry"]["id"]
        client.post(f"/queue/entries/{entry_id}/cancel", json={"reason": "Left"}, headers=ACTOR)

        now = utcnow()
        response = client.get("/analytics", params={
            "start": (now - timedelta(hours=1)).isoformat(),
            "end": (now + timedelta(hours=1)).isoformat(),
        })

        assert response.status_code == 200
        assert response.json()["by_status"] == {"cancelled": 1}
