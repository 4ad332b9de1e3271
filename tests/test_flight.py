from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine, select

from clearance import main as app_main
from clearance.domain.errors import PersistenceError
from clearance.domain.models import AuditAction, AuditLog, EventRecord, Flight
from clearance.infra import audit, db, events
from clearance.services.flight_service import FlightService

REVIEWER_ROLES = ("air_defense", "logistics", "intelligence")


@pytest.fixture()
def flight_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "flight_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str, password: str) -> str:
    response = client.post("/api/identity/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _register_pilot(client: TestClient, email: str) -> str:
    response = client.post(
        "/api/identity/register",
        json={"email": email, "password": "pilot-pass", "full_name": "Flight Pilot"},
    )
    assert response.status_code == 201
    return _login(client, email, "pilot-pass")


def _setup_reviewers(client: TestClient) -> dict[str, str]:
    response = client.post(
        "/api/identity/bootstrap-admin",
        json={"email": "admin@example.com", "password": "admin-pass"},
    )
    assert response.status_code == 201
    admin_token = _login(client, "admin@example.com", "admin-pass")
    tokens = {"admin": admin_token}
    for role in REVIEWER_ROLES:
        email = f"{role}@example.com"
        created = client.post(
            "/api/identity/register",
            json={"email": email, "password": "review-pass", "full_name": role},
        )
        assert created.status_code == 201
        updated = client.patch(
            f"/api/admin/users/{created.json()['id']}/role",
            json={"role": role},
            headers=_auth_header(admin_token),
        )
        assert updated.status_code == 200
        tokens[role] = _login(client, email, "review-pass")
    return tokens


def _create_profile_and_drone(client: TestClient, token: str, serial: str) -> str:
    profile = client.post(
        "/api/pilot/profile",
        json={
            "full_name": "Flight Pilot",
            "address": "1 Runway Rd",
            "city": "Springfield",
            "country": "US",
        },
        headers=_auth_header(token),
    )
    assert profile.status_code == 201
    drone = client.post(
        "/api/drones",
        json={"manufacturer": "DJI", "model": "Mavic 3", "serial_number": serial},
        headers=_auth_header(token),
    )
    assert drone.status_code == 201
    return drone.json()["id"]


def _flight_payload(drone_id: str, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "drone_id": drone_id,
        "purpose": "Bridge inspection",
        "departure_location": "North field",
        "departure_lat": 40.71,
        "departure_lng": -74.0,
        "scheduled_start": "2026-03-02T08:00:00Z",
        "scheduled_end": "2026-03-02T10:00:00Z",
        "max_altitude_m": 120,
    }
    payload.update(overrides)
    return payload


def _submit_flight(client: TestClient, token: str, drone_id: str) -> dict[str, Any]:
    response = client.post("/api/flights", json=_flight_payload(drone_id), headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()


def _approve_everywhere(client: TestClient, tokens: dict[str, str], flight_id: str) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for role in REVIEWER_ROLES:
        response = client.post(
            f"/api/review/flight/{flight_id}",
            json={"decision": "approved"},
            headers=_auth_header(tokens[role]),
        )
        assert response.status_code == 200
        result = response.json()
    return result


def test_submit_flight_notifies_reviewers(flight_client: TestClient) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-1")

    flight = _submit_flight(flight_client, pilot, drone_id)

    assert flight["flight_number"].startswith("FL-")
    assert flight["overall_status"] == "pending"
    assert flight["operational_status"] == "pending"
    assert set(flight["reviews"]) == set(REVIEWER_ROLES)

    for role in REVIEWER_ROLES:
        inbox = flight_client.get("/api/notifications", headers=_auth_header(tokens[role]))
        assert inbox.status_code == 200
        assert [item["title"] for item in inbox.json()] == ["New Flight Request"]

    listed = flight_client.get("/api/flights", headers=_auth_header(pilot))
    assert [item["id"] for item in listed.json()] == [flight["id"]]


def test_submit_flight_validation(flight_client: TestClient) -> None:
    pilot = _register_pilot(flight_client, "pilot@example.com")

    no_profile = flight_client.post(
        "/api/flights",
        json=_flight_payload("missing-drone"),
        headers=_auth_header(pilot),
    )
    assert no_profile.status_code == 404

    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-2")
    backwards = flight_client.post(
        "/api/flights",
        json=_flight_payload(drone_id, scheduled_end="2026-03-02T07:00:00Z"),
        headers=_auth_header(pilot),
    )
    assert backwards.status_code == 422
    assert backwards.json()["detail"]["code"] == "validation_error"

    other = _register_pilot(flight_client, "other@example.com")
    _create_profile_and_drone(flight_client, other, "SN-3")
    foreign_drone = flight_client.post(
        "/api/flights",
        json=_flight_payload(drone_id),
        headers=_auth_header(other),
    )
    assert foreign_drone.status_code == 404


def test_flight_operational_lifecycle(flight_client: TestClient) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    other = _register_pilot(flight_client, "other@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-4")
    flight_id = _submit_flight(flight_client, pilot, drone_id)["id"]

    early = flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(pilot))
    assert early.status_code == 409

    final = _approve_everywhere(flight_client, tokens, flight_id)
    assert final["overall_status"] == "approved"

    detail = flight_client.get(f"/api/flights/{flight_id}", headers=_auth_header(pilot)).json()
    assert detail["final_approved_at"] is not None

    stranger = flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(other))
    assert stranger.status_code == 403
    assert stranger.json()["detail"]["code"] == "forbidden"

    started = flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(pilot))
    assert started.status_code == 200
    assert started.json()["operational_status"] == "active"
    assert started.json()["actual_start"] is not None

    again = flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(pilot))
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "invalid_state"

    frozen = flight_client.post(
        f"/api/review/flight/{flight_id}",
        json={"decision": "rejected"},
        headers=_auth_header(tokens["logistics"]),
    )
    assert frozen.status_code == 409

    active = flight_client.get("/api/review/active-flights", headers=_auth_header(tokens["air_defense"]))
    assert [item["id"] for item in active.json()] == [flight_id]

    ended = flight_client.post(f"/api/flights/{flight_id}/end", headers=_auth_header(pilot))
    assert ended.status_code == 200
    assert ended.json()["operational_status"] == "completed"
    assert ended.json()["actual_end"] is not None

    ended_again = flight_client.post(f"/api/flights/{flight_id}/end", headers=_auth_header(pilot))
    assert ended_again.status_code == 409

    with Session(db.get_engine()) as session:
        entries = session.exec(
            select(AuditLog)
            .where(AuditLog.entity_id == flight_id)
            .where(AuditLog.action == AuditAction.UPDATE)
        ).all()
    assert sorted(item.description for item in entries) == ["Flight ended", "Flight started"]


def test_position_updates_require_active_flight(flight_client: TestClient) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-5")
    flight_id = _submit_flight(flight_client, pilot, drone_id)["id"]
    _approve_everywhere(flight_client, tokens, flight_id)

    pending = flight_client.post(
        f"/api/flights/{flight_id}/location",
        json={"lat": 40.7, "lng": -74.0, "altitude": 50},
        headers=_auth_header(pilot),
    )
    assert pending.status_code == 409

    flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(pilot))

    first = flight_client.post(
        f"/api/flights/{flight_id}/location",
        json={"lat": 40.7, "lng": -74.0, "altitude": 50},
        headers=_auth_header(pilot),
    )
    assert first.status_code == 200

    second = flight_client.post(
        f"/api/flights/{flight_id}/location",
        json={"lat": 40.8, "lng": -73.9},
        headers=_auth_header(pilot),
    )
    assert second.status_code == 200
    body = second.json()
    assert body["current_lat"] == 40.8
    assert body["current_lng"] == -73.9
    assert body["current_altitude_m"] is None
    assert body["last_gps_update"] is not None

    out_of_range = flight_client.post(
        f"/api/flights/{flight_id}/location",
        json={"lat": 95.0, "lng": 0.0},
        headers=_auth_header(pilot),
    )
    assert out_of_range.status_code == 422


def test_rejected_flight_reapply(flight_client: TestClient) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-6")
    flight_id = _submit_flight(flight_client, pilot, drone_id)["id"]

    rejected = flight_client.post(
        f"/api/review/flight/{flight_id}",
        json={"decision": "rejected", "notes": "restricted airspace"},
        headers=_auth_header(tokens["air_defense"]),
    )
    assert rejected.json()["overall_status"] == "rejected"

    inbox = flight_client.get("/api/notifications", headers=_auth_header(pilot)).json()
    assert inbox[0]["type"] == "error"
    assert inbox[0]["title"] == "Air Defense Flight Review Rejected"
    assert inbox[0]["message"].endswith("Notes: restricted airspace")

    reapplied = flight_client.post(f"/api/flights/{flight_id}/reapply", headers=_auth_header(pilot))
    assert reapplied.status_code == 200
    assert reapplied.json()["overall_status"] == "pending"
    assert all(entry["status"] == "pending" for entry in reapplied.json()["reviews"].values())

    twice = flight_client.post(f"/api/flights/{flight_id}/reapply", headers=_auth_header(pilot))
    assert twice.status_code == 409


def test_schedule_mixing_naive_and_aware_times(flight_client: TestClient) -> None:
    pilot = _register_pilot(flight_client, "pilot@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-7")

    mixed = flight_client.post(
        "/api/flights",
        json=_flight_payload(drone_id, scheduled_end="2026-03-02T10:00:00"),
        headers=_auth_header(pilot),
    )
    assert mixed.status_code == 201
    assert mixed.json()["scheduled_end"].startswith("2026-03-02T10:00:00")

    backwards = flight_client.post(
        "/api/flights",
        json=_flight_payload(
            drone_id,
            scheduled_start="2026-03-02T11:00:00+02:00",
            scheduled_end="2026-03-02T08:30:00",
        ),
        headers=_auth_header(pilot),
    )
    assert backwards.status_code == 422
    assert backwards.json()["detail"]["code"] == "validation_error"


def test_event_bus_failure_does_not_fail_start(
    flight_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-8")
    flight_id = _submit_flight(flight_client, pilot, drone_id)["id"]
    _approve_everywhere(flight_client, tokens, flight_id)

    def broken_publish(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("event store unavailable")

    monkeypatch.setattr(events.event_bus, "publish", broken_publish)

    started = flight_client.post(f"/api/flights/{flight_id}/start", headers=_auth_header(pilot))
    assert started.status_code == 200
    assert started.json()["operational_status"] == "active"

    ended = flight_client.post(f"/api/flights/{flight_id}/end", headers=_auth_header(pilot))
    assert ended.status_code == 200
    assert ended.json()["operational_status"] == "completed"

    with Session(db.get_engine()) as session:
        started_events = session.exec(select(EventRecord).where(EventRecord.event_type == "flight.started")).all()
        audits = session.exec(
            select(AuditLog)
            .where(AuditLog.entity_id == flight_id)
            .where(AuditLog.action == AuditAction.UPDATE)
        ).all()
    assert started_events == []
    assert sorted(item.description for item in audits) == ["Flight ended", "Flight started"]


def test_concurrent_start_raises_persistence_error(flight_client: TestClient) -> None:
    tokens = _setup_reviewers(flight_client)
    pilot = _register_pilot(flight_client, "pilot@example.com")
    pilot_id = flight_client.get("/api/identity/me", headers=_auth_header(pilot)).json()["id"]
    drone_id = _create_profile_and_drone(flight_client, pilot, "SN-9")
    flight_id = _submit_flight(flight_client, pilot, drone_id)["id"]
    _approve_everywhere(flight_client, tokens, flight_id)

    def racing_clock() -> datetime:
        with Session(db.get_engine()) as session:
            flight = session.get(Flight, flight_id)
            assert flight is not None
            flight.version += 1
            session.add(flight)
            session.commit()
        return datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    with pytest.raises(PersistenceError):
        FlightService(clock=racing_clock).start_operational(flight_id, pilot_id)

    detail = flight_client.get(f"/api/flights/{flight_id}", headers=_auth_header(pilot)).json()
    assert detail["operational_status"] == "pending"
    assert detail["actual_start"] is None
