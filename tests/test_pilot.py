from __future__ import annotations

import base64
from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine, select

from clearance import main as app_main
from clearance.domain.errors import NotFoundError, PersistenceError
from clearance.domain.models import Document, DocumentType, DocumentUpload, User, UserRole
from clearance.infra import audit, db, events
from clearance.services import object_storage_service
from clearance.services.document_service import DocumentService
from clearance.services.object_storage_service import ObjectStorageService

REVIEWER_ROLES = ("air_defense", "logistics", "intelligence")
PROFILE = {
    "full_name": "Pat Pilot",
    "phone": "+1-555-0100",
    "address": "1 Runway Rd",
    "city": "Springfield",
    "country": "US",
    "license_number": "FAA-107-0001",
}


@pytest.fixture()
def pilot_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "pilot_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(object_storage_service, "OBJECT_STORAGE_ROOT", str(tmp_path / "objects"))
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str, password: str) -> str:
    response = client.post("/api/identity/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _register_pilot(client: TestClient, email: str = "pilot@example.com") -> str:
    response = client.post(
        "/api/identity/register",
        json={"email": email, "password": "pilot-pass", "full_name": "Pat Pilot"},
    )
    assert response.status_code == 201
    return _login(client, email, "pilot-pass")


def _setup_staff(client: TestClient) -> dict[str, str]:
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


def _review(client: TestClient, token: str, entity_type: str, entity_id: str, decision: str) -> dict:
    response = client.post(
        f"/api/review/{entity_type}/{entity_id}",
        json={"decision": decision},
        headers=_auth_header(token),
    )
    assert response.status_code == 200
    return response.json()


def test_profile_lifecycle(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    pilot = _register_pilot(pilot_client)

    missing = pilot_client.get("/api/pilot/profile", headers=_auth_header(pilot))
    assert missing.status_code == 404

    created = pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(pilot))
    assert created.status_code == 201
    profile_id = created.json()["id"]
    assert created.json()["overall_status"] == "pending"

    duplicate = pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(pilot))
    assert duplicate.status_code == 409

    edited = pilot_client.patch("/api/pilot/profile", json={"city": "Shelbyville"}, headers=_auth_header(pilot))
    assert edited.status_code == 200
    assert edited.json()["city"] == "Shelbyville"

    _review(pilot_client, tokens["air_defense"], "pilot_profile", profile_id, "approved")
    locked = pilot_client.patch("/api/pilot/profile", json={"city": "Capital City"}, headers=_auth_header(pilot))
    assert locked.status_code == 409

    early = pilot_client.post("/api/pilot/profile/reapply", headers=_auth_header(pilot))
    assert early.status_code == 409
    assert early.json()["detail"]["message"] == "Can only re-apply for rejected applications."

    _review(pilot_client, tokens["logistics"], "pilot_profile", profile_id, "rejected")
    reapplied = pilot_client.post("/api/pilot/profile/reapply", headers=_auth_header(pilot))
    assert reapplied.status_code == 200
    assert reapplied.json()["overall_status"] == "pending"
    assert reapplied.json()["reviews"]["air_defense"]["reviewed_by"] is None


def test_reviewer_cannot_create_profile(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    response = pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(tokens["logistics"]))
    assert response.status_code == 403


def test_review_endpoint_errors(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    pilot = _register_pilot(pilot_client)
    profile_id = pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(pilot)).json()["id"]

    foreign = pilot_client.post(
        f"/api/review/pilot_profile/{profile_id}",
        json={"decision": "approved", "department": "intelligence"},
        headers=_auth_header(tokens["air_defense"]),
    )
    assert foreign.status_code == 403

    bad_decision = pilot_client.post(
        f"/api/review/pilot_profile/{profile_id}",
        json={"decision": "maybe"},
        headers=_auth_header(tokens["air_defense"]),
    )
    assert bad_decision.status_code == 422

    admin_without_department = pilot_client.post(
        f"/api/review/pilot_profile/{profile_id}",
        json={"decision": "approved"},
        headers=_auth_header(tokens["admin"]),
    )
    assert admin_without_department.status_code == 422

    missing = pilot_client.post(
        "/api/review/drone/no-such-drone",
        json={"decision": "approved"},
        headers=_auth_header(tokens["air_defense"]),
    )
    assert missing.status_code == 404

    pilot_attempt = pilot_client.post(
        f"/api/review/pilot_profile/{profile_id}",
        json={"decision": "approved"},
        headers=_auth_header(pilot),
    )
    assert pilot_attempt.status_code == 403


def test_drone_registration_and_review_queue(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    pilot = _register_pilot(pilot_client)

    no_profile = pilot_client.post(
        "/api/drones",
        json={"manufacturer": "DJI", "model": "Mini 4", "serial_number": "SN-9"},
        headers=_auth_header(pilot),
    )
    assert no_profile.status_code == 404

    pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(pilot))
    drone = pilot_client.post(
        "/api/drones",
        json={"manufacturer": "DJI", "model": "Mini 4", "serial_number": "SN-9", "has_camera": True},
        headers=_auth_header(pilot),
    )
    assert drone.status_code == 201
    drone_id = drone.json()["id"]

    duplicate = pilot_client.post(
        "/api/drones",
        json={"manufacturer": "DJI", "model": "Mini 4", "serial_number": "SN-9"},
        headers=_auth_header(pilot),
    )
    assert duplicate.status_code == 409

    queue = pilot_client.get("/api/review/queue/drones", headers=_auth_header(tokens["intelligence"]))
    assert [item["id"] for item in queue.json()] == [drone_id]

    _review(pilot_client, tokens["intelligence"], "drone", drone_id, "approved")
    queue = pilot_client.get("/api/review/queue/drones", headers=_auth_header(tokens["intelligence"]))
    assert queue.json() == []
    queue = pilot_client.get("/api/review/queue/drones", headers=_auth_header(tokens["logistics"]))
    assert [item["id"] for item in queue.json()] == [drone_id]

    pilot_queue = pilot_client.get("/api/review/queue/drones", headers=_auth_header(pilot))
    assert pilot_queue.status_code == 403

    listed = pilot_client.get("/api/drones", headers=_auth_header(pilot))
    assert [item["id"] for item in listed.json()] == [drone_id]
    assert listed.json()[0]["overall_status"] == "under_review"


def test_documents_upload_and_verification(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    pilot = _register_pilot(pilot_client)
    content = b"%PDF-1.4 insurance certificate"

    uploaded = pilot_client.post(
        "/api/pilot/documents",
        json={
            "document_type": "insurance",
            "file_name": "insurance.pdf",
            "mime_type": "application/pdf",
            "content_base64": base64.b64encode(content).decode(),
        },
        headers=_auth_header(pilot),
    )
    assert uploaded.status_code == 201
    document = uploaded.json()
    assert document["file_size"] == len(content)
    assert document["scan_status"] == "pending"

    broken = pilot_client.post(
        "/api/pilot/documents",
        json={"document_type": "other", "file_name": "x.bin", "content_base64": "***"},
        headers=_auth_header(pilot),
    )
    assert broken.status_code == 422

    pending = pilot_client.get("/api/review/documents", headers=_auth_header(tokens["logistics"]))
    assert [item["id"] for item in pending.json()] == [document["id"]]

    verified = pilot_client.post(
        f"/api/review/documents/{document['id']}/verify",
        json={"action": "verify"},
        headers=_auth_header(tokens["logistics"]),
    )
    assert verified.status_code == 200
    assert verified.json()["scan_status"] == "verified"

    listed = pilot_client.get("/api/pilot/documents", headers=_auth_header(pilot))
    assert listed.json()[0]["scan_status"] == "verified"

    inbox = pilot_client.get("/api/notifications", headers=_auth_header(pilot)).json()
    assert inbox[0]["title"] == "Document Verified"


class _CommitFailingSession(Session):
    def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


def _stored_files(root: Path) -> list[Path]:
    return [item for item in root.rglob("*") if item.is_file()]


def test_failed_upload_leaves_no_stored_object(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'documents.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        user = User(email="pilot@example.com", full_name="Pat Pilot", password_hash="x", role=UserRole.PILOT)
        session.add(user)
        session.commit()
        user_id = user.id
    storage_root = tmp_path / "objects"
    payload = DocumentUpload(
        document_type=DocumentType.NATIONAL_ID,
        file_name="id.png",
        mime_type="image/png",
        content_base64=base64.b64encode(b"front side").decode(),
    )

    unknown_user = DocumentService(
        session_factory=lambda: Session(engine, expire_on_commit=False),
        storage=ObjectStorageService(root_dir=storage_root),
    )
    with pytest.raises(NotFoundError):
        unknown_user.upload_document("missing-user", payload)
    assert _stored_files(storage_root) == []

    failing_commit = DocumentService(
        session_factory=lambda: _CommitFailingSession(engine, expire_on_commit=False),
        storage=ObjectStorageService(root_dir=storage_root),
    )
    with pytest.raises(PersistenceError):
        failing_commit.upload_document(user_id, payload)
    assert _stored_files(storage_root) == []
    with Session(engine) as session:
        assert session.exec(select(Document)).all() == []
    engine.dispose()


def test_payment_and_notifications(pilot_client: TestClient) -> None:
    pilot = _register_pilot(pilot_client)

    paid = pilot_client.post("/api/pilot/payments", json={}, headers=_auth_header(pilot))
    assert paid.status_code == 201
    assert paid.json()["status"] == "completed"
    assert paid.json()["payment_provider"] == "mock"
    assert paid.json()["amount"] == 25.0

    inbox = pilot_client.get("/api/notifications", params={"unread_only": True}, headers=_auth_header(pilot))
    assert len(inbox.json()) == 1
    notification_id = inbox.json()[0]["id"]
    assert inbox.json()[0]["title"] == "Payment Received"

    marked = pilot_client.post(f"/api/notifications/{notification_id}/read", headers=_auth_header(pilot))
    assert marked.status_code == 200
    assert marked.json()["is_read"] is True

    unread = pilot_client.get("/api/notifications", params={"unread_only": True}, headers=_auth_header(pilot))
    assert unread.json() == []

    other = _register_pilot(pilot_client, "other@example.com")
    foreign = pilot_client.post(f"/api/notifications/{notification_id}/read", headers=_auth_header(other))
    assert foreign.status_code == 404


def test_admin_stats_and_audit_log(pilot_client: TestClient) -> None:
    tokens = _setup_staff(pilot_client)
    pilot = _register_pilot(pilot_client)
    profile_id = pilot_client.post("/api/pilot/profile", json=PROFILE, headers=_auth_header(pilot)).json()["id"]
    _review(pilot_client, tokens["air_defense"], "pilot_profile", profile_id, "approved")
    pilot_client.post("/api/pilot/payments", json={"amount": 40}, headers=_auth_header(pilot))

    stats = pilot_client.get("/api/admin/stats", headers=_auth_header(tokens["admin"]))
    assert stats.status_code == 200
    body = stats.json()
    assert body["users_by_role"]["pilot"] == 1
    assert body["users_by_role"]["admin"] == 1
    assert body["pilot_profiles_by_status"] == {"under_review": 1}
    assert body["active_flights"] == 0
    assert body["total_payments"] == 40.0

    logs = pilot_client.get(
        "/api/admin/audit-logs",
        params={"entity_id": profile_id},
        headers=_auth_header(tokens["admin"]),
    )
    assert logs.status_code == 200
    assert sorted(item["action"] for item in logs.json()) == ["approve", "create"]

    forbidden = pilot_client.get("/api/admin/stats", headers=_auth_header(tokens["logistics"]))
    assert forbidden.status_code == 403
