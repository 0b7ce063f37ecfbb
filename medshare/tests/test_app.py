from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from medshare.app.deps import request_now, session_factory
from medshare.app.domain.models import ClinicalNote, VitalsReading
from medshare.app.main import app, create_app

NOW = datetime(2024, 5, 1, 12, 0, 0)


def test_app_title():
    assert app.title == "MedShare API"


def test_router_tags_present():
    tags = {tag for route in app.routes for tag in getattr(route, "tags", [])}
    assert {"grants", "timeline", "audit", "analytics"}.issubset(tags)


@pytest.fixture
def client(factory):
    api = create_app()
    api.dependency_overrides[session_factory] = lambda: factory
    api.dependency_overrides[request_now] = lambda: NOW
    # No context manager: the lifespan would create tables on the default engine.
    return TestClient(api)


@pytest.fixture
def people(clinic):
    alice = clinic.user("alice@example.com")
    bob = clinic.user("bob@example.com")
    patient = clinic.patient(alice)
    clinic.add(
        ClinicalNote(
            patient_id=patient,
            author_user_id=alice,
            title="Follow-up plan",
            noted_at=NOW - timedelta(days=1),
        ),
        VitalsReading(patient_id=patient, recorded_at=NOW - timedelta(days=3), heart_rate=70),
    )
    return alice, bob, patient


def test_share_lifecycle(client, people):
    alice, bob, patient = people

    created = client.post(
        "/grants/",
        params={"caller_id": alice},
        json={
            "patient_id": patient,
            "grantee_email": "BOB@example.com",
            "access_level": "read",
            "expires_at": (NOW + timedelta(days=2)).isoformat(),
        },
    )
    assert created.status_code == 201
    grant = created.json()
    assert grant["grantee_user_id"] == bob

    received = client.get("/grants/received", params={"caller_id": bob}).json()
    assert [(g["id"], g["is_expiring_soon"]) for g in received] == [(grant["id"], True)]

    revised = client.patch(f"/grants/{grant['id']}", params={"caller_id": alice}, json={"access_level": "write"})
    assert revised.status_code == 200
    assert revised.json()["access_level"] == "write"

    assert client.get(f"/grants/patients/{patient}", params={"caller_id": bob}).status_code == 403
    assert len(client.get(f"/grants/patients/{patient}", params={"caller_id": alice}).json()) == 1

    assert client.delete(f"/grants/{grant['id']}", params={"caller_id": alice}).status_code == 204
    assert client.delete(f"/grants/{grant['id']}", params={"caller_id": alice}).status_code == 204
    assert client.get("/grants/received", params={"caller_id": bob}).json() == []

    audit = client.get("/audit/grants", params={"grant_id": grant["id"]}).json()
    assert [entry["action"] for entry in audit] == ["revoked", "modified", "created"]
    assert client.get("/audit/grants/verify").json()["ok"] is True


def test_patient_share_listing_needs_admin(client, clinic, people):
    alice, bob, patient = people
    carol = clinic.user("carol@example.com")
    dave = clinic.user("dave@example.com")

    for grantee, level in ((bob, "write"), (carol, "admin")):
        response = client.post(
            "/grants/",
            params={"caller_id": alice},
            json={"patient_id": patient, "grantee_user_id": grantee, "access_level": level},
        )
        assert response.status_code == 201

    url = f"/grants/patients/{patient}"
    assert client.get(url, params={"caller_id": dave}).status_code == 403
    denied = client.get(url, params={"caller_id": bob})
    assert denied.status_code == 403
    assert denied.json()["error"] == "PermissionDenied"

    for caller in (alice, carol):
        listed = client.get(url, params={"caller_id": caller})
        assert listed.status_code == 200
        assert {g["grantee_user_id"] for g in listed.json()} == {bob, carol}


def test_error_mapping(client, people):
    alice, bob, patient = people

    self_grant = client.post(
        "/grants/",
        params={"caller_id": alice},
        json={"patient_id": patient, "grantee_user_id": alice, "access_level": "read"},
    )
    assert self_grant.status_code == 400
    assert self_grant.json()["error"] == "InvalidArgument"

    to_owner = client.post(
        "/grants/",
        params={"caller_id": bob},
        json={"patient_id": patient, "grantee_email": "alice@example.com", "access_level": "read"},
    )
    assert to_owner.status_code == 400

    unknown_email = client.post(
        "/grants/",
        params={"caller_id": alice},
        json={"patient_id": patient, "grantee_email": "nobody@example.com", "access_level": "read"},
    )
    assert unknown_email.status_code == 404

    both = client.post(
        "/grants/",
        params={"caller_id": alice},
        json={
            "patient_id": patient,
            "grantee_user_id": bob,
            "grantee_email": "bob@example.com",
            "access_level": "read",
        },
    )
    assert both.status_code == 422

    missing = client.patch("/grants/nope", params={"caller_id": alice}, json={"access_level": "admin"})
    assert missing.status_code == 404


def test_timeline_endpoint(client, people):
    alice, bob, patient = people

    denied = client.get("/timeline/", params={"caller_id": bob, "patient_id": patient})
    assert denied.status_code == 403
    assert denied.json()["error"] == "PermissionDenied"

    assert client.get("/timeline/", params={"caller_id": alice, "patient_id": "nope"}).status_code == 404

    body = client.get(
        "/timeline/",
        params={"caller_id": alice, "patient_id": [patient, "nope"], "type": "note", "group": "by-patient"},
    ).json()
    assert [event["title"] for event in body["events"]] == ["Follow-up plan"]
    assert [group["key"] for group in body["groups"]] == [patient]

    recent = client.get("/timeline/", params={"caller_id": alice, "patient_id": patient, "days": 2}).json()
    assert [event["type"] for event in recent["events"]] == ["note"]

    backwards = client.get(
        "/timeline/",
        params={
            "caller_id": alice,
            "patient_id": patient,
            "start": NOW.isoformat(),
            "end": (NOW - timedelta(days=1)).isoformat(),
        },
    )
    assert backwards.status_code == 400


def test_analytics_endpoints(client, people):
    alice, bob, patient = people

    assert client.get("/analytics/shares").status_code == 404

    client.post(
        "/grants/",
        params={"caller_id": alice},
        json={"patient_id": patient, "grantee_user_id": bob, "access_level": "admin"},
    )
    created = client.post("/analytics/shares")
    assert created.status_code == 201
    assert created.json()["admin_shares"] == 1

    assert client.get("/analytics/shares").json()["id"] == created.json()["id"]
    summary = client.get("/analytics/shares/summary", params={"days": 3}).json()
    assert summary["snapshots"] == 1
