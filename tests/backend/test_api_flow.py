from __future__ import annotations

from datetime import datetime, timedelta


def build_record_payload(**overrides) -> dict:
    payload = {
        "kind": "lead",
        "name": "Jane Doe",
        "email": "jane@acme.com",
        "phone": "020 1234 5678",
        "company": "Acme Ltd",
        "owner": {"id": "bdr-9", "name": "Alice", "role": "bdr"},
        "last_contact_date": (datetime.utcnow() - timedelta(days=3)).isoformat(),
        "status": "Contacted",
    }
    payload.update(overrides)
    return payload


def test_record_crud(client) -> None:
    created = client.post("/records", json=build_record_payload())
    assert created.status_code == 201
    body = created.json()
    assert body["id"].startswith("lead_")
    assert body["kind"] == "lead"

    fetched = client.get(f"/records/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["email"] == "jane@acme.com"

    assert client.delete(f"/records/{body['id']}").status_code == 204
    assert client.get(f"/records/{body['id']}").status_code == 404
    assert client.delete(f"/records/{body['id']}").status_code == 404


def test_check_without_identity_fields_is_422(client) -> None:
    response = client.post("/duplicates/check", json={"title": "CTO"})
    assert response.status_code == 422


def test_check_without_matches_returns_no_warning(client) -> None:
    client.post("/records", json=build_record_payload())
    response = client.post(
        "/duplicates/check",
        json={"name": "Zed Zephyr", "email": "zed@zephyr.io", "company": "Zephyr"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["has_warning"] is False
    assert body["matches"] == []
    assert body["warning_id"] is None


def test_duplicate_check_and_decision_flow(client) -> None:
    client.post("/records", json=build_record_payload())

    check = client.post(
        "/duplicates/check",
        json={"name": "Jane Doe", "email": "JANE@acme.com", "action": "LEAD_CREATE"},
    )
    assert check.status_code == 200
    body = check.json()
    assert body["has_warning"] is True
    assert body["severity"] == "CRITICAL"
    assert body["message"].startswith("Potential duplicate detected: similar contact email")
    top = body["matches"][0]
    assert top["match_type"] == "CONTACT_EMAIL"
    assert top["confidence"] == 0.97
    assert top["existing_record"]["owner"]["name"] == "Alice"
    warning_id = body["warning_id"]

    missing_reason = client.post(
        "/duplicates/decision", json={"warning_id": warning_id, "decision": "PROCEEDED"}
    )
    assert missing_reason.status_code == 422

    decided = client.post(
        "/duplicates/decision",
        json={"warning_id": warning_id, "decision": "PROCEEDED", "reason": "new department"},
    )
    assert decided.status_code == 200
    assert decided.json()["success"] is True
    assert decided.json()["decision"] == "PROCEEDED"

    repeated = client.post(
        "/duplicates/decision",
        json={"warning_id": warning_id, "decision": "CANCELLED", "reason": "oops"},
    )
    assert repeated.status_code == 409
    assert repeated.json()["detail"]["code"] == "already_decided"

    detail = client.get(f"/duplicates/warnings/{warning_id}")
    assert detail.status_code == 200
    assert detail.json()["status"] == "decided"
    assert detail.json()["user_decision"] == "PROCEEDED"


def test_decision_for_unknown_warning_is_404(client) -> None:
    response = client.post(
        "/duplicates/decision", json={"warning_id": "dw_missing", "decision": "CANCELLED"}
    )
    assert response.status_code == 404


def test_warning_detail_unknown_is_404(client) -> None:
    assert client.get("/duplicates/warnings/dw_missing").status_code == 404


def test_orphaned_match_renders_unknown_record(client) -> None:
    record_id = client.post("/records", json=build_record_payload()).json()["id"]
    warning_id = client.post(
        "/duplicates/check", json={"email": "jane@acme.com"}
    ).json()["warning_id"]
    client.delete(f"/records/{record_id}")

    detail = client.get(f"/duplicates/warnings/{warning_id}")

    assert detail.status_code == 200
    existing = detail.json()["matches"][0]["existing_record"]
    assert existing["label"] == "Unknown record"
    assert existing["missing"] is True


def test_admin_statistics_and_recent_warnings(client) -> None:
    client.post("/records", json=build_record_payload())
    first = client.post("/duplicates/check", json={"email": "jane@acme.com"}).json()
    client.post("/duplicates/check", json={"phone": "+44 20 1234 5678"})
    client.post(
        "/duplicates/decision",
        json={"warning_id": first["warning_id"], "decision": "CANCELLED", "reason": "dupe"},
    )

    stats = client.get("/admin/duplicates/statistics")
    assert stats.status_code == 200
    summary = stats.json()
    assert summary["total_warnings"] == 2
    assert summary["cancelled_count"] == 1
    assert summary["proceed_rate"] == 0.0
    assert summary["severity_breakdown"]["CRITICAL"] == 1

    pending = client.get("/admin/duplicates/warnings?limit=10")
    assert pending.status_code == 200
    assert len(pending.json()) == 1
    assert pending.json()[0]["status"] == "pending"

    everything = client.get("/admin/duplicates/warnings?limit=10&include_resolved=true")
    assert len(everything.json()) == 2


def test_statistics_rejects_inverted_window(client) -> None:
    response = client.get(
        "/admin/duplicates/statistics",
        params={"date_from": "2024-02-01T00:00:00", "date_to": "2024-01-01T00:00:00"},
    )
    assert response.status_code == 400


def test_company_conflicts(client) -> None:
    client.post("/records", json=build_record_payload())
    client.post("/duplicates/check", json={"email": "jane@acme.com"})

    response = client.get(
        "/duplicates/company-conflicts", params={"companies": "Acme,Initech", "days": 7}
    )

    assert response.status_code == 200
    assert response.json()["conflicts"] == {"Acme": True, "Initech": False}


def test_company_conflicts_rejects_out_of_range_days(client) -> None:
    response = client.get(
        "/duplicates/company-conflicts", params={"companies": "Acme", "days": 400}
    )
    assert response.status_code == 422


def test_search_endpoint(client) -> None:
    client.post("/records", json=build_record_payload())
    client.post(
        "/records",
        json=build_record_payload(name="Old Lead", email="old@acme.com", status="Closed"),
    )

    response = client.get("/duplicates/search", params={"q": "acme", "type": "company"})
    assert response.status_code == 200
    results = response.json()
    assert [item["name"] for item in results] == ["Jane Doe"]
    assert results[0]["relevance_score"] == 1.0

    with_inactive = client.get(
        "/duplicates/search", params={"q": "acme", "type": "company", "include_inactive": "true"}
    )
    assert len(with_inactive.json()) == 2

    too_short = client.get("/duplicates/search", params={"q": "a"})
    assert too_short.status_code == 422


def test_timezone_aware_contact_dates_are_stored_as_utc(client) -> None:
    aware = client.post(
        "/records",
        json=build_record_payload(last_contact_date="2024-05-01T12:00:00+02:00"),
    )
    assert aware.status_code == 201
    assert aware.json()["last_contact_date"] == "2024-05-01T10:00:00"
    client.post(
        "/records",
        json=build_record_payload(
            email="jane.doe@acme.com", phone=None, last_contact_date=None
        ),
    )

    by_name = client.post("/duplicates/check", json={"name": "Jane Doe", "company": "Acme"})
    assert by_name.status_code == 200
    assert by_name.json()["has_warning"] is True

    client.post(
        "/records",
        json=build_record_payload(
            name="Zed Zephyr",
            email="zed@zephyr.io",
            company="Zephyr",
            phone=None,
            last_contact_date="2024-05-01T10:00:00Z",
        ),
    )
    by_email = client.post("/duplicates/check", json={"email": "zed@zephyr.io"})
    assert by_email.status_code == 200
    body = by_email.json()
    assert body["severity"] == "CRITICAL"
    assert body["message"].startswith(
        "Potential duplicate detected: similar contact email was contacted"
    )
    assert body["message"].endswith("years ago by Alice")
