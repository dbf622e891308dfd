from __future__ import annotations

from access_control.domain.account import AccountStatus, Role
from access_control.domain.errors import StoreUnavailable

from .conftest import auth_header


def test_signup_creates_pending_profile_then_replays(api_client, repository):
    payload = {"email": "operator@example.com", "role": "operator", "full_name": "Pat Doe"}

    first = api_client.post("/v1/accounts", json=payload, headers=auth_header("user-1"))
    assert first.status_code == 201
    body = first.json()
    assert body["idempotent_replay"] is False
    assert body["account"]["status"] == "pending_approval"
    assert body["account"]["identity"] == "user-1"

    second = api_client.post("/v1/accounts", json=payload, headers=auth_header("user-1"))
    assert second.status_code == 200
    assert second.json()["idempotent_replay"] is True


def test_signup_requires_authentication_and_canonical_role(api_client):
    payload = {"email": "someone@example.com", "role": "operator"}
    assert api_client.post("/v1/accounts", json=payload).status_code == 401

    legacy = {"email": "someone@example.com", "role": "researcher"}
    assert api_client.post("/v1/accounts", json=legacy, headers=auth_header("user-1")).status_code == 422


def test_me_reports_capabilities_and_flags(api_client, repository):
    repository.seed("user-1", role=Role.laboratory, status=AccountStatus.approved)

    response = api_client.get("/v1/me", headers=auth_header("user-1"))

    assert response.status_code == 200
    body = response.json()
    assert body["is_approved"] is True
    assert body["is_admin"] is False
    assert "write_lab_data" in body["capabilities"]
    assert "manage_users" not in body["capabilities"]


def test_me_without_profile_is_not_found(api_client):
    assert api_client.get("/v1/me", headers=auth_header("ghost")).status_code == 404


def test_me_reports_store_outage(api_client, repository):
    repository.fail_with = StoreUnavailable("timeout")

    response = api_client.get("/v1/me", headers=auth_header("user-1"))

    assert response.status_code == 503
    assert response.json()["detail"] == "account store unavailable"


def test_anonymous_capabilities_are_public(api_client):
    response = api_client.get("/v1/capabilities")

    assert response.status_code == 200
    assert response.json() == {"authenticated": False, "capabilities": ["read_public_data"]}


def test_route_decision_endpoint(api_client, repository):
    repository.seed("user-1", status=AccountStatus.suspended)

    anonymous = api_client.post("/v1/route-decision", json={"path": "/analytics"})
    assert anonymous.json() == {"allow": True, "redirect": None, "degraded": False}

    suspended = api_client.post(
        "/v1/route-decision", json={"path": "/settings"}, headers=auth_header("user-1")
    )
    assert suspended.json()["redirect"] == "/auth/account-suspended"

    repository.fail_with = StoreUnavailable("timeout")
    degraded = api_client.post(
        "/v1/route-decision", json={"path": "/settings"}, headers=auth_header("user-1")
    )
    assert degraded.json() == {"allow": True, "redirect": None, "degraded": True}


def test_post_login_target(api_client):
    assert api_client.get("/v1/post-login-target", params={"redirectTo": "/map"}).json() == {
        "location": "/map"
    }
    assert api_client.get("/v1/post-login-target").json() == {"location": "/settings"}


def test_admin_approval_flow(api_client, repository, admin_account):
    repository.seed("user-1", role=Role.operator)
    headers = auth_header(admin_account.identity)

    pending = api_client.get("/v1/admin/approvals", headers=headers)
    assert pending.status_code == 200
    assert [item["identity"] for item in pending.json()["items"]] == ["user-1"]

    approved = api_client.post("/v1/admin/accounts/user-1/approve", headers=headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_by"] == admin_account.identity

    suspended = api_client.post(
        "/v1/admin/accounts/user-1/suspend", json={"reason": "shared login"}, headers=headers
    )
    assert suspended.json()["status"] == "suspended"

    rejected = api_client.post(
        "/v1/admin/accounts/user-1/reject", json={"reason": "policy"}, headers=headers
    )
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "policy"


def test_admin_error_mapping(api_client, repository, admin_account):
    repository.seed("user-1", status=AccountStatus.approved)
    headers = auth_header(admin_account.identity)

    empty_reason = api_client.post(
        "/v1/admin/accounts/user-1/reject", json={"reason": ""}, headers=headers
    )
    assert empty_reason.status_code == 400

    wrong_state = api_client.post(
        "/v1/admin/accounts/user-1/reject", json={"reason": "spam"}, headers=headers
    )
    assert wrong_state.status_code == 409

    missing = api_client.post("/v1/admin/accounts/ghost/approve", headers=headers)
    assert missing.status_code == 404


def test_admin_endpoints_forbid_non_admins(api_client, repository):
    repository.seed("user-1", role=Role.epa_staff, status=AccountStatus.approved)
    repository.seed("user-2")
    headers = auth_header("user-1")

    assert api_client.get("/v1/admin/approvals", headers=headers).status_code == 403
    assert api_client.get("/v1/admin/stats", headers=headers).status_code == 403
    assert api_client.post("/v1/admin/accounts/user-2/approve", headers=headers).status_code == 403
    assert repository.get_account("user-2").status is AccountStatus.pending_approval
    assert api_client.get("/v1/admin/stats").status_code == 401


def test_admin_account_listing_filters(api_client, repository, admin_account):
    repository.seed("user-1", role=Role.operator)
    repository.seed("user-2", role=Role.laboratory, status=AccountStatus.approved)
    headers = auth_header(admin_account.identity)

    response = api_client.get(
        "/v1/admin/accounts", params={"status": "approved", "role": "laboratory"}, headers=headers
    )
    assert response.status_code == 200
    assert [item["identity"] for item in response.json()["items"]] == ["user-2"]

    bad_filter = api_client.get("/v1/admin/accounts", params={"status": "archived"}, headers=headers)
    assert bad_filter.status_code == 422


def test_admin_stats(api_client, repository, admin_account):
    repository.seed("user-1")
    repository.seed("user-2", status=AccountStatus.rejected)

    response = api_client.get("/v1/admin/stats", headers=auth_header(admin_account.identity))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert body["pending"] == 1
    assert body["approved"] == 1
    assert body["rejected"] == 1
    assert body["suspended"] == 0
    assert body["by_role"]["admin"] == 1


def test_audit_log_endpoint_returns_paginated_entries(api_client, repository, admin_account):
    headers = auth_header(admin_account.identity)
    for idx in range(5):
        repository.seed(f"user-{idx}")
        api_client.post(f"/v1/admin/accounts/user-{idx}/approve", headers=headers)

    resp = api_client.get("/v1/admin/audit/logs", params={"limit": 3}, headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["items"]) == 3
    assert body["next_cursor"]
    assert all(entry["event_type"] == "account.approved" for entry in body["items"])

    next_resp = api_client.get(
        "/v1/admin/audit/logs", params={"cursor": body["next_cursor"], "limit": 3}, headers=headers
    )
    assert next_resp.status_code == 200
    assert len(next_resp.json()["items"]) == 2

    filter_resp = api_client.get(
        "/v1/admin/audit/logs", params={"account_id": "non-existent"}, headers=headers
    )
    assert filter_resp.json()["items"] == []

    bad_cursor = api_client.get("/v1/admin/audit/logs", params={"cursor": "not-valid"}, headers=headers)
    assert bad_cursor.status_code == 400


def test_service_app_exposes_health_and_metrics():
    from fastapi.testclient import TestClient

    from access_control.main import app

    # no lifespan: neither endpoint touches the database
    client = TestClient(app)

    health = client.get("/healthz")
    assert health.status_code == 200
    assert health.json() == {"status": "ok"}
    assert health.headers["X-Download-Options"] == "noopen"

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "access_guard_degraded_total" in metrics.text
