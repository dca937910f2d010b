"""
Tests: library HTTP API.

Covers:
    - effective view listing, lookups, search
    - base item CRUD (superuser)
    - custom items, enablement, promotion (tenant admin)
    - overrides and hidden items
    - clinical review endpoints
    - error mapping: 400 / 403 / 404 / 409 / 415 / 422 / 503
    - health endpoints and request-id header
"""

import pytest

from signposting.core.exceptions import StorageUnavailableError
from signposting.services import effective_view_service


def _create_base(client, headers, name, **kw):
    res = client.post("/api/v1/base-items", json={"name": name, **kw}, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_custom(client, headers, tenant_id, name, **kw):
    res = client.post(f"/api/v1/tenants/{tenant_id}/custom-items",
                      json={"name": name, **kw}, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Effective views
# ═════════════════════════════════════════════════════════════════════════════


def test_list_items_returns_resolved_view(client, tenant, superuser_headers):
    _create_base(client, superuser_headers, "Earache")
    _create_base(client, superuser_headers, "Cough")

    res = client.get(f"/api/v1/tenants/{tenant.id}/items")

    assert res.status_code == 200
    data = res.get_json()
    assert data["total"] == 2
    assert [i["name"] for i in data["items"]] == ["Cough", "Earache"]


def test_list_items_unknown_tenant_is_404(client):
    res = client.get("/api/v1/tenants/9999/items")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_search_by_letter_and_text(client, tenant, superuser_headers):
    _create_base(client, superuser_headers, "Earache", brief_instruction="Pharmacy first")
    _create_base(client, superuser_headers, "Eye infection")
    _create_base(client, superuser_headers, "111 advice")

    by_letter = client.get(f"/api/v1/tenants/{tenant.id}/items?letter=e").get_json()
    by_text = client.get(f"/api/v1/tenants/{tenant.id}/items?q=pharmacy").get_json()
    by_hash = client.get(f"/api/v1/tenants/{tenant.id}/items?letter=%23").get_json()

    assert [i["name"] for i in by_letter["items"]] == ["Earache", "Eye infection"]
    assert [i["name"] for i in by_text["items"]] == ["Earache"]
    assert [i["name"] for i in by_hash["items"]] == ["111 advice"]


def test_lookup_by_id_slug_and_name(client, tenant, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")
    prefix = f"/api/v1/tenants/{tenant.id}/items"

    assert client.get(f"{prefix}/{base['id']}").get_json()["slug"] == "earache"
    assert client.get(f"{prefix}/by-slug/earache").get_json()["id"] == base["id"]
    assert client.get(f"{prefix}/by-name?name=EARACHE").get_json()["id"] == base["id"]
    assert client.get(f"{prefix}/by-name").status_code == 400
    assert client.get(f"{prefix}/missing").status_code == 404


def test_storage_failure_is_503_after_one_retry(client, tenant, monkeypatch):
    calls = []

    def _down(*args, **kwargs):
        calls.append(1)
        raise StorageUnavailableError("resolve")

    monkeypatch.setattr(effective_view_service, "resolve", _down)

    res = client.get(f"/api/v1/tenants/{tenant.id}/items")

    assert res.status_code == 503
    assert res.get_json()["code"] == "ERR_STORAGE_UNAVAILABLE"
    assert len(calls) == 2


# ═════════════════════════════════════════════════════════════════════════════
# Base library
# ═════════════════════════════════════════════════════════════════════════════


def test_base_item_crud(client, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache", age_group="U5")

    res = client.patch(f"/api/v1/base-items/{base['id']}",
                       json={"brief_instruction": "GP"}, headers=superuser_headers)
    assert res.status_code == 200
    assert res.get_json()["brief_instruction"] == "GP"

    assert client.get("/api/v1/base-items").get_json()["total"] == 1

    res = client.delete(f"/api/v1/base-items/{base['id']}", headers=superuser_headers)
    assert res.status_code == 200
    assert client.get(f"/api/v1/base-items/{base['id']}").status_code == 404


def test_base_item_requires_superuser(client, admin_headers):
    res = client.post("/api/v1/base-items", json={"name": "Earache"}, headers=admin_headers)
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_invalid_content_is_422(client, superuser_headers):
    res = client.post("/api/v1/base-items", json={"name": "Earache", "age_group": "Elderly"},
                      headers=superuser_headers)
    assert res.status_code == 422
    assert "age_group" in res.get_json()["details"]


def test_non_json_body_is_415(client, superuser_headers):
    res = client.post("/api/v1/base-items", data="name=Earache",
                      content_type="text/plain", headers=superuser_headers)
    assert res.status_code == 415


# ═════════════════════════════════════════════════════════════════════════════
# Custom items, enablement, promotion
# ═════════════════════════════════════════════════════════════════════════════


def test_custom_item_starts_disabled_then_enabled(client, tenant, admin_headers):
    item = _create_custom(client, admin_headers, tenant.id, "Minor Injury")
    items_url = f"/api/v1/tenants/{tenant.id}/items"

    assert client.get(items_url).get_json()["total"] == 0
    assert client.get(f"{items_url}?include_disabled=true").get_json()["total"] == 1

    res = client.put(f"{items_url}/{item['id']}/enabled", json={"enabled": True}, headers=admin_headers)
    assert res.status_code == 200
    assert client.get(items_url).get_json()["items"][0]["source"] == "custom"


def test_superuser_created_custom_item_is_visible_at_once(client, tenant, superuser_headers):
    item = _create_custom(client, superuser_headers, tenant.id, "Minor Injury")

    data = client.get(f"/api/v1/tenants/{tenant.id}/items").get_json()
    assert [i["id"] for i in data["items"]] == [item["id"]]


def test_enabled_flag_must_be_boolean(client, tenant, admin_headers, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")
    res = client.put(f"/api/v1/tenants/{tenant.id}/items/{base['id']}/enabled",
                     json={"enabled": "yes"}, headers=admin_headers)
    assert res.status_code == 400


def test_admin_of_other_surgery_is_forbidden(client, tenant, other_tenant, admin_headers):
    res = client.get(f"/api/v1/tenants/{other_tenant.id}/custom-items", headers=admin_headers)
    assert res.status_code == 403


def test_custom_item_not_visible_to_other_surgery(client, tenant, other_tenant, admin_headers,
                                                   superuser_headers):
    item = _create_custom(client, admin_headers, tenant.id, "Minor Injury")
    res = client.get(f"/api/v1/tenants/{other_tenant.id}/custom-items/{item['id']}",
                     headers=superuser_headers)
    assert res.status_code == 404


def test_promote_endpoint(client, tenant, other_tenant, admin_headers):
    item = _create_custom(client, admin_headers, tenant.id, "Travel Vaccination Advice")
    url = f"/api/v1/tenants/{tenant.id}/custom-items/{item['id']}/promote"

    res = client.post(url, headers=admin_headers)
    assert res.status_code == 201
    base = res.get_json()
    assert base["slug"] == "travel-vaccination-advice"

    other = client.get(f"/api/v1/tenants/{other_tenant.id}/items").get_json()
    assert [i["id"] for i in other["items"]] == [base["id"]]

    again = client.post(url, headers=admin_headers)
    assert again.status_code == 409


# ═════════════════════════════════════════════════════════════════════════════
# Overrides
# ═════════════════════════════════════════════════════════════════════════════


def test_override_changes_only_that_surgery(client, tenant, other_tenant, admin_headers,
                                            superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")

    res = client.put(f"/api/v1/tenants/{tenant.id}/overrides/{base['id']}",
                     json={"name": "Ear pain"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()["override"]["name"] == "Ear pain"

    mine = client.get(f"/api/v1/tenants/{tenant.id}/items").get_json()["items"]
    theirs = client.get(f"/api/v1/tenants/{other_tenant.id}/items").get_json()["items"]
    assert (mine[0]["name"], mine[0]["source"]) == ("Ear pain", "override")
    assert (theirs[0]["name"], theirs[0]["source"]) == ("Earache", "base")


def test_hide_list_and_unhide(client, tenant, admin_headers, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")
    prefix = f"/api/v1/tenants/{tenant.id}"

    assert client.post(f"{prefix}/overrides/{base['id']}/hide", headers=admin_headers).status_code == 200
    hidden = client.get(f"{prefix}/hidden-items", headers=admin_headers).get_json()
    assert [h["base_item_id"] for h in hidden["items"]] == [base["id"]]
    assert client.get(f"{prefix}/items").get_json()["total"] == 0

    res = client.post(f"{prefix}/overrides/{base['id']}/unhide", headers=admin_headers)
    assert res.get_json()["override"] is None
    assert client.get(f"{prefix}/items").get_json()["total"] == 1


def test_hidden_flag_must_be_boolean(client, tenant, admin_headers, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")
    res = client.put(f"/api/v1/tenants/{tenant.id}/overrides/{base['id']}",
                     json={"hidden": "1"}, headers=admin_headers)
    assert res.status_code == 400


def test_library_status(client, tenant, admin_headers, superuser_headers):
    a = _create_base(client, superuser_headers, "Earache")
    b = _create_base(client, superuser_headers, "Cough")
    prefix = f"/api/v1/tenants/{tenant.id}"
    client.put(f"{prefix}/overrides/{a['id']}", json={"name": "Ear pain"}, headers=admin_headers)
    client.post(f"{prefix}/overrides/{b['id']}/hide", headers=admin_headers)

    data = client.get(f"{prefix}/library-status", headers=admin_headers).get_json()

    assert [(i["name"], i["status"], i["can_revert_to_base"]) for i in data["in_use"]] == [
        ("Ear pain", "MODIFIED", True),
    ]
    assert [i["base_item_id"] for i in data["available"]] == [b["id"]]


# ═════════════════════════════════════════════════════════════════════════════
# Clinical review
# ═════════════════════════════════════════════════════════════════════════════


def test_review_flow(client, tenant, admin_headers, superuser_headers):
    base = _create_base(client, superuser_headers, "Earache")
    prefix = f"/api/v1/tenants/{tenant.id}/review"

    res = client.post(f"{prefix}/complete", headers=admin_headers)
    assert res.status_code == 422
    assert res.get_json()["details"]["pending_count"] == 1

    res = client.put(f"{prefix}/{base['id']}", json={"status": "approved"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()["status"] == "APPROVED"

    res = client.post(f"{prefix}/complete", headers=admin_headers)
    assert res.status_code == 200
    assert res.get_json()["last_clinical_reviewer_id"] == "admin-1"

    summary = client.get(prefix, headers=admin_headers).get_json()
    assert summary["counts"]["approved"] == 1
    assert summary["requires_clinical_review"] is False


def test_review_status_required(client, tenant, admin_headers):
    res = client.put(f"/api/v1/tenants/{tenant.id}/review/anything", json={}, headers=admin_headers)
    assert res.status_code == 400


def test_bulk_approve_and_rereview(client, tenant, admin_headers, superuser_headers):
    _create_base(client, superuser_headers, "Earache")
    _create_base(client, superuser_headers, "Cough")
    prefix = f"/api/v1/tenants/{tenant.id}/review"

    res = client.post(f"{prefix}/bulk-approve", json={}, headers=admin_headers)
    assert res.get_json()["approved"] == 2

    assert client.post(f"{prefix}/request-rereview", headers=admin_headers).status_code == 403
    res = client.post(f"{prefix}/request-rereview", headers=superuser_headers)
    assert res.get_json()["reset"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# Health & middleware
# ═════════════════════════════════════════════════════════════════════════════


def test_health_live_reports_view_cache(client):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    checks = res.get_json()["checks"]
    assert checks["database"]["status"] == "ok"
    assert checks["view_cache"]["status"] == "ok"


def test_request_id_is_echoed(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert "X-Request-Duration-Ms" in res.headers


@pytest.mark.parametrize("path", ["/api/v1/nope", "/api/v1/tenants/abc/items"])
def test_unknown_routes_are_404(client, path):
    assert client.get(path).status_code == 404
