"""
HTTP-level tests for the FastAPI application.

Runs the real routers, pipeline and error responder against the in-memory
stores from conftest. Covers:
- Lead lifecycle: create -> get -> delete -> 404
- Interactions against another user's lead are rejected as not found
- Rate limiting: the 101st request in a window gets 429 with headers
- Wire shape of every error, including unexpected exceptions
"""

from __future__ import annotations

import io

from openpyxl import load_workbook

from conftest import ALICE, BOB, auth

LEAD = {"name": "Jane Doe", "email": "jane@example.com", "status": "new", "company": "Acme"}


def _error(response) -> dict:
    body = response.json()
    assert set(body) == {"error"}
    return body["error"]


class TestLeadLifecycle:
    def test_create_get_delete(self, client):
        created = client.post("/api/leads", json=LEAD, headers=auth())
        assert created.status_code == 201
        lead = created.json()
        assert lead["user_id"] == ALICE.user_id
        assert lead["name"] == "Jane Doe"
        assert lead["status"] == "new"

        fetched = client.get(f"/api/leads/{lead['id']}", headers=auth())
        assert fetched.status_code == 200
        assert fetched.json()["id"] == lead["id"]

        deleted = client.delete(f"/api/leads/{lead['id']}", headers=auth())
        assert deleted.status_code == 200
        assert deleted.json() == {"success": True}

        missing = client.get(f"/api/leads/{lead['id']}", headers=auth())
        assert missing.status_code == 404
        assert _error(missing) == {"code": "NOT_FOUND", "message": "Lead not found"}

    def test_patch_changes_only_given_fields(self, client):
        lead = client.post("/api/leads", json=LEAD, headers=auth()).json()

        response = client.patch(f"/api/leads/{lead['id']}", json={"status": "won"}, headers=auth())

        assert response.status_code == 200
        assert response.json()["status"] == "won"
        assert response.json()["company"] == "Acme"

    def test_empty_patch_returns_lead_unchanged(self, client):
        lead = client.post("/api/leads", json=LEAD, headers=auth()).json()

        response = client.patch(f"/api/leads/{lead['id']}", json={}, headers=auth())

        assert response.status_code == 200
        assert response.json()["updated_at"] == lead["updated_at"]

    def test_other_users_lead_is_not_found(self, client, make_lead):
        lead = make_lead(owner=BOB)

        for response in (
            client.get(f"/api/leads/{lead.id}", headers=auth()),
            client.patch(f"/api/leads/{lead.id}", json={"status": "won"}, headers=auth()),
            client.delete(f"/api/leads/{lead.id}", headers=auth()),
            client.get("/api/leads/not-a-uuid", headers=auth()),
        ):
            assert response.status_code == 404
            assert _error(response) == {"code": "NOT_FOUND", "message": "Lead not found"}


class TestCreateErrors:
    def test_missing_token(self, client, lead_store):
        response = client.post("/api/leads", json=LEAD)

        assert response.status_code == 401
        assert _error(response)["code"] == "AUTH_ERROR"
        assert lead_store.calls == 0

    def test_unknown_token(self, client):
        assert client.get("/api/leads", headers=auth("stolen")).status_code == 401

    def test_malformed_json(self, client):
        response = client.post(
            "/api/leads",
            content=b"{not json",
            headers={**auth(), "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert _error(response)["details"] == {"body": ["Malformed JSON"]}

    def test_validation_errors_per_field(self, client):
        response = client.post("/api/leads", json={"name": "", "email": "bad", "status": "open"}, headers=auth())

        error = _error(response)
        assert response.status_code == 400
        assert error["code"] == "VALIDATION_ERROR"
        assert set(error["details"]) == {"name", "email", "status"}


class TestListAndSearch:
    def test_list_is_owner_scoped(self, client, make_lead):
        make_lead(name="Mine")
        make_lead(owner=BOB, name="Theirs")

        body = client.get("/api/leads", headers=auth()).json()

        assert [lead["name"] for lead in body["leads"]] == ["Mine"]
        assert (body["total"], body["limit"], body["offset"]) == (1, 50, 0)
        assert set(body) == {"leads", "total", "limit", "offset"}

    def test_search_echoes_query_and_clamps_limit(self, client, make_lead):
        make_lead(name="Jane", company="Acme")
        make_lead(name="Zed", company="Globex")

        body = client.get("/api/leads/search", params={"query": "acme", "limit": "1000"}, headers=auth()).json()

        assert [lead["name"] for lead in body["leads"]] == ["Jane"]
        assert body["query"] == "acme"
        assert body["limit"] == 100

    def test_invalid_status_filter(self, client):
        response = client.get("/api/leads", params={"status": "archived"}, headers=auth())

        assert response.status_code == 400
        assert _error(response)["code"] == "VALIDATION_ERROR"


class TestInteractions:
    def test_create_and_list(self, client, make_lead):
        lead = make_lead()

        created = client.post(
            "/api/interactions",
            json={"lead_id": str(lead.id), "type": "call", "description": "Intro call"},
            headers=auth(),
        )
        history = client.get("/api/interactions", params={"lead_id": str(lead.id)}, headers=auth())

        assert created.status_code == 201
        assert history.json()["total"] == 1
        assert history.json()["interactions"][0]["description"] == "Intro call"

    def test_interaction_on_other_users_lead(self, client, make_lead, interaction_store):
        lead = make_lead(owner=BOB)

        response = client.post(
            "/api/interactions",
            json={"lead_id": str(lead.id), "type": "note", "description": "Sneaky"},
            headers=auth(),
        )

        assert response.status_code == 404
        assert _error(response) == {"code": "NOT_FOUND", "message": "Lead not found"}
        assert interaction_store.interactions == []


class TestRateLimiting:
    def test_101st_request_rejected(self, client):
        for _ in range(100):
            assert client.get("/api/leads", headers=auth()).status_code == 200

        response = client.get("/api/leads", headers=auth())

        assert response.status_code == 429
        error = _error(response)
        assert error["code"] == "RATE_LIMIT_EXCEEDED"
        assert error["details"]["remaining"] == 0
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) <= 60

    def test_other_user_not_affected(self, client):
        for _ in range(101):
            client.get("/api/leads", headers=auth())

        assert client.get("/api/leads", headers=auth("bob-token")).status_code == 200

    def test_rejected_create_does_not_persist(self, client, lead_store, rate_limiter):
        from services.rate_limiter import RateLimitPresets, client_identifier

        for _ in range(RateLimitPresets.STANDARD.max_requests):
            rate_limiter.check(client_identifier(ALICE.user_id), RateLimitPresets.STANDARD)

        response = client.post("/api/leads", json=LEAD, headers=auth())

        assert response.status_code == 429
        assert lead_store.leads == {}


class TestImportExport:
    def test_import_csv(self, client, lead_store):
        content = (
            "Name,Email,Status\n"
            "Jane,jane@example.com,new\n"
            "John,broken,new\n"
            "Max,max@example.com,\n"
        ).encode("utf-8")

        response = client.post(
            "/api/leads/import",
            files={"file": ("leads.csv", content, "text/csv")},
            headers=auth(),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": 2,
            "failed": 1,
            "errors": [{"row": 3, "errors": ["email: Invalid email"]}],
        }
        assert len(lead_store.leads) == 2

    def test_import_without_file(self, client):
        response = client.post("/api/leads/import", data={"other": "x"}, headers=auth())

        assert response.status_code == 400
        assert _error(response)["details"] == {"file": ["File is required"]}

    def test_export_csv(self, client, make_lead):
        make_lead(name="Jane", notes="=HYPERLINK(evil)")

        response = client.get("/api/leads/export", headers=auth())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["content-disposition"].startswith('attachment; filename="leads-export-')
        assert "HYPERLINK(evil)" in response.text
        assert "=HYPERLINK" not in response.text

    def test_export_xlsx(self, client, make_lead):
        make_lead(name="Jane")

        response = client.get("/api/leads/export", params={"format": "xlsx"}, headers=auth())

        workbook = load_workbook(io.BytesIO(response.content))
        assert workbook["Leads"]["A2"].value == "Jane"
        assert response.headers["content-disposition"].endswith('.xlsx"')


class TestErrorResponder:
    def test_unexpected_exception_is_hidden(self, client, lead_store):
        lead_store.failure = RuntimeError("password=hunter2")

        response = client.get("/api/leads", headers=auth())

        assert response.status_code == 500
        assert _error(response) == {
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again.",
        }
        assert "hunter2" not in response.text

    def test_unknown_route_uses_error_shape(self, client):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert _error(response)["code"] == "NOT_FOUND"


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
