from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from openai import APIStatusError

import main
from services.ledger import LedgerSession
from utils import openai_agent

REPLY = 'Here is the JSON: ```json {"total":12.5,"currency":"USD","category":"Food","vendor":"Cafe","billingDate":"2024-03-01"} ```'
PNG = b"\x89PNG\r\n\x1a\n mock image content"


def runner_returning(reply=REPLY, error=None):
    async def run(agent, input):
        if error:
            raise error
        return SimpleNamespace(final_output=reply)
    return SimpleNamespace(run=run)


@pytest.fixture
def session(monkeypatch):
    session = LedgerSession()
    monkeypatch.setitem(main.app_state, "ledger_session", session)
    return session


@pytest.fixture
def client(session):
    return TestClient(main.app)


def upload(client, content=PNG, content_type="image/png"):
    return client.post("/api/process-image", files={"image": ("receipt.png", content, content_type)})


class TestProcessImage:

    def test_returns_extracted_draft(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_agent, "Runner", runner_returning())

        resp = upload(client)

        assert resp.status_code == 200
        assert resp.json() == {
            "total": 12.5,
            "currency": "USD",
            "category": "Food",
            "vendor": "Cafe",
            "billingDate": "2024-03-01",
        }

    def test_null_billing_date_is_returned_as_null(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_agent, "Runner", runner_returning(
            '{"total": 5, "currency": "EUR", "category": "Other", "vendor": "Shop", "billingDate": null}'))

        resp = upload(client)

        assert resp.status_code == 200
        assert resp.json()["billingDate"] is None

    def test_missing_image_is_400(self, client):
        resp = client.post("/api/process-image", data={"note": "no file"})

        assert resp.status_code == 400
        assert resp.json() == {"error": "No image provided"}

    def test_unsupported_type_is_400(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        resp = upload(client, content_type="image/bmp")

        assert resp.status_code == 400
        assert "Unsupported image type" in resp.json()["error"]

    def test_oversized_request_is_400(self, client):
        resp = upload(client, content=b"\x00" * (6 * 1024 * 1024))

        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_missing_api_key_is_500_with_message(self, client, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        resp = upload(client)

        assert resp.status_code == 500
        assert resp.json() == {"error": "OPENAI_API_KEY environment variable is required"}

    def test_model_http_error_is_500_with_status(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        request = httpx.Request("POST", "https://api.openai.com/v1/responses")
        error = APIStatusError("Service unavailable", response=httpx.Response(503, request=request), body=None)
        monkeypatch.setattr(openai_agent, "Runner", runner_returning(error=error))

        resp = upload(client)

        assert resp.status_code == 500
        assert "status 503" in resp.json()["error"]

    def test_model_failure_is_500(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_agent, "Runner", runner_returning(error=RuntimeError("upstream unavailable")))

        resp = upload(client)

        assert resp.status_code == 500
        assert "upstream unavailable" in resp.json()["error"]

    def test_unreadable_reply_is_500_with_generic_message(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(openai_agent, "Runner", runner_returning("Sorry, that is not a receipt."))

        resp = upload(client)

        assert resp.status_code == 500
        assert resp.json() == {"error": "Could not interpret the AI response"}


class TestExpenses:

    def test_crud_flow(self, client, session):
        created = client.post("/api/expenses", json={
            "total": 12.5, "currency": "usd", "category": "food", "vendor": "Cafe", "billingDate": "2024-03-01",
        })
        assert created.status_code == 201
        body = created.json()
        assert body["currency"] == "USD"
        assert body["category"] == "Food"
        assert body["billingDate"] == "2024-03-01"
        assert body["id"]
        assert body["recordedAt"]

        updated = client.put(f"/api/expenses/{body['id']}", json={
            "total": 20, "currency": "USD", "category": "Food", "vendor": "Bistro", "billingDate": None,
        })
        assert updated.status_code == 200
        assert updated.json()["id"] == body["id"]
        assert updated.json()["recordedAt"] == body["recordedAt"]
        assert updated.json()["billingDate"] is None

        listed = client.get("/api/expenses")
        assert listed.status_code == 200
        assert [e["vendor"] for e in listed.json()] == ["Bistro"]

        deleted = client.delete(f"/api/expenses/{body['id']}")
        assert deleted.status_code == 204
        assert len(session.ledger) == 0

    def test_list_is_newest_first(self, client):
        client.post("/api/expenses", json={"total": 1, "currency": "USD", "category": "Food", "vendor": "First"})
        client.post("/api/expenses", json={"total": 2, "currency": "USD", "category": "Food", "vendor": "Second"})

        assert [e["vendor"] for e in client.get("/api/expenses").json()] == ["Second", "First"]

    def test_update_unknown_id_is_404(self, client):
        resp = client.put("/api/expenses/missing", json={"total": 1, "currency": "USD", "category": "Food", "vendor": "X"})

        assert resp.status_code == 404
        assert resp.json() == {"error": "Expense 'missing' not found."}

    def test_delete_unknown_id_is_404(self, client):
        assert client.delete("/api/expenses/missing").status_code == 404

    def test_negative_total_is_400(self, client):
        resp = client.post("/api/expenses", json={"total": -5, "currency": "USD", "category": "Food", "vendor": "Cafe"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request data."

    def test_store_failure_is_502(self, collection, monkeypatch):
        collection.fail_with = "server selection timeout"
        monkeypatch.setitem(main.app_state, "ledger_session", LedgerSession(collection=collection))

        resp = TestClient(main.app).get("/api/expenses")

        assert resp.status_code == 502
        assert "server selection timeout" in resp.json()["error"]

    def test_missing_session_is_503(self, monkeypatch):
        monkeypatch.delitem(main.app_state, "ledger_session", raising=False)

        resp = TestClient(main.app).get("/api/expenses")

        assert resp.status_code == 503
        assert resp.json() == {"error": "Expense storage not available."}


def test_health_reports_storage(client):
    assert client.get("/api/health").json() == {"status": "ok", "storage": "memory"}
