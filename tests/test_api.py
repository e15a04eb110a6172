"""
Tests for the SLA HTTP endpoints
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from helpdesk.config import settings
from helpdesk.main import app


RULES = """
rules:
  - id: critical
    name: Critical
    priority: 1
    conditions:
      priority: critical
    target_resolution_minutes: 60
  - id: default
    name: Default
    priority: 100
    target_resolution_minutes: 1440
"""


@pytest.fixture
def client(tmp_path, monkeypatch):
    rules_path = tmp_path / "sla_rules.yaml"
    rules_path.write_text(RULES)

    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "sla_rules_path", rules_path)
    monkeypatch.setattr(settings, "sla_evaluation_interval", 0)
    monkeypatch.setattr(settings, "sla_max_extensions", 1)
    monkeypatch.setattr(settings, "sla_max_extension_hours", 24)

    with TestClient(app) as test_client:
        yield test_client


def ticket_payload(external_id="TICKET-001", priority="critical", created_at=None, updated_at=None, **kwargs):
    created_at = created_at or datetime.now(timezone.utc) - timedelta(minutes=5)
    payload = {
        "id": external_id,
        "status": "open",
        "priority": priority,
        "category": "technical",
        "created_at": created_at.isoformat(),
        "updated_at": (updated_at or created_at).isoformat(),
    }
    payload.update(kwargs)
    return payload


def ingest(client, *tickets):
    response = client.post("/sla/tickets", json={"tickets": list(tickets)})
    assert response.status_code == 200
    return response.json()


def ingest_one(client, **kwargs) -> str:
    """Ingest a single ticket and return its internal id"""
    payload = ticket_payload(**kwargs)
    return ingest(client, payload)["ticket_ids"][payload["id"]]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["sla_rules"] == "loaded (2 active)"
    assert response.json()["checks"]["sla_scheduler"] == "stopped"


def test_list_rules(client):
    response = client.get("/sla/rules")

    assert response.status_code == 200
    assert [rule["id"] for rule in response.json()] == ["critical", "default"]
    assert response.json()[0]["conditions"] == {"priority": "critical"}


def test_ingest_and_get_ticket(client):
    result = ingest(client, ticket_payload())
    assert (result["created"], result["updated"], result["skipped"], result["failed"]) == (1, 0, 0, 0)
    assert result["errors"] == []

    response = client.get(f"/sla/tickets/{result['ticket_ids']['TICKET-001']}")

    assert response.status_code == 200
    body = response.json()
    assert body["external_id"] == "TICKET-001"
    assert body["sla_rule_id"] == "critical"
    assert body["sla_rule_name"] == "Critical"
    assert body["sla_status"] == "on_track"
    assert body["remaining_seconds"] > 0


def test_ingest_is_idempotent(client):
    payload = ticket_payload()
    first = ingest(client, payload)

    second = ingest(client, payload)

    assert second["skipped"] == 1
    assert second["ticket_ids"] == first["ticket_ids"]


def test_overdue_ticket_is_breached_on_read(client):
    ticket_id = ingest_one(client, created_at=datetime.now(timezone.utc) - timedelta(hours=3))

    body = client.get(f"/sla/tickets/{ticket_id}").json()

    assert body["sla_status"] == "breached"
    assert body["sla_breached_at"] is not None
    assert body["remaining_seconds"] < 0


def test_unknown_ticket_returns_404(client):
    response = client.get("/sla/tickets/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404
    assert response.json()["error_type"] == "ResourceNotFoundException"


def test_extension_flow(client):
    ticket_id = ingest_one(client, created_at=datetime.now(timezone.utc) - timedelta(hours=2))

    info = client.get(f"/sla/tickets/{ticket_id}/extension").json()
    assert info["can_extend"] is True
    assert info["default_hours"] >= 1
    assert info["max_extensions"] == 1

    preview = client.get(f"/sla/tickets/{ticket_id}/extension/preview", params={"hours": 4}).json()
    assert preview["hours"] == 4

    response = client.post(f"/sla/tickets/{ticket_id}/extend", json={"hours": 4, "reason": "Vendor delay"})
    assert response.status_code == 200
    body = response.json()
    assert body["sla_status"] == "on_track"
    assert body["sla_breached_at"] is None
    assert body["sla_extension_count"] == 1
    assert body["sla_due_at"] == preview["new_due_at"]

    # Extension limit reached
    response = client.post(f"/sla/tickets/{ticket_id}/extend", json={"hours": 4})
    assert response.status_code == 422
    assert response.json()["error_type"] == "SlaExtensionException"
    assert client.get(f"/sla/tickets/{ticket_id}/extension").json()["can_extend"] is False


def test_extension_above_hour_limit_is_rejected(client):
    ticket_id = ingest_one(client)

    response = client.post(f"/sla/tickets/{ticket_id}/extend", json={"hours": 25})

    assert response.status_code == 422


def test_preview_requires_positive_hours(client):
    ticket_id = ingest_one(client)

    response = client.get(f"/sla/tickets/{ticket_id}/extension/preview", params={"hours": 0})

    assert response.status_code == 422


def test_refresh_and_reassignment_on_update(client):
    created_at = datetime.now(timezone.utc) - timedelta(minutes=5)
    ticket_id = ingest_one(client, priority="low", created_at=created_at)
    assert client.get(f"/sla/tickets/{ticket_id}").json()["sla_rule_id"] == "default"

    result = ingest(client, ticket_payload(
        priority="critical", created_at=created_at, updated_at=created_at + timedelta(minutes=1)
    ))
    assert result["updated"] == 1
    assert client.get(f"/sla/tickets/{ticket_id}").json()["sla_rule_id"] == "critical"

    response = client.post(f"/sla/tickets/{ticket_id}/refresh", json={"restart_from_now": True})
    assert response.status_code == 200
    assert response.json()["sla_rule_id"] == "critical"


def test_refresh_closed_ticket_is_rejected(client):
    ticket_id = ingest_one(client, status="closed")

    response = client.post(f"/sla/tickets/{ticket_id}/refresh")

    assert response.status_code == 422


def test_sweep_endpoint(client):
    now = datetime.now(timezone.utc)
    ingest(
        client,
        ticket_payload("T-1", created_at=now - timedelta(hours=2)),
        ticket_payload("T-2", priority="low", created_at=now - timedelta(minutes=5)),
    )
    # T-1 breached on ingest; a shorter default target puts T-2 past the approaching threshold
    settings.sla_rules_path.write_text(RULES.replace("1440", "6"))
    assert client.app.state.rules_manager.reload() is True

    response = client.post("/sla/sweep")

    assert response.status_code == 200
    body = response.json()
    assert body["evaluated"] == 1
    assert body["changed"] == 1
    assert body["cancelled"] is False
    assert body["failed"] == 0
