"""HTTP tests for the follow-up queue API."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from src.main import create_app, wire_services


def iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


def new_item(email_id: str = "msg-1", **overrides) -> dict:
    body = {
        "email_id": email_id,
        "thread_id": f"thr-{email_id}",
        "subject": "Contract renewal",
        "from_address": "dana@client.example",
        "received_date": iso(timedelta(hours=-1)),
        "priority": "HIGH",
    }
    body.update(overrides)
    return body


@pytest.fixture
async def client(session_maker, config_manager, metrics):
    app = create_app(use_lifespan=False)
    wire_services(app, config_manager, metrics, None, session_maker)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def add(client, email_id="msg-1", **overrides) -> str:
    response = await client.post("/queue/items", json=new_item(email_id, **overrides))
    assert response.status_code == 201
    return response.json()["id"]


class TestItemEndpoints:
    """Tests for item CRUD routes."""

    async def test_add_is_idempotent(self, client):
        first = await add(client)
        second = await add(client)

        assert first == second
        items = (await client.get("/queue/items")).json()
        assert [item["id"] for item in items] == [first]

    async def test_add_without_thread_id(self, client):
        body = new_item()
        del body["thread_id"]

        response = await client.post("/queue/items", json=body)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_naive_datetime_rejected(self, client):
        response = await client.post("/queue/items", json=new_item(received_date="2026-10-19T10:00:00"))

        assert response.status_code == 422

    async def test_get_item(self, client):
        item_id = await add(client)

        response = await client.get(f"/queue/items/{item_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ACTIVE"
        assert body["priority"] == "HIGH"
        assert body["action_count"] == 0

    async def test_get_unknown_item(self, client):
        assert (await client.get("/queue/items/queue_missing")).status_code == 404

    async def test_patch_item(self, client):
        item_id = await add(client)

        response = await client.patch(f"/queue/items/{item_id}", json={"category": "legal", "labels": ["urgent"]})

        assert response.status_code == 200
        assert response.json()["category"] == "legal"
        assert response.json()["labels"] == ["urgent"]

    @pytest.mark.parametrize("body", [{}, {"email_id": "other"}, {"colour": "blue"}])
    async def test_patch_rejects_bad_bodies(self, client, body):
        item_id = await add(client)

        assert (await client.patch(f"/queue/items/{item_id}", json=body)).status_code == 422

    async def test_patch_unknown_item(self, client):
        response = await client.patch("/queue/items/queue_missing", json={"category": "x"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_delete(self, client):
        item_id = await add(client)

        assert (await client.delete(f"/queue/items/{item_id}")).status_code == 204
        assert (await client.delete(f"/queue/items/{item_id}")).status_code == 404

    async def test_filter_by_status(self, client):
        item_id = await add(client)
        await client.post(f"/queue/items/{item_id}/complete")

        assert (await client.get("/queue/items")).json() == []
        completed = (await client.get("/queue/items", params={"status": "COMPLETED"})).json()
        assert [item["id"] for item in completed] == [item_id]

    async def test_by_priority(self, client):
        high = await add(client, "a")
        await add(client, "b", priority="LOW")

        items = (await client.get("/queue/items/priority/HIGH")).json()

        assert [item["id"] for item in items] == [high]


class TestLifecycleEndpoints:
    """Tests for snooze, complete, wait and escalate."""

    async def test_snooze_in_past_rejected(self, client):
        item_id = await add(client)

        response = await client.post(f"/queue/items/{item_id}/snooze", json={"until": iso(timedelta(hours=-1))})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert (await client.get(f"/queue/items/{item_id}")).json()["status"] == "ACTIVE"

    async def test_snooze(self, client):
        item_id = await add(client)

        response = await client.post(
            f"/queue/items/{item_id}/snooze",
            json={"until": iso(timedelta(hours=3)), "reason": "after lunch"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "SNOOZED"
        assert response.json()["snooze_count"] == 1

    async def test_wait_and_list_waiting(self, client):
        item_id = await add(client)

        response = await client.post(
            f"/queue/items/{item_id}/wait",
            json={"waiting_on": "legal@example.com", "reason": "Needs review"}
        )

        assert response.json()["status"] == "WAITING"
        waiting = (await client.get("/queue/items/waiting")).json()
        assert [item["id"] for item in waiting] == [item_id]

    async def test_escalate(self, client):
        item_id = await add(client, priority="MEDIUM")

        response = await client.post(f"/queue/items/{item_id}/escalate", json={"priority": "CRITICAL"})

        assert response.json()["priority"] == "CRITICAL"
        assert response.json()["status"] == "ESCALATED"

    async def test_complete_unknown(self, client):
        assert (await client.post("/queue/items/queue_missing/complete")).status_code == 404

    async def test_history(self, client):
        item_id = await add(client)
        await client.post(f"/queue/items/{item_id}/complete")

        history = (await client.get("/queue/history/msg-1")).json()

        assert {entry["action"] for entry in history} == {"ADDED", "COMPLETED"}
        assert all(entry["queue_item_id"] == item_id for entry in history)

    async def test_snooze_choice(self, client, metrics):
        response = await client.post(
            "/queue/items/queue_1/snooze-choice",
            json={"chosen_time": "2026-10-19T15:00:00+00:00"}
        )

        assert response.status_code == 204
        assert metrics.tags("snooze.user.choice") == [{"hour": "15", "dayOfWeek": "1"}]


class TestBulkAndIntake:

    async def test_bulk_complete(self, client):
        item_id = await add(client)

        result = (await client.post("/queue/bulk/complete", json={"ids": [item_id, "queue_missing"]})).json()

        assert result["successful"] == [item_id]
        assert result["failed"][0]["id"] == "queue_missing"
        assert result["total_processed"] == 2

    async def test_bulk_snooze(self, client):
        ids = [await add(client, "a"), await add(client, "b")]

        result = (await client.post(
            "/queue/bulk/snooze",
            json={"ids": ids, "until": iso(timedelta(days=1))}
        )).json()

        assert sorted(result["successful"]) == sorted(ids)

    async def test_classification_queued_for_vip(self, client):
        response = await client.post("/queue/classifications", json={
            "classification": {"priority": "LOW"},
            "email": {
                "email_id": "msg-vip",
                "thread_id": "thr-vip",
                "from_address": "vip@example.com",
                "received_date": iso(timedelta(minutes=-5)),
            }
        })

        item_id = response.json()["id"]
        assert item_id is not None
        item = (await client.get(f"/queue/items/{item_id}")).json()
        assert item["reason"] == "VIP_REQUIRES_ATTENTION"

    async def test_classification_not_needed(self, client):
        response = await client.post("/queue/classifications", json={
            "classification": {"priority": "LOW"},
            "email": {"email_id": "m", "thread_id": "t", "received_date": iso(timedelta(0))}
        })

        assert response.status_code == 200
        assert response.json() == {"id": None}

    async def test_statistics(self, client):
        await add(client, "a")
        item_id = await add(client, "b")
        await client.post(f"/queue/items/{item_id}/complete")

        stats = (await client.get("/queue/statistics")).json()

        assert stats["total_items"] == 2
        assert stats["status_counts"]["COMPLETED"] == 1
        assert stats["completed_today"] == 1


class TestSweepEndpoints:

    async def test_overdue_sweep(self, client):
        item_id = await add(client, sla_deadline=iso(timedelta(hours=-2)))
        assert (await client.post("/queue/sweeps/sla-status")).json()["count"] == 1

        response = (await client.post("/queue/sweeps/overdue")).json()

        assert response == {"sweep": "overdue", "count": 1, "item_ids": [item_id]}
        overdue = (await client.get("/queue/items/overdue")).json()
        assert [item["id"] for item in overdue] == [item_id]

    async def test_resurface_and_escalate_with_nothing_due(self, client):
        assert (await client.post("/queue/sweeps/resurface")).json()["count"] == 0
        assert (await client.post("/queue/sweeps/escalate")).json()["count"] == 0


class TestSnoozeEndpoints:

    async def test_suggestion_without_llm(self, client):
        response = await client.post("/queue/snooze/suggestions", json={
            "email_context": {"subject": "Budget", "priority": "MEDIUM"}
        })

        body = response.json()
        assert response.status_code == 200
        assert body["confidence"] == 0.5
        assert len(body["alternatives"]) >= 2

    async def test_quick_options(self, client):
        options = (await client.get("/queue/snooze/quick-options")).json()

        assert [option["label"] for option in options][:4] == [
            "In 1 hour",
            "In 3 hours",
            "Tomorrow morning",
            "Next week",
        ]

    async def test_quick_options_bad_timezone(self, client):
        response = await client.get("/queue/snooze/quick-options", params={"timezone": "Atlantis/Capital"})

        assert response.status_code == 422


class TestSLAConfigEndpoints:

    async def test_get_config(self, client):
        config = (await client.get("/queue/sla/config")).json()

        assert config["medium"] == 24
        assert config["working_hours"] == {"start": 9, "end": 17}

    async def test_patch_config(self, client):
        response = await client.patch("/queue/sla/config", json={"low": 48, "working_hours": {"end": 18}})

        assert response.status_code == 200
        assert response.json()["low"] == 48
        assert response.json()["working_hours"] == {"start": 9, "end": 18}

    async def test_patch_invalid_window(self, client):
        response = await client.patch("/queue/sla/config", json={"working_hours": {"start": 18, "end": 9}})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestServiceEndpoints:

    async def test_health(self, client):
        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["checks"] == {
            "sla_config": "loaded",
            "sweep_scheduler": "stopped",
            "llm_client": "not_configured",
        }

    async def test_correlation_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"
        assert "X-Response-Time" in response.headers
