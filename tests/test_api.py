"""Leave ledger API test suite — routes, status codes and RFC 7807 error bodies.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import LEAVE_TYPE_ID, USER_ID, detail, seed_grant, seed_policy

BASE = "/api/v1/leave-ledger"
MONDAY = date(2024, 3, 4)
TUESDAY = date(2024, 3, 5)
SATURDAY = date(2024, 3, 9)


def _payload(request_id: uuid.UUID, *lines: dict, **extra) -> dict:
    body = {
        "user_id": str(USER_ID),
        "leave_type_id": str(LEAVE_TYPE_ID),
        "request_id": str(request_id),
        "details": list(lines),
    }
    body.update(extra)
    return body


async def _allocate(client: AsyncClient, request_id: uuid.UUID, hours: str = "4", **extra):
    return await client.post(
        f"{BASE}/allocate",
        json=_payload(request_id, detail(MONDAY, quantity=hours), **extra),
    )


# ═════════════════════════════════════════════════════════════════════
# System
# ═════════════════════════════════════════════════════════════════════


async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ═════════════════════════════════════════════════════════════════════
# Allocate
# ═════════════════════════════════════════════════════════════════════


class TestAllocateEndpoint:

    async def test_allocate_returns_rows(self, client: AsyncClient, db: AsyncSession):
        g1 = await seed_grant(db, quantity="10", granted_on=date(2024, 1, 1))
        g2 = await seed_grant(db, quantity="10", granted_on=date(2024, 2, 1))
        request_id = uuid.uuid4()

        resp = await _allocate(client, request_id, "12")

        assert resp.status_code == 201
        rows = resp.json()
        assert [(r["grant_id"], Decimal(r["quantity"])) for r in rows] == [
            (str(g1.id), Decimal("10")),
            (str(g2.id), Decimal("2")),
        ]
        assert {r["state"] for r in rows} == {"hold"}
        assert {r["request_id"] for r in rows} == {str(request_id)}

    async def test_allocate_with_manual_order(self, client: AsyncClient, db: AsyncSession):
        g1 = await seed_grant(db, granted_on=date(2024, 1, 1))
        g2 = await seed_grant(db, granted_on=date(2024, 2, 1))

        resp = await _allocate(
            client, uuid.uuid4(), "3", manual_grant_ids=[str(g2.id), str(g1.id)],
        )

        assert resp.status_code == 201
        assert [r["grant_id"] for r in resp.json()] == [str(g2.id)]

    async def test_insufficient_balance_problem_detail(
        self, client: AsyncClient, db: AsyncSession,
    ):
        await seed_grant(db, quantity="4")

        resp = await _allocate(client, uuid.uuid4(), "6")

        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/insufficient-balance")
        assert body["errors"]["date"] == [MONDAY.isoformat()]
        assert Decimal(body["errors"]["shortfall"][0]) == Decimal("2")
        assert body["instance"] == f"{BASE}/allocate"

    async def test_closed_day_problem_detail(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)

        resp = await client.post(
            f"{BASE}/allocate",
            json=_payload(uuid.uuid4(), detail(SATURDAY, quantity="4")),
        )

        assert resp.status_code == 422
        assert resp.json()["type"].endswith("/closed-day")

    async def test_blackout_problem_detail(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        await seed_policy(db, blackout_dates=[TUESDAY.isoformat()])

        resp = await client.post(
            f"{BASE}/allocate",
            json=_payload(
                uuid.uuid4(),
                detail(MONDAY, quantity="4"),
                detail(TUESDAY, quantity="4"),
            ),
        )

        assert resp.status_code == 422
        assert resp.json()["errors"]["date"] == [TUESDAY.isoformat()]

    async def test_no_grants_is_not_found(self, client: AsyncClient):
        resp = await _allocate(client, uuid.uuid4())
        assert resp.status_code == 404
        assert resp.json()["type"].endswith("/not-found")

    async def test_empty_details_rejected_by_schema(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/allocate", json=_payload(uuid.uuid4()))
        assert resp.status_code == 422
        assert "details" in resp.json()["errors"]

    async def test_mixed_offset_timestamps_rejected(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        line = {
            "start_at": "2024-03-04T09:00:00+09:00",
            "end_at": "2024-03-04T18:00:00",
            "unit": "hour",
            "quantity": "8",
        }

        resp = await client.post(f"{BASE}/allocate", json=_payload(uuid.uuid4(), line))

        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert "details.0.end_at" in resp.json()["errors"]

    async def test_quantity_beyond_storage_scale_rejected(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/allocate",
            json=_payload(uuid.uuid4(), detail(MONDAY, quantity="0.00001")),
        )
        assert resp.status_code == 422

    async def test_non_positive_quantity_rejected_by_schema(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/allocate",
            json=_payload(uuid.uuid4(), detail(MONDAY, quantity="0")),
        )
        assert resp.status_code == 422

    async def test_allocate_records_audit_event(
        self, client: AsyncClient, db: AsyncSession, audit_sink,
    ):
        await seed_grant(db)
        request_id = uuid.uuid4()

        await _allocate(client, request_id)

        assert [e.action for e in audit_sink.events] == ["leave_allocate_hold"]
        assert audit_sink.events[0].entity_id == request_id


# ═════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════


class TestLifecycleEndpoints:

    async def test_confirm_then_reverse(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        request_id = uuid.uuid4()
        await _allocate(client, request_id)

        resp = await client.post(f"{BASE}/requests/{request_id}/confirm")
        assert resp.status_code == 200
        assert resp.json() == {
            "ok": True, "request_id": str(request_id), "state": "confirmed", "count": 1,
        }

        resp = await client.post(
            f"{BASE}/requests/{request_id}/reverse", json={"reason": "Flight cancelled"},
        )
        assert resp.status_code == 200
        assert resp.json()["state"] == "reversed"

        rows = (await client.get(f"{BASE}/requests/{request_id}/consumptions")).json()
        assert [(r["state"], r["reason"]) for r in rows] == [("reversed", "Flight cancelled")]

    async def test_confirm_twice_is_conflict(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        request_id = uuid.uuid4()
        await _allocate(client, request_id)
        await client.post(f"{BASE}/requests/{request_id}/confirm")

        resp = await client.post(f"{BASE}/requests/{request_id}/confirm")

        assert resp.status_code == 409
        assert resp.json()["errors"]["reason"] == ["already_confirmed"]

    async def test_release(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        request_id = uuid.uuid4()
        await _allocate(client, request_id)

        resp = await client.post(
            f"{BASE}/requests/{request_id}/release",
            json={"actor_id": str(uuid.uuid4())},
        )

        assert resp.status_code == 200
        assert resp.json()["state"] == "released"

    async def test_confirm_unknown_request_not_found(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/requests/{uuid.uuid4()}/confirm")
        assert resp.status_code == 404

    async def test_reverse_blank_reason_rejected(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/requests/{uuid.uuid4()}/reverse", json={"reason": "   "},
        )
        assert resp.status_code == 422

    async def test_decision_approve_and_cancel(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db)
        request_id = uuid.uuid4()
        await _allocate(client, request_id)

        resp = await client.post(
            f"{BASE}/requests/{request_id}/decision", json={"action": "approve"},
        )
        assert resp.json()["state"] == "confirmed"

        resp = await client.post(
            f"{BASE}/requests/{request_id}/decision", json={"action": "cancel"},
        )
        assert resp.status_code == 200
        assert resp.json()["state"] == "reversed"

    async def test_decision_unknown_action_rejected(self, client: AsyncClient):
        resp = await client.post(
            f"{BASE}/requests/{uuid.uuid4()}/decision", json={"action": "escalate"},
        )
        assert resp.status_code == 422

    async def test_consumptions_unknown_request_not_found(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/requests/{uuid.uuid4()}/consumptions")
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════


class TestReadEndpoints:

    async def test_list_grants(self, client: AsyncClient, db: AsyncSession):
        late = await seed_grant(db, granted_on=date(2024, 2, 1))
        early = await seed_grant(db, granted_on=date(2024, 1, 1), expires_on=date(2024, 2, 1))
        await _allocate(client, uuid.uuid4(), "4")

        resp = await client.get(
            f"{BASE}/grants",
            params={"user_id": str(USER_ID), "as_of": "2024-03-01"},
        )

        assert resp.status_code == 200
        grants = resp.json()
        assert [g["id"] for g in grants] == [str(early.id), str(late.id)]
        assert grants[0]["is_expired"] is True
        assert Decimal(grants[1]["remaining_confirmed"]) == Decimal("10")
        assert Decimal(grants[1]["remaining_including_holds"]) == Decimal("6")

    async def test_balance(self, client: AsyncClient, db: AsyncSession):
        await seed_grant(db, quantity="16")
        request_id = uuid.uuid4()
        await _allocate(client, request_id, "4")
        await client.post(f"{BASE}/requests/{request_id}/confirm")

        resp = await client.get(
            f"{BASE}/balance",
            params={
                "user_id": str(USER_ID),
                "leave_type_id": str(LEAVE_TYPE_ID),
                "as_of": "2024-03-01",
            },
        )

        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["granted"]) == Decimal("16")
        assert Decimal(body["confirmed"]) == Decimal("4")
        assert Decimal(body["remaining_confirmed"]) == Decimal("12")
        assert body["as_of"] == "2024-03-01"

    async def test_balance_requires_leave_type(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/balance", params={"user_id": str(USER_ID)})
        assert resp.status_code == 422
