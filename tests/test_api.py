"""
Pruebas de la API HTTP con httpx.AsyncClient sobre la app ASGI.

El lifespan no corre (ASGITransport no envía eventos lifespan): el
contenedor de servicios se inyecta con dependency_overrides sobre
dobles en memoria, así no se necesita Postgres ni Redis.
"""

import asyncio

import httpx
import pytest
from jose import jwt

from motor_riesgo.api.dependencies import get_services
from motor_riesgo.core.config import settings
from motor_riesgo.domain.entities import UserHistoryProfile
from motor_riesgo.main import app

pytestmark = pytest.mark.integration

DAY   = "2026-03-10T14:00:00+00:00"
NIGHT = "2026-03-10T02:00:00+00:00"


def _token(user_id: str, role: str = "user") -> str:
    return jwt.encode({"sub": user_id, "role": role}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(user_id: str = "user-1", role: str = "user") -> dict:
    return {"Authorization": f"Bearer {_token(user_id, role)}"}


@pytest.fixture
async def client(services):
    app.dependency_overrides[get_services] = lambda: services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _evaluate(client, services, user="user-1", role="user", **body):
    payload = {"payee": "alice@upi", "amount": 3000, "device_id": "device-a", "timestamp": DAY}
    payload.update(body)
    response = await client.post("/v1/transactions/evaluate", json=payload, headers=_auth(user, role))
    await asyncio.gather(*list(services.orchestrator._background))
    return response


class TestHealthAndAuth:

    async def test_health_without_redis(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["redis"] == "degraded"
        assert "X-Request-ID" in response.headers
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    async def test_request_id_is_propagated(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    async def test_tampered_token_is_rejected(self, client):
        headers = {"Authorization": "Bearer " + _token("user-1") + "x"}
        response = await client.get("/v1/feedback/stats", headers=headers)
        assert response.status_code == 401

    async def test_token_without_subject(self, client):
        token = jwt.encode({"role": "user"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
        response = await client.get(
            "/v1/feedback/stats", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    async def test_admin_routes_require_admin(self, client):
        response = await client.get("/v1/admin/config/decision", headers=_auth())
        assert response.status_code == 403

    async def test_unknown_role_is_plain_user(self, client):
        response = await client.get("/v1/admin/config/decision", headers=_auth(role="root"))
        assert response.status_code == 403


class TestTransactionsApi:

    async def test_high_risk_payment_is_blocked(self, client, services):
        response = await _evaluate(
            client, services,
            payee="Stranger@UPI", amount=75000, device_id="new-device", timestamp=NIGHT,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["action"] == "BLOCK"
        assert body["risk_score"] == 80
        assert body["risk_level"] == "CRITICAL"
        assert body["breakdown"]["NEW_PAYEE"] == 20.0
        assert body["metadata"]["can_appeal"] is True

        detail = await client.get(f"/v1/transactions/{body['transaction_id']}", headers=_auth())
        assert detail.status_code == 200
        assert detail.json()["status"] == "blocked"
        assert detail.json()["payee"] == "stranger@upi"

    async def test_transaction_of_other_user_is_hidden(self, client, services):
        body = (await _evaluate(client, services)).json()
        response = await client.get(
            f"/v1/transactions/{body['transaction_id']}", headers=_auth("user-2")
        )
        assert response.status_code == 404
        assert "error" in response.json()

    async def test_force_approve_only_for_admins(self, client, services):
        risky = {"amount": 75000, "device_id": "new-device", "timestamp": NIGHT, "force_approve": True}

        as_user = await _evaluate(client, services, payee="x1@upi", **risky)
        assert as_user.json()["action"] == "BLOCK"

        as_admin = await _evaluate(client, services, user="ops-1", role="admin", payee="x2@upi", **risky)
        assert as_admin.json()["action"] == "APPROVE"
        assert as_admin.json()["metadata"]["approved_by"] == "ops-1"

    async def test_invalid_payload(self, client):
        response = await client.post(
            "/v1/transactions/evaluate",
            json    = {"payee": "alice@upi", "amount": -5, "latitude": 25.6},
            headers = _auth(),
        )
        assert response.status_code == 422

    async def test_warn_confirmation_flow(self, client, services):
        body = (await _evaluate(client, services, payee="bob@upi", amount=5000)).json()
        assert body["action"] == "WARN"
        assert body["requires_confirmation"] is True
        assert body["alert_message"]

        confirm = await client.post(f"/v1/transactions/{body['transaction_id']}/confirm", headers=_auth())
        assert confirm.status_code == 200
        assert confirm.json()["status"] == "completed"

        again = await client.post(f"/v1/transactions/{body['transaction_id']}/confirm", headers=_auth())
        assert again.status_code == 409

    async def test_delay_can_be_blocked_by_user(self, client, services):
        body = (await _evaluate(
            client, services, payee="bob@upi", amount=30000, device_id="new-device", timestamp=NIGHT,
        )).json()
        assert body["action"] == "DELAY"

        early = await client.post(f"/v1/transactions/{body['transaction_id']}/confirm", headers=_auth())
        assert early.status_code == 409

        blocked = await client.post(f"/v1/transactions/{body['transaction_id']}/block", headers=_auth())
        assert blocked.json()["status"] == "blocked"

    async def test_superadmin_override(self, client, services):
        body = (await _evaluate(
            client, services, payee="stranger@upi", amount=75000, device_id="new-device", timestamp=NIGHT,
        )).json()
        url = f"/v1/transactions/{body['transaction_id']}/override"

        assert (await client.post(url, headers=_auth("ops-1", "admin"))).status_code == 403
        response = await client.post(url, headers=_auth("root", "superadmin"))
        assert response.status_code == 200
        assert response.json()["metadata"]["approved_by"] == "root"


class TestFeedbackApi:

    async def test_feedback_adjusts_and_rejects_duplicates(self, client, services):
        body = (await _evaluate(client, services, payee="bob@upi", amount=5000)).json()
        payload = {"transaction_id": body["transaction_id"], "feedback_type": "not_fraud"}

        first = await client.post("/v1/feedback", json=payload, headers=_auth())
        assert first.status_code == 200
        assert first.json()["adjustment"] == "false_positive"
        assert first.json()["weights"]["NEW_PAYEE"] == 17.0
        assert first.json()["stats"]["total_feedback"] == 1

        second = await client.post("/v1/feedback", json=payload, headers=_auth())
        assert second.status_code == 409

    async def test_learning_toggle_and_reset(self, client, services):
        await _evaluate(client, services)

        toggled = await client.put("/v1/feedback/learning", json={"enabled": False}, headers=_auth())
        assert toggled.json()["learning_enabled"] is False

        reset = await client.post("/v1/feedback/reset", headers=_auth())
        assert reset.status_code == 200
        assert reset.json()["weights"]["AMOUNT_ANOMALY"] == 25.0

    async def test_stats_for_unknown_user(self, client):
        response = await client.get("/v1/feedback/stats", headers=_auth("ghost"))
        assert response.status_code == 404


class TestReputationApi:

    async def test_block_escalation_flow(self, client):
        for user in ("u1", "u2"):
            response = await client.post(
                "/v1/reputation/blocks", json={"identifier": "Scam@UPI"}, headers=_auth(user)
            )
            assert response.status_code == 201
            assert response.json()["escalated"] is False

        duplicate = await client.post(
            "/v1/reputation/blocks", json={"identifier": "scam@upi"}, headers=_auth("u1")
        )
        assert duplicate.status_code == 409

        third = await client.post(
            "/v1/reputation/blocks", json={"identifier": "scam@upi"}, headers=_auth("u3")
        )
        assert third.json() == {"identifier": "scam@upi", "block_count": 3, "escalated": True}

        check = await client.get("/v1/reputation/check/scam@upi", headers=_auth())
        assert check.json()["flagged"] is True
        assert check.json()["tier"] == "high"

        stats = await client.get("/v1/reputation/stats/scam@upi", headers=_auth())
        assert stats.json()["block_count"] == 3
        assert stats.json()["entry"]["status"] == "active"

    async def test_personal_blocks(self, client):
        await client.post("/v1/reputation/blocks", json={"identifier": "spam@upi"}, headers=_auth())

        listed = await client.get("/v1/reputation/blocks", headers=_auth())
        assert [b["identifier"] for b in listed.json()] == ["spam@upi"]

        assert (await client.delete("/v1/reputation/blocks/spam@upi", headers=_auth())).status_code == 204
        assert (await client.delete("/v1/reputation/blocks/spam@upi", headers=_auth())).status_code == 404

        status = await client.get("/v1/reputation/blocks/spam@upi", headers=_auth())
        assert status.json() == {"identifier": "spam@upi", "blocked": False}

    async def test_circle_report_reaches_contacts(self, client, services, history, notifier):
        history.profiles["friend"] = UserHistoryProfile(
            transaction_count = 50,
            average_amount    = 5000.0,
            max_amount        = 9000.0,
            known_payees      = frozenset({"alice@upi"}),
            known_devices     = frozenset({"device-a"}),
            hour_counts       = {14: 50},
        )
        added = await client.post(
            "/v1/reputation/trusted-contacts", json={"contact_id": "user-1"}, headers=_auth("friend")
        )
        assert added.status_code == 201

        report = await client.post(
            "/v1/reputation/circle-reports",
            json    = {"identifier": "alice@upi", "reason": "me pidió dinero"},
            headers = _auth("user-1"),
        )
        await asyncio.gather(*list(services.escalation._background))
        assert report.json()["notified_members"] == 1
        assert notifier.circle_alerts[0][0] == "friend"

        body = (await _evaluate(client, services, user="friend")).json()
        assert body["breakdown"]["CIRCLE_REPORT"] == 40.0


class TestAdminApi:

    async def test_decision_config_update(self, client):
        admin = _auth("ops-1", "admin")
        current = await client.get("/v1/admin/config/decision", headers=admin)
        assert current.json()["warn_threshold"] == 30

        updated = await client.put(
            "/v1/admin/config/decision", json={"warn_threshold": 25}, headers=admin
        )
        assert updated.status_code == 200
        assert updated.json()["warn_threshold"] == 25

    async def test_invalid_config_keeps_previous(self, client):
        admin = _auth("ops-1", "admin")
        response = await client.put(
            "/v1/admin/config/decision", json={"warn_threshold": 70}, headers=admin
        )
        assert response.status_code == 400
        current = await client.get("/v1/admin/config/decision", headers=admin)
        assert current.json()["warn_threshold"] == 30

    async def test_unknown_config_field(self, client):
        response = await client.put(
            "/v1/admin/config/scoring", json={"magic": 1}, headers=_auth("ops-1", "admin")
        )
        assert response.status_code == 422

    async def test_escalation_threshold(self, client):
        admin = _auth("ops-1", "admin")
        response = await client.put(
            "/v1/admin/config/escalation", json={"block_threshold": 5}, headers=admin
        )
        assert response.json() == {"block_threshold": 5}

    async def test_import_and_deactivate(self, client):
        admin = _auth("ops-1", "admin")
        imported = await client.post(
            "/v1/admin/reputation/import",
            json    = {"source": "npci_feed", "entries": [
                {"identifier": "mule1@upi", "risk_tier": "critical"},
                {"identifier": "mule2@upi"},
            ]},
            headers = admin,
        )
        assert imported.json() == {"created": 2, "updated": 0}

        listed = await client.get("/v1/admin/reputation?status=active", headers=admin)
        assert {e["identifier"] for e in listed.json()} == {"mule1@upi", "mule2@upi"}

        removed = await client.delete("/v1/admin/reputation/mule1@upi", headers=admin)
        assert removed.json()["status"] == "resolved"

        check = await client.get("/v1/reputation/check/mule1@upi", headers=_auth())
        assert check.json()["flagged"] is False

    async def test_clear_cache(self, client):
        response = await client.post("/v1/admin/cache/clear", headers=_auth("ops-1", "admin"))
        assert response.json() == {"cleared": 0, "by": "ops-1"}
