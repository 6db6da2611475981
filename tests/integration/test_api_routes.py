"""Integration tests for the HTTP API served by aiohttp."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from recurpay import __version__
from recurpay.api.server import make_app
from recurpay.config_loader import RecurpayConfig
from recurpay.core.exceptions import TransientStoreError
from recurpay.domain.models import Occurrence, PushSubscription

pytestmark = pytest.mark.integration

OWNER_HEADERS = {"X-Owner-Id": "owner-1"}
CRON_HEADERS = {"X-Cron-Secret": "s3cret"}

RULE_BODY = {
    "amount": 15000,
    "payee": "Landlord",
    "payment_method": "transfer",
    "frequency": "monthly",
    "start_date": "2024-01-05",
    "reminder_enabled": True,
    "reminder_time": "09:00:00",
}


@pytest.fixture
def config():
    return RecurpayConfig(cron_secret="s3cret", lookahead_days=90)


@pytest.fixture
async def client(config, store, fake_transport, clock):
    app = make_app(config, store, transport=fake_transport, time_provider=clock)
    async with TestClient(TestServer(app)) as test_client:
        yield test_client


async def _create_rule(client, **overrides):
    resp = await client.post("/api/recurring", json={**RULE_BODY, **overrides}, headers=OWNER_HEADERS)
    assert resp.status == 201
    return await resp.json()


class TestHealth:
    async def test_health_when_called_then_ok_with_version(self, client, fixed_now):
        resp = await client.get("/api/health")

        data = await resp.json()
        assert resp.status == 200
        assert data == {"status": "ok", "server_time_iso": fixed_now.isoformat(), "version": __version__}

    async def test_response_when_request_id_sent_then_echoed(self, client):
        resp = await client.get("/api/health", headers={"X-Request-ID": "trace-123"})

        assert resp.headers["X-Request-ID"] == "trace-123"

    async def test_response_when_no_request_id_then_generated(self, client):
        resp = await client.get("/api/health")

        assert resp.headers.get("X-Request-ID")


class TestRecurringRoutes:
    async def test_create_rule_when_valid_then_201_with_generated_count(self, client, store):
        data = await _create_rule(client)

        assert data["occurrencesGenerated"] == 3
        assert data["rule"]["frequency"] == "monthly"
        assert data["rule"]["owner_id"] == "owner-1"
        assert "warning" not in data
        assert len(store.occurrences) == 3

    async def test_create_rule_when_amount_is_string_then_400_with_field(self, client, store):
        resp = await client.post("/api/recurring", json={**RULE_BODY, "amount": "15000"}, headers=OWNER_HEADERS)

        data = await resp.json()
        assert resp.status == 400
        assert data["field"] == "amount"
        assert store.rules == {}

    async def test_create_rule_when_unknown_field_then_400(self, client):
        resp = await client.post("/api/recurring", json={**RULE_BODY, "colour": "red"}, headers=OWNER_HEADERS)

        data = await resp.json()
        assert resp.status == 400
        assert data["field"] == "colour"

    async def test_create_rule_when_end_before_start_then_400(self, client):
        resp = await client.post(
            "/api/recurring", json={**RULE_BODY, "end_date": "2023-12-31"}, headers=OWNER_HEADERS
        )

        assert resp.status == 400

    async def test_create_rule_when_body_not_json_then_400(self, client):
        resp = await client.post("/api/recurring", data="not json", headers=OWNER_HEADERS)

        assert resp.status == 400

    async def test_create_rule_when_owner_missing_then_401(self, client):
        resp = await client.post("/api/recurring", json=RULE_BODY)

        assert resp.status == 401
        assert await resp.json() == {"error": "Unauthorized"}

    async def test_list_rules_when_active_filter_then_inactive_hidden(self, client):
        kept = await _create_rule(client)
        await _create_rule(client, is_active=False)

        all_resp = await client.get("/api/recurring", headers=OWNER_HEADERS)
        active_resp = await client.get("/api/recurring?active=true", headers=OWNER_HEADERS)

        assert len((await all_resp.json())["rules"]) == 2
        assert [r["id"] for r in (await active_resp.json())["rules"]] == [kept["rule"]["id"]]

    async def test_get_rule_when_other_owner_then_404(self, client):
        created = await _create_rule(client)

        resp = await client.get(f"/api/recurring/{created['rule']['id']}", headers={"X-Owner-Id": "intruder"})

        assert resp.status == 404

    async def test_patch_rule_when_interval_changes_then_reconciled_counts(self, client):
        created = await _create_rule(client, frequency="weekly")

        resp = await client.patch(
            f"/api/recurring/{created['rule']['id']}", json={"interval": 2}, headers=OWNER_HEADERS
        )

        data = await resp.json()
        assert resp.status == 200
        assert data["rule"]["interval"] == 2
        assert data["reconciled"]["skipped"] > 0
        assert data["reconciled"]["inserted"] == 0

    async def test_patch_rule_when_interval_zero_then_400(self, client):
        created = await _create_rule(client)

        resp = await client.patch(
            f"/api/recurring/{created['rule']['id']}", json={"interval": 0}, headers=OWNER_HEADERS
        )

        assert resp.status == 400
        assert (await resp.json())["field"] == "interval"

    async def test_delete_rule_when_called_then_soft_deleted(self, client, store):
        created = await _create_rule(client)
        rule_id = created["rule"]["id"]

        resp = await client.delete(f"/api/recurring/{rule_id}", headers=OWNER_HEADERS)

        data = await resp.json()
        assert resp.status == 200
        assert data["rule"]["is_active"] is False
        assert data["occurrencesCancelled"] == 3
        assert rule_id in store.rules

    async def test_list_rules_when_store_unavailable_then_503(self, client, store):
        store.list_rules = AsyncMock(side_effect=TransientStoreError("db locked"))

        resp = await client.get("/api/recurring", headers=OWNER_HEADERS)

        assert resp.status == 503


class TestOccurrenceRoutes:
    async def test_list_occurrences_when_rules_exist_then_rule_embedded(self, client):
        created = await _create_rule(client)

        resp = await client.get("/api/occurrences", headers=OWNER_HEADERS)

        items = (await resp.json())["occurrences"]
        assert [o["occurs_on"] for o in items] == ["2024-01-05", "2024-02-05", "2024-03-05"]
        assert all(o["rule"]["id"] == created["rule"]["id"] for o in items)

    async def test_list_occurrences_when_status_unknown_then_400(self, client):
        resp = await client.get("/api/occurrences?status=pending", headers=OWNER_HEADERS)

        assert resp.status == 400
        assert (await resp.json())["field"] == "status"

    async def test_list_occurrences_when_bad_date_then_400(self, client):
        resp = await client.get("/api/occurrences?from=2024-13-01", headers=OWNER_HEADERS)

        assert resp.status == 400

    async def test_materialize_when_range_given_then_missing_dates_inserted(self, client):
        created = await _create_rule(client)

        resp = await client.post(
            "/api/occurrences/materialize", json={"from": "2024-01-01", "to": "2024-06-30"}, headers=OWNER_HEADERS
        )

        data = await resp.json()
        assert resp.status == 200
        assert data["inserted"] == 3
        assert data["byRule"] == {created["rule"]["id"]: 3}
        assert data["range"] == {"from": "2024-01-01", "to": "2024-06-30"}

    async def test_materialize_when_range_too_long_then_400(self, client):
        resp = await client.post(
            "/api/occurrences/materialize", json={"from": "2024-01-01", "to": "2025-06-30"}, headers=OWNER_HEADERS
        )

        assert resp.status == 400

    async def test_action_when_confirm_then_transaction_returned(self, client, store):
        await _create_rule(client)
        occurrence_id = next(o.id for o in store.occurrences.values() if o.occurs_on == date(2024, 1, 5))

        resp = await client.post(
            f"/api/occurrences/{occurrence_id}/actions", json={"action": "confirm"}, headers=OWNER_HEADERS
        )

        data = await resp.json()
        assert resp.status == 200
        assert data["occurrence"]["status"] == "confirmed"
        assert data["transactionId"] in store.transactions

    async def test_action_when_pay_with_naive_paid_at_then_utc_assumed(self, client, store):
        await _create_rule(client)
        occurrence_id = next(iter(store.occurrences))

        resp = await client.post(
            f"/api/occurrences/{occurrence_id}/actions",
            json={"action": "pay", "amount": 14000, "paid_at": "2024-01-05T10:00:00"},
            headers=OWNER_HEADERS,
        )

        data = await resp.json()
        tx = store.transactions[data["transactionId"]]
        assert tx.amount == 14000
        assert tx.occurred_at == datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)

    async def test_action_when_already_paid_then_409(self, client, store):
        await _create_rule(client)
        occurrence_id = next(iter(store.occurrences))
        url = f"/api/occurrences/{occurrence_id}/actions"
        await client.post(url, json={"action": "pay"}, headers=OWNER_HEADERS)

        resp = await client.post(url, json={"action": "skip"}, headers=OWNER_HEADERS)

        assert resp.status == 409
        assert len(store.transactions) == 1

    async def test_action_when_snooze_without_date_then_400(self, client, store):
        await _create_rule(client)
        occurrence_id = next(iter(store.occurrences))

        resp = await client.post(
            f"/api/occurrences/{occurrence_id}/actions", json={"action": "snooze"}, headers=OWNER_HEADERS
        )

        assert resp.status == 400

    async def test_action_when_occurrence_missing_then_404(self, client):
        resp = await client.post("/api/occurrences/nope/actions", json={"action": "skip"}, headers=OWNER_HEADERS)

        assert resp.status == 404

    async def test_get_occurrence_when_exists_then_returned(self, client, store):
        await _create_rule(client)
        occurrence_id = next(iter(store.occurrences))

        resp = await client.get(f"/api/occurrences/{occurrence_id}", headers=OWNER_HEADERS)

        assert resp.status == 200
        assert (await resp.json())["occurrence"]["id"] == occurrence_id


class TestDispatchRoute:
    async def _seed_due(self, store, make_rule):
        rule = make_rule(reminder_enabled=True)
        await store.insert_rule(rule)
        await store.insert_occurrences([Occurrence(rule_id=rule.id, owner_id=rule.owner_id, occurs_on=date(2024, 1, 1))])
        await store.save_subscription(
            PushSubscription(owner_id=rule.owner_id, endpoint="https://push.example.com/a", p256dh="k", auth="a")
        )

    async def test_dispatch_when_secret_missing_then_401(self, client):
        resp = await client.post("/api/notifications/dispatch")

        assert resp.status == 401

    async def test_dispatch_when_secret_wrong_then_401(self, client):
        resp = await client.post("/api/notifications/dispatch", headers={"X-Cron-Secret": "guess"})

        assert resp.status == 401

    async def test_dispatch_when_window_out_of_range_then_400(self, client):
        resp = await client.post(
            "/api/notifications/dispatch", json={"windowMinutes": 0}, headers=CRON_HEADERS
        )

        assert resp.status == 400

    async def test_dispatch_when_due_reminder_then_summary(self, client, store, make_rule, clock):
        await self._seed_due(store, make_rule)
        clock.now = datetime(2024, 1, 1, 8, 50, tzinfo=timezone.utc)

        resp = await client.post("/api/notifications/dispatch", headers=CRON_HEADERS)

        data = await resp.json()
        assert resp.status == 200
        assert data["windowMinutes"] == 15
        assert data["notificationsSent"] == 1
        assert data["occurrencesNotified"] == 1

    async def test_dispatch_when_push_not_configured_then_503(self, config, store):
        app = make_app(config, store, transport=None)

        async with TestClient(TestServer(app)) as test_client:
            resp = await test_client.post("/api/notifications/dispatch", headers=CRON_HEADERS)

        assert resp.status == 503

    async def test_dispatch_when_secret_not_configured_then_401(self, store, fake_transport):
        app = make_app(RecurpayConfig(), store, transport=fake_transport)

        async with TestClient(TestServer(app)) as test_client:
            resp = await test_client.post("/api/notifications/dispatch", headers=CRON_HEADERS)

        assert resp.status == 401


class TestPushHelperRoutes:
    async def test_send_test_when_owner_subscribed_then_summary(self, client, store, fake_transport):
        await store.save_subscription(
            PushSubscription(owner_id="owner-1", endpoint="https://push.example.com/a", p256dh="k", auth="a")
        )

        resp = await client.post("/api/notifications/test", headers=OWNER_HEADERS)

        assert resp.status == 200
        assert (await resp.json())["notificationsSent"] == 1
        assert len(fake_transport.sent) == 1

    async def test_send_test_when_no_subscription_then_400(self, client):
        resp = await client.post("/api/notifications/test", headers=OWNER_HEADERS)

        assert resp.status == 400

    async def test_send_test_when_no_owner_then_401(self, client):
        resp = await client.post("/api/notifications/test")

        assert resp.status == 401

    async def test_send_test_when_push_not_configured_then_503(self, config, store):
        app = make_app(config, store, transport=None)

        async with TestClient(TestServer(app)) as test_client:
            resp = await test_client.post("/api/notifications/test", headers=OWNER_HEADERS)

        assert resp.status == 503

    async def test_public_key_when_configured_then_returned_with_cache_header(self, store):
        app = make_app(RecurpayConfig(vapid_public_key="BPublic"), store)

        async with TestClient(TestServer(app)) as test_client:
            resp = await test_client.get("/api/notifications/vapid-public-key")
            await resp.read()  # buffer the body before the client closes the connection

        assert resp.status == 200
        assert await resp.json() == {"publicKey": "BPublic"}
        assert "max-age=86400" in resp.headers["Cache-Control"]

    async def test_public_key_when_missing_then_503(self, client):
        resp = await client.get("/api/notifications/vapid-public-key")

        assert resp.status == 503
