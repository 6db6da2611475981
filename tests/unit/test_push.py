"""Unit tests for reminder payloads and the Web Push transport."""

import json
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from pywebpush import WebPushException

from recurpay.domain.models import Occurrence, OccurrenceStatus, PushSubscription
from recurpay.push.payloads import build_reminder_payload, build_test_payload, deep_link
from recurpay.push.transport import PushOutcome, WebPushTransport

pytestmark = pytest.mark.unit


@pytest.fixture
def subscription():
    return PushSubscription(owner_id="owner-1", endpoint="https://push.example.com/abc", p256dh="key", auth="secret")


def _push_error(status):
    response = MagicMock()
    response.status_code = status
    return WebPushException("push failed", response=response)


class TestPayloads:
    def test_build_reminder_payload_when_no_payee_then_generic_body(self, make_rule):
        rule = make_rule(payee=None)
        occurrence = Occurrence(rule_id=rule.id, owner_id=rule.owner_id, occurs_on=date(2024, 3, 1))

        payload = build_reminder_payload(occurrence, rule)

        assert payload["type"] == "occurrence_reminder"
        assert payload["body"] == "Payment due on 2024-03-01"

    def test_build_reminder_payload_when_snoozed_then_snooze_date_shown(self, make_rule):
        rule = make_rule()
        occurrence = Occurrence(
            rule_id=rule.id,
            owner_id=rule.owner_id,
            occurs_on=date(2024, 3, 1),
            status=OccurrenceStatus.SNOOZED,
            snoozed_until=date(2024, 3, 4),
        )

        payload = build_reminder_payload(occurrence, rule, "ko-KR")

        assert payload["body"] == "Landlord · 2024-03-04"

    def test_build_reminder_payload_when_locale_unknown_then_english(self, make_rule):
        rule = make_rule()
        occurrence = Occurrence(rule_id=rule.id, owner_id=rule.owner_id, occurs_on=date(2024, 3, 1))

        payload = build_reminder_payload(occurrence, rule, "de-DE")

        assert payload["lang"] == "en-US"
        assert payload["title"] == "Payment reminder"

    def test_deep_link_when_id_then_upcoming_focus(self):
        assert deep_link("abc") == "/upcoming?focus=abc"


class TestWebPushTransport:
    async def test_send_when_accepted_then_success_and_vapid_claims(self, subscription):
        transport = WebPushTransport("private-key", "mailto:ops@example.com", ttl=600)

        with patch("recurpay.push.transport.webpush") as mock_webpush:
            outcome = await transport.send(subscription, {"title": "결제 알림"})

        assert outcome == PushOutcome.SUCCESS
        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"] == {
            "endpoint": "https://push.example.com/abc",
            "keys": {"p256dh": "key", "auth": "secret"},
        }
        assert json.loads(kwargs["data"]) == {"title": "결제 알림"}
        assert kwargs["vapid_private_key"] == "private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        assert kwargs["ttl"] == 600

    @pytest.mark.parametrize("status", [404, 410])
    async def test_send_when_endpoint_gone_then_dead_subscription(self, subscription, status):
        transport = WebPushTransport("private-key", "mailto:ops@example.com")

        with patch("recurpay.push.transport.webpush", side_effect=_push_error(status)):
            outcome = await transport.send(subscription, {})

        assert outcome == PushOutcome.DEAD_SUBSCRIPTION

    @pytest.mark.parametrize("status", [400, 429, 500])
    async def test_send_when_other_http_error_then_other_error(self, subscription, status):
        transport = WebPushTransport("private-key", "mailto:ops@example.com")

        with patch("recurpay.push.transport.webpush", side_effect=_push_error(status)):
            outcome = await transport.send(subscription, {})

        assert outcome == PushOutcome.OTHER_ERROR

    async def test_send_when_no_response_attached_then_other_error(self, subscription):
        transport = WebPushTransport("private-key", "mailto:ops@example.com")

        with patch("recurpay.push.transport.webpush", side_effect=WebPushException("no response")):
            outcome = await transport.send(subscription, {})

        assert outcome == PushOutcome.OTHER_ERROR


class TestDeliveryCheckPayload:
    def test_build_test_payload_when_korean_then_localized(self):
        payload = build_test_payload("ko-KR")

        assert payload["title"] == "테스트 알림"
        assert payload["url"] == "/upcoming"

    def test_build_test_payload_when_locale_unknown_then_english(self):
        assert build_test_payload("fr-FR")["title"] == "Test notification"
