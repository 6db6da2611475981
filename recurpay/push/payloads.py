"""Localized reminder payloads."""

from __future__ import annotations

from typing import Any

from ..domain.models import Occurrence, RecurrenceRule

DEFAULT_LOCALE = "en-US"

_MESSAGES: dict[str, dict[str, str]] = {
    "en-US": {
        "title": "Payment reminder",
        "with_payee": "{payee} is due on {date}",
        "without_payee": "Payment due on {date}",
        "test_title": "Test notification",
        "test_body": "Push is working. Tap to open Upcoming.",
    },
    "ko-KR": {
        "title": "결제 알림",
        "with_payee": "{payee} · {date}",
        "without_payee": "예정일: {date}",
        "test_title": "테스트 알림",
        "test_body": "푸시 알림이 정상 동작합니다. 눌러서 예정 결제를 확인하세요.",
    },
}


def deep_link(occurrence_id: str) -> str:
    return f"/upcoming?focus={occurrence_id}"


def build_reminder_payload(
    occurrence: Occurrence, rule: RecurrenceRule, locale: str = DEFAULT_LOCALE
) -> dict[str, Any]:
    """Build the JSON-serializable push payload for one occurrence.

    Unknown locales fall back to en-US.
    """
    messages = _MESSAGES.get(locale) or _MESSAGES[DEFAULT_LOCALE]
    if locale not in _MESSAGES:
        locale = DEFAULT_LOCALE

    when = occurrence.effective_date.isoformat()
    if rule.payee:
        body = messages["with_payee"].format(payee=rule.payee, date=when)
    else:
        body = messages["without_payee"].format(date=when)

    url = deep_link(occurrence.id)
    return {
        "type": "occurrence_reminder",
        "title": messages["title"],
        "body": body,
        "url": url,
        "lang": locale,
        "data": {
            "occurrenceId": occurrence.id,
            "ruleId": rule.id,
            "openURL": url,
        },
    }


def build_test_payload(locale: str = DEFAULT_LOCALE) -> dict[str, Any]:
    """Payload for a manual delivery check from the settings screen."""
    if locale not in _MESSAGES:
        locale = DEFAULT_LOCALE
    messages = _MESSAGES[locale]
    return {
        "type": "test",
        "title": messages["test_title"],
        "body": messages["test_body"],
        "url": "/upcoming",
        "tag": "recurpay-test",
        "lang": locale,
    }
