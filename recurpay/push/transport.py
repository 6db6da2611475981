"""Push delivery transport."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Optional, Protocol

from pywebpush import WebPushException, webpush

from ..domain.models import PushSubscription

logger = logging.getLogger(__name__)

# Push services answer 404/410 for endpoints that will never accept messages again
DEAD_STATUS_CODES = frozenset({404, 410})


class PushOutcome(str, Enum):
    SUCCESS = "success"
    DEAD_SUBSCRIPTION = "dead_subscription"
    OTHER_ERROR = "other_error"


class PushTransport(Protocol):
    """Delivers one payload to one subscription."""

    async def send(self, subscription: PushSubscription, payload: dict[str, Any]) -> PushOutcome:
        """Send ``payload`` and classify the result.

        Implementations may raise; callers count raised exceptions as
        OTHER_ERROR.
        """
        ...


class WebPushTransport:
    """Web Push (RFC 8030) delivery with VAPID authentication via pywebpush."""

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl: int = 3600,
        timeout: Optional[float] = 10.0,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl = ttl
        self.timeout = timeout

    def _send_blocking(self, subscription: PushSubscription, body: str) -> None:
        webpush(
            subscription_info=subscription.to_subscription_info(),
            data=body,
            vapid_private_key=self.vapid_private_key,
            # pywebpush mutates the claims dict, so build a fresh one per call
            vapid_claims={"sub": self.vapid_subject},
            ttl=self.ttl,
            timeout=self.timeout,
        )

    async def send(self, subscription: PushSubscription, payload: dict[str, Any]) -> PushOutcome:
        body = json.dumps(payload, ensure_ascii=False)
        try:
            await asyncio.to_thread(self._send_blocking, subscription, body)
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            if status in DEAD_STATUS_CODES:
                logger.info("Subscription %s is gone (HTTP %s)", subscription.id, status)
                return PushOutcome.DEAD_SUBSCRIPTION
            logger.warning("Push to subscription %s failed (HTTP %s): %s", subscription.id, status, exc)
            return PushOutcome.OTHER_ERROR
        return PushOutcome.SUCCESS
