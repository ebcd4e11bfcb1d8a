# unicornx/providers/fake_provider.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import uuid4

from unicornx.config import settings
from unicornx.errors import NotFoundError, UnauthorizedError, ValidationFailed
from unicornx.providers.base import CheckoutRequest, CheckoutSession, WebhookEvent

logger = logging.getLogger(__name__)


@dataclass
class FakeCheckoutProvider:
    """
    Провайдер для dev и тестов: сессии живут в памяти процесса,
    «оплата» через /payments/fake/pay или mark_paid().
    """
    name: str = "fake"
    sessions: dict[str, CheckoutSession] = field(default_factory=dict)
    subscriptions: dict[str, dict[str, str]] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    coupons: list[str] = field(default_factory=list)
    accept_webhooks: bool = False

    async def create_session(self, req: CheckoutRequest) -> CheckoutSession:
        session_id = f"cs_fake_{uuid4().hex}"
        pay_link = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/payments/fake/pay?session_id={session_id}"
        sess = CheckoutSession(
            id=session_id,
            payment_status="unpaid",
            metadata=dict(req.metadata),
            amount_total=0 if req.trial_days else req.unit_amount,
            payment_method_types=list(req.payment_method_types),
            url=pay_link,
        )
        self.sessions[session_id] = sess
        logger.info("fake checkout created: session=%s amount=%s", session_id, sess.amount_total)
        return sess

    def put_session(self, sess: CheckoutSession) -> CheckoutSession:
        self.sessions[sess.id] = sess
        return sess

    def mark_paid(self, session_id: str) -> CheckoutSession:
        sess = self.sessions.get(session_id)
        if sess is None:
            raise NotFoundError("Checkout session not found")
        sess.payment_status = "paid"
        return sess

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        sess = self.sessions.get(session_id)
        if sess is None:
            raise NotFoundError("Checkout session not found")
        return sess

    async def cancel_for_session(self, session_id: str) -> None:
        self.cancelled.append(session_id)

    async def create_coupon(
        self,
        *,
        code: str,
        discount_type: str,
        discount_value: float,
        usage_limit: Optional[int],
        redeem_by: Optional[int],
    ) -> Optional[str]:
        self.coupons.append(code)
        return code

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        # подписи нет, поэтому вебхуки только в dev с FAKE_WEBHOOKS_ENABLED
        if not self.accept_webhooks:
            logger.warning("fake webhook rejected: FAKE_WEBHOOKS_ENABLED is off")
            raise UnauthorizedError("Webhooks are disabled for the fake provider")
        try:
            body = json.loads(payload or b"{}")
        except ValueError as e:
            raise ValidationFailed(f"Webhook Error: {e}") from e
        return WebhookEvent(type=str(body.get("type", "")), data=body.get("data", {}).get("object", {}))

    async def subscription_metadata(self, provider_subscription_id: str) -> dict[str, str]:
        return dict(self.subscriptions.get(provider_subscription_id, {}))
