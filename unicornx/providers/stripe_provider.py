# unicornx/providers/stripe_provider.py
from __future__ import annotations

import logging
from typing import Any, Optional

import stripe

from unicornx.errors import ProviderError, ValidationFailed
from unicornx.models.coupon import DiscountType
from unicornx.providers.base import CheckoutRequest, CheckoutSession, WebhookEvent

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return {}


def _to_session(obj: Any) -> CheckoutSession:
    return CheckoutSession(
        id=obj.id,
        payment_status=getattr(obj, "payment_status", None) or "unpaid",
        metadata={k: str(v) for k, v in _as_dict(getattr(obj, "metadata", None)).items()},
        amount_total=int(getattr(obj, "amount_total", None) or 0),
        payment_method_types=list(getattr(obj, "payment_method_types", None) or ["card"]),
        url=getattr(obj, "url", None),
    )


class StripeCheckoutProvider:
    name = "stripe"

    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None, currency: str = "usd") -> None:
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    async def create_session(self, req: CheckoutRequest) -> CheckoutSession:
        price_data: dict[str, Any] = {
            "currency": self.currency,
            "product_data": {"name": req.product_name},
            "unit_amount": req.unit_amount,
        }
        if req.mode == "subscription" and req.interval:
            price_data["recurring"] = {"interval": req.interval}

        params: dict[str, Any] = {
            "payment_method_types": req.payment_method_types,
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "mode": req.mode,
            "success_url": req.success_url,
            "cancel_url": req.cancel_url,
            "customer_email": req.email,
            "metadata": req.metadata,
        }
        if req.provider_coupon_id:
            params["discounts"] = [{"coupon": req.provider_coupon_id}]
        if req.mode == "subscription":
            sub_data: dict[str, Any] = {"metadata": req.metadata}
            if req.trial_days:
                sub_data["trial_period_days"] = req.trial_days
            params["subscription_data"] = sub_data

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("stripe checkout create failed: %s", e)
            raise ProviderError(str(e)) from e
        logger.info("stripe checkout created: session=%s user=%s", session.id, req.user_id)
        return _to_session(session)

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            return _to_session(stripe.checkout.Session.retrieve(session_id))
        except stripe.StripeError as e:
            logger.error("stripe session retrieve failed: %s", e)
            raise ProviderError(str(e)) from e

    async def cancel_for_session(self, session_id: str) -> None:
        """Отмена в конце периода: доступ остаётся до end_date."""
        sub_id: Optional[str] = None
        try:
            if session_id.startswith("cs_"):
                sess = stripe.checkout.Session.retrieve(session_id)
                ref = getattr(sess, "subscription", None)
                sub_id = ref if isinstance(ref, str) else getattr(ref, "id", None)
            elif session_id.startswith("sub_"):
                sub_id = session_id
            if not sub_id:
                raise ProviderError("Could not resolve provider subscription id")
            stripe.Subscription.modify(sub_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            logger.error("stripe cancel failed: session=%s err=%s", session_id, e)
            raise ProviderError(str(e)) from e

    async def create_coupon(
        self,
        *,
        code: str,
        discount_type: str,
        discount_value: float,
        usage_limit: Optional[int],
        redeem_by: Optional[int],
    ) -> Optional[str]:
        params: dict[str, Any] = {"id": code, "duration": "once"}
        if discount_type == DiscountType.PERCENTAGE:
            params["percent_off"] = discount_value
        else:
            params["amount_off"] = int(round(discount_value * 100))
            params["currency"] = self.currency
        if usage_limit:
            params["max_redemptions"] = usage_limit
        if redeem_by:
            params["redeem_by"] = redeem_by
        try:
            return stripe.Coupon.create(**params).id
        except stripe.StripeError as e:
            logger.error("stripe coupon create failed: %s", e)
            raise ProviderError(str(e)) from e

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret or "")
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe webhook signature verification failed: %s", e)
            raise ValidationFailed(f"Webhook Error: {e}") from e
        return WebhookEvent(type=event.type, data=_as_dict(event.data.object))

    async def subscription_metadata(self, provider_subscription_id: str) -> dict[str, str]:
        try:
            sub = stripe.Subscription.retrieve(provider_subscription_id)
        except stripe.StripeError as e:
            raise ProviderError(str(e)) from e
        return {k: str(v) for k, v in _as_dict(getattr(sub, "metadata", None)).items()}
