# unicornx/providers/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass
class CheckoutRequest:
    user_id: int
    email: str
    product_name: str
    unit_amount: int                      # в центах
    mode: str                             # subscription | payment
    interval: Optional[str] = None        # month | year (только для subscription)
    trial_days: Optional[int] = None
    provider_coupon_id: Optional[str] = None
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])
    success_url: str = ""
    cancel_url: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CheckoutSession:
    id: str
    payment_status: str                   # paid | unpaid | no_payment_required
    metadata: dict[str, str] = field(default_factory=dict)
    amount_total: int = 0                 # в центах
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])
    url: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status in {"paid", "no_payment_required"}

    @property
    def amount(self) -> float:
        return (self.amount_total or 0) / 100


@dataclass
class WebhookEvent:
    type: str
    data: dict[str, Any]


class CheckoutProvider(Protocol):
    """То, что сервисам нужно от платёжного провайдера."""

    name: str

    async def create_session(self, req: CheckoutRequest) -> CheckoutSession: ...

    async def retrieve_session(self, session_id: str) -> CheckoutSession: ...

    async def cancel_for_session(self, session_id: str) -> None: ...

    async def create_coupon(
        self,
        *,
        code: str,
        discount_type: str,
        discount_value: float,
        usage_limit: Optional[int],
        redeem_by: Optional[int],
    ) -> Optional[str]: ...

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent: ...

    async def subscription_metadata(self, provider_subscription_id: str) -> dict[str, str]: ...
