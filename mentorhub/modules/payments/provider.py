"""Payment provider abstraction."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol
from urllib.parse import urlencode

from mentorhub.core.config import get_settings
from mentorhub.modules.payments.schemas import CheckoutSession


class PaymentProvider(Protocol):
    """Gateway that can open a checkout for an order id."""

    async def create_checkout_session(
        self,
        order_id: str,
        amount: Decimal,
        currency: str,
        customer_id: str,
        return_url: str,
    ) -> CheckoutSession: ...


class HostedCheckoutProvider:
    """Redirect-style gateway: the checkout page is addressed by query parameters."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    async def create_checkout_session(
        self,
        order_id: str,
        amount: Decimal,
        currency: str,
        customer_id: str,
        return_url: str,
    ) -> CheckoutSession:
        query = urlencode(
            {
                "order_id": order_id,
                "amount": f"{amount:.2f}",
                "currency": currency,
                "customer_id": customer_id,
                "return_url": return_url,
            },
        )
        return CheckoutSession(
            order_id=order_id,
            checkout_url=f"{self.base_url}?{query}",
            amount=amount,
            currency=currency,
        )


def get_payment_provider() -> PaymentProvider:
    """Dependency provider for the configured payment gateway."""
    return HostedCheckoutProvider(get_settings().payment_checkout_base_url)
