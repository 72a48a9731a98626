import logging
import uuid
from decimal import Decimal

import requests

from vilo.core.config import settings
from vilo.core.errors import GatewayError
from vilo.services.gateways.base import GatewayRefund, minor_units

logger = logging.getLogger(__name__)


class PaystackClient:
    """Paystack refunds API. Amounts go over the wire in minor units (cents/kobo)."""

    name = "paystack"

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co", timeout: int = 25, sandbox: bool = False):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.sandbox = sandbox

    @classmethod
    def from_settings(cls) -> "PaystackClient":
        return cls(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            sandbox=settings.PAYSTACK_SANDBOX,
        )

    def refund(self, transaction_ref: str, amount: Decimal, currency: str, client_ref: str) -> GatewayRefund:
        if self.sandbox:
            logger.info("PAYSTACK_SANDBOX: mock refund of %s %s for %s", amount, currency, transaction_ref)
            return GatewayRefund(provider=self.name, provider_ref=f"SANDBOX-{uuid.uuid4().hex[:12]}", raw={"sandbox": True})
        if not transaction_ref:
            raise GatewayError(self.name, "No Paystack transaction reference on the original payment", code="missing_reference")
        payload = {
            "transaction": transaction_ref,
            "amount": minor_units(amount),
            "currency": currency,
            "merchant_note": f"Refund {client_ref}",
        }
        try:
            r = requests.post(
                f"{self.base_url}/refund",
                json=payload,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise GatewayError(self.name, f"Paystack timed out after {self.timeout}s", code="timeout") from e
        except requests.RequestException as e:
            raise GatewayError(self.name, f"Paystack network error: {e}", code="network") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"message": r.text}
        if r.status_code >= 400 or not data.get("status"):
            raise GatewayError(self.name, f"Paystack {r.status_code}: {data.get('message') or data}", code=str(r.status_code))
        refund = data.get("data") or {}
        return GatewayRefund(provider=self.name, provider_ref=str(refund.get("id") or ""), status=str(refund.get("status") or "pending"), raw=data)
