import base64
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from email.utils import format_datetime

import requests

from vilo.core.config import settings
from vilo.core.errors import GatewayError
from vilo.services.gateways.base import GatewayRefund, amount_str

logger = logging.getLogger(__name__)

@dataclass
class CybersourceConfig:
    host: str               # apitest.cybersource.com OR api.cybersource.com
    merchant_id: str        # v-c-merchant-id header
    key_id: str             # keyid in Signature header
    secret_key_b64: str     # shared secret (base64 string from Business Center)
    timeout: int = 25
    sandbox: bool = False

    @classmethod
    def from_settings(cls) -> "CybersourceConfig":
        return cls(
            host=settings.CYBS_HOST,
            merchant_id=settings.CYBS_MERCHANT_ID,
            key_id=settings.CYBS_KEY_ID,
            secret_key_b64=settings.CYBS_SECRET_KEY_B64,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            sandbox=settings.CYBS_SANDBOX,
        )

def _digest_header(body_bytes: bytes) -> str:
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body_bytes).digest()).decode("utf-8")

def _sign(secret: bytes, signed_lines: list[str]) -> str:
    # newline separated, no trailing newline
    sig = hmac.new(secret, "\n".join(signed_lines).encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(sig).decode("utf-8")

class CybersourceClient:
    """Cybersource REST refunds, HTTP Signature auth."""

    name = "cybersource"

    def __init__(self, cfg: CybersourceConfig):
        self.cfg = cfg
        # Tolerate pasted keys with whitespace or line breaks
        b64 = "".join((cfg.secret_key_b64 or "").split())
        self._secret = base64.b64decode(b64) if b64 else b""

    def _headers(self, method: str, resource: str, body_bytes: bytes) -> dict:
        date_str = format_datetime(datetime.now(timezone.utc), usegmt=True)
        digest = _digest_header(body_bytes)
        signature = _sign(self._secret, [
            f"host: {self.cfg.host}",
            f"date: {date_str}",
            f"(request-target): {method.lower()} {resource}",
            f"digest: {digest}",
            f"v-c-merchant-id: {self.cfg.merchant_id}",
        ])
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Host": self.cfg.host,
            "Date": date_str,
            "Digest": digest,
            "v-c-merchant-id": self.cfg.merchant_id,
            "Signature": (
                f'keyid="{self.cfg.key_id}", algorithm="HmacSHA256", '
                f'headers="host date (request-target) digest v-c-merchant-id", signature="{signature}"'
            ),
        }

    def request(self, method: str, path: str, payload: dict) -> dict:
        body_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        url = f"https://{self.cfg.host}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes,
                                 headers=self._headers(method, path, body_bytes), timeout=self.cfg.timeout)
        except requests.Timeout as e:
            raise GatewayError(self.name, f"Cybersource timed out after {self.cfg.timeout}s", code="timeout") from e
        except requests.RequestException as e:
            raise GatewayError(self.name, f"Cybersource network error: {e}", code="network") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            raise GatewayError(self.name, f"Cybersource {r.status_code}: {data}", code=str(data.get("reason") or r.status_code))
        return data

    def refund(self, transaction_ref: str, amount: Decimal, currency: str, client_ref: str) -> GatewayRefund:
        if self.cfg.sandbox:
            logger.info("CYBS_SANDBOX: mock refund of %s %s for %s", amount_str(amount), currency, transaction_ref)
            return GatewayRefund(provider=self.name, provider_ref=f"SANDBOX-{uuid.uuid4().hex[:12]}", raw={"sandbox": True})
        if not transaction_ref:
            raise GatewayError(self.name, "No Cybersource transaction reference on the original payment", code="missing_reference")
        payload = {
            "clientReferenceInformation": {"code": client_ref},
            "orderInformation": {"amountDetails": {"totalAmount": amount_str(amount), "currency": currency}},
        }
        data = self.request("POST", f"/pts/v2/payments/{transaction_ref}/refunds", payload)
        status = str(data.get("status") or "")
        if status and status.upper() not in ("PENDING", "REFUNDED", "TRANSMITTED"):
            raise GatewayError(self.name, f"Cybersource refund status {status}: {data.get('errorInformation') or data}", code=status)
        return GatewayRefund(provider=self.name, provider_ref=str(data.get("id") or ""), status=status.lower() or "pending", raw=data)
