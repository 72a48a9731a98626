from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol


@dataclass
class GatewayRefund:
    provider: str
    provider_ref: str  # gateway-side refund id
    status: str = "succeeded"
    raw: dict = field(default_factory=dict)


class RefundGateway(Protocol):
    name: str

    def refund(self, transaction_ref: str, amount: Decimal, currency: str, client_ref: str) -> GatewayRefund:
        """Refund `amount` against a captured transaction. Raises GatewayError on any failure."""
        ...


def amount_str(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


def minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())
