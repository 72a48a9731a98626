from vilo.services.gateways.base import RefundGateway
from vilo.services.gateways.cybersource import CybersourceClient, CybersourceConfig
from vilo.services.gateways.paystack import PaystackClient

GATEWAY_METHODS = ("cybersource", "paystack")

def get_gateway(method: str) -> RefundGateway:
    if method == "cybersource":
        return CybersourceClient(CybersourceConfig.from_settings())
    if method == "paystack":
        return PaystackClient.from_settings()
    raise ValueError(f"'{method}' is not a gateway refund method")
