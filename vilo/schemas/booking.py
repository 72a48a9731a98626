from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class BookingDatesPatch(BaseModel):
    check_in_date: date
    check_out_date: date


class BookingPricePatch(BaseModel):
    total_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    reason: str = ""


class BookingCancelIn(BaseModel):
    reason: str = ""


class BookingOut(BaseModel):
    id: str
    booking_reference: str
    property_id: str
    guest_id: str
    check_in_date: date
    check_out_date: date
    currency: str
    total_amount: float
    amount_paid: float
    total_refunded: float
    status: str
    payment_status: str
    refund_status: str
    has_active_refund: bool = False
    active_refund_id: Optional[str] = None
    refunds: list[dict] = Field(default_factory=list)
