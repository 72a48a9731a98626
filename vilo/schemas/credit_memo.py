from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditMemoLineItem(BaseModel):
    description: str
    quantity: float = 1
    unit_price_cents: int
    total_cents: int


class CreditMemoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    credit_memo_number: str
    refund_request_id: str
    booking_id: str
    user_id: str
    customer_name: str = ""
    customer_email: str = ""
    property_name: str = ""
    line_items: List[CreditMemoLineItem] = Field(default_factory=list)
    subtotal_cents: int
    tax_cents: int
    tax_rate: float
    total_cents: int
    currency: str
    reason: str = ""
    status: str
    document_url: str = ""
    issued_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: str = ""
    created_at: datetime


class VoidCreditMemoIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
