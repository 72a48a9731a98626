from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RefundMethod = Literal["manual", "eft", "credit_memo", "cybersource", "paystack"]
ReasonCode = Literal[
    "change_of_plans",
    "illness_or_emergency",
    "travel_restrictions",
    "property_issue",
    "booking_error",
    "duplicate_payment",
    "other",
]
DocumentType = Literal["receipt", "proof_of_cancellation", "bank_statement", "other"]


# --- action inputs: one model per transition ---

class RefundCreateInput(BaseModel):
    requested_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    reason_code: ReasonCode = "other"
    reason_details: str = Field(default="", max_length=1500)
    refund_method: Optional[RefundMethod] = None  # preferred method; admins may override when processing


class ApproveInput(BaseModel):
    approved_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)  # defaults to requested
    customer_notes: str = Field(default="", max_length=2000)
    internal_notes: str = Field(default="", max_length=2000)
    change_reason: str = Field(default="", max_length=500)


class RejectInput(BaseModel):
    customer_notes: str = Field(max_length=2000)  # shown to the guest; blank is rejected by the service
    internal_notes: str = Field(default="", max_length=2000)


class ProcessInput(BaseModel):
    refund_method: Optional[RefundMethod] = None


class MarkCompleteInput(BaseModel):
    reference: str = Field(min_length=1, max_length=120)  # EFT/bank reference
    notes: str = Field(default="", max_length=2000)


class CommentIn(BaseModel):
    body: str = Field(min_length=1, max_length=2000)
    is_internal: bool = False


class RefundListParams(BaseModel):
    status: List[str] = Field(default_factory=list)
    booking_id: str = ""
    property_id: str = ""
    requested_by: str = ""
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    search: str = ""
    sort_by: Literal["created_at", "updated_at", "requested_amount", "status"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


# --- outputs ---

class RefundGuestOut(BaseModel):
    """What a guest may see. internal_notes is deliberately absent."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    requested_by: str
    requested_amount: float
    approved_amount: Optional[float] = None
    refunded_amount: float = 0
    currency: str
    status: str
    reason_code: str
    reason: str
    customer_notes: str = ""
    refund_method: str
    suggested_amount: float = 0
    cancellation_policy: str = ""
    credit_memo_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None


class RefundAdminOut(RefundGuestOut):
    internal_notes: str = ""
    calculated_policy_amount: float = 0
    gateway_refund_id: str = ""
    refund_breakdown: List[dict] = []
    completion_reference: str = ""
    reviewed_by: str = ""
    reviewed_at: Optional[datetime] = None
    approved_by: str = ""
    rejected_by: str = ""
    processed_by: str = ""


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    refund_request_id: str
    user_id: str
    body: str
    is_internal: bool
    created_at: datetime


class HistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_status: Optional[str] = None
    to_status: str
    changed_by: str
    change_reason: str = ""
    changed_at: datetime


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    refund_request_id: str
    uploaded_by: str
    file_name: str
    file_type: str
    file_size: int
    document_type: str
    description: str = ""
    is_verified: bool
    verified_by: str = ""
    verified_at: Optional[datetime] = None
    uploaded_at: datetime
