import enum
import json
from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, Text, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from vilo.db.session import Base


class RefundStatus(str, enum.Enum):
    REQUESTED = "requested"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    WITHDRAWN = "withdrawn"


ACTIVE_STATUSES = (
    RefundStatus.REQUESTED.value,
    RefundStatus.UNDER_REVIEW.value,
    RefundStatus.APPROVED.value,
    RefundStatus.PROCESSING.value,
)
TERMINAL_STATUSES = (
    RefundStatus.REJECTED.value,
    RefundStatus.COMPLETED.value,
    RefundStatus.FAILED.value,
    RefundStatus.WITHDRAWN.value,
)

# Same literal is used by the migration; keep them in sync.
ACTIVE_STATUS_PREDICATE = "status IN ('requested', 'under_review', 'approved', 'processing')"


class RefundRequest(Base):
    __tablename__ = "refund_requests"
    __table_args__ = (
        # One active refund per booking, enforced by the database for concurrent inserts
        Index(
            "uq_refund_requests_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_PREDICATE),
            sqlite_where=text(ACTIVE_STATUS_PREDICATE),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"), index=True)
    requested_by: Mapped[str] = mapped_column(String(36), index=True)

    requested_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    approved_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    refunded_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), default="ZAR")

    status: Mapped[str] = mapped_column(String(20), default=RefundStatus.REQUESTED.value, index=True)

    reason_code: Mapped[str] = mapped_column(String(40), default="other")
    reason: Mapped[str] = mapped_column(String(2000), default="")  # normalized "<label>: <details>"
    customer_notes: Mapped[str] = mapped_column(Text, default="")
    internal_notes: Mapped[str] = mapped_column(Text, default="")  # admin-only, never serialized for guests

    refund_method: Mapped[str] = mapped_column(String(30), default="manual")  # manual, eft, credit_memo, cybersource, paystack
    gateway_refund_id: Mapped[str] = mapped_column(String(255), default="")  # comma-separated when split across payments
    refund_breakdown_json: Mapped[str] = mapped_column(Text, default="[]")  # one part per original payment
    completion_reference: Mapped[str] = mapped_column(String(120), default="")
    credit_memo_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Eligibility snapshot at submission time
    suggested_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    cancellation_policy: Mapped[str] = mapped_column(String(30), default="")
    calculated_policy_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    reviewed_by: Mapped[str] = mapped_column(String(36), default="")
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str] = mapped_column(String(36), default="")
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str] = mapped_column(String(36), default="")
    rejected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[str] = mapped_column(String(36), default="")
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def refund_breakdown(self) -> list[dict]:
        return json.loads(self.refund_breakdown_json or "[]")


class RefundStatusHistory(Base):
    """Append-only audit trail of refund status transitions."""
    __tablename__ = "refund_status_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    refund_request_id: Mapped[str] = mapped_column(String(36), ForeignKey("refund_requests.id"), index=True)
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)  # null for creation
    to_status: Mapped[str] = mapped_column(String(20))
    changed_by: Mapped[str] = mapped_column(String(36))
    change_reason: Mapped[str] = mapped_column(String(2000), default="")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class RefundComment(Base):
    __tablename__ = "refund_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    refund_request_id: Mapped[str] = mapped_column(String(36), ForeignKey("refund_requests.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    body: Mapped[str] = mapped_column(String(2000))
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class RefundDocument(Base):
    __tablename__ = "refund_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    refund_request_id: Mapped[str] = mapped_column(String(36), ForeignKey("refund_requests.id"), index=True)
    uploaded_by: Mapped[str] = mapped_column(String(36), index=True)

    file_name: Mapped[str] = mapped_column(String(255))
    file_type: Mapped[str] = mapped_column(String(100))
    file_size: Mapped[int] = mapped_column(Integer)
    storage: Mapped[str] = mapped_column(String(16), default="local")  # local, gcs
    object_key: Mapped[str] = mapped_column(String(512))

    document_type: Mapped[str] = mapped_column(String(40), default="other")  # receipt, proof_of_cancellation, bank_statement, other
    description: Mapped[str] = mapped_column(String(500), default="")

    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    verified_by: Mapped[str] = mapped_column(String(36), default="")
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
