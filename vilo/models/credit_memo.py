from sqlalchemy import String, Integer, DateTime, Numeric, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from decimal import Decimal
from vilo.db.session import Base

class CreditMemo(Base):
    __tablename__ = "credit_memos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    credit_memo_number: Mapped[str] = mapped_column(String(20), unique=True, index=True)  # CM-YYYYMM-NNNN

    refund_request_id: Mapped[str] = mapped_column(String(36), ForeignKey("refund_requests.id"), index=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)

    # Snapshot at issue time
    customer_name: Mapped[str] = mapped_column(String(200), default="")
    customer_email: Mapped[str] = mapped_column(String(320), default="")
    property_name: Mapped[str] = mapped_column(String(200), default="")

    # [{"description", "quantity", "unit_price_cents", "total_cents"}]
    line_items_json: Mapped[str] = mapped_column(Text, default="[]")
    subtotal_cents: Mapped[int] = mapped_column(Integer, default=0)
    tax_cents: Mapped[int] = mapped_column(Integer, default=0)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    total_cents: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="ZAR")

    reason: Mapped[str] = mapped_column(String(2000), default="")
    status: Mapped[str] = mapped_column(String(10), default="draft")  # draft, issued, void

    document_storage: Mapped[str] = mapped_column(String(16), default="local")
    document_object_key: Mapped[str] = mapped_column(String(512), default="")
    document_url: Mapped[str] = mapped_column(String(1024), default="")

    issued_by: Mapped[str] = mapped_column(String(36), default="")
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[str] = mapped_column(String(36), default="")
    voided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    void_reason: Mapped[str] = mapped_column(String(500), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
