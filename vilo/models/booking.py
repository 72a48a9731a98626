from decimal import Decimal
from sqlalchemy import String, Date, DateTime, Numeric, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from vilo.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_reference: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), index=True)
    guest_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)

    check_in_date: Mapped[date] = mapped_column(Date)
    check_out_date: Mapped[date] = mapped_column(Date)

    currency: Mapped[str] = mapped_column(String(3), default="ZAR")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_refunded: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    status: Mapped[str] = mapped_column(String(30), default="confirmed")  # pending, confirmed, cancelled, completed
    payment_status: Mapped[str] = mapped_column(String(30), default="unpaid")  # unpaid, partial, paid, refunded
    refund_status: Mapped[str] = mapped_column(String(20), default="none")  # none, partial, full

    # Invoice lines as agreed at booking time: [{"description", "quantity", "unit_price"}]
    line_items_json: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
