from sqlalchemy import String, DateTime, Text, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from vilo.db.session import Base

class EmailTemplate(Base):
    """Admin-editable email copy. Placeholders use $name syntax."""
    __tablename__ = "email_templates"

    key: Mapped[str] = mapped_column(String(80), primary_key=True)  # e.g. refund_approved
    subject: Mapped[str] = mapped_column(String(200))
    body: Mapped[str] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
