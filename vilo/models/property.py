from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from vilo.db.session import Base

class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    cancellation_policy: Mapped[str] = mapped_column(String(30), default="moderate")  # flexible, moderate, strict, non_refundable
    currency: Mapped[str] = mapped_column(String(3), default="ZAR")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PropertyTeamMember(Base):
    __tablename__ = "property_team_members"
    __table_args__ = (UniqueConstraint("property_id", "user_id", name="uq_property_team_member"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    property_id: Mapped[str] = mapped_column(String(36), ForeignKey("properties.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(String(20), default="manager")  # admin, manager, staff
    status: Mapped[str] = mapped_column(String(20), default="active")  # active, inactive
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
