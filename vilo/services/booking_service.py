"""Booking mutations that must respect the refund lock.

A booking is locked while any of its refund requests is active
(requested, under_review, approved, processing). The lock is derived on every
call, never stored, so withdrawing or resolving the refund releases it at once.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from vilo.core.errors import RefundLockActive, ValidationError
from vilo.core.security import Actor
from vilo.models.booking import Booking
from vilo.models.refund import RefundRequest
from vilo.schemas.booking import BookingOut
from vilo.services.audit_service import log_audit
from vilo.services.refund_service import (
    active_refund,
    assert_can_manage,
    assert_can_view_booking,
    can_manage_booking,
    get_booking,
    serialize_refund,
)

logger = logging.getLogger(__name__)


def has_active_refund(db: Session, booking_id: str) -> bool:
    return active_refund(db, booking_id) is not None


def ensure_booking_unlocked(db: Session, booking_id: str) -> None:
    refund = active_refund(db, booking_id)
    if refund:
        raise RefundLockActive(booking_id, refund.id)


def booking_detail(db: Session, booking_id: str, actor: Actor) -> dict:
    booking = get_booking(db, booking_id)
    assert_can_view_booking(db, actor, booking)
    admin = can_manage_booking(db, actor, booking)
    refunds = (
        db.query(RefundRequest)
        .filter(RefundRequest.booking_id == booking.id)
        .order_by(RefundRequest.created_at.desc())
        .all()
    )
    active = active_refund(db, booking.id)
    return BookingOut(**{
        "id": booking.id,
        "booking_reference": booking.booking_reference,
        "property_id": booking.property_id,
        "guest_id": booking.guest_id,
        "check_in_date": booking.check_in_date,
        "check_out_date": booking.check_out_date,
        "currency": booking.currency,
        "total_amount": booking.total_amount or 0,
        "amount_paid": booking.amount_paid or 0,
        "total_refunded": booking.total_refunded or 0,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "refund_status": booking.refund_status,
        "has_active_refund": active is not None,
        "active_refund_id": active.id if active else None,
        "refunds": [serialize_refund(r, admin=admin) for r in refunds],
    }).model_dump(mode="json")


def _load_for_edit(db: Session, booking_id: str, actor: Actor) -> Booking:
    booking = get_booking(db, booking_id)
    assert_can_manage(db, actor, booking)
    ensure_booking_unlocked(db, booking.id)
    if booking.status == "cancelled":
        raise ValidationError("Cancelled bookings cannot be changed", details={"booking_id": booking.id})
    return booking


def update_dates(db: Session, booking_id: str, actor: Actor, check_in: date, check_out: date) -> Booking:
    booking = _load_for_edit(db, booking_id, actor)
    if check_out <= check_in:
        raise ValidationError("Check-out must be after check-in")
    before = {"check_in_date": booking.check_in_date.isoformat(), "check_out_date": booking.check_out_date.isoformat()}
    booking.check_in_date = check_in
    booking.check_out_date = check_out
    log_audit(db, actor.user_id, "booking.dates_changed", "booking", booking.id,
              {"before": before, "after": {"check_in_date": check_in.isoformat(), "check_out_date": check_out.isoformat()}})
    db.commit()
    return booking


def update_price(db: Session, booking_id: str, actor: Actor, total_amount: Decimal, reason: str = "") -> Booking:
    booking = _load_for_edit(db, booking_id, actor)
    before = booking.total_amount
    booking.total_amount = Decimal(total_amount)
    log_audit(db, actor.user_id, "booking.price_changed", "booking", booking.id,
              {"before": str(before), "after": str(total_amount), "reason": reason})
    db.commit()
    return booking


def cancel_booking(db: Session, booking_id: str, actor: Actor, reason: str = "") -> Booking:
    booking = get_booking(db, booking_id)
    if booking.guest_id != actor.user_id:
        assert_can_manage(db, actor, booking)
    ensure_booking_unlocked(db, booking.id)
    if booking.status == "cancelled":
        raise ValidationError("Booking is already cancelled", details={"booking_id": booking.id})
    booking.status = "cancelled"
    log_audit(db, actor.user_id, "booking.cancelled", "booking", booking.id, {"reason": reason})
    db.commit()
    logger.info("Booking %s cancelled by %s", booking.booking_reference, actor.user_id)
    return booking
