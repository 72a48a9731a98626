from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vilo.api.deps import get_actor
from vilo.core.security import Actor
from vilo.db.session import get_db
from vilo.schemas.booking import BookingCancelIn, BookingDatesPatch, BookingPricePatch
from vilo.schemas.refund import RefundCreateInput
from vilo.services import booking_service, refund_service
from vilo.services.eligibility_service import calculate_for_booking

router = APIRouter(tags=["bookings"])


@router.get("/bookings/{booking_id}")
def get_booking(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return booking_service.booking_detail(db, booking_id, actor)


@router.patch("/bookings/{booking_id}/dates")
def change_dates(booking_id: str, body: BookingDatesPatch, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    booking_service.update_dates(db, booking_id, actor, body.check_in_date, body.check_out_date)
    return booking_service.booking_detail(db, booking_id, actor)


@router.patch("/bookings/{booking_id}/price")
def change_price(booking_id: str, body: BookingPricePatch, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    booking_service.update_price(db, booking_id, actor, body.total_amount, body.reason)
    return booking_service.booking_detail(db, booking_id, actor)


@router.post("/bookings/{booking_id}/cancel")
def cancel(booking_id: str, body: BookingCancelIn, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    booking_service.cancel_booking(db, booking_id, actor, body.reason)
    return booking_service.booking_detail(db, booking_id, actor)


# -------------------------
# REFUNDS ON A BOOKING
# -------------------------
@router.post("/bookings/{booking_id}/refunds", status_code=201)
def create_refund(booking_id: str, body: RefundCreateInput, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.create_refund_request(db, booking_id, actor, body)
    return refund_service.serialize_for_actor(db, refund, actor)


@router.get("/bookings/{booking_id}/refunds/status")
def refund_status(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return refund_service.refund_status_summary(db, booking_id, actor)


@router.get("/bookings/{booking_id}/refunds/calculate")
def calculate(booking_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    booking = refund_service.get_booking(db, booking_id)
    refund_service.assert_can_view_booking(db, actor, booking)
    return calculate_for_booking(db, booking).to_dict()
