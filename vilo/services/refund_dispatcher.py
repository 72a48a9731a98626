"""
Executes approved refunds.

`process_refund` claims the request with a conditional UPDATE
(approved -> processing) so a retried or concurrent call cannot dispatch the
same refund twice, then routes on refund_method:

    manual / eft    stays in processing until mark_refund_complete
    credit_memo     issues a credit memo and completes in the same call
    cybersource,
    paystack        the approved amount is split across the booking's captured
                    payments (refund_breakdown) and each part is refunded against
                    its own transaction with a bounded timeout. All parts
                    succeeding completes; the first failure (including timeout)
                    stops the run and lands in failed

Gateway failures never propagate to the caller. The provider message goes to
internal_notes and the logs; the guest gets a generic customer_notes. Nothing
is retried automatically: a human re-triggers with a new request.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.orm import Session

from vilo.core.errors import GatewayError, ValidationError
from vilo.core.security import Actor
from vilo.models.booking import Booking
from vilo.models.payment import Payment
from vilo.models.refund import RefundRequest, RefundStatus
from vilo.schemas.refund import MarkCompleteInput, ProcessInput
from vilo.services import credit_memo_service
from vilo.services import refund_state_machine as sm
from vilo.services.audit_service import log_audit
from vilo.services.gateways.registry import GATEWAY_METHODS, get_gateway
from vilo.services.notification_service import notify_transition
from vilo.services.refund_service import (
    append_note,
    assert_can_manage,
    compare_and_set_status,
    get_booking,
    get_refund,
    record_history,
)

logger = logging.getLogger(__name__)

OFFLINE_METHODS = ("manual", "eft")
CENT = Decimal("0.01")
FAILED_CUSTOMER_NOTE = (
    "We were unable to complete your refund automatically. Our team has been alerted "
    "and will follow up with you shortly. No further action is needed from you."
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def claim_for_processing(db: Session, refund: RefundRequest, actor: Actor, method: str) -> RefundRequest:
    """approved -> processing as a single conditional UPDATE. Zero rows means someone else got there first."""
    compare_and_set_status(db, refund, RefundStatus.APPROVED.value, RefundStatus.PROCESSING.value, sm.PROCESS,
                           refund_method=method, processed_by=actor.user_id, processed_at=_now())

    record_history(db, refund, RefundStatus.APPROVED.value, RefundStatus.PROCESSING.value, actor.user_id,
                   f"Processing via {method}", {"refund_method": method})
    log_audit(db, actor.user_id, "refund_request.processing", "refund_request", refund.id, {"refund_method": method})
    db.commit()
    db.refresh(refund)
    logger.info("Refund %s claimed for processing via %s by %s", refund.id, method, actor.user_id)
    return refund


def process_refund(db: Session, refund_id: str, actor: Actor, data: ProcessInput) -> RefundRequest:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    sm.assert_actor_may(actor, sm.PROCESS, refund.requested_by)
    assert_can_manage(db, actor, booking)
    sm.next_status(refund.status, sm.PROCESS)

    method = data.refund_method or refund.refund_method or "manual"
    claim_for_processing(db, refund, actor, method)
    notify_transition(db, refund, RefundStatus.PROCESSING.value)

    if method in OFFLINE_METHODS:
        return refund
    if method == "credit_memo":
        return _settle_with_credit_memo(db, refund, booking, actor)
    if method in GATEWAY_METHODS:
        return _settle_with_gateway(db, refund, booking, actor, method)
    return fail_refund(db, refund, actor, "dispatcher", f"Unsupported refund method '{method}'")


def _settle_with_credit_memo(db: Session, refund: RefundRequest, booking: Booking, actor: Actor) -> RefundRequest:
    try:
        memo = credit_memo_service.issue_for_refund(db, refund, booking, actor)
    except Exception as e:
        db.rollback()
        logger.exception("Credit memo generation failed for refund %s", refund.id)
        return fail_refund(db, refund, actor, "credit_memo", str(e))
    return complete_refund(db, refund, actor, reference=memo.credit_memo_number)


def _refunded_per_payment(db: Session, booking_id: str) -> dict[str, Decimal]:
    """Amounts already sent back per original payment, from earlier gateway breakdowns."""
    done: dict[str, Decimal] = {}
    earlier = db.query(RefundRequest).filter(
        RefundRequest.booking_id == booking_id,
        RefundRequest.status.in_([RefundStatus.COMPLETED.value, RefundStatus.FAILED.value]),
    )
    for r in earlier:
        for part in r.refund_breakdown:
            if part.get("status") == "succeeded":
                done[part["payment_id"]] = done.get(part["payment_id"], Decimal("0")) + Decimal(part["amount"])
    return done


def refund_breakdown(db: Session, booking_id: str, provider: str, amount: Decimal) -> list[dict]:
    """Split `amount` across the booking's `provider` payments, oldest first.

    Each part is proportional to what is still refundable on its payment, so no
    transaction is asked for more than it captured. The last part absorbs the
    rounding and the parts always sum to `amount`.
    """
    payments = (
        db.query(Payment)
        .filter(Payment.booking_id == booking_id, Payment.provider == provider, Payment.status == "paid")
        .order_by(Payment.created_at.asc())
        .all()
    )
    done = _refunded_per_payment(db, booking_id)
    refundable = [(p, Decimal(p.amount) - done.get(p.id, Decimal("0"))) for p in payments]
    refundable = [(p, left) for p, left in refundable if left > 0]
    available = sum((left for _, left in refundable), Decimal("0"))
    if not refundable or available < amount:
        raise GatewayError(
            provider,
            f"Approved {amount:.2f} exceeds the {available:.2f} still refundable on {provider} payments",
            code="insufficient_captured",
        )

    parts, remaining = [], amount
    for i, (payment, left) in enumerate(refundable):
        if i == len(refundable) - 1:
            share = remaining
        else:
            share = min(left, (amount * left / available).quantize(CENT, rounding=ROUND_HALF_UP))
        remaining -= share
        if share <= 0:
            continue
        parts.append({
            "payment_id": payment.id,
            "transaction_ref": payment.provider_ref,
            "amount": str(share),
            "status": "pending",
            "gateway_refund_id": "",
            "error": "",
        })
    return parts


def _settle_with_gateway(db: Session, refund: RefundRequest, booking: Booking, actor: Actor, method: str) -> RefundRequest:
    try:
        parts = refund_breakdown(db, booking.id, method, Decimal(refund.approved_amount))
    except GatewayError as e:
        return fail_refund(db, refund, actor, e.provider, e.message, e.code)

    gateway = get_gateway(method)
    for i, part in enumerate(parts):
        client_ref = refund.id if len(parts) == 1 else f"{refund.id}-{i + 1}"
        try:
            result = gateway.refund(part["transaction_ref"], Decimal(part["amount"]), refund.currency, client_ref=client_ref)
        except GatewayError as e:
            part.update(status="failed", error=e.message)
            return fail_refund(db, refund, actor, e.provider, e.message, e.code, parts=parts)
        except Exception as e:
            logger.exception("Unexpected error calling %s for refund %s", method, refund.id)
            part.update(status="failed", error=f"Unexpected error: {e}")
            return fail_refund(db, refund, actor, method, f"Unexpected error: {e}", parts=parts)
        part.update(status="succeeded", gateway_refund_id=result.provider_ref)

    refs = ",".join(p["gateway_refund_id"] for p in parts)
    return complete_refund(db, refund, actor, reference=refs, gateway_refund_id=refs, parts=parts)


def recalculate_booking_refunds(db: Session, booking: Booking) -> Booking:
    """Derive total_refunded, refund_status and payment_status from money actually sent back.

    Failed requests count too: a split gateway refund can fail after some parts went through.
    """
    db.flush()
    total = db.query(func.coalesce(func.sum(RefundRequest.refunded_amount), 0)).filter(
        RefundRequest.booking_id == booking.id,
        RefundRequest.status.in_([RefundStatus.COMPLETED.value, RefundStatus.FAILED.value]),
    ).scalar()
    booking.total_refunded = Decimal(str(total or 0)).quantize(Decimal("0.01"))
    paid = Decimal(booking.amount_paid or 0)
    if booking.total_refunded <= 0:
        booking.refund_status = "none"
    elif booking.total_refunded >= paid:
        booking.refund_status = "full"
        booking.payment_status = "refunded"
    else:
        booking.refund_status = "partial"
    return booking


def _add_refund_payment(db: Session, refund: RefundRequest, amount: Decimal, provider_ref: str) -> None:
    db.add(Payment(
        id=str(uuid.uuid4()),
        booking_id=refund.booking_id,
        provider=refund.refund_method,
        amount=amount,
        currency=refund.currency,
        status="refunded",
        provider_ref=provider_ref,
    ))


def _record_parts(db: Session, refund: RefundRequest, parts: list[dict]) -> Decimal:
    """Store the breakdown and one refunded Payment per part the gateway accepted. Returns the amount sent."""
    refund.refund_breakdown_json = json.dumps(parts)
    sent = Decimal("0")
    for part in parts:
        if part["status"] == "succeeded":
            _add_refund_payment(db, refund, Decimal(part["amount"]), part["gateway_refund_id"] or refund.id)
            sent += Decimal(part["amount"])
    return sent


def complete_refund(db: Session, refund: RefundRequest, actor: Actor, reference: str = "",
                    gateway_refund_id: str = "", notes: str = "", parts: list[dict] | None = None) -> RefundRequest:
    target = sm.next_status(refund.status, sm.COMPLETE)
    booking = get_booking(db, refund.booking_id)
    now = _now()

    from_status = refund.status
    compare_and_set_status(db, refund, from_status, target, sm.COMPLETE,
                           completed_at=now, refunded_amount=refund.approved_amount)
    refund.completion_reference = (reference or "")[:120]
    if gateway_refund_id:
        refund.gateway_refund_id = gateway_refund_id
    refund.internal_notes = append_note(refund.internal_notes, notes, now)

    if parts is None:
        _add_refund_payment(db, refund, Decimal(refund.approved_amount), reference or refund.id)
    else:
        _record_parts(db, refund, parts)
    recalculate_booking_refunds(db, booking)

    record_history(db, refund, from_status, target, actor.user_id, "Refund completed",
                   {"reference": reference, "refund_method": refund.refund_method})
    log_audit(db, actor.user_id, "refund_request.completed", "refund_request", refund.id,
              {"reference": reference, "amount": str(refund.approved_amount), "booking_total_refunded": str(booking.total_refunded)})
    db.commit()
    logger.info("Refund %s completed (%s %s via %s)", refund.id, refund.currency, refund.approved_amount, refund.refund_method)
    notify_transition(db, refund, refund.status)
    return refund


def fail_refund(db: Session, refund: RefundRequest, actor: Actor, provider: str, message: str, code: str = "",
                parts: list[dict] | None = None) -> RefundRequest:
    target = sm.next_status(refund.status, sm.FAIL)
    now = _now()
    from_status = refund.status
    compare_and_set_status(db, refund, from_status, target, sm.FAIL)
    refund.internal_notes = append_note(
        refund.internal_notes, f"{provider} refund failed{f' [{code}]' if code else ''}: {message}", now
    )
    refund.customer_notes = FAILED_CUSTOMER_NOTE
    if parts:
        sent = _record_parts(db, refund, parts)
        if sent > 0:
            refund.refunded_amount = sent
            refund.internal_notes = append_note(
                refund.internal_notes,
                f"{sent:.2f} {refund.currency} was already returned on earlier payments; reconcile before re-issuing",
                now,
            )
            recalculate_booking_refunds(db, get_booking(db, refund.booking_id))

    record_history(db, refund, from_status, target, actor.user_id, "Refund processing failed",
                   {"provider": provider, "error_code": code})
    log_audit(db, actor.user_id, "refund_request.failed", "refund_request", refund.id,
              {"provider": provider, "error_code": code, "error": message})
    db.commit()
    logger.error("Refund %s failed at %s: %s", refund.id, provider, message)
    notify_transition(db, refund, refund.status)
    return refund


def mark_refund_complete(db: Session, refund_id: str, actor: Actor, data: MarkCompleteInput) -> RefundRequest:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    sm.assert_actor_may(actor, sm.COMPLETE, refund.requested_by)
    assert_can_manage(db, actor, booking)
    sm.next_status(refund.status, sm.COMPLETE)
    if refund.refund_method not in OFFLINE_METHODS:
        raise ValidationError(
            f"Only manual or EFT refunds can be marked complete (this one is {refund.refund_method})",
            details={"refund_method": refund.refund_method},
        )
    reference = data.reference.strip()
    if not reference:
        raise ValidationError("A payment reference is required to mark a refund complete")
    return complete_refund(db, refund, actor, reference=reference, notes=data.notes)
