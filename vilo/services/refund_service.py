"""
Refund request lifecycle: creation, review decisions, withdrawal and the
read paths (listing, comments, history).

Every transition follows the same shape:

1. load the request and run the role guard and the state-machine guard,
2. validate the amounts and notes,
3. mutate the request, append a RefundStatusHistory row and an audit row,
   all in one commit,
4. fan out notifications after the commit (best-effort).

Guards raise before step 3, so a refused action never leaves a partial write
or a history row behind. Processing lives in refund_dispatcher.
"""

import json
import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vilo.core.config import settings
from vilo.core.errors import (
    ActiveRefundExists,
    InvalidStateTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from vilo.core.security import Actor, ADMIN, FINANCE, SUPERADMIN
from vilo.models.booking import Booking
from vilo.models.property import Property, PropertyTeamMember
from vilo.models.refund import ACTIVE_STATUSES, RefundComment, RefundRequest, RefundStatus, RefundStatusHistory
from vilo.schemas.refund import (
    ApproveInput,
    CommentOut,
    HistoryOut,
    RefundAdminOut,
    RefundCreateInput,
    RefundGuestOut,
    RefundListParams,
    RejectInput,
)
from vilo.services import refund_state_machine as sm
from vilo.services.audit_service import log_audit
from vilo.services.eligibility_service import calculate_for_booking
from vilo.services.notification_service import notify_comment, notify_transition

logger = logging.getLogger(__name__)

REASON_LABELS = {
    "change_of_plans": "Change of plans",
    "illness_or_emergency": "Illness or emergency",
    "travel_restrictions": "Travel restrictions",
    "property_issue": "Problem with the property",
    "booking_error": "Booking made in error",
    "duplicate_payment": "Duplicate payment",
    "other": "Other",
}
GLOBAL_REFUND_ROLES = (ADMIN, FINANCE, SUPERADMIN)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_reason(reason_code: str, reason_details: str = "") -> str:
    """Single stored form of the guest's reason: '<label>: <details>' or just the label."""
    label = REASON_LABELS.get(reason_code, REASON_LABELS["other"])
    details = " ".join((reason_details or "").split())
    return f"{label}: {details}" if details else label


def append_note(existing: str, note: str, at: datetime | None = None) -> str:
    note = (note or "").strip()
    if not note:
        return existing or ""
    stamped = f"[{(at or _now()).strftime('%Y-%m-%d %H:%M')}] {note}"
    return f"{existing}\n{stamped}" if existing else stamped


def available_for_refund(booking: Booking) -> Decimal:
    return max(Decimal(booking.amount_paid or 0) - Decimal(booking.total_refunded or 0), Decimal("0"))


# ---------------------------------------------------------------------------
# loading and access
# ---------------------------------------------------------------------------

def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return booking


def get_refund(db: Session, refund_id: str) -> RefundRequest:
    refund = db.get(RefundRequest, refund_id)
    if not refund:
        raise NotFoundError("Refund request not found", details={"refund_id": refund_id})
    return refund


def managed_property_ids(db: Session, actor: Actor) -> list[str] | None:
    """Properties a back-office actor may act on. None means all properties."""
    if actor.role in GLOBAL_REFUND_ROLES:
        return None
    owned = [p.id for p in db.query(Property.id).filter(Property.owner_id == actor.user_id).all()]
    team = [
        m.property_id
        for m in db.query(PropertyTeamMember.property_id)
        .filter(PropertyTeamMember.user_id == actor.user_id, PropertyTeamMember.status == "active")
        .all()
    ]
    return list(dict.fromkeys(owned + team))


def can_manage_booking(db: Session, actor: Actor, booking: Booking) -> bool:
    if not actor.is_admin:
        return False
    allowed = managed_property_ids(db, actor)
    return allowed is None or booking.property_id in allowed


def assert_can_manage(db: Session, actor: Actor, booking: Booking) -> None:
    if not can_manage_booking(db, actor, booking):
        raise PermissionDenied("You do not manage the property for this booking")


def assert_can_view(db: Session, actor: Actor, refund: RefundRequest, booking: Booking | None = None) -> None:
    if refund.requested_by == actor.user_id:
        return
    booking = booking or get_booking(db, refund.booking_id)
    if booking.guest_id == actor.user_id or can_manage_booking(db, actor, booking):
        return
    raise PermissionDenied("You do not have access to this refund request")


def assert_can_view_booking(db: Session, actor: Actor, booking: Booking) -> None:
    if booking.guest_id != actor.user_id and not can_manage_booking(db, actor, booking):
        raise PermissionDenied("You do not have access to this booking")


def get_refund_for_actor(db: Session, refund_id: str, actor: Actor) -> RefundRequest:
    refund = get_refund(db, refund_id)
    assert_can_view(db, actor, refund)
    return refund


def sees_internal(db: Session, actor: Actor, booking: Booking) -> bool:
    return can_manage_booking(db, actor, booking)


# ---------------------------------------------------------------------------
# shared write helpers (also used by refund_dispatcher)
# ---------------------------------------------------------------------------

def record_history(db: Session, refund: RefundRequest, from_status: str | None, to_status: str,
                   actor_id: str, reason: str = "", metadata: dict | None = None) -> RefundStatusHistory:
    row = RefundStatusHistory(
        id=str(uuid.uuid4()),
        refund_request_id=refund.id,
        from_status=from_status,
        to_status=to_status,
        changed_by=actor_id,
        change_reason=reason or "",
        metadata_json=json.dumps(metadata or {}, default=str),
        changed_at=_now(),
    )
    db.add(row)
    return row


def add_comment_row(db: Session, refund_id: str, user_id: str, body: str, is_internal: bool) -> RefundComment | None:
    body = (body or "").strip()
    if not body:
        return None
    row = RefundComment(id=str(uuid.uuid4()), refund_request_id=refund_id, user_id=user_id,
                        body=body, is_internal=is_internal, created_at=_now())
    db.add(row)
    return row


def active_refund(db: Session, booking_id: str) -> RefundRequest | None:
    return (
        db.query(RefundRequest)
        .filter(RefundRequest.booking_id == booking_id, RefundRequest.status.in_(ACTIVE_STATUSES))
        .first()
    )


# ---------------------------------------------------------------------------
# transitions
# ---------------------------------------------------------------------------

def create_refund_request(db: Session, booking_id: str, actor: Actor, data: RefundCreateInput) -> RefundRequest:
    booking = get_booking(db, booking_id)
    if booking.guest_id != actor.user_id and not can_manage_booking(db, actor, booking):
        raise PermissionDenied("Only the booking's guest can request a refund")

    requested = Decimal(data.requested_amount)
    if requested <= 0:
        raise ValidationError("Requested amount must be greater than zero")
    available = available_for_refund(booking)
    if requested > available:
        raise ValidationError(
            f"Requested amount exceeds the amount available for refund ({available:.2f})",
            details={"requested_amount": float(requested), "available_for_refund": float(available)},
        )

    existing = active_refund(db, booking.id)
    if existing:
        raise ActiveRefundExists(booking.id, existing.id)

    calc = calculate_for_booking(db, booking)
    refund = RefundRequest(
        id=str(uuid.uuid4()),
        booking_id=booking.id,
        requested_by=actor.user_id,
        requested_amount=requested,
        refunded_amount=Decimal("0"),
        currency=booking.currency,
        status=RefundStatus.REQUESTED.value,
        reason_code=data.reason_code,
        reason=normalize_reason(data.reason_code, data.reason_details),
        refund_method=data.refund_method or "manual",
        suggested_amount=calc.suggested_amount,
        cancellation_policy=calc.policy,
        calculated_policy_amount=calc.policy_amount,
    )
    db.add(refund)
    try:
        # The partial unique index catches a concurrent duplicate that slipped past the pre-check
        db.flush()
    except IntegrityError:
        db.rollback()
        raced = active_refund(db, booking.id)
        raise ActiveRefundExists(booking.id, raced.id if raced else None)

    record_history(db, refund, None, refund.status, actor.user_id, refund.reason,
                   {"requested_amount": str(requested), "suggested_amount": str(calc.suggested_amount)})
    log_audit(db, actor.user_id, "refund_request.created", "refund_request", refund.id,
              {"booking_id": booking.id, "requested_amount": str(requested), "policy": calc.policy})
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raced = active_refund(db, booking.id)
        raise ActiveRefundExists(booking.id, raced.id if raced else None)

    logger.info("Refund %s requested for booking %s (%s %s)", refund.id, booking.booking_reference, refund.currency, requested)
    notify_transition(db, refund, refund.status)
    return refund


def _load_for_transition(db: Session, refund_id: str, actor: Actor, action: str) -> tuple[RefundRequest, Booking, str]:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    sm.assert_actor_may(actor, action, refund.requested_by)
    if action in sm.ADMIN_ACTIONS:
        assert_can_manage(db, actor, booking)
    target = sm.next_status(refund.status, action)
    return refund, booking, target


def compare_and_set_status(db: Session, refund: RefundRequest, expected: str, target: str, action: str, **values) -> None:
    """Conditional UPDATE: the row moves to `target` only if it is still in `expected`.

    Zero rows matched means a concurrent request changed the status first. The
    session is rolled back and InvalidStateTransition names the stored status.
    The caller commits on success.
    """
    values = {"status": target, "updated_at": _now(), **values}
    result = db.execute(
        update(RefundRequest)
        .where(RefundRequest.id == refund.id, RefundRequest.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(refund)
        raise InvalidStateTransition(
            refund.status, action, f"Refund request moved to '{refund.status}' while this {action} was in flight"
        )
    for key, value in values.items():
        setattr(refund, key, value)


def _commit_transition(db: Session, refund: RefundRequest, from_status: str, actor: Actor,
                       reason: str = "", metadata: dict | None = None, audit: dict | None = None) -> None:
    record_history(db, refund, from_status, refund.status, actor.user_id, reason, metadata)
    log_audit(db, actor.user_id, f"refund_request.{refund.status}", "refund_request", refund.id,
              {"from": from_status, "to": refund.status, **(audit or {})})
    db.commit()
    logger.info("Refund %s %s -> %s by %s", refund.id, from_status, refund.status, actor.user_id)


def start_review(db: Session, refund_id: str, actor: Actor) -> RefundRequest:
    refund, _, target = _load_for_transition(db, refund_id, actor, sm.REVIEW)
    from_status = refund.status
    refund.status = target
    refund.reviewed_by = actor.user_id
    refund.reviewed_at = _now()
    _commit_transition(db, refund, from_status, actor, "Review started")
    notify_transition(db, refund, refund.status)
    return refund


def approve_refund(db: Session, refund_id: str, actor: Actor, data: ApproveInput) -> RefundRequest:
    refund, booking, target = _load_for_transition(db, refund_id, actor, sm.APPROVE)

    requested = Decimal(refund.requested_amount)
    approved = Decimal(data.approved_amount) if data.approved_amount is not None else requested
    available = available_for_refund(booking)
    if approved <= 0:
        raise ValidationError("Approved amount must be greater than zero")
    if approved > requested:
        raise ValidationError(
            "Approved amount cannot exceed the requested amount",
            details={"approved_amount": float(approved), "requested_amount": float(requested)},
        )
    if approved > available:
        raise ValidationError(
            "Approved amount exceeds the amount available for refund",
            details={"approved_amount": float(approved), "available_for_refund": float(available)},
        )

    from_status = refund.status
    now = _now()
    refund.status = target
    refund.approved_amount = approved
    refund.approved_by = actor.user_id
    refund.approved_at = now
    if not refund.reviewed_at:
        refund.reviewed_by, refund.reviewed_at = actor.user_id, now
    if data.customer_notes.strip():
        refund.customer_notes = data.customer_notes.strip()
    refund.internal_notes = append_note(refund.internal_notes, data.internal_notes, now)
    add_comment_row(db, refund.id, actor.user_id, data.internal_notes, is_internal=True)
    add_comment_row(db, refund.id, actor.user_id, data.customer_notes, is_internal=False)

    _commit_transition(db, refund, from_status, actor, data.change_reason or "Approved",
                       {"approved_amount": str(approved)}, {"approved_amount": str(approved)})
    notify_transition(db, refund, refund.status)
    return refund


def reject_refund(db: Session, refund_id: str, actor: Actor, data: RejectInput) -> RefundRequest:
    refund, _, target = _load_for_transition(db, refund_id, actor, sm.REJECT)

    notes = (data.customer_notes or "").strip()
    min_len = max(settings.REJECT_NOTES_MIN_LENGTH, 1)
    if len(notes) < min_len:
        raise ValidationError(
            "A reason for the guest is required when rejecting a refund"
            if not notes else f"Rejection reason must be at least {min_len} characters",
            details={"field": "customer_notes", "min_length": min_len},
        )

    from_status = refund.status
    now = _now()
    refund.status = target
    refund.customer_notes = notes
    refund.rejected_by = actor.user_id
    refund.rejected_at = now
    if not refund.reviewed_at:
        refund.reviewed_by, refund.reviewed_at = actor.user_id, now
    refund.internal_notes = append_note(refund.internal_notes, data.internal_notes, now)
    add_comment_row(db, refund.id, actor.user_id, data.internal_notes, is_internal=True)
    add_comment_row(db, refund.id, actor.user_id, notes, is_internal=False)

    _commit_transition(db, refund, from_status, actor, notes)
    notify_transition(db, refund, refund.status)
    return refund


def withdraw_refund(db: Session, refund_id: str, actor: Actor) -> RefundRequest:
    refund, _, target = _load_for_transition(db, refund_id, actor, sm.WITHDRAW)
    from_status = refund.status
    compare_and_set_status(db, refund, from_status, target, sm.WITHDRAW, withdrawn_at=_now())
    _commit_transition(db, refund, from_status, actor, "Withdrawn by guest")
    notify_transition(db, refund, refund.status)
    return refund


# ---------------------------------------------------------------------------
# comments, history, activity
# ---------------------------------------------------------------------------

def add_comment(db: Session, refund_id: str, actor: Actor, body: str, is_internal: bool = False) -> RefundComment:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    assert_can_view(db, actor, refund, booking)
    admin = sees_internal(db, actor, booking)
    if is_internal and not admin:
        raise PermissionDenied("Guests cannot post internal comments")
    comment = add_comment_row(db, refund.id, actor.user_id, body, is_internal)
    if not comment:
        raise ValidationError("Comment cannot be empty")
    log_audit(db, actor.user_id, "refund_comment.created", "refund_request", refund.id,
              {"comment_id": comment.id, "is_internal": is_internal})
    db.commit()
    notify_comment(db, refund, comment, author_is_admin=admin)
    return comment


def list_comments(db: Session, refund_id: str, actor: Actor) -> list[RefundComment]:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    assert_can_view(db, actor, refund, booking)
    q = db.query(RefundComment).filter(RefundComment.refund_request_id == refund.id)
    if not sees_internal(db, actor, booking):
        q = q.filter(RefundComment.is_internal.is_(False))
    return q.order_by(RefundComment.created_at.asc()).all()


def list_history(db: Session, refund_id: str, actor: Actor) -> list[RefundStatusHistory]:
    refund = get_refund_for_actor(db, refund_id, actor)
    return (
        db.query(RefundStatusHistory)
        .filter(RefundStatusHistory.refund_request_id == refund.id)
        .order_by(RefundStatusHistory.changed_at.asc())
        .all()
    )


def activity_feed(db: Session, refund_id: str, actor: Actor) -> list[dict]:
    """Status changes and comments merged chronologically."""
    history = list_history(db, refund_id, actor)
    comments = list_comments(db, refund_id, actor)
    items = [
        {"type": "status_change", "at": h.changed_at, "actor_id": h.changed_by,
         "from_status": h.from_status, "to_status": h.to_status, "text": h.change_reason}
        for h in history
    ] + [
        {"type": "comment", "at": c.created_at, "actor_id": c.user_id,
         "is_internal": c.is_internal, "text": c.body}
        for c in comments
    ]
    # SQLite hands back naive datetimes; compare everything as UTC
    return sorted(items, key=lambda i: i["at"] if i["at"].tzinfo else i["at"].replace(tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# listing and serialization
# ---------------------------------------------------------------------------

def list_refunds(db: Session, actor: Actor, params: RefundListParams, admin_view: bool = False) -> dict:
    q = db.query(RefundRequest).join(Booking, Booking.id == RefundRequest.booking_id)
    if admin_view:
        if not actor.is_admin:
            raise PermissionDenied("Back-office role required")
        allowed = managed_property_ids(db, actor)
        if allowed is not None:
            q = q.filter(Booking.property_id.in_(allowed or [""]))
    else:
        q = q.filter(or_(RefundRequest.requested_by == actor.user_id, Booking.guest_id == actor.user_id))

    if params.status:
        q = q.filter(RefundRequest.status.in_(params.status))
    if params.booking_id:
        q = q.filter(RefundRequest.booking_id == params.booking_id)
    if params.property_id:
        q = q.filter(Booking.property_id == params.property_id)
    if params.requested_by:
        q = q.filter(RefundRequest.requested_by == params.requested_by)
    if params.date_from:
        q = q.filter(RefundRequest.created_at >= params.date_from)
    if params.date_to:
        q = q.filter(RefundRequest.created_at <= params.date_to)
    if params.min_amount is not None:
        q = q.filter(RefundRequest.requested_amount >= params.min_amount)
    if params.max_amount is not None:
        q = q.filter(RefundRequest.requested_amount <= params.max_amount)
    if params.search:
        q = q.filter(Booking.booking_reference.ilike(f"%{params.search.strip()}%"))

    total = q.count()
    col = getattr(RefundRequest, params.sort_by)
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc())
    rows = q.offset((params.page - 1) * params.limit).limit(params.limit).all()

    return {
        "items": [serialize_refund(r, admin=admin_view) for r in rows],
        "total": total,
        "page": params.page,
        "limit": params.limit,
        "total_pages": math.ceil(total / params.limit) if total else 0,
    }


def refund_status_summary(db: Session, booking_id: str, actor: Actor) -> dict:
    booking = get_booking(db, booking_id)
    assert_can_view_booking(db, actor, booking)
    refunds = db.query(RefundRequest).filter(RefundRequest.booking_id == booking.id).all()
    pending = [r for r in refunds if r.status in ACTIVE_STATUSES]
    completed = [r for r in refunds if r.status == RefundStatus.COMPLETED.value]
    return {
        "booking_id": booking.id,
        "total_paid": float(booking.amount_paid or 0),
        "total_refunded": float(booking.total_refunded or 0),
        "available_for_refund": float(available_for_refund(booking)),
        "refund_status": booking.refund_status,
        "has_active_refund": bool(pending),
        "active_refund_requests": len(pending),
        "pending_amount": float(sum((Decimal(r.approved_amount or r.requested_amount) for r in pending), Decimal("0"))),
        "completed_count": len(completed),
    }


def serialize_refund(refund: RefundRequest, admin: bool) -> dict:
    """Guest payloads are built from RefundGuestOut, which has no internal fields at all."""
    schema = RefundAdminOut if admin else RefundGuestOut
    return schema.model_validate(refund).model_dump(mode="json")


def serialize_for_actor(db: Session, refund: RefundRequest, actor: Actor) -> dict:
    booking = get_booking(db, refund.booking_id)
    return serialize_refund(refund, admin=sees_internal(db, actor, booking))


def serialize_comment(c: RefundComment) -> dict:
    return CommentOut.model_validate(c).model_dump(mode="json")


def serialize_history(h: RefundStatusHistory) -> dict:
    return HistoryOut.model_validate(h).model_dump(mode="json")
