"""
Refund notification fan-out.

One in-app Notification row per interested party, then an email through
EmailChannel. Everything here is best-effort: callers invoke it after the
state change has committed and a failure is logged, never raised.
"""

import json
import logging
import uuid
from decimal import Decimal
from string import Template

from sqlalchemy.orm import Session

from vilo.core.config import settings
from vilo.models.booking import Booking
from vilo.models.notification import Notification
from vilo.models.property import Property, PropertyTeamMember
from vilo.models.refund import RefundRequest, RefundComment
from vilo.models.user import User
from vilo.services.email_service import EmailChannel
from vilo.services.refund_templates import REFUND_TEMPLATES

logger = logging.getLogger(__name__)

GUEST_TEMPLATES = {
    "requested": "refund_requested_guest",
    "under_review": "refund_under_review",
    "approved": "refund_approved",
    "rejected": "refund_rejected",
    "processing": "refund_processing",
    "completed": "refund_completed",
    "failed": "refund_failed_guest",
    "withdrawn": "refund_withdrawn_guest",
}
ADMIN_TEMPLATES = {
    "requested": "refund_requested_admin",
    "failed": "refund_failed_admin",
    "withdrawn": "refund_withdrawn_admin",
}
HIGH_PRIORITY = {"refund_failed_admin", "refund_failed_guest", "refund_requested_admin"}


def format_amount(amount, currency: str) -> str:
    return f"{currency} {Decimal(amount or 0):,.2f}"


def property_admin_ids(db: Session, property_id: str) -> list[str]:
    """Owner plus active team members with an admin or manager role."""
    ids: list[str] = []
    prop = db.get(Property, property_id)
    if prop and prop.owner_id:
        ids.append(prop.owner_id)
    members = (
        db.query(PropertyTeamMember)
        .filter(
            PropertyTeamMember.property_id == property_id,
            PropertyTeamMember.status == "active",
            PropertyTeamMember.role.in_(["admin", "manager"]),
        )
        .all()
    )
    for m in members:
        if m.user_id not in ids:
            ids.append(m.user_id)
    return ids


def _variables(db: Session, refund: RefundRequest, booking: Booking, extra: dict | None = None) -> dict:
    guest = db.get(User, refund.requested_by)
    amount = refund.approved_amount if refund.approved_amount is not None else refund.requested_amount
    out = {
        "guest_name": (guest.full_name or guest.email) if guest else "Guest",
        "booking_reference": booking.booking_reference,
        "amount": format_amount(amount, refund.currency),
        "reason": refund.reason or "",
        "customer_notes": refund.customer_notes or "",
        "refund_method": (refund.refund_method or "").replace("_", " "),
        "refund_url": f"{settings.FRONTEND_URL}/refunds/{refund.id}",
        "admin_refund_url": f"{settings.FRONTEND_URL}/admin/refunds/{refund.id}",
        "comment": "",
    }
    out.update(extra or {})
    return out


def _notify(db: Session, user_ids: list[str], template_key: str, refund: RefundRequest, variables: dict) -> int:
    tpl = REFUND_TEMPLATES[template_key]
    users = [u for u in (db.get(User, uid) for uid in user_ids) if u]
    for u in users:
        db.add(Notification(
            id=str(uuid.uuid4()),
            user_id=u.id,
            template_key=template_key,
            title=Template(tpl["title"]).safe_substitute(variables),
            body=Template(tpl["body"]).safe_substitute(variables),
            priority="high" if template_key in HIGH_PRIORITY else "normal",
            data_json=json.dumps({"refund_id": refund.id, "booking_id": refund.booking_id, "status": refund.status}),
            refund_request_id=refund.id,
        ))
    db.commit()

    channel = EmailChannel(db)
    for u in users:
        if u.email:
            channel.send(u.email, template_key, variables, related_refund_id=refund.id)
    return len(users)


def notify_transition(db: Session, refund: RefundRequest, to_status: str) -> int:
    """Fan out a status change. Returns the number of in-app notifications created."""
    try:
        booking = db.get(Booking, refund.booking_id)
        variables = _variables(db, refund, booking)
        count = 0
        if to_status in GUEST_TEMPLATES:
            count += _notify(db, [refund.requested_by], GUEST_TEMPLATES[to_status], refund, variables)
        if to_status in ADMIN_TEMPLATES:
            admins = [uid for uid in property_admin_ids(db, booking.property_id) if uid != refund.requested_by]
            count += _notify(db, admins, ADMIN_TEMPLATES[to_status], refund, variables)
        return count
    except Exception:
        db.rollback()
        logger.exception("Notification fan-out failed for refund %s -> %s", refund.id, to_status)
        return 0


def notify_comment(db: Session, refund: RefundRequest, comment: RefundComment, author_is_admin: bool) -> int:
    if comment.is_internal:
        return 0
    try:
        booking = db.get(Booking, refund.booking_id)
        variables = _variables(db, refund, booking, {"comment": comment.body})
        if author_is_admin:
            return _notify(db, [refund.requested_by], "refund_comment_guest", refund, variables)
        admins = [uid for uid in property_admin_ids(db, booking.property_id) if uid != comment.user_id]
        return _notify(db, admins, "refund_comment_admin", refund, variables)
    except Exception:
        db.rollback()
        logger.exception("Comment notification failed for refund %s", refund.id)
        return 0


def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.created_at.desc()).limit(limit).all()
