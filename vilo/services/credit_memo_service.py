from __future__ import annotations

import io
import json
import logging
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from vilo.core.config import settings
from vilo.core.errors import ConflictError, NotFoundError, PermissionDenied
from vilo.core.security import Actor
from vilo.models.booking import Booking
from vilo.models.credit_memo import CreditMemo
from vilo.models.property import Property
from vilo.models.refund import RefundRequest
from vilo.models.user import User
from vilo.schemas.credit_memo import CreditMemoOut
from vilo.services.audit_service import log_audit
from vilo.services.refund_service import assert_can_manage, can_manage_booking, get_booking, managed_property_ids
from vilo.services.settings_service import get_credit_memo_tax_rate, next_credit_memo_number
from vilo.services.storage_service import store_object

logger = logging.getLogger(__name__)


def to_cents(amount) -> int:
    return int((Decimal(amount or 0) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def mirror_line_items(booking: Booking, total_cents: int) -> list[dict]:
    """Booking invoice lines scaled so they sum to `total_cents`.

    A full refund reproduces the invoice exactly; a partial one keeps the
    proportions. Rounding drift lands on the last line.
    """
    try:
        lines = json.loads(booking.line_items_json or "[]")
    except (json.JSONDecodeError, TypeError):
        lines = []
    source = [
        (str(li.get("description") or "Item"), Decimal(str(li.get("quantity") or 1)), to_cents(li.get("unit_price") or 0))
        for li in lines
    ]
    invoice_cents = sum(int(q * unit) for _, q, unit in source)
    if not source or invoice_cents <= 0:
        return [{
            "description": f"Refund for booking {booking.booking_reference}",
            "quantity": 1,
            "unit_price_cents": total_cents,
            "total_cents": total_cents,
        }]

    ratio = Decimal(total_cents) / Decimal(invoice_cents)
    out, running = [], 0
    for i, (desc, qty, unit) in enumerate(source):
        if i == len(source) - 1:
            line_total = total_cents - running
        else:
            line_total = int((qty * unit * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        running += line_total
        out.append({
            "description": desc,
            "quantity": float(qty),
            "unit_price_cents": int((Decimal(line_total) / qty).quantize(Decimal("1"), rounding=ROUND_HALF_UP)) if qty else line_total,
            "total_cents": line_total,
        })
    return out


def tax_breakdown(total_cents: int, tax_rate: Decimal) -> tuple[int, int]:
    """(subtotal_cents, tax_cents) for a tax-inclusive total."""
    if tax_rate <= 0:
        return total_cents, 0
    subtotal = int((Decimal(total_cents) * 100 / (100 + tax_rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return subtotal, total_cents - subtotal


def render_credit_memo_pdf_bytes(memo: CreditMemo, line_items: list[dict]) -> bytes:
    """Return an A4 PDF. Pure function."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    def money(cents: int) -> str:
        return f"{memo.currency} {cents / 100:,.2f}"

    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, h - 60, "Credit Memo")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 80, f"Number: {memo.credit_memo_number}")
    c.drawString(40, h - 96, f"Issued: {(memo.issued_at or datetime.now(timezone.utc)).strftime('%Y-%m-%d')}")
    c.drawString(40, h - 112, f"Property: {memo.property_name}")

    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 145, "Credited to")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 163, memo.customer_name or "(Not provided)")
    c.drawString(40, h - 179, memo.customer_email or "")

    y = h - 215
    c.setFont("Helvetica-Bold", 11)
    c.drawString(40, y, "Description")
    c.drawString(330, y, "Qty")
    c.drawString(380, y, "Unit")
    c.drawRightString(w - 40, y, "Total")
    c.setFont("Helvetica", 10)
    for li in line_items:
        y -= 18
        if y < 120:
            c.showPage()
            c.setFont("Helvetica", 10)
            y = h - 60
        c.drawString(40, y, str(li["description"])[:48])
        c.drawString(330, y, f"{li['quantity']:g}")
        c.drawString(380, y, money(li["unit_price_cents"]))
        c.drawRightString(w - 40, y, money(li["total_cents"]))

    y -= 30
    c.setFont("Helvetica", 11)
    c.drawRightString(w - 140, y, "Subtotal:")
    c.drawRightString(w - 40, y, money(memo.subtotal_cents))
    y -= 16
    c.drawRightString(w - 140, y, f"VAT ({memo.tax_rate}%):")
    c.drawRightString(w - 40, y, money(memo.tax_cents))
    y -= 18
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(w - 140, y, "Total credit:")
    c.drawRightString(w - 40, y, money(memo.total_cents))

    if memo.reason:
        c.setFont("Helvetica", 9)
        c.drawString(40, y - 30, f"Reason: {memo.reason[:100]}")

    c.setFont("Helvetica", 9)
    c.drawString(40, 40, "This credit memo was generated automatically when the refund was processed.")
    c.drawString(40, 26, f"Generated: {datetime.now(timezone.utc).isoformat()}")

    c.showPage()
    c.save()
    return buf.getvalue()


def issue_for_refund(db: Session, refund: RefundRequest, booking: Booking, actor: Actor) -> CreditMemo:
    """Create, render and issue the credit memo for an approved amount. The caller commits."""
    guest = db.get(User, booking.guest_id)
    prop = db.get(Property, booking.property_id)
    total_cents = to_cents(refund.approved_amount)
    tax_rate = get_credit_memo_tax_rate(db)
    subtotal_cents, tax_cents = tax_breakdown(total_cents, tax_rate)
    line_items = mirror_line_items(booking, total_cents)
    now = datetime.now(timezone.utc)

    memo = CreditMemo(
        id=str(uuid.uuid4()),
        credit_memo_number=next_credit_memo_number(db, now),
        refund_request_id=refund.id,
        booking_id=booking.id,
        user_id=booking.guest_id,
        customer_name=(guest.full_name if guest else "") or "",
        customer_email=(guest.email if guest else "") or "",
        property_name=(prop.name if prop else "") or "",
        line_items_json=json.dumps(line_items),
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        tax_rate=tax_rate,
        total_cents=total_cents,
        currency=refund.currency,
        reason=refund.reason,
        status="draft",
        issued_by=actor.user_id,
        issued_at=now,
    )
    db.add(memo)
    db.flush()

    pdf = render_credit_memo_pdf_bytes(memo, line_items)
    storage, key = store_object(f"credit_memos/{memo.credit_memo_number}.pdf", pdf, "application/pdf")
    memo.document_storage = storage
    memo.document_object_key = key
    memo.document_url = f"{settings.API_PUBLIC_URL}/api/v1/credit-memos/{memo.id}/download"
    memo.status = "issued"

    refund.credit_memo_id = memo.id
    log_audit(db, actor.user_id, "credit_memo.issued", "credit_memo", memo.id,
              {"refund_id": refund.id, "number": memo.credit_memo_number, "total_cents": total_cents})
    logger.info("Credit memo %s issued for refund %s", memo.credit_memo_number, refund.id)
    return memo


def get_credit_memo(db: Session, memo_id: str) -> CreditMemo:
    memo = db.get(CreditMemo, memo_id)
    if not memo:
        raise NotFoundError("Credit memo not found", details={"credit_memo_id": memo_id})
    return memo


def get_credit_memo_for_actor(db: Session, memo_id: str, actor: Actor) -> CreditMemo:
    memo = get_credit_memo(db, memo_id)
    if memo.user_id != actor.user_id and not can_manage_booking(db, actor, get_booking(db, memo.booking_id)):
        raise PermissionDenied("You do not have access to this credit memo")
    return memo


def list_credit_memos(db: Session, actor: Actor, status: str = "", refund_id: str = "", page: int = 1, limit: int = 20) -> dict:
    if not actor.is_admin:
        raise PermissionDenied("Back-office role required")
    q = db.query(CreditMemo).join(Booking, Booking.id == CreditMemo.booking_id)
    allowed = managed_property_ids(db, actor)
    if allowed is not None:
        q = q.filter(Booking.property_id.in_(allowed or [""]))
    if status:
        q = q.filter(CreditMemo.status == status)
    if refund_id:
        q = q.filter(CreditMemo.refund_request_id == refund_id)
    total = q.count()
    rows = q.order_by(CreditMemo.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [serialize_credit_memo(m) for m in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def void_credit_memo(db: Session, memo_id: str, actor: Actor, reason: str) -> CreditMemo:
    memo = get_credit_memo(db, memo_id)
    assert_can_manage(db, actor, get_booking(db, memo.booking_id))
    if memo.status == "void":
        raise ConflictError("Credit memo is already void", details={"credit_memo_id": memo.id})
    memo.status = "void"
    memo.voided_by = actor.user_id
    memo.voided_at = datetime.now(timezone.utc)
    memo.void_reason = reason.strip()
    log_audit(db, actor.user_id, "credit_memo.voided", "credit_memo", memo.id, {"reason": memo.void_reason})
    db.commit()
    logger.info("Credit memo %s voided by %s", memo.credit_memo_number, actor.user_id)
    return memo


def serialize_credit_memo(memo: CreditMemo) -> dict:
    data = {c.name: getattr(memo, c.name) for c in CreditMemo.__table__.columns}
    data["line_items"] = json.loads(memo.line_items_json or "[]")
    return CreditMemoOut.model_validate(data).model_dump(mode="json")
