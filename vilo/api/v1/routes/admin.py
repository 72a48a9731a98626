import json
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from vilo.api.deps import get_admin_actor, require_roles
from vilo.core.errors import ValidationError
from vilo.core.security import Actor, SUPERADMIN
from vilo.db.session import get_db
from vilo.models.user import User
from vilo.schemas.credit_memo import VoidCreditMemoIn
from vilo.schemas.refund import RefundListParams
from vilo.services import credit_memo_service, refund_service
from vilo.services.audit_service import list_audit, log_audit
from vilo.services.settings_service import get_cancellation_policies, set_cancellation_policies

router = APIRouter(tags=["admin"])


class PoliciesIn(BaseModel):
    policies: dict


# -------------------------
# REFUND QUEUE
# -------------------------
@router.get("/admin/refunds")
def list_refunds(
    status: List[str] = Query(default=[]),
    booking_id: str = "",
    property_id: str = "",
    requested_by: str = "",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: str = "",
    sort_by: Literal["created_at", "updated_at", "requested_amount", "status"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_admin_actor),
):
    params = RefundListParams(
        status=status, booking_id=booking_id, property_id=property_id, requested_by=requested_by,
        date_from=date_from, date_to=date_to, min_amount=min_amount, max_amount=max_amount,
        search=search, sort_by=sort_by, sort_order=sort_order, page=page, limit=limit,
    )
    return refund_service.list_refunds(db, actor, params, admin_view=True)


@router.get("/admin/refunds/{refund_id}/audit")
def refund_audit(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    refund = refund_service.get_refund_for_actor(db, refund_id, actor)
    return [
        {
            "action": a.action,
            "actor_user_id": a.actor_user_id,
            "details": json.loads(a.details_json or "{}"),
            "created_at": a.created_at.isoformat() if a.created_at else None,
        }
        for a in list_audit(db, "refund_request", refund.id)
    ]


# -------------------------
# CREDIT MEMOS
# -------------------------
@router.get("/admin/credit-memos")
def list_credit_memos(
    status: str = "",
    refund_id: str = "",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_admin_actor),
):
    return credit_memo_service.list_credit_memos(db, actor, status=status, refund_id=refund_id, page=page, limit=limit)


@router.get("/admin/credit-memos/{memo_id}")
def get_credit_memo(memo_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    return credit_memo_service.serialize_credit_memo(credit_memo_service.get_credit_memo_for_actor(db, memo_id, actor))


@router.post("/admin/credit-memos/{memo_id}/void")
def void_credit_memo(memo_id: str, body: VoidCreditMemoIn, db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    return credit_memo_service.serialize_credit_memo(credit_memo_service.void_credit_memo(db, memo_id, actor, body.reason))


# -------------------------
# POLICY TABLES
# -------------------------
@router.get("/admin/settings/cancellation-policies")
def get_policies(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    return get_cancellation_policies(db)


@router.put("/admin/settings/cancellation-policies")
def put_policies(body: PoliciesIn, db: Session = Depends(get_db), user: User = Depends(require_roles(SUPERADMIN))):
    try:
        policies = set_cancellation_policies(db, body.policies)
    except (ValueError, TypeError, AttributeError) as e:
        raise ValidationError(str(e), details={"setting": "CANCELLATION_POLICIES"})
    log_audit(db, user.id, "settings.cancellation_policies", "setting", "CANCELLATION_POLICIES", {"policies": list(policies)})
    db.commit()
    return policies
