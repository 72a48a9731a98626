from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from vilo.api.deps import get_current_user
from vilo.db.session import get_db
from vilo.models.notification import Notification
from vilo.models.user import User
from vilo.services.notification_service import list_notifications

router = APIRouter(tags=["notifications"])


@router.get("/notifications")
def my_notifications(unread_only: bool = False, limit: int = 50, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return [{
        "id": n.id,
        "template_key": n.template_key,
        "title": n.title,
        "body": n.body,
        "priority": n.priority,
        "refund_request_id": n.refund_request_id,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    } for n in list_notifications(db, me.id, unread_only=unread_only, limit=min(max(limit, 1), 200))]


@router.post("/notifications/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    n = db.get(Notification, notification_id)
    if not n or n.user_id != me.id:
        raise HTTPException(status_code=404, detail="Not found")
    if not n.read_at:
        n.read_at = datetime.now(timezone.utc)
        db.commit()
    return {"ok": True}
