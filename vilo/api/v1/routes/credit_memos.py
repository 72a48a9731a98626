from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from vilo.api.deps import get_actor
from vilo.core.security import Actor
from vilo.db.session import get_db
from vilo.services import credit_memo_service
from vilo.services.storage_service import signed_url

router = APIRouter(tags=["credit-memos"])


@router.get("/credit-memos/{memo_id}")
def get_credit_memo(memo_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return credit_memo_service.serialize_credit_memo(credit_memo_service.get_credit_memo_for_actor(db, memo_id, actor))


@router.get("/credit-memos/{memo_id}/download")
def download_credit_memo(memo_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    memo = credit_memo_service.get_credit_memo_for_actor(db, memo_id, actor)
    if memo.document_storage == "local":
        return FileResponse(path=memo.document_object_key, media_type="application/pdf",
                            filename=f"{memo.credit_memo_number}.pdf")
    return {"storage": "gcs", "url": signed_url(memo.document_object_key)}
