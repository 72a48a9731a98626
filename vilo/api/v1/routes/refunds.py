from typing import List

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from vilo.api.deps import get_actor
from vilo.core.config import settings
from vilo.core.security import Actor
from vilo.db.session import get_db
from vilo.schemas.refund import (
    ApproveInput,
    CommentIn,
    DocumentOut,
    MarkCompleteInput,
    ProcessInput,
    RefundListParams,
    RejectInput,
)
from vilo.services import document_service, refund_dispatcher, refund_service

router = APIRouter(tags=["refunds"])


@router.get("/refunds")
def my_refunds(
    status: List[str] = Query(default=[]),
    booking_id: str = "",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    params = RefundListParams(status=status, booking_id=booking_id, page=page, limit=limit)
    return refund_service.list_refunds(db, actor, params)


@router.get("/refunds/{refund_id}")
def get_refund(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.get_refund_for_actor(db, refund_id, actor)
    return refund_service.serialize_for_actor(db, refund, actor)


# -------------------------
# TRANSITIONS
# -------------------------
@router.post("/refunds/{refund_id}/review")
def review(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.start_review(db, refund_id, actor)
    return refund_service.serialize_for_actor(db, refund, actor)


@router.post("/refunds/{refund_id}/approve")
def approve(refund_id: str, body: ApproveInput, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.approve_refund(db, refund_id, actor, body)
    return refund_service.serialize_for_actor(db, refund, actor)


@router.post("/refunds/{refund_id}/reject")
def reject(refund_id: str, body: RejectInput, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.reject_refund(db, refund_id, actor, body)
    return refund_service.serialize_for_actor(db, refund, actor)


@router.post("/refunds/{refund_id}/process")
def process(refund_id: str, body: ProcessInput | None = None, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    # 200 even when the refund ends up failed: the processing request itself was accepted
    refund = refund_dispatcher.process_refund(db, refund_id, actor, body or ProcessInput())
    return refund_service.serialize_for_actor(db, refund, actor)


@router.post("/refunds/{refund_id}/mark-complete")
def mark_complete(refund_id: str, body: MarkCompleteInput, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_dispatcher.mark_refund_complete(db, refund_id, actor, body)
    return refund_service.serialize_for_actor(db, refund, actor)


@router.post("/refunds/{refund_id}/withdraw")
def withdraw(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    refund = refund_service.withdraw_refund(db, refund_id, actor)
    return refund_service.serialize_for_actor(db, refund, actor)


# -------------------------
# COMMENTS / HISTORY
# -------------------------
@router.post("/refunds/{refund_id}/comments", status_code=201)
def add_comment(refund_id: str, body: CommentIn, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    comment = refund_service.add_comment(db, refund_id, actor, body.body, body.is_internal)
    return refund_service.serialize_comment(comment)


@router.get("/refunds/{refund_id}/comments")
def list_comments(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return [refund_service.serialize_comment(c) for c in refund_service.list_comments(db, refund_id, actor)]


@router.get("/refunds/{refund_id}/history")
def history(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return [refund_service.serialize_history(h) for h in refund_service.list_history(db, refund_id, actor)]


@router.get("/refunds/{refund_id}/activity")
def activity(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return [
        {**item, "at": item["at"].isoformat()}
        for item in refund_service.activity_feed(db, refund_id, actor)
    ]


# -------------------------
# DOCUMENTS
# -------------------------
def _doc_out(doc) -> dict:
    return DocumentOut.model_validate(doc).model_dump(mode="json")


@router.post("/refunds/{refund_id}/documents", status_code=201)
async def upload_document(
    refund_id: str,
    file: UploadFile = File(...),
    document_type: str = Form(default="other"),
    description: str = Form(default=""),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    # at most one byte past the size cap
    content = await file.read(settings.DOCUMENT_MAX_BYTES + 1)
    doc = document_service.upload_document(
        db, refund_id, actor,
        file_name=file.filename or "document",
        file_type=file.content_type or "",
        content=content,
        document_type=document_type,
        description=description,
    )
    return _doc_out(doc)


@router.get("/refunds/{refund_id}/documents")
def list_documents(refund_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return [_doc_out(d) for d in document_service.list_documents(db, refund_id, actor)]


@router.get("/refunds/{refund_id}/documents/{doc_id}/download")
def download_document(refund_id: str, doc_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    doc = document_service.get_document_for_download(db, refund_id, doc_id, actor)
    if doc.storage == "local":
        return FileResponse(path=doc.object_key, media_type=doc.file_type, filename=doc.file_name)
    return {"storage": "gcs", "url": document_service.download_url(doc)}


@router.delete("/refunds/{refund_id}/documents/{doc_id}")
def delete_document(refund_id: str, doc_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    document_service.delete_document(db, refund_id, doc_id, actor)
    return {"ok": True}


@router.post("/refunds/{refund_id}/documents/{doc_id}/verify")
def verify_document(refund_id: str, doc_id: str, db: Session = Depends(get_db), actor: Actor = Depends(get_actor)):
    return _doc_out(document_service.verify_document(db, refund_id, doc_id, actor))
