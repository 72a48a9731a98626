import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from vilo.core.config import settings
from vilo.core.errors import NotFoundError, PermissionDenied, ValidationError
from vilo.core.security import Actor
from vilo.models.refund import RefundDocument, RefundRequest
from vilo.services import refund_state_machine as sm
from vilo.services.audit_service import log_audit
from vilo.services.refund_service import assert_can_view, can_manage_booking, get_booking, get_refund
from vilo.services.storage_service import delete_object, signed_url, store_object

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("receipt", "proof_of_cancellation", "bank_statement", "other")


def sanitize_filename(name: str) -> str:
    base = (name or "document").rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", base).strip("._")
    return base[:120] or "document"


def validate_upload(file_type: str, size: int) -> None:
    allowed = settings.allowed_document_types()
    if (file_type or "").lower() not in allowed:
        raise ValidationError(
            f"File type '{file_type}' is not allowed",
            error_code="UNSUPPORTED_FILE_TYPE",
            details={"allowed_types": allowed},
        )
    if size <= 0:
        raise ValidationError("File is empty")
    if size > settings.DOCUMENT_MAX_BYTES:
        raise ValidationError(
            f"File exceeds the {settings.DOCUMENT_MAX_BYTES // (1024 * 1024)}MB limit",
            error_code="FILE_TOO_LARGE",
            details={"max_bytes": settings.DOCUMENT_MAX_BYTES},
        )


def _load(db: Session, refund_id: str, actor: Actor) -> tuple[RefundRequest, bool]:
    refund = get_refund(db, refund_id)
    booking = get_booking(db, refund.booking_id)
    assert_can_view(db, actor, refund, booking)
    return refund, can_manage_booking(db, actor, booking)


def _get_document(db: Session, refund_id: str, doc_id: str) -> RefundDocument:
    doc = db.get(RefundDocument, doc_id)
    if not doc or doc.refund_request_id != refund_id:
        raise NotFoundError("Document not found", details={"document_id": doc_id})
    return doc


def upload_document(db: Session, refund_id: str, actor: Actor, *, file_name: str, file_type: str,
                    content: bytes, document_type: str = "other", description: str = "") -> RefundDocument:
    refund, _ = _load(db, refund_id, actor)
    if sm.is_terminal(refund.status):
        raise ValidationError(f"Documents cannot be added to a {refund.status} refund request",
                              details={"status": refund.status})
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Unknown document type '{document_type}'", details={"allowed": list(DOCUMENT_TYPES)})
    validate_upload(file_type, len(content))

    safe = sanitize_filename(file_name)
    ts = int(datetime.now(timezone.utc).timestamp() * 1000)
    storage, key = store_object(f"refunds/{refund.id}/{ts}_{safe}", content, file_type)

    doc = RefundDocument(
        id=str(uuid.uuid4()),
        refund_request_id=refund.id,
        uploaded_by=actor.user_id,
        file_name=safe,
        file_type=file_type.lower(),
        file_size=len(content),
        storage=storage,
        object_key=key,
        document_type=document_type,
        description=(description or "").strip()[:500],
    )
    db.add(doc)
    log_audit(db, actor.user_id, "refund_document.uploaded", "refund_request", refund.id,
              {"document_id": doc.id, "file_name": safe, "size": len(content)})
    db.commit()
    return doc


def list_documents(db: Session, refund_id: str, actor: Actor) -> list[RefundDocument]:
    refund, _ = _load(db, refund_id, actor)
    return (
        db.query(RefundDocument)
        .filter(RefundDocument.refund_request_id == refund.id)
        .order_by(RefundDocument.uploaded_at.asc())
        .all()
    )


def get_document_for_download(db: Session, refund_id: str, doc_id: str, actor: Actor) -> RefundDocument:
    refund, _ = _load(db, refund_id, actor)
    return _get_document(db, refund.id, doc_id)


def download_url(doc: RefundDocument) -> str:
    """Signed URL for GCS-backed documents."""
    return signed_url(doc.object_key)


def delete_document(db: Session, refund_id: str, doc_id: str, actor: Actor) -> None:
    refund, admin = _load(db, refund_id, actor)
    doc = _get_document(db, refund.id, doc_id)
    if doc.uploaded_by != actor.user_id and not admin:
        raise PermissionDenied("Only the uploader can delete this document")
    if doc.is_verified:
        raise ValidationError("Verified documents cannot be deleted", details={"document_id": doc.id})
    if sm.is_terminal(refund.status):
        raise ValidationError(f"Documents on a {refund.status} refund request cannot be deleted",
                              details={"status": refund.status})

    storage, key = doc.storage, doc.object_key
    db.delete(doc)
    log_audit(db, actor.user_id, "refund_document.deleted", "refund_request", refund.id,
              {"document_id": doc_id, "file_name": doc.file_name})
    db.commit()
    try:
        delete_object(storage, key)
    except Exception:
        # Row is gone; an orphaned blob only costs storage
        logger.warning("Could not remove stored object %s (%s)", key, storage, exc_info=True)


def verify_document(db: Session, refund_id: str, doc_id: str, actor: Actor) -> RefundDocument:
    refund, admin = _load(db, refund_id, actor)
    if not admin:
        raise PermissionDenied("Only property administrators can verify documents")
    doc = _get_document(db, refund.id, doc_id)
    if doc.is_verified:
        return doc
    doc.is_verified = True
    doc.verified_by = actor.user_id
    doc.verified_at = datetime.now(timezone.utc)
    log_audit(db, actor.user_id, "refund_document.verified", "refund_request", refund.id, {"document_id": doc.id})
    db.commit()
    return doc
