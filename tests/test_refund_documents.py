import os

import pytest
from starlette.datastructures import UploadFile as StarletteUploadFile

from conftest import actor_for, auth_headers
from vilo.core.config import settings
from vilo.core.errors import PermissionDenied, ValidationError
from vilo.models.refund import RefundDocument
from vilo.services import document_service

PDF = b"%PDF-1.4\n% test document\n"


def upload(client, refund_id, headers, content=PDF, content_type="application/pdf", name="receipt.pdf", **form):
    return client.post(
        f"/api/v1/refunds/{refund_id}/documents",
        files={"file": (name, content, content_type)},
        data={"document_type": "receipt", **form},
        headers=headers,
    )


class TestUpload:
    def test_guest_uploads_supporting_document(self, db, client, guest_headers, create_refund):
        refund = create_refund("100.00")
        resp = upload(client, refund["id"], guest_headers, name="../../etc/flight cancellation.pdf",
                      description="Airline notice")
        assert resp.status_code == 201
        doc = resp.json()
        assert doc["file_name"] == "flight_cancellation.pdf"
        assert doc["file_size"] == len(PDF)
        assert doc["is_verified"] is False

        row = db.get(RefundDocument, doc["id"])
        assert row.storage == "local"
        assert os.path.exists(row.object_key)
        assert os.path.abspath(row.object_key).startswith(os.path.abspath(settings.DOCUMENT_LOCAL_DIR))

        listing = client.get(f"/api/v1/refunds/{refund['id']}/documents", headers=guest_headers).json()
        assert [d["id"] for d in listing] == [doc["id"]]

        download = client.get(f"/api/v1/refunds/{refund['id']}/documents/{doc['id']}/download", headers=guest_headers)
        assert download.status_code == 200
        assert download.content == PDF

    def test_unsupported_type(self, client, guest_headers, create_refund):
        refund = create_refund("100.00")
        resp = upload(client, refund["id"], guest_headers, content=b"MZ\x90", content_type="application/x-msdownload", name="a.exe")
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "UNSUPPORTED_FILE_TYPE"

    def test_too_large(self, client, guest_headers, create_refund, monkeypatch):
        monkeypatch.setattr(settings, "DOCUMENT_MAX_BYTES", 10)
        refund = create_refund("100.00")
        resp = upload(client, refund["id"], guest_headers)
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"

    def test_oversized_upload_is_never_read_past_the_cap(self, db, client, guest_headers, create_refund, monkeypatch):
        monkeypatch.setattr(settings, "DOCUMENT_MAX_BYTES", 1024)
        reads = []
        original_read = StarletteUploadFile.read

        async def counting_read(self, size=-1):
            data = await original_read(self, size)
            reads.append((size, len(data)))
            return data

        monkeypatch.setattr(StarletteUploadFile, "read", counting_read)
        refund = create_refund("100.00")
        resp = upload(client, refund["id"], guest_headers, content=b"%PDF" + b"0" * 50_000)

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "FILE_TOO_LARGE"
        assert reads
        assert all(size == 1025 and got <= 1025 for size, got in reads)
        assert db.query(RefundDocument).count() == 0

    def test_no_uploads_on_closed_requests(self, client, guest_headers, create_refund):
        refund = create_refund("100.00")
        client.post(f"/api/v1/refunds/{refund['id']}/withdraw", headers=guest_headers)
        resp = upload(client, refund["id"], guest_headers)
        assert resp.status_code == 400

    def test_stranger_cannot_upload(self, client, other_guest, create_refund):
        refund = create_refund("100.00")
        resp = upload(client, refund["id"], auth_headers(other_guest))
        assert resp.status_code == 403


class TestVerifyAndDelete:
    @pytest.fixture
    def document(self, db, guest, create_refund):
        refund = create_refund("100.00")
        return document_service.upload_document(
            db, refund["id"], actor_for(guest),
            file_name="receipt.pdf", file_type="application/pdf", content=PDF, document_type="receipt",
        )

    def test_verify_is_idempotent(self, db, owner, document):
        first = document_service.verify_document(db, document.refund_request_id, document.id, actor_for(owner))
        stamped = first.verified_at
        second = document_service.verify_document(db, document.refund_request_id, document.id, actor_for(owner))
        assert second.is_verified is True
        assert second.verified_by == owner.id
        assert second.verified_at == stamped

    def test_guest_cannot_verify(self, db, guest, document):
        with pytest.raises(PermissionDenied):
            document_service.verify_document(db, document.refund_request_id, document.id, actor_for(guest))

    def test_verified_documents_are_kept(self, db, guest, owner, document):
        document_service.verify_document(db, document.refund_request_id, document.id, actor_for(owner))
        with pytest.raises(ValidationError):
            document_service.delete_document(db, document.refund_request_id, document.id, actor_for(guest))

    def test_uploader_deletes_unverified(self, db, guest, document):
        path = document.object_key
        document_service.delete_document(db, document.refund_request_id, document.id, actor_for(guest))
        assert db.get(RefundDocument, document.id) is None
        assert not os.path.exists(path)

    def test_delete_over_http(self, client, guest_headers, document):
        resp = client.delete(f"/api/v1/refunds/{document.refund_request_id}/documents/{document.id}", headers=guest_headers)
        assert resp.status_code == 200
        resp = client.delete(f"/api/v1/refunds/{document.refund_request_id}/documents/{document.id}", headers=guest_headers)
        assert resp.status_code == 404

    def test_verify_over_http(self, client, owner_headers, document):
        resp = client.post(f"/api/v1/refunds/{document.refund_request_id}/documents/{document.id}/verify", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json()["is_verified"] is True


def test_sanitize_filename():
    assert document_service.sanitize_filename("C:\\Users\\me\\My Receipt (1).PDF") == "My_Receipt_1_.PDF"
    assert document_service.sanitize_filename("") == "document"
    assert document_service.sanitize_filename("...") == "document"
