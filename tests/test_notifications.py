from conftest import actor_for
from vilo.models.email_log import EmailLog
from vilo.models.email_template import EmailTemplate
from vilo.models.notification import Notification
from vilo.models.refund import RefundRequest
from vilo.schemas.refund import RefundCreateInput
from vilo.services import email_service, notification_service, refund_service
from vilo.services.email_service import EmailChannel, FallbackEmailProvider, TemplateEmailProvider
from vilo.tasks import worker_jobs


def _keys_for(db, user_id):
    db.expire_all()
    return sorted(n.template_key for n in db.query(Notification).filter(Notification.user_id == user_id).all())


class TestFanOut:
    def test_new_request_reaches_guest_and_property_admins(self, db, guest, owner, team_manager, admin, create_refund):
        create_refund("100.00")
        assert _keys_for(db, guest.id) == ["refund_requested_guest"]
        assert _keys_for(db, owner.id) == ["refund_requested_admin"]
        assert _keys_for(db, team_manager.id) == ["refund_requested_admin"]
        # platform admins work from the queue, not per-property notifications
        assert _keys_for(db, admin.id) == []

        high = db.query(Notification).filter(Notification.user_id == owner.id).one()
        assert high.priority == "high"

    def test_staff_members_are_not_notified(self, db, prop, guest, create_refund):
        from conftest import make_user
        from vilo.models.property import PropertyTeamMember

        staff = make_user(db, "property_manager", "cleaner@example.com")
        db.add(PropertyTeamMember(id="tm-staff", property_id=prop.id, user_id=staff.id, role="staff", status="active"))
        db.commit()
        create_refund("100.00")
        assert _keys_for(db, staff.id) == []

    def test_each_guest_transition_sends_one_email(self, client, guest, admin_headers, create_refund, outbox):
        refund = create_refund("100.00", refund_method="eft")
        client.post(f"/api/v1/refunds/{refund['id']}/approve", json={}, headers=admin_headers)
        client.post(f"/api/v1/refunds/{refund['id']}/process", json={}, headers=admin_headers)
        client.post(f"/api/v1/refunds/{refund['id']}/mark-complete", json={"reference": "EFT-1"}, headers=admin_headers)
        guest_mail = [subject for to, subject, _ in outbox if to == guest.email]
        assert len(guest_mail) == 4

    def test_notification_failure_does_not_undo_the_transition(self, db, booking, guest, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("mail relay down")

        monkeypatch.setattr(EmailChannel, "send", _boom)
        refund = refund_service.create_refund_request(
            db, booking.id, actor_for(guest), RefundCreateInput(requested_amount="50.00")
        )
        db.expire_all()
        assert db.get(RefundRequest, refund.id).status == "requested"

    def test_guest_comment_notifies_admins(self, db, client, guest_headers, owner, create_refund):
        refund = create_refund("100.00")
        client.post(f"/api/v1/refunds/{refund['id']}/comments", json={"body": "Any update?"}, headers=guest_headers)
        assert "refund_comment_admin" in _keys_for(db, owner.id)

    def test_internal_comment_notifies_nobody(self, db, client, guest, owner_headers, create_refund):
        refund = create_refund("100.00")
        before = _keys_for(db, guest.id)
        client.post(f"/api/v1/refunds/{refund['id']}/comments",
                    json={"body": "Check bank details", "is_internal": True}, headers=owner_headers)
        assert _keys_for(db, guest.id) == before

    def test_inbox_and_mark_read(self, client, guest_headers, create_refund):
        create_refund("100.00")
        inbox = client.get("/api/v1/notifications", headers=guest_headers).json()
        assert len(inbox) == 1
        resp = client.post(f"/api/v1/notifications/{inbox[0]['id']}/read", headers=guest_headers)
        assert resp.status_code == 200
        assert client.get("/api/v1/notifications", params={"unread_only": True}, headers=guest_headers).json() == []


class TestEmailChannel:
    VARS = {"guest_name": "Thandi", "booking_reference": "VILO-1", "amount": "ZAR 100.00", "reason": "x",
            "customer_notes": "", "refund_method": "eft", "refund_url": "http://x", "admin_refund_url": "http://y",
            "comment": ""}

    def test_missing_template_row_falls_back(self, db, outbox):
        result = EmailChannel(db).send("g@example.com", "refund_approved", self.VARS, related_refund_id="r1")
        assert result.ok
        assert result.provider == "fallback"
        log = db.query(EmailLog).one()
        assert (log.provider, log.status, log.related_refund_id) == ("fallback", "sent", "r1")
        assert outbox[0][0] == "g@example.com"

    def test_admin_template_wins_when_present(self, db, outbox):
        db.add(EmailTemplate(key="refund_approved", subject="Good news, $guest_name", body="Refund of $amount approved."))
        db.commit()
        result = EmailChannel(db).send("g@example.com", "refund_approved", self.VARS)
        assert result.provider == "template"
        assert outbox == [("g@example.com", "Good news, Thandi", "Refund of ZAR 100.00 approved.")]

    def test_broken_template_falls_back(self, db, outbox):
        db.add(EmailTemplate(key="refund_approved", subject="Hi $nickname", body="..."))
        db.commit()
        result = EmailChannel(db).send("g@example.com", "refund_approved", self.VARS)
        assert result.provider == "fallback"
        assert len(outbox) == 1

    def test_all_providers_failing_queues_for_retry(self, db, monkeypatch, outbox):
        def _down(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(email_service, "send_email", _down)
        result = EmailChannel(db, [TemplateEmailProvider(db), FallbackEmailProvider()]).send(
            "g@example.com", "refund_approved", self.VARS
        )
        assert not result.ok
        log = db.query(EmailLog).one()
        assert log.status == "failed"
        assert "ZAR 100.00" in log.body

        sent = []
        monkeypatch.setattr(email_service, "send_email", lambda to, subject, body, attachments: sent.append(to))
        assert worker_jobs.process_email_queue(limit=10, db=db) == {"processed": 1, "sent": 1, "failed": 0}
        db.refresh(log)
        assert log.status == "sent"
        assert sent == ["g@example.com"]

    def test_mail_server_outage_does_not_retry_through_the_fallback(self, db, monkeypatch):
        db.add(EmailTemplate(key="refund_approved", subject="Good news, $guest_name", body="Refund of $amount approved."))
        db.commit()
        attempts = []

        def _down(to_email, subject, body, attachments):
            attempts.append(subject)
            raise OSError("connection refused")

        monkeypatch.setattr(email_service, "send_email", _down)
        result = EmailChannel(db).send("g@example.com", "refund_approved", self.VARS)

        assert not result.ok
        assert result.transport_failed
        assert attempts == ["Good news, Thandi"]
        log = db.query(EmailLog).one()
        assert (log.provider, log.status) == ("template", "failed")

    def test_format_amount(self):
        assert notification_service.format_amount("1234.5", "ZAR") == "ZAR 1,234.50"
