from datetime import date, timedelta

from conftest import auth_headers
from vilo.models.audit_log import AuditLog


def _dates_payload(days_out=40):
    check_in = date.today() + timedelta(days=days_out)
    return {"check_in_date": check_in.isoformat(), "check_out_date": (check_in + timedelta(days=2)).isoformat()}


class TestBookingLock:
    def test_active_refund_blocks_booking_changes(self, client, booking, owner_headers, guest_headers, create_refund):
        refund = create_refund("100.00")

        resp = client.patch(f"/api/v1/bookings/{booking.id}/dates", json=_dates_payload(), headers=owner_headers)
        assert resp.status_code == 409
        body = resp.json()
        assert body["error_code"] == "REFUND_LOCK_ACTIVE"
        assert body["details"] == {"booking_id": booking.id, "refund_id": refund["id"]}

        resp = client.patch(f"/api/v1/bookings/{booking.id}/price", json={"total_amount": "900.00"}, headers=owner_headers)
        assert resp.status_code == 409

        resp = client.post(f"/api/v1/bookings/{booking.id}/cancel", json={"reason": "Changed my mind"}, headers=guest_headers)
        assert resp.status_code == 409

    def test_lock_is_released_when_the_refund_is_withdrawn(self, db, client, booking, owner_headers, guest_headers, create_refund):
        refund = create_refund("100.00")
        client.post(f"/api/v1/refunds/{refund['id']}/withdraw", headers=guest_headers)

        resp = client.patch(f"/api/v1/bookings/{booking.id}/dates", json=_dates_payload(), headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json()["has_active_refund"] is False
        assert db.query(AuditLog).filter(AuditLog.action == "booking.dates_changed").count() == 1

    def test_lock_is_released_after_completion(self, client, booking, owner_headers, admin_headers, create_refund):
        refund = create_refund("100.00", refund_method="manual")
        client.post(f"/api/v1/refunds/{refund['id']}/approve", json={}, headers=admin_headers)
        client.post(f"/api/v1/refunds/{refund['id']}/process", json={}, headers=admin_headers)
        locked = client.patch(f"/api/v1/bookings/{booking.id}/price", json={"total_amount": "950.00"}, headers=owner_headers)
        assert locked.status_code == 409

        client.post(f"/api/v1/refunds/{refund['id']}/mark-complete", json={"reference": "EFT-9"}, headers=admin_headers)
        resp = client.patch(f"/api/v1/bookings/{booking.id}/price", json={"total_amount": "950.00"}, headers=owner_headers)
        assert resp.status_code == 200
        assert resp.json()["total_amount"] == 950.0
        assert resp.json()["total_refunded"] == 100.0

    def test_booking_detail_reports_the_lock(self, client, booking, guest_headers, create_refund):
        assert client.get(f"/api/v1/bookings/{booking.id}", headers=guest_headers).json()["has_active_refund"] is False
        refund = create_refund("100.00")
        detail = client.get(f"/api/v1/bookings/{booking.id}", headers=guest_headers).json()
        assert detail["has_active_refund"] is True
        assert detail["active_refund_id"] == refund["id"]
        assert [r["id"] for r in detail["refunds"]] == [refund["id"]]
        assert "internal_notes" not in detail["refunds"][0]


class TestBookingEdits:
    def test_guest_cannot_edit_dates(self, client, booking, guest_headers):
        resp = client.patch(f"/api/v1/bookings/{booking.id}/dates", json=_dates_payload(), headers=guest_headers)
        assert resp.status_code == 403

    def test_check_out_must_follow_check_in(self, client, booking, owner_headers):
        check_in = date.today() + timedelta(days=40)
        resp = client.patch(f"/api/v1/bookings/{booking.id}/dates",
                            json={"check_in_date": check_in.isoformat(), "check_out_date": check_in.isoformat()},
                            headers=owner_headers)
        assert resp.status_code == 400

    def test_cancel_then_edit_is_refused(self, client, booking, guest_headers, owner_headers):
        resp = client.post(f"/api/v1/bookings/{booking.id}/cancel", json={}, headers=guest_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        resp = client.patch(f"/api/v1/bookings/{booking.id}/dates", json=_dates_payload(), headers=owner_headers)
        assert resp.status_code == 400

    def test_stranger_cannot_view(self, client, booking, other_guest):
        assert client.get(f"/api/v1/bookings/{booking.id}", headers=auth_headers(other_guest)).status_code == 403
