"""
End-to-end walk through a late cancellation settled by credit memo.
"""

from decimal import Decimal

from conftest import auth_headers, make_booking
from vilo.models.credit_memo import CreditMemo
from vilo.models.notification import Notification
from vilo.models.refund import RefundRequest


def test_late_cancellation_settled_with_credit_memo(db, client, prop, guest, owner, admin_headers):
    prop.cancellation_policy = "strict"
    db.commit()
    # check-in is midnight UTC two calendar days out, so between one and two whole days remain
    booking = make_booking(db, prop, guest, amount_paid="1000.00", days_out=2)
    guest_headers = auth_headers(guest)

    calc = client.get(f"/api/v1/bookings/{booking.id}/refunds/calculate", headers=guest_headers).json()
    assert calc["days_until_checkin"] == 1
    assert calc["is_policy_eligible"] is False
    assert calc["suggested_amount"] == 0
    assert calc["total_paid"] == 1000.0

    # ineligible under the policy, but the guest can still ask
    resp = client.post(f"/api/v1/bookings/{booking.id}/refunds",
                       json={"requested_amount": "500.00", "reason_code": "illness_or_emergency",
                             "reason_details": "Hospitalised", "refund_method": "credit_memo"},
                       headers=guest_headers)
    assert resp.status_code == 201
    refund_id = resp.json()["id"]
    assert resp.json()["reason"] == "Illness or emergency: Hospitalised"

    assert client.post(f"/api/v1/refunds/{refund_id}/review", headers=admin_headers).json()["status"] == "under_review"

    duplicate = client.post(f"/api/v1/bookings/{booking.id}/refunds",
                            json={"requested_amount": "100.00"}, headers=guest_headers)
    assert duplicate.status_code == 409
    assert db.query(RefundRequest).filter(RefundRequest.booking_id == booking.id).count() == 1

    approved = client.post(f"/api/v1/refunds/{refund_id}/approve", json={"approved_amount": "500.00"}, headers=admin_headers)
    assert approved.json()["approved_amount"] == 500.0

    processed = client.post(f"/api/v1/refunds/{refund_id}/process", json={}, headers=admin_headers).json()
    assert processed["status"] == "completed"
    assert processed["completed_at"]

    db.expire_all()
    memo = db.query(CreditMemo).filter(CreditMemo.refund_request_id == refund_id).one()
    assert memo.total_cents == 50000
    assert memo.id == processed["credit_memo_id"]
    assert db.get(RefundRequest, refund_id).refunded_amount == Decimal("500.00")

    summary = client.get(f"/api/v1/bookings/{booking.id}/refunds/status", headers=guest_headers).json()
    assert summary["total_refunded"] == 500.0
    assert summary["available_for_refund"] == 500.0
    assert summary["refund_status"] == "partial"
    assert summary["has_active_refund"] is False

    guest_keys = [n.template_key for n in db.query(Notification).filter(Notification.user_id == guest.id).all()]
    assert sorted(guest_keys) == sorted([
        "refund_requested_guest", "refund_under_review", "refund_approved", "refund_processing", "refund_completed",
    ])
    assert db.query(Notification).filter(Notification.user_id == owner.id,
                                         Notification.template_key == "refund_requested_admin").count() == 1
