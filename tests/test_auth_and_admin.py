import pytest

from conftest import auth_headers
from vilo.core.security import create_refresh_token
from vilo.seed import run as run_seed
from vilo.models.email_template import EmailTemplate
from vilo.models.user import User


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:
    def test_login_refresh_me(self, client, guest):
        resp = client.post("/api/v1/auth/login", json={"email": "GUEST@example.com", "password": "Password123!"})
        assert resp.status_code == 200
        tokens = resp.json()
        assert tokens["token_type"] == "bearer"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"}).json()
        assert me["id"] == guest.id
        assert me["role"] == "guest"

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200

    def test_wrong_password(self, client, guest):
        resp = client.post("/api/v1/auth/login", json={"email": guest.email, "password": "nope"})
        assert resp.status_code == 401

    def test_refresh_token_is_not_an_access_token(self, client, guest):
        headers = {"Authorization": f"Bearer {create_refresh_token(guest.id)}"}
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_inactive_user_is_rejected(self, db, client, guest):
        guest.is_active = False
        db.commit()
        assert client.get("/api/v1/auth/me", headers=auth_headers(guest)).status_code == 401

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/v1/refunds"),
            ("GET", "/api/v1/admin/refunds"),
            ("GET", "/api/v1/admin/credit-memos"),
            ("GET", "/api/v1/notifications"),
            ("GET", "/api/v1/admin/settings/cancellation-policies"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


# =============================================================================
# POLICY SETTINGS
# =============================================================================


class TestCancellationPolicies:
    def test_defaults_are_served(self, client, admin_headers):
        policies = client.get("/api/v1/admin/settings/cancellation-policies", headers=admin_headers).json()
        assert set(policies) == {"flexible", "moderate", "strict", "non_refundable"}

    def test_only_superadmin_may_change(self, client, admin_headers):
        resp = client.put("/api/v1/admin/settings/cancellation-policies",
                          json={"policies": {"flexible": {"min_notice_days": 1, "tiers": []}}}, headers=admin_headers)
        assert resp.status_code == 403

    def test_superadmin_update_changes_the_calculation(self, client, superadmin, booking, guest_headers):
        table = {"moderate": {"min_notice_days": 1, "tiers": [{"days": 1, "refund_percent": 40}]}}
        resp = client.put("/api/v1/admin/settings/cancellation-policies",
                          json={"policies": table}, headers=auth_headers(superadmin))
        assert resp.status_code == 200

        calc = client.get(f"/api/v1/bookings/{booking.id}/refunds/calculate", headers=guest_headers).json()
        assert calc["refund_percent"] == 40.0
        assert calc["suggested_amount"] == 400.0

    def test_invalid_tier(self, client, superadmin):
        table = {"moderate": {"min_notice_days": 1, "tiers": [{"days": 3, "refund_percent": 140}]}}
        resp = client.put("/api/v1/admin/settings/cancellation-policies",
                          json={"policies": table}, headers=auth_headers(superadmin))
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR"


# =============================================================================
# SEED
# =============================================================================


def test_seed_is_idempotent(db):
    run_seed(db)
    run_seed(db)
    assert db.query(User).filter(User.email == "guest@vilo.co.za").count() == 1
    assert db.query(EmailTemplate).count() > 0


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
