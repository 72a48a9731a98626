"""
Pytest fixtures for the refund API tests.

Runs against an in-memory SQLite database that is rebuilt for every test.
Outgoing email is captured in `outbox` instead of being sent.
"""

import json
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read at import time, so the environment must be in place first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DOCUMENT_LOCAL_DIR"] = tempfile.mkdtemp(prefix="vilo-docs-")
os.environ["GCS_BUCKET_NAME"] = ""
os.environ["SENDGRID_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient

import vilo.models.all  # noqa: F401
from vilo.core.security import Actor, create_access_token, hash_password
from vilo.db.session import Base, SessionLocal, engine
from vilo.main import app
from vilo.models.booking import Booking
from vilo.models.payment import Payment
from vilo.models.property import Property, PropertyTeamMember
from vilo.models.user import User
from vilo.services import email_service


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Every email the app tries to send, as (to, subject, body)."""
    sent = []

    def _capture(to_email, subject, body, attachments):
        sent.append((to_email, subject, body))

    monkeypatch.setattr(email_service, "send_email", _capture)
    return sent


@pytest.fixture
def client():
    return TestClient(app)


# =============================================================================
# FACTORIES
# =============================================================================


def make_user(db, role: str, email: str | None = None, name: str = "") -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        full_name=name or role.replace("_", " ").title(),
        role=role,
        password_hash=hash_password("Password123!"),
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def make_booking(db, prop: Property, guest: User, *, amount_paid="1000.00", days_out: int = 30,
                 provider: str = "paystack", provider_ref: str = "txn_123") -> Booking:
    check_in = datetime.now(timezone.utc).date() + timedelta(days=days_out)
    booking = Booking(
        id=str(uuid.uuid4()),
        booking_reference=f"VILO-{uuid.uuid4().hex[:6].upper()}",
        property_id=prop.id,
        guest_id=guest.id,
        check_in_date=check_in,
        check_out_date=check_in + timedelta(days=3),
        currency="ZAR",
        total_amount=Decimal(amount_paid),
        amount_paid=Decimal(amount_paid),
        total_refunded=Decimal("0"),
        status="confirmed",
        payment_status="paid",
        refund_status="none",
        line_items_json=json.dumps([
            {"description": "Accommodation (3 nights)", "quantity": 3, "unit_price": float(Decimal(amount_paid) * Decimal("0.3"))},
            {"description": "Cleaning fee", "quantity": 1, "unit_price": float(Decimal(amount_paid) * Decimal("0.1"))},
        ]),
    )
    db.add(booking)
    db.add(Payment(id=str(uuid.uuid4()), booking_id=booking.id, provider=provider, amount=Decimal(amount_paid),
                   currency="ZAR", status="paid", provider_ref=provider_ref))
    db.commit()
    return booking


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role)


@pytest.fixture
def guest(db):
    return make_user(db, "guest", "guest@example.com", "Thandi Guest")


@pytest.fixture
def other_guest(db):
    return make_user(db, "guest", "other@example.com", "Other Guest")


@pytest.fixture
def owner(db):
    return make_user(db, "property_manager", "owner@example.com", "Olivia Owner")


@pytest.fixture
def team_manager(db):
    return make_user(db, "property_manager", "team@example.com", "Tom Team")


@pytest.fixture
def outside_manager(db):
    """A property manager with no relation to the test property."""
    return make_user(db, "property_manager", "outsider@example.com", "Oscar Outsider")


@pytest.fixture
def admin(db):
    return make_user(db, "admin", "admin@example.com", "Ada Admin")


@pytest.fixture
def superadmin(db):
    return make_user(db, "superadmin", "root@example.com", "Sam Super")


@pytest.fixture
def prop(db, owner, team_manager):
    p = Property(id=str(uuid.uuid4()), name="Camps Bay Villa", owner_id=owner.id,
                 cancellation_policy="moderate", currency="ZAR")
    db.add(p)
    db.add(PropertyTeamMember(id=str(uuid.uuid4()), property_id=p.id, user_id=team_manager.id,
                              role="manager", status="active"))
    db.commit()
    return p


@pytest.fixture
def booking(db, prop, guest):
    return make_booking(db, prop, guest)


@pytest.fixture
def guest_headers(guest):
    return auth_headers(guest)


@pytest.fixture
def owner_headers(owner):
    return auth_headers(owner)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def create_refund(client, guest_headers, booking):
    """POST a refund request for `booking` as the guest and return the response JSON."""

    def _create(amount="400.00", **extra):
        payload = {"requested_amount": amount, "reason_code": "change_of_plans", "reason_details": "Flights moved"}
        payload.update(extra)
        resp = client.post(f"/api/v1/bookings/{booking.id}/refunds", json=payload, headers=guest_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create
