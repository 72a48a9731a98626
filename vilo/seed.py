import json
import uuid
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError

from vilo.db.session import SessionLocal
from vilo.core.security import hash_password
from vilo.models.user import User
from vilo.models.property import Property, PropertyTeamMember
from vilo.models.booking import Booking
from vilo.models.payment import Payment
from vilo.models.setting import Setting
from vilo.models.email_template import EmailTemplate
from vilo.services.refund_templates import REFUND_TEMPLATES
from vilo.services.settings_service import DEFAULT_CANCELLATION_POLICIES, set_cancellation_policies


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(
        id=str(uuid.uuid4()),
        email=email,
        full_name=name,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def ensure_email_templates(db: Session) -> int:
    created = 0
    for key, tpl in REFUND_TEMPLATES.items():
        if db.get(EmailTemplate, key):
            continue
        db.add(EmailTemplate(key=key, subject=tpl["subject"], body=tpl["body"], is_active=True))
        created += 1
    db.commit()
    return created


def ensure_demo_booking(db: Session, owner: User, manager: User, guest: User) -> Booking:
    prop = db.query(Property).filter(Property.name == "Camps Bay Villa").first()
    if not prop:
        prop = Property(id=str(uuid.uuid4()), name="Camps Bay Villa", owner_id=owner.id,
                        cancellation_policy="moderate", currency="ZAR")
        db.add(prop)
        db.add(PropertyTeamMember(id=str(uuid.uuid4()), property_id=prop.id, user_id=manager.id,
                                  role="manager", status="active"))
        db.commit()

    booking = db.query(Booking).filter(Booking.booking_reference == "VILO-DEMO1").first()
    if booking:
        return booking
    check_in = date.today() + timedelta(days=21)
    booking = Booking(
        id=str(uuid.uuid4()),
        booking_reference="VILO-DEMO1",
        property_id=prop.id,
        guest_id=guest.id,
        check_in_date=check_in,
        check_out_date=check_in + timedelta(days=4),
        currency="ZAR",
        total_amount=Decimal("8000.00"),
        amount_paid=Decimal("8000.00"),
        payment_status="paid",
        line_items_json=json.dumps([
            {"description": "Accommodation (4 nights)", "quantity": 4, "unit_price": 1850},
            {"description": "Cleaning fee", "quantity": 1, "unit_price": 600},
        ]),
    )
    db.add(booking)
    db.add(Payment(id=str(uuid.uuid4()), booking_id=booking.id, provider="paystack",
                   amount=Decimal("8000.00"), currency="ZAR", status="paid", provider_ref="demo-txn-0001"))
    db.commit()
    return booking


def run(db=None):
    own = db is None
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except ProgrammingError:
            db.rollback()
            print("[seed] users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        # roles
        ensure_user(db, "superadmin@vilo.co.za", "superadmin12345", "superadmin", "Super Admin")
        ensure_user(db, "admin@vilo.co.za", "admin12345", "admin", "Admin")
        ensure_user(db, "finance@vilo.co.za", "finance12345", "finance", "Finance")
        owner = ensure_user(db, "owner@vilo.co.za", "owner12345", "property_manager", "Property Owner")
        manager = ensure_user(db, "manager@vilo.co.za", "manager12345", "property_manager", "Property Manager")
        guest = ensure_user(db, "guest@vilo.co.za", "guest12345", "guest", "Demo Guest")

        # settings
        if not db.get(Setting, "CANCELLATION_POLICIES"):
            set_cancellation_policies(db, DEFAULT_CANCELLATION_POLICIES)

        n = ensure_email_templates(db)
        ensure_demo_booking(db, owner, manager, guest)
        print(f"[seed] done ({n} email templates created)")
    finally:
        if own:
            db.close()


if __name__ == "__main__":
    run()
