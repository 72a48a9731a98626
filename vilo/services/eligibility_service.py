"""
Refund eligibility: how much of a booking's payments the cancellation policy
gives back, given how far away check-in is.

`calculate_eligibility` is pure. Callers load the booking totals and the
policy table (see settings_service.get_cancellation_policy) and pass "now" in
explicitly so results are reproducible.

The result is advisory. A fully refunded or policy-ineligible booking still
accepts a refund request; the admin decides the approved amount.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP

from vilo.models.property import Property
from vilo.services.settings_service import get_cancellation_policy

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PolicyTier:
    days: int
    refund_percent: Decimal


@dataclass(frozen=True)
class CancellationPolicy:
    name: str
    min_notice_days: int | None
    tiers: tuple[PolicyTier, ...] = field(default_factory=tuple)

    @classmethod
    def from_table(cls, name: str, table: dict) -> "CancellationPolicy":
        tiers = tuple(
            sorted(
                (PolicyTier(int(t["days"]), Decimal(str(t["refund_percent"]))) for t in table.get("tiers", [])),
                key=lambda t: t.days,
                reverse=True,
            )
        )
        min_notice = table.get("min_notice_days")
        return cls(name=name, min_notice_days=int(min_notice) if min_notice is not None else None, tiers=tiers)

    def refund_percent(self, days_until_checkin: int) -> Decimal:
        for tier in self.tiers:
            if days_until_checkin >= tier.days:
                return tier.refund_percent
        return Decimal("0")


@dataclass(frozen=True)
class RefundCalculation:
    days_until_checkin: int
    policy: str
    refund_percent: Decimal
    policy_amount: Decimal
    is_policy_eligible: bool
    suggested_amount: Decimal
    total_paid: Decimal
    total_refunded: Decimal
    available_for_refund: Decimal

    def to_dict(self) -> dict:
        out = asdict(self)
        for k, v in out.items():
            if isinstance(v, Decimal):
                out[k] = float(v)
        return out


def days_until(check_in: date, now: datetime) -> int:
    """Whole days from `now` to check-in (midnight UTC), floored; never negative."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    delta = datetime.combine(check_in, time.min, tzinfo=timezone.utc) - now
    return max(delta.days, 0)


def calculate_eligibility(
    *,
    total_paid: Decimal,
    total_refunded: Decimal,
    check_in: date,
    policy: CancellationPolicy,
    now: datetime,
) -> RefundCalculation:
    total_paid = Decimal(total_paid or 0)
    total_refunded = Decimal(total_refunded or 0)
    available = max(total_paid - total_refunded, Decimal("0")).quantize(CENT)
    days = days_until(check_in, now)

    if total_paid <= 0:
        return RefundCalculation(
            days_until_checkin=days,
            policy=policy.name,
            refund_percent=Decimal("0"),
            policy_amount=Decimal("0.00"),
            is_policy_eligible=False,
            suggested_amount=Decimal("0.00"),
            total_paid=total_paid.quantize(CENT),
            total_refunded=total_refunded.quantize(CENT),
            available_for_refund=available,
        )

    percent = policy.refund_percent(days)
    policy_amount = (total_paid * percent / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
    eligible = policy.min_notice_days is not None and days >= policy.min_notice_days

    return RefundCalculation(
        days_until_checkin=days,
        policy=policy.name,
        refund_percent=percent,
        policy_amount=policy_amount,
        is_policy_eligible=eligible,
        suggested_amount=min(policy_amount, available),
        total_paid=total_paid.quantize(CENT),
        total_refunded=total_refunded.quantize(CENT),
        available_for_refund=available,
    )


def calculate_for_booking(db, booking, now: datetime | None = None) -> RefundCalculation:
    """Load the property's policy table and run the calculator for `booking`."""
    prop = db.get(Property, booking.property_id)
    name = (prop.cancellation_policy if prop else "") or "non_refundable"
    policy = CancellationPolicy.from_table(name, get_cancellation_policy(db, name))
    return calculate_eligibility(
        total_paid=booking.amount_paid,
        total_refunded=booking.total_refunded,
        check_in=booking.check_in_date,
        policy=policy,
        now=now or datetime.now(timezone.utc),
    )
