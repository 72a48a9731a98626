from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from vilo.models.setting import Setting
from vilo.services.eligibility_service import (
    CancellationPolicy,
    calculate_eligibility,
    calculate_for_booking,
    days_until,
)
from vilo.services.settings_service import DEFAULT_CANCELLATION_POLICIES

NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def policy(name: str) -> CancellationPolicy:
    return CancellationPolicy.from_table(name, DEFAULT_CANCELLATION_POLICIES[name])


def calc(name: str, days_out: int, paid="1000.00", refunded="0"):
    return calculate_eligibility(
        total_paid=Decimal(paid),
        total_refunded=Decimal(refunded),
        check_in=(NOW + timedelta(days=days_out)).date() + timedelta(days=1),
        policy=policy(name),
        now=NOW,
    )


class TestDaysUntil:
    def test_partial_days_are_floored(self):
        # check-in is midnight UTC; 10:00 on the day before leaves 14 hours
        assert days_until(date(2026, 3, 2), NOW) == 0
        assert days_until(date(2026, 3, 3), NOW) == 1

    def test_past_check_in_is_zero(self):
        assert days_until(date(2026, 2, 1), NOW) == 0

    def test_naive_now_is_treated_as_utc(self):
        assert days_until(date(2026, 3, 11), NOW.replace(tzinfo=None)) == 9


class TestPolicyTiers:
    @pytest.mark.parametrize(
        "name,days_out,percent,eligible",
        [
            ("flexible", 10, 100, True),
            ("flexible", 3, 50, True),
            ("moderate", 20, 100, True),
            ("moderate", 6, 50, True),
            ("moderate", 2, 0, False),
            ("strict", 45, 100, True),
            ("strict", 20, 50, True),
            ("strict", 10, 25, True),
            ("strict", 1, 0, False),
            ("non_refundable", 90, 0, False),
        ],
    )
    def test_percent_and_eligibility(self, name, days_out, percent, eligible):
        result = calc(name, days_out)
        assert result.days_until_checkin == days_out
        assert result.refund_percent == Decimal(percent)
        assert result.is_policy_eligible is eligible
        assert result.policy_amount == (Decimal("1000.00") * percent / 100).quantize(Decimal("0.01"))

    def test_strict_one_day_out_suggests_nothing(self):
        result = calc("strict", 1)
        assert result.is_policy_eligible is False
        assert result.suggested_amount == Decimal("0")

    def test_suggestion_is_capped_by_what_is_left(self):
        result = calc("flexible", 10, paid="1000.00", refunded="800.00")
        assert result.policy_amount == Decimal("1000.00")
        assert result.available_for_refund == Decimal("200.00")
        assert result.suggested_amount == Decimal("200.00")

    def test_nothing_paid_is_never_eligible(self):
        result = calc("flexible", 30, paid="0")
        assert result.is_policy_eligible is False
        assert result.suggested_amount == Decimal("0")
        assert result.policy_amount == Decimal("0")

    def test_rounding_is_half_up_to_cents(self):
        result = calc("strict", 10, paid="100.02")
        assert result.policy_amount == Decimal("25.01")

    def test_to_dict_is_json_friendly(self):
        out = calc("moderate", 20).to_dict()
        assert out["policy"] == "moderate"
        assert out["suggested_amount"] == 1000.0
        assert isinstance(out["refund_percent"], float)


class TestCalculateForBooking:
    def test_uses_the_property_policy(self, db, booking):
        result = calculate_for_booking(db, booking)
        assert result.policy == "moderate"
        assert result.refund_percent == Decimal("100")
        assert result.suggested_amount == Decimal("1000.00")

    def test_unknown_policy_falls_back_to_non_refundable(self, db, booking, prop):
        prop.cancellation_policy = "very_generous"
        db.commit()
        result = calculate_for_booking(db, booking)
        assert result.is_policy_eligible is False
        assert result.suggested_amount == Decimal("0")

    def test_policy_tables_come_from_settings(self, db, booking):
        db.add(Setting(key="CANCELLATION_POLICIES", str_value=(
            '{"moderate": {"min_notice_days": 60, "tiers": [{"days": 60, "refund_percent": 100}]}}'
        )))
        db.commit()
        result = calculate_for_booking(db, booking)
        assert result.is_policy_eligible is False
        assert result.refund_percent == Decimal("0")

    def test_calculate_endpoint(self, client, booking, guest_headers, other_guest):
        from conftest import auth_headers

        resp = client.get(f"/api/v1/bookings/{booking.id}/refunds/calculate", headers=guest_headers)
        assert resp.status_code == 200
        assert resp.json()["suggested_amount"] == 1000.0

        resp = client.get(f"/api/v1/bookings/{booking.id}/refunds/calculate", headers=auth_headers(other_guest))
        assert resp.status_code == 403
