import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.orm import Session
from vilo.models.setting import Setting

logger = logging.getLogger(__name__)

# Days-before-check-in tiers; the highest threshold met wins.
DEFAULT_CANCELLATION_POLICIES = {
    "flexible": {"min_notice_days": 1, "tiers": [{"days": 7, "refund_percent": 100}, {"days": 1, "refund_percent": 50}]},
    "moderate": {"min_notice_days": 5, "tiers": [{"days": 14, "refund_percent": 100}, {"days": 5, "refund_percent": 50}]},
    "strict": {"min_notice_days": 7, "tiers": [{"days": 30, "refund_percent": 100}, {"days": 14, "refund_percent": 50}, {"days": 7, "refund_percent": 25}]},
    "non_refundable": {"min_notice_days": None, "tiers": []},
}
DEFAULT_CREDIT_MEMO_TAX_RATE = Decimal("0")

def get_cancellation_policies(db: Session) -> dict:
    s = db.get(Setting, "CANCELLATION_POLICIES")
    if s and s.str_value:
        try:
            return json.loads(s.str_value)
        except (json.JSONDecodeError, TypeError):
            logger.warning("CANCELLATION_POLICIES setting is not valid JSON; using defaults")
    return json.loads(json.dumps(DEFAULT_CANCELLATION_POLICIES))

def get_cancellation_policy(db: Session, name: str) -> dict:
    """Tier table for `name`. Unknown names fall back to non_refundable."""
    policies = get_cancellation_policies(db)
    return policies.get(name) or policies.get("non_refundable") or DEFAULT_CANCELLATION_POLICIES["non_refundable"]

def set_cancellation_policies(db: Session, policies: dict) -> dict:
    for name, table in policies.items():
        for tier in table.get("tiers", []):
            if int(tier.get("days", -1)) < 0 or not 0 <= float(tier.get("refund_percent", -1)) <= 100:
                raise ValueError(f"invalid tier in policy '{name}'")
    s = db.get(Setting, "CANCELLATION_POLICIES")
    if not s:
        s = Setting(key="CANCELLATION_POLICIES", int_value=None, str_value=json.dumps(policies))
        db.add(s)
    else:
        s.str_value = json.dumps(policies)
    db.commit()
    return policies

def get_credit_memo_tax_rate(db: Session) -> Decimal:
    s = db.get(Setting, "CREDIT_MEMO_TAX_RATE")
    if s and s.str_value:
        return Decimal(s.str_value)
    return DEFAULT_CREDIT_MEMO_TAX_RATE

def next_credit_memo_number(db: Session, now: datetime | None = None) -> str:
    """Allocate CM-YYYYMM-NNNN. Runs inside the caller's transaction; the caller commits."""
    now = now or datetime.now(timezone.utc)
    period = now.strftime("%Y%m")
    key = f"CREDIT_MEMO_SEQ_{period}"
    s = db.execute(select(Setting).where(Setting.key == key).with_for_update()).scalar_one_or_none()
    if not s:
        s = Setting(key=key, int_value=1, str_value=None)
        db.add(s)
    else:
        s.int_value = int(s.int_value or 0) + 1
    db.flush()
    return f"CM-{period}-{int(s.int_value):04d}"
