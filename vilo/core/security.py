from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from vilo.core.config import settings

# PBKDF2 avoids bcrypt backend/version issues and the 72-byte bcrypt input limit.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ALGO = "HS256"

GUEST = "guest"
PROPERTY_MANAGER = "property_manager"
ADMIN = "admin"
FINANCE = "finance"
SUPERADMIN = "superadmin"

ALL_ROLES = (GUEST, PROPERTY_MANAGER, ADMIN, FINANCE, SUPERADMIN)
# Back-office roles allowed to review, approve, reject and process refunds
REFUND_ADMIN_ROLES = (PROPERTY_MANAGER, ADMIN, FINANCE, SUPERADMIN)


def is_refund_admin(role: str | None) -> bool:
    return (role or "") in REFUND_ADMIN_ROLES


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def _encode(subject: str, token_type: str, expires_at: datetime) -> str:
    payload = {"sub": subject, "type": token_type, "exp": expires_at}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGO)


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    return _encode(subject, "access", datetime.now(timezone.utc) + timedelta(minutes=expires_minutes))


def create_refresh_token(subject: str, expires_days: int | None = None) -> str:
    if expires_days is None:
        expires_days = settings.REFRESH_TOKEN_EXPIRE_DAYS
    return _encode(subject, "refresh", datetime.now(timezone.utc) + timedelta(days=expires_days))


def decode_token(token: str, expected_type: str | None = None) -> dict:
    """Decode and verify a token. Raises JWTError on a bad signature, expiry or wrong type."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGO])
    if expected_type and payload.get("type") != expected_type:
        raise JWTError(f"expected {expected_type} token")
    return payload


@dataclass(frozen=True)
class Actor:
    """Who is performing a refund action. Passed explicitly into every service call."""
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return is_refund_admin(self.role)
