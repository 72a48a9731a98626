from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from vilo.db.session import get_db
from vilo.core.security import Actor, REFUND_ADMIN_ROLES, decode_token
from vilo.models.user import User

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials, expected_type="access")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard

def get_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor(user_id=user.id, role=user.role)

def get_admin_actor(user: User = Depends(require_roles(*REFUND_ADMIN_ROLES))) -> Actor:
    return Actor(user_id=user.id, role=user.role)
