# hms_billing/utils/jwt.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt

from hms_billing.core.config import settings


def create_access_token(
    subject: str,
    user_id: int,
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": subject,  # user email / login
        "uid": int(user_id),  # acting user id, stamped on every billing row
        "iat": now,
        "exp": now + (expires_delta or timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> dict:
    """Raises jose.JWTError on a bad signature or an expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
