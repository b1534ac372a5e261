# hms_billing/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Header, HTTPException
from jose import JWTError
from sqlalchemy.orm import Session

from hms_billing.db.session import SessionLocal
from hms_billing.utils.jwt import decode_token


@dataclass(frozen=True)
class Actor:
    """Authenticated user performing a billing command."""
    id: int
    subject: str


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_actor(authorization: Optional[str] = Header(default=None)) -> Actor:
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401,
                            detail="Not authenticated",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    uid = payload.get("uid")
    sub = payload.get("sub")
    if uid is None or not sub:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    try:
        return Actor(id=int(uid), subject=str(sub))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims")
