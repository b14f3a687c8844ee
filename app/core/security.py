from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from app.core.config import JWT_SECRET, JWT_ALG

bearer = HTTPBearer(auto_error=False)

JWT_TTL_MIN = 30


@dataclass
class Principal:
    user_id: str | None = None
    username: str = "anonymous"

    @property
    def actor(self) -> str:
        """Identifier written to movements, audit rows and ``*_by`` columns."""
        return self.user_id or self.username


def create_access_token(user_id: str, username: str | None = None, ttl_minutes: int = JWT_TTL_MIN) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "name": username or user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Principal:
    if not creds or not creds.credentials:
        # Anonymous
        return Principal()

    try:
        payload = jwt.decode(creds.credentials, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        return Principal()

    user_id = payload.get("sub")
    if not user_id:
        return Principal()
    return Principal(user_id=user_id, username=payload.get("name") or user_id)
