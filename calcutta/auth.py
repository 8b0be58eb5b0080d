from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, Header, HTTPException
from passlib.context import CryptContext
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .config import SESSION_TTL_HOURS
from .db import get_db
from .models import User, UserSession, utcnow

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def issue_session(db: Session, user: User) -> str:
    token = uuid.uuid4().hex
    db.add(
        UserSession(
            token=token,
            user_id=user.id,
            expires_at=utcnow() + timedelta(hours=SESSION_TTL_HOURS),
        )
    )
    db.commit()
    return token


def revoke_sessions(db: Session, user_id: int) -> None:
    db.execute(delete(UserSession).where(UserSession.user_id == user_id))


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization.replace("Bearer ", "", 1).strip()


def get_current_user(
    db: Session = Depends(get_db),
    authorization: str | None = Header(default=None),
) -> Identity:
    token = bearer_token(authorization)
    session = db.get(UserSession, token)
    if not session or session.expires_at <= utcnow():
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = session.user
    return Identity(user_id=user.id, username=user.username, role=user.role)


def require_admin(identity: Identity = Depends(get_current_user)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity
