import os
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlmodel import Session, select

from disc_recovery.core.errors import Forbidden, Unauthenticated
from disc_recovery.db.db import get_session
from disc_recovery.models.user import User

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


def get_current_user_required(token: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)):
    if not token:
        raise Unauthenticated("Missing bearer token")

    return decode_token(token.credentials)


def get_db_user(session: Session, current_user) -> User:
    user = session.exec(
        select(User).where(User.public_id == current_user.get("sub"))
    ).first()

    # Token outlived the account
    if not user:
        raise Unauthenticated("User not found")

    return user


def get_request_user(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
) -> User:
    return get_db_user(session, current_user)


def require_admin(user: User = Depends(get_request_user)) -> User:
    if user.role != "admin":
        raise Forbidden("Admin access required")
    return user
