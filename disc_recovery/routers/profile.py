import re
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from disc_recovery.core.errors import ValidationFailed
from disc_recovery.db.db import get_session
from disc_recovery.models.user import User
from disc_recovery.services.reward_settlement import finder_accepts_card
from disc_recovery.utils.auth_helper import get_request_user


router = APIRouter()

VENMO_USERNAME = re.compile(r"^[A-Za-z0-9_-]{1,30}$")


class VenmoRequest(BaseModel):
    venmo_username: Optional[str] = None


def profile_view(user: User) -> dict:
    return {
        "id": user.public_id,
        "name": user.name,
        "email": user.email,
        "image": user.image,
        "role": user.role,
        "created_at": user.created_at,
        "venmo_username": user.venmo_username,
        "accepts_card_payments": finder_accepts_card(user),
    }


def normalize_venmo_username(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None

    value = value.strip()
    if value.startswith("@"):
        value = value[1:]

    if not value:
        return None

    if not VENMO_USERNAME.match(value):
        raise ValidationFailed("Venmo usernames are 1-30 letters, numbers, dashes or underscores")

    return value


@router.get("/me")
def get_my_profile(user: User = Depends(get_request_user)):
    return profile_view(user)


@router.post("/venmo")
def set_venmo_username(
    payload: VenmoRequest,
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    user.venmo_username = normalize_venmo_username(payload.venmo_username)

    session.add(user)
    session.commit()
    session.refresh(user)

    return profile_view(user)
