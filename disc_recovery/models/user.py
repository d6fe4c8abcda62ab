from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: str = Field(index=True, unique=True)  # JWT subject
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    name: str
    image: Optional[str] = Field(default=None)
    email: str

    role: str = Field(default="user")  # Possible roles: user, admin

    # Reward payout capability
    venmo_username: Optional[str] = Field(default=None)
    stripe_account_id: Optional[str] = Field(default=None)
    card_payments_enabled: bool = Field(default=False)
