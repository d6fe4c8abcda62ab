import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class Disc(SQLModel, table=True):
    __tablename__ = "discs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    owner_id: int = Field(foreign_key="users.id", index=True)

    name: str
    manufacturer: Optional[str] = None
    mold: Optional[str] = None
    plastic: Optional[str] = None
    color: Optional[str] = None
    photo_url: Optional[str] = None  # storage key

    reward_amount: float = Field(default=0)  # dollars
