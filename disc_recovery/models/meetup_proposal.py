import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class MeetupProposal(SQLModel, table=True):
    __tablename__ = "meetup_proposals"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    recovery_event_id: uuid.UUID = Field(foreign_key="recovery_events.id", index=True)
    proposed_by: int = Field(foreign_key="users.id")

    location_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    proposed_datetime: datetime

    status: str = Field(default="pending", index=True)  # values: "pending", "accepted", "declined"
    message: Optional[str] = None

    responded_at: Optional[datetime] = None
