import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class DropOff(SQLModel, table=True):
    __tablename__ = "drop_offs"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # One drop-off per recovery
    recovery_event_id: uuid.UUID = Field(foreign_key="recovery_events.id", unique=True)

    photo_url: str  # storage key
    latitude: float
    longitude: float
    location_notes: Optional[str] = None

    dropped_off_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
