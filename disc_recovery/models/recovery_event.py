import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

from disc_recovery.core.state_machine import RecoveryStatus


class RecoveryEvent(SQLModel, table=True):
    __tablename__ = "recovery_events"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    disc_id: uuid.UUID = Field(foreign_key="discs.id", index=True)

    # Participants
    owner_id: int = Field(foreign_key="users.id", index=True)
    finder_id: int = Field(foreign_key="users.id", index=True)

    # values: found, meetup_proposed, meetup_confirmed, dropped_off,
    # recovered, surrendered, abandoned, cancelled
    status: str = Field(default=RecoveryStatus.FOUND.value, index=True)

    # Bumped on every write; conditional updates compare it
    version: int = Field(default=1)

    finder_message: Optional[str] = None

    found_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    recovered_at: Optional[datetime] = None
    surrendered_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    # Set at most once, see services.reward_settlement
    reward_paid_at: Optional[datetime] = None
