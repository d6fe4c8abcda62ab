from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Ownership
    user_id: int = Field(foreign_key="users.id", index=True)

    # values: "meetup_proposed", "meetup_countered", "meetup_accepted", "disc_dropped_off",
    # "disc_recovered", "disc_surrendered", "disc_abandoned", "recovery_cancelled", "reward_paid",
    # "meetup_declined", "new_message"
    type: str = Field(index=True)

    title: str
    message: str

    recovery_event_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="recovery_events.id",
        index=True
    )

    is_read: bool = Field(default=False)
