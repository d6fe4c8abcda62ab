import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class RecoveryMessage(SQLModel, table=True):
    __tablename__ = "recovery_messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    # Chat between the owner and the finder of one recovery
    recovery_event_id: uuid.UUID = Field(foreign_key="recovery_events.id", index=True)
    sender_id: int = Field(foreign_key="users.id")

    content: str
