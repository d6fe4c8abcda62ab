import uuid
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class RewardPayment(SQLModel, table=True):
    __tablename__ = "reward_payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Only one payment record per recovery; used for "already paid" checks
    recovery_event_id: uuid.UUID = Field(foreign_key="recovery_events.id", unique=True)
    created_by: int = Field(foreign_key="users.id")

    method: str  # values: "venmo", "card"
    status: str = Field(default="pending", index=True)  # values: "pending", "succeeded"

    reward_amount: float
    fee_amount: float = Field(default=0)

    checkout_session_id: Optional[str] = Field(default=None, index=True)
    # Reused while the checkout is pending, replaced after a provider failure
    idempotency_key: Optional[str] = None
    paid_at: Optional[datetime] = None
