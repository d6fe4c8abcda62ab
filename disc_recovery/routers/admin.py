import uuid
from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session, func, select

from disc_recovery.db.db import get_session
from disc_recovery.models.recovery_event import RecoveryEvent
from disc_recovery.models.user import User
from disc_recovery.services import recovery_actions
from disc_recovery.services.change_notifier import ChangeNotifier, get_change_notifier
from disc_recovery.utils.auth_helper import require_admin

router = APIRouter()


class CancelRecoveryRequest(BaseModel):
    recovery_event_id: uuid.UUID
    reason: Optional[str] = Field(default=None, max_length=500)


class RecoveryStats(BaseModel):
    total: int
    by_status: dict[str, int]


@router.post("/cancel-recovery")
def cancel_recovery(
    payload: CancelRecoveryRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    admin: User = Depends(require_admin),
):
    reason = payload.reason.strip() if payload.reason else None

    event = recovery_actions.cancel_recovery(
        session,
        notifier,
        admin,
        payload.recovery_event_id,
        reason=reason or None,
    )

    return {
        "id": str(event.id),
        "status": event.status,
        "cancelled_at": event.cancelled_at,
    }


@router.get("/stats", response_model=RecoveryStats)
def get_recovery_stats(
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    rows = session.exec(
        select(RecoveryEvent.status, func.count(RecoveryEvent.id))
        .group_by(RecoveryEvent.status)
    ).all()

    by_status = {status: count for status, count in rows}

    return RecoveryStats(total=sum(by_status.values()), by_status=by_status)
