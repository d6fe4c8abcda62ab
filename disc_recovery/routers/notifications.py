import uuid
from fastapi import APIRouter, Depends, Query
from sqlalchemy import update
from sqlmodel import Session, func, select

from disc_recovery.core.errors import NotFound
from disc_recovery.db.db import get_session
from disc_recovery.models.notification import Notification
from disc_recovery.models.user import User
from disc_recovery.utils.auth_helper import get_request_user


router = APIRouter()


def _unread(statement, user: User):
    return statement.where(Notification.user_id == user.id).where(Notification.is_read == False)  # noqa: E712


@router.get("/")
def list_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = False,
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    query = select(Notification)
    query = _unread(query, user) if unread_only else query.where(Notification.user_id == user.id)

    notifications = session.exec(
        query.order_by(Notification.created_at.desc()).limit(limit)
    ).all()

    return {"notifications": notifications}


@router.get("/count")
def unread_count(
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    count = session.exec(_unread(select(func.count(Notification.id)), user)).one()
    return {"count": count}


@router.post("/{notification_id}/mark-read")
def mark_read(
    notification_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    notification = session.get(Notification, notification_id)

    # Someone else's notification looks the same as a missing one
    if not notification or notification.user_id != user.id:
        raise NotFound("Notification not found")

    notification.is_read = True
    session.add(notification)
    session.commit()

    return {"ok": True}


@router.post("/mark-all-read")
def mark_all_read(
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    result = session.connection().execute(_unread(update(Notification), user).values(is_read=True))
    session.commit()

    return {"ok": True, "updated": result.rowcount}
