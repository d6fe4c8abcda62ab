"""Owner/finder chat attached to a recovery. Messages never change its status."""
import uuid

import structlog
from sqlmodel import Session, select

from disc_recovery.core.errors import InvalidTransition, ValidationFailed
from disc_recovery.core.state_machine import RecoveryStatus
from disc_recovery.models.recovery_message import RecoveryMessage
from disc_recovery.models.user import User
from disc_recovery.services import recovery_actions
from disc_recovery.services.change_notifier import ChangeNotifier, RecoveryChanged
from disc_recovery.services.notifications import notify

log = structlog.get_logger(__name__)

MAX_MESSAGE_LENGTH = 1000


def message_view(message: RecoveryMessage, viewer: User, public_ids: dict) -> dict:
    return {
        "id": str(message.id),
        "content": message.content,
        "sender_id": public_ids.get(message.sender_id),
        "sent_by_you": message.sender_id == viewer.id,
        "created_at": message.created_at,
    }


def list_messages(session: Session, user: User, recovery_event_id: uuid.UUID) -> list[dict]:
    event = recovery_actions.load_recovery(session, recovery_event_id)
    recovery_actions.resolve_role(event, user)

    messages = session.exec(
        select(RecoveryMessage)
        .where(RecoveryMessage.recovery_event_id == event.id)
        .order_by(RecoveryMessage.created_at)
    ).all()

    public_ids = {
        person.id: person.public_id
        for person in (session.get(User, event.owner_id), session.get(User, event.finder_id))
        if person
    }

    return [message_view(message, user, public_ids) for message in messages]


def send_message(
    session: Session,
    notifier: ChangeNotifier,
    user: User,
    recovery_event_id: uuid.UUID,
    content: str,
) -> RecoveryMessage:
    event = recovery_actions.load_recovery(session, recovery_event_id)
    role = recovery_actions.resolve_role(event, user)

    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Message cannot be empty")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationFailed(f"Messages are limited to {MAX_MESSAGE_LENGTH} characters")

    if event.status == RecoveryStatus.CANCELLED.value:
        raise InvalidTransition("This recovery was cancelled")

    message = RecoveryMessage(recovery_event_id=event.id, sender_id=user.id, content=content)
    session.add(message)

    notify(
        session,
        user_id=recovery_actions.other_participant_id(event, role),
        type="new_message",
        title=f"Message from {user.name}",
        message=content[:140],
        recovery_event_id=event.id,
    )

    session.commit()
    session.refresh(message)

    log.info("recovery_message_sent", recovery_event_id=str(event.id), user_id=user.id)
    notifier.publish(RecoveryChanged(event.id))

    return message
