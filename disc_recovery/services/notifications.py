import uuid
from typing import Optional
from sqlmodel import Session

from disc_recovery.core.state_machine import RecoveryAction
from disc_recovery.models.notification import Notification


# action -> (type, title, message template); {actor} and {disc} are filled in
ACTION_NOTIFICATIONS = {
    RecoveryAction.ACCEPT_MEETUP: (
        "meetup_accepted",
        "Meetup confirmed",
        "{actor} accepted your meetup proposal for {disc}.",
    ),
    RecoveryAction.COMPLETE_RECOVERY: (
        "disc_recovered",
        "Disc recovered",
        "{actor} marked {disc} as recovered. Thanks for returning it!",
    ),
    RecoveryAction.MARK_DISC_RETRIEVED: (
        "disc_recovered",
        "Disc picked up",
        "{actor} picked up {disc} from the drop-off spot.",
    ),
    RecoveryAction.SURRENDER_DISC: (
        "disc_surrendered",
        "Disc is yours",
        "{actor} decided to let you keep {disc}.",
    ),
    RecoveryAction.RELINQUISH_DISC: (
        "disc_surrendered",
        "Disc is yours",
        "{actor} gave {disc} to you. It's yours to keep!",
    ),
    RecoveryAction.ABANDON_DISC: (
        "disc_abandoned",
        "Owner gave up on the disc",
        "{actor} will not pick up {disc}. Yours to claim!",
    ),
    RecoveryAction.DROP_OFF: (
        "disc_dropped_off",
        "Disc dropped off",
        "{actor} left {disc} for you to pick up.",
    ),
    RecoveryAction.CANCEL_RECOVERY: (
        "recovery_cancelled",
        "Recovery cancelled",
        "The recovery for {disc} was cancelled.",
    ),
    RecoveryAction.MARK_REWARD_PAID: (
        "reward_paid",
        "Reward received",
        "{actor} confirmed receiving the reward for {disc}.",
    ),
}


def notify(
    session: Session,
    user_id: int,
    type: str,
    title: str,
    message: str,
    recovery_event_id: Optional[uuid.UUID] = None,
):
    """Queue a notification on the session; the caller commits."""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        recovery_event_id=recovery_event_id,
    )
    session.add(notification)
    return notification


def notify_action(session: Session, action: RecoveryAction, recipient_id: int, actor_name: str, disc_name: str, recovery_event_id: uuid.UUID):
    template = ACTION_NOTIFICATIONS.get(action)
    if not template:
        return None

    type, title, message = template
    return notify(
        session,
        user_id=recipient_id,
        type=type,
        title=title,
        message=message.format(actor=actor_name, disc=disc_name),
        recovery_event_id=recovery_event_id,
    )


def notify_meetup_proposed(session: Session, recipient_id: int, actor_name: str, disc_name: str, location_name: str, recovery_event_id: uuid.UUID, counter: bool):
    if counter:
        return notify(
            session,
            user_id=recipient_id,
            type="meetup_countered",
            title="New meetup time suggested",
            message=f"{actor_name} suggested meeting at {location_name} instead to return {disc_name}.",
            recovery_event_id=recovery_event_id,
        )

    return notify(
        session,
        user_id=recipient_id,
        type="meetup_proposed",
        title="Meetup proposed",
        message=f"{actor_name} proposed meeting at {location_name} to return {disc_name}.",
        recovery_event_id=recovery_event_id,
    )
