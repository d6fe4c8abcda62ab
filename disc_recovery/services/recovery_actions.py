"""
Action handlers for the recovery lifecycle.

Each handler loads the recovery, resolves the caller's role, asks the state
machine for a Decision and applies it with a conditional write: the UPDATE
only matches while the row still has the status and version the decision was
made against. Side records are written in the same transaction and a change
notification goes out after commit.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlmodel import Session, select

from disc_recovery.core.errors import Forbidden, InvalidRole, InvalidTransition, NotFound, RecoveryError
from disc_recovery.core.state_machine import (
    ACTIVE_STATUSES,
    ActorRole,
    Decision,
    RecoveryAction,
    RecoveryStatus,
    SideEffect,
    decide,
)
from disc_recovery.models.disc import Disc
from disc_recovery.models.drop_off import DropOff
from disc_recovery.models.meetup_proposal import MeetupProposal
from disc_recovery.models.recovery_event import RecoveryEvent
from disc_recovery.models.user import User
from disc_recovery.services.change_notifier import ChangeNotifier, RecoveryChanged
from disc_recovery.services.notifications import notify, notify_action, notify_meetup_proposed

log = structlog.get_logger(__name__)

CONFLICT_MESSAGE = "This recovery was updated by someone else. Refresh to see the latest."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_recovery(session: Session, recovery_event_id: uuid.UUID) -> RecoveryEvent:
    event = session.get(RecoveryEvent, recovery_event_id)
    if not event:
        raise NotFound("Recovery not found")
    return event


def resolve_role(event: RecoveryEvent, user: User) -> ActorRole:
    if user.id == event.owner_id:
        return ActorRole.OWNER
    if user.id == event.finder_id:
        return ActorRole.FINDER
    raise Forbidden()


def get_pending_proposal(session: Session, recovery_event_id: uuid.UUID) -> Optional[MeetupProposal]:
    return session.exec(
        select(MeetupProposal)
        .where(MeetupProposal.recovery_event_id == recovery_event_id)
        .where(MeetupProposal.status == "pending")
        .order_by(MeetupProposal.created_at.desc())
    ).first()


def proposer_role(event: RecoveryEvent, proposal: Optional[MeetupProposal]) -> Optional[ActorRole]:
    if not proposal:
        return None
    return ActorRole.OWNER if proposal.proposed_by == event.owner_id else ActorRole.FINDER


def other_participant_id(event: RecoveryEvent, role: ActorRole) -> int:
    return event.finder_id if role == ActorRole.OWNER else event.owner_id


def evaluate(session: Session, event: RecoveryEvent, role: ActorRole, action: RecoveryAction) -> Decision:
    pending = get_pending_proposal(session, event.id)

    try:
        return decide(event.status, role, action, proposer_role(event, pending))
    except RecoveryError as e:
        log.info(
            "transition_rejected",
            recovery_event_id=str(event.id),
            action=action.value,
            role=role.value,
            status=event.status,
            code=e.code,
        )
        raise


def write_transition(
    session: Session,
    event: RecoveryEvent,
    decision: Decision,
    now: datetime,
    extra_values: Optional[dict] = None,
    extra_where=(),
) -> bool:
    """Compare-and-swap on (status, version). False when another writer got there first."""
    values = {
        "status": decision.next_status.value,
        "version": RecoveryEvent.version + 1,
        "updated_at": now,
    }
    if decision.timestamp_field:
        values[decision.timestamp_field] = now
    if extra_values:
        values.update(extra_values)

    stmt = (
        update(RecoveryEvent)
        .where(RecoveryEvent.id == event.id)
        .where(RecoveryEvent.status == decision.previous_status.value)
        .where(RecoveryEvent.version == event.version)
        .values(**values)
    )
    if extra_where:
        stmt = stmt.where(*extra_where)
    result = session.connection().execute(stmt)

    return result.rowcount == 1


def reload(session: Session, event: RecoveryEvent):
    session.rollback()
    session.refresh(event)


def raise_conflict(session: Session, event: RecoveryEvent, role: ActorRole, action: RecoveryAction):
    """The write lost a race. Re-evaluate against what is stored now."""
    reload(session, event)

    log.info(
        "transition_conflict",
        recovery_event_id=str(event.id),
        action=action.value,
        role=role.value,
        status=event.status,
    )

    # Raises with a specific message if the action is no longer legal
    evaluate(session, event, role, action)
    raise InvalidTransition(CONFLICT_MESSAGE)


def transition(session: Session, event: RecoveryEvent, role: ActorRole, action: RecoveryAction, now: datetime) -> Decision:
    decision = evaluate(session, event, role, action)

    if not write_transition(session, event, decision, now):
        raise_conflict(session, event, role, action)

    return decision


def finish(session: Session, notifier: ChangeNotifier, event: RecoveryEvent, decision: Decision, user: User):
    session.commit()
    session.refresh(event)

    log.info(
        "recovery_transition",
        recovery_event_id=str(event.id),
        action=decision.action.value,
        user_id=user.id,
        previous_status=decision.previous_status.value,
        status=event.status,
    )

    notifier.publish(RecoveryChanged(event.id))


def decline_pending_proposals(session: Session, recovery_event_id: uuid.UUID, now: datetime, keep: Optional[uuid.UUID] = None):
    stmt = (
        update(MeetupProposal)
        .where(MeetupProposal.recovery_event_id == recovery_event_id)
        .where(MeetupProposal.status == "pending")
        .values(status="declined", responded_at=now)
    )
    if keep is not None:
        stmt = stmt.where(MeetupProposal.id != keep)

    session.connection().execute(stmt)


def _disc_name(session: Session, event: RecoveryEvent) -> str:
    disc = session.get(Disc, event.disc_id)
    return disc.name if disc else "the disc"


def propose_meetup(
    session: Session,
    notifier: ChangeNotifier,
    user: User,
    recovery_event_id: uuid.UUID,
    location_name: str,
    proposed_datetime: datetime,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    message: Optional[str] = None,
) -> RecoveryEvent:
    """Propose a meetup, or counter the other participant's pending proposal."""
    event = load_recovery(session, recovery_event_id)
    role = resolve_role(event, user)

    now = utcnow()
    decision = transition(session, event, role, RecoveryAction.PROPOSE_MEETUP, now)

    # Countering: the pending proposal is replaced, never kept alongside
    if SideEffect.DECLINE_PENDING_PROPOSALS in decision.side_effects:
        decline_pending_proposals(session, event.id, now)

    proposal = MeetupProposal(
        recovery_event_id=event.id,
        proposed_by=user.id,
        location_name=location_name,
        latitude=latitude,
        longitude=longitude,
        proposed_datetime=proposed_datetime,
        message=message,
    )
    session.add(proposal)

    notify_meetup_proposed(
        session,
        recipient_id=other_participant_id(event, role),
        actor_name=user.name,
        disc_name=_disc_name(session, event),
        location_name=location_name,
        recovery_event_id=event.id,
        counter=decision.previous_status == RecoveryStatus.MEETUP_PROPOSED,
    )

    finish(session, notifier, event, decision, user)
    return event


def load_open_proposal(session: Session, user: User, proposal_id: uuid.UUID, action: RecoveryAction):
    """The proposal the caller is answering, with its recovery and the caller's role."""
    proposal = session.get(MeetupProposal, proposal_id)
    if not proposal:
        raise NotFound("Meetup proposal not found")

    event = load_recovery(session, proposal.recovery_event_id)
    role = resolve_role(event, user)

    if proposal.proposed_by == user.id:
        log.info("transition_rejected", recovery_event_id=str(event.id), action=action.value, role=role.value, code=InvalidRole.code)
        raise InvalidRole("You cannot respond to your own meetup proposal")

    if proposal.status != "pending":
        log.info("transition_rejected", recovery_event_id=str(event.id), action=action.value, role=role.value, code=InvalidTransition.code)
        raise InvalidTransition("This meetup has already been responded to")

    return proposal, event, role


def accept_meetup(session: Session, notifier: ChangeNotifier, user: User, proposal_id: uuid.UUID) -> RecoveryEvent:
    proposal, event, role = load_open_proposal(session, user, proposal_id, RecoveryAction.ACCEPT_MEETUP)

    now = utcnow()
    decision = transition(session, event, role, RecoveryAction.ACCEPT_MEETUP, now)

    session.connection().execute(
        update(MeetupProposal)
        .where(MeetupProposal.id == proposal.id)
        .values(status="accepted", responded_at=now)
    )
    decline_pending_proposals(session, event.id, now, keep=proposal.id)

    notify_action(
        session,
        RecoveryAction.ACCEPT_MEETUP,
        recipient_id=proposal.proposed_by,
        actor_name=user.name,
        disc_name=_disc_name(session, event),
        recovery_event_id=event.id,
    )

    finish(session, notifier, event, decision, user)
    return event


def decline_meetup(
    session: Session,
    notifier: ChangeNotifier,
    user: User,
    proposal_id: uuid.UUID,
    reason: Optional[str] = None,
) -> RecoveryEvent:
    """Turn down the pending proposal; the recovery goes back to `found`."""
    proposal, event, role = load_open_proposal(session, user, proposal_id, RecoveryAction.DECLINE_MEETUP)

    now = utcnow()
    decision = transition(session, event, role, RecoveryAction.DECLINE_MEETUP, now)
    decline_pending_proposals(session, event.id, now)

    disc_name = _disc_name(session, event)
    message = f"{user.name} can't meet at {proposal.location_name} to return {disc_name}."
    if reason:
        message = f"{message} Reason: {reason}"

    notify(
        session,
        user_id=proposal.proposed_by,
        type="meetup_declined",
        title="Meetup declined",
        message=message,
        recovery_event_id=event.id,
    )

    finish(session, notifier, event, decision, user)
    return event


def create_drop_off(
    session: Session,
    notifier: ChangeNotifier,
    user: User,
    recovery_event_id: uuid.UUID,
    photo_url: str,
    latitude: float,
    longitude: float,
    location_notes: Optional[str] = None,
) -> RecoveryEvent:
    event = load_recovery(session, recovery_event_id)
    role = resolve_role(event, user)

    now = utcnow()
    decision = transition(session, event, role, RecoveryAction.DROP_OFF, now)

    session.add(DropOff(
        recovery_event_id=event.id,
        photo_url=photo_url,
        latitude=latitude,
        longitude=longitude,
        location_notes=location_notes,
        dropped_off_at=now,
    ))

    notify_action(
        session,
        RecoveryAction.DROP_OFF,
        recipient_id=event.owner_id,
        actor_name=user.name,
        disc_name=_disc_name(session, event),
        recovery_event_id=event.id,
    )

    finish(session, notifier, event, decision, user)
    return event


def check_action(session: Session, user: User, recovery_event_id: uuid.UUID, action: RecoveryAction) -> Decision:
    """Validate without writing; used before slow work such as photo uploads."""
    event = load_recovery(session, recovery_event_id)
    role = resolve_role(event, user)
    return evaluate(session, event, role, action)


def apply_simple_action(
    session: Session,
    notifier: ChangeNotifier,
    user: User,
    recovery_event_id: uuid.UUID,
    action: RecoveryAction,
) -> RecoveryEvent:
    """Status-only transitions: complete, surrender, retrieve, relinquish, abandon."""
    event = load_recovery(session, recovery_event_id)
    role = resolve_role(event, user)

    now = utcnow()
    decision = transition(session, event, role, action, now)

    if SideEffect.DECLINE_PENDING_PROPOSALS in decision.side_effects:
        decline_pending_proposals(session, event.id, now)

    notify_action(
        session,
        action,
        recipient_id=other_participant_id(event, role),
        actor_name=user.name,
        disc_name=_disc_name(session, event),
        recovery_event_id=event.id,
    )

    finish(session, notifier, event, decision, user)
    return event


def complete_recovery(session, notifier, user, recovery_event_id):
    return apply_simple_action(session, notifier, user, recovery_event_id, RecoveryAction.COMPLETE_RECOVERY)


def surrender_disc(session, notifier, user, recovery_event_id):
    return apply_simple_action(session, notifier, user, recovery_event_id, RecoveryAction.SURRENDER_DISC)


def mark_disc_retrieved(session, notifier, user, recovery_event_id):
    return apply_simple_action(session, notifier, user, recovery_event_id, RecoveryAction.MARK_DISC_RETRIEVED)


def relinquish_disc(session, notifier, user, recovery_event_id):
    return apply_simple_action(session, notifier, user, recovery_event_id, RecoveryAction.RELINQUISH_DISC)


def abandon_disc(session, notifier, user, recovery_event_id):
    return apply_simple_action(session, notifier, user, recovery_event_id, RecoveryAction.ABANDON_DISC)


def cancel_recovery(
    session: Session,
    notifier: ChangeNotifier,
    admin: User,
    recovery_event_id: uuid.UUID,
    reason: Optional[str] = None,
) -> RecoveryEvent:
    """Administrative exit; the only way into `cancelled`."""
    event = load_recovery(session, recovery_event_id)

    now = utcnow()
    decision = transition(session, event, ActorRole.ADMIN, RecoveryAction.CANCEL_RECOVERY, now)
    decline_pending_proposals(session, event.id, now)

    disc_name = _disc_name(session, event)
    message = f"The recovery for {disc_name} was cancelled."
    if reason:
        message = f"{message} Reason: {reason}"

    for recipient_id in (event.owner_id, event.finder_id):
        notify(
            session,
            user_id=recipient_id,
            type="recovery_cancelled",
            title="Recovery cancelled",
            message=message,
            recovery_event_id=event.id,
        )

    finish(session, notifier, event, decision, admin)
    return event


def list_active_recoveries(session: Session, user: User) -> list[RecoveryEvent]:
    return session.exec(
        select(RecoveryEvent)
        .where((RecoveryEvent.owner_id == user.id) | (RecoveryEvent.finder_id == user.id))
        .where(RecoveryEvent.status.in_([status.value for status in ACTIVE_STATUSES]))
        .order_by(RecoveryEvent.updated_at.desc())
    ).all()
