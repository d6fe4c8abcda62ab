from typing import Optional
from sqlmodel import Session, select

from disc_recovery.core.state_machine import (
    STATUS_LABELS,
    RecoveryAction,
    RecoveryStatus,
    permitted_actions,
)
from disc_recovery.models.disc import Disc
from disc_recovery.models.drop_off import DropOff
from disc_recovery.models.meetup_proposal import MeetupProposal
from disc_recovery.models.recovery_event import RecoveryEvent
from disc_recovery.models.user import User
from disc_recovery.services import reward_settlement
from disc_recovery.services.recovery_actions import proposer_role, resolve_role
from disc_recovery.utils import s3_service

REWARD_ACTIONS = (RecoveryAction.MARK_REWARD_PAID, RecoveryAction.SEND_REWARD_PAYMENT)


def participant_view(person: Optional[User], viewer: User) -> dict:
    if not person:
        return {"id": None, "display_name": "Unknown", "avatar_url": None, "is_you": False}

    is_you = person.id == viewer.id

    # No emails: participants only see each other's display name and avatar
    return {
        "id": person.public_id,
        "display_name": "You" if is_you else person.name,
        "avatar_url": person.image,
        "is_you": is_you,
    }


def disc_view(disc: Optional[Disc]) -> Optional[dict]:
    if not disc:
        return None

    data = disc.model_dump(exclude={"owner_id", "created_at"})
    data["photo_url"] = s3_service.generate_signed_url(disc.photo_url)
    return data


def proposal_view(proposal: MeetupProposal, viewer: User, public_ids: dict) -> dict:
    data = proposal.model_dump()
    data["proposed_by"] = public_ids.get(proposal.proposed_by)
    data["proposed_by_you"] = proposal.proposed_by == viewer.id
    return data


def drop_off_view(drop_off: Optional[DropOff]) -> Optional[dict]:
    if not drop_off:
        return None

    data = drop_off.model_dump(exclude={"recovery_event_id"})
    data["photo_url"] = s3_service.generate_signed_url(drop_off.photo_url)
    return data


def build_projection(session: Session, event: RecoveryEvent, viewer: User) -> dict:
    """
    Role-specific view of one recovery for the viewer (owner or finder).

    permitted_actions is what the state machine allows for this viewer right
    now, narrowed by reward eligibility.
    """
    role = resolve_role(event, viewer)

    disc = session.get(Disc, event.disc_id)
    owner = session.get(User, event.owner_id)
    finder = session.get(User, event.finder_id)

    proposals = session.exec(
        select(MeetupProposal)
        .where(MeetupProposal.recovery_event_id == event.id)
        .order_by(MeetupProposal.created_at.desc())
    ).all()

    pending = next((p for p in proposals if p.status == "pending"), None)
    accepted = next((p for p in proposals if p.status == "accepted"), None)

    public_ids = {person.id: person.public_id for person in (owner, finder) if person}

    drop_off = session.exec(
        select(DropOff).where(DropOff.recovery_event_id == event.id)
    ).first()

    actions = []
    for action in permitted_actions(event.status, role, proposer_role(event, pending)):
        if action in REWARD_ACTIONS and not reward_settlement.reward_action_available(action, event, disc, finder):
            continue
        actions.append(action.value)

    status = RecoveryStatus(event.status)

    return {
        "id": str(event.id),
        "status": status.value,
        "status_label": STATUS_LABELS[status],
        "user_role": role.value,
        "finder_message": event.finder_message,
        "found_at": event.found_at,
        "recovered_at": event.recovered_at,
        "surrendered_at": event.surrendered_at,
        "abandoned_at": event.abandoned_at,
        "reward_paid_at": event.reward_paid_at,
        "created_at": event.created_at,
        "updated_at": event.updated_at,
        "disc": disc_view(disc),
        "owner": participant_view(owner, viewer),
        "finder": participant_view(finder, viewer),
        "meetup_proposals": [proposal_view(p, viewer, public_ids) for p in proposals],
        "pending_proposal": proposal_view(pending, viewer, public_ids) if pending else None,
        "accepted_proposal": proposal_view(accepted, viewer, public_ids) if accepted else None,
        "drop_off": drop_off_view(drop_off),
        "reward": reward_settlement.reward_summary(event, disc, finder),
        "permitted_actions": actions,
    }


def build_summary(session: Session, event: RecoveryEvent, viewer: User) -> dict:
    """Compact row for the active-recoveries list."""
    disc = session.get(Disc, event.disc_id)
    status = RecoveryStatus(event.status)

    return {
        "id": str(event.id),
        "status": status.value,
        "status_label": STATUS_LABELS[status],
        "user_role": resolve_role(event, viewer).value,
        "disc": disc_view(disc),
        "updated_at": event.updated_at,
    }
