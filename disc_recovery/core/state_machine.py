"""
Recovery lifecycle rules.

Pure decision logic: given the current status, the caller's role and the
requested action, either return the Decision to apply or raise InvalidRole /
InvalidTransition. Nothing here touches the database, so the write path
(services.recovery_actions) and the read path (services.projection) share the
same answers.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from disc_recovery.core.errors import InvalidRole, InvalidTransition


class RecoveryStatus(str, Enum):
    FOUND = "found"
    MEETUP_PROPOSED = "meetup_proposed"
    MEETUP_CONFIRMED = "meetup_confirmed"
    DROPPED_OFF = "dropped_off"
    RECOVERED = "recovered"
    SURRENDERED = "surrendered"
    ABANDONED = "abandoned"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    OWNER = "owner"
    FINDER = "finder"
    ADMIN = "admin"


class RecoveryAction(str, Enum):
    PROPOSE_MEETUP = "propose-meetup"
    ACCEPT_MEETUP = "accept-meetup"
    DECLINE_MEETUP = "decline-meetup"
    COMPLETE_RECOVERY = "complete-recovery"
    SURRENDER_DISC = "surrender-disc"
    DROP_OFF = "drop-off"
    MARK_DISC_RETRIEVED = "mark-disc-retrieved"
    RELINQUISH_DISC = "relinquish-disc"
    ABANDON_DISC = "abandon-disc"
    CANCEL_RECOVERY = "cancel-recovery"
    MARK_REWARD_PAID = "mark-reward-paid"
    SEND_REWARD_PAYMENT = "send-reward-payment"


class SideEffect(str, Enum):
    CREATE_PROPOSAL = "create_proposal"
    ACCEPT_PROPOSAL = "accept_proposal"
    DECLINE_PENDING_PROPOSALS = "decline_pending_proposals"
    CREATE_DROP_OFF = "create_drop_off"
    RECORD_REWARD_PAYMENT = "record_reward_payment"


TERMINAL_STATUSES = frozenset({
    RecoveryStatus.RECOVERED,
    RecoveryStatus.SURRENDERED,
    RecoveryStatus.ABANDONED,
    RecoveryStatus.CANCELLED,
})

ACTIVE_STATUSES = frozenset(RecoveryStatus) - TERMINAL_STATUSES

STATUS_LABELS = {
    RecoveryStatus.FOUND: "Disc Found",
    RecoveryStatus.MEETUP_PROPOSED: "Meetup Proposed",
    RecoveryStatus.MEETUP_CONFIRMED: "Meetup Confirmed",
    RecoveryStatus.DROPPED_OFF: "Dropped Off",
    RecoveryStatus.RECOVERED: "Recovered",
    RecoveryStatus.CANCELLED: "Cancelled",
    RecoveryStatus.SURRENDERED: "Surrendered",
    RecoveryStatus.ABANDONED: "Abandoned",
}

S = RecoveryStatus
A = RecoveryAction

TRANSITIONS: dict[tuple[RecoveryStatus, RecoveryAction], RecoveryStatus] = {
    (S.FOUND, A.PROPOSE_MEETUP): S.MEETUP_PROPOSED,
    (S.FOUND, A.DROP_OFF): S.DROPPED_OFF,
    (S.FOUND, A.SURRENDER_DISC): S.SURRENDERED,
    # counter-proposal replaces the pending one
    (S.MEETUP_PROPOSED, A.PROPOSE_MEETUP): S.MEETUP_PROPOSED,
    (S.MEETUP_PROPOSED, A.ACCEPT_MEETUP): S.MEETUP_CONFIRMED,
    # declining reopens the recovery for a new proposal or a drop-off
    (S.MEETUP_PROPOSED, A.DECLINE_MEETUP): S.FOUND,
    (S.MEETUP_PROPOSED, A.SURRENDER_DISC): S.SURRENDERED,
    (S.MEETUP_CONFIRMED, A.COMPLETE_RECOVERY): S.RECOVERED,
    (S.MEETUP_CONFIRMED, A.SURRENDER_DISC): S.SURRENDERED,
    (S.DROPPED_OFF, A.MARK_DISC_RETRIEVED): S.RECOVERED,
    (S.DROPPED_OFF, A.COMPLETE_RECOVERY): S.RECOVERED,
    (S.DROPPED_OFF, A.RELINQUISH_DISC): S.SURRENDERED,
    (S.DROPPED_OFF, A.ABANDON_DISC): S.ABANDONED,
    # reward settlement rides on top of a finished recovery
    (S.RECOVERED, A.MARK_REWARD_PAID): S.RECOVERED,
    (S.RECOVERED, A.SEND_REWARD_PAYMENT): S.RECOVERED,
}
for _status in ACTIVE_STATUSES:
    TRANSITIONS[(_status, A.CANCEL_RECOVERY)] = S.CANCELLED

OWNER_ONLY = frozenset({ActorRole.OWNER})
FINDER_ONLY = frozenset({ActorRole.FINDER})
PARTICIPANTS = frozenset({ActorRole.OWNER, ActorRole.FINDER})

ALLOWED_ROLES: dict[RecoveryAction, frozenset] = {
    A.PROPOSE_MEETUP: PARTICIPANTS,
    A.ACCEPT_MEETUP: PARTICIPANTS,
    A.DECLINE_MEETUP: PARTICIPANTS,
    A.COMPLETE_RECOVERY: OWNER_ONLY,
    A.SURRENDER_DISC: OWNER_ONLY,
    A.DROP_OFF: FINDER_ONLY,
    A.MARK_DISC_RETRIEVED: OWNER_ONLY,
    A.RELINQUISH_DISC: OWNER_ONLY,
    A.ABANDON_DISC: OWNER_ONLY,
    A.CANCEL_RECOVERY: frozenset({ActorRole.ADMIN}),
    A.MARK_REWARD_PAID: FINDER_ONLY,
    A.SEND_REWARD_PAYMENT: OWNER_ONLY,
}

# Actions that answer the pending proposal; the proposer may not take them.
RESPONDS_TO_PROPOSAL = frozenset({A.PROPOSE_MEETUP, A.ACCEPT_MEETUP, A.DECLINE_MEETUP})

STATUS_TIMESTAMPS = {
    S.RECOVERED: "recovered_at",
    S.SURRENDERED: "surrendered_at",
    S.ABANDONED: "abandoned_at",
    S.CANCELLED: "cancelled_at",
}

_TERMINAL_EXIT_EFFECTS = (SideEffect.DECLINE_PENDING_PROPOSALS,)

SIDE_EFFECTS: dict[RecoveryAction, tuple[SideEffect, ...]] = {
    A.PROPOSE_MEETUP: (SideEffect.DECLINE_PENDING_PROPOSALS, SideEffect.CREATE_PROPOSAL),
    A.ACCEPT_MEETUP: (SideEffect.ACCEPT_PROPOSAL, SideEffect.DECLINE_PENDING_PROPOSALS),
    A.DECLINE_MEETUP: (SideEffect.DECLINE_PENDING_PROPOSALS,),
    A.COMPLETE_RECOVERY: _TERMINAL_EXIT_EFFECTS,
    A.SURRENDER_DISC: _TERMINAL_EXIT_EFFECTS,
    A.CANCEL_RECOVERY: _TERMINAL_EXIT_EFFECTS,
    A.DROP_OFF: (SideEffect.CREATE_DROP_OFF,),
    A.MARK_DISC_RETRIEVED: (),
    A.RELINQUISH_DISC: (),
    A.ABANDON_DISC: (),
    A.MARK_REWARD_PAID: (SideEffect.RECORD_REWARD_PAYMENT,),
    A.SEND_REWARD_PAYMENT: (SideEffect.RECORD_REWARD_PAYMENT,),
}


@dataclass(frozen=True)
class Decision:
    action: RecoveryAction
    previous_status: RecoveryStatus
    next_status: RecoveryStatus
    timestamp_field: Optional[str]
    side_effects: tuple[SideEffect, ...]

    @property
    def changes_status(self) -> bool:
        return self.previous_status != self.next_status


def is_terminal(status) -> bool:
    return RecoveryStatus(status) in TERMINAL_STATUSES


def _transition_message(status: RecoveryStatus, action: RecoveryAction) -> str:
    if status in TERMINAL_STATUSES:
        return f"This recovery is already {STATUS_LABELS[status].lower()}"

    if action in (A.ACCEPT_MEETUP, A.DECLINE_MEETUP):
        return "This meetup has already been responded to"

    if action == A.PROPOSE_MEETUP and status == S.MEETUP_CONFIRMED:
        return "A meetup has already been confirmed"

    if action in (A.MARK_REWARD_PAID, A.SEND_REWARD_PAYMENT):
        return "Rewards can only be paid once the disc is recovered"

    return f"Cannot {action.value.replace('-', ' ')} while the disc is {STATUS_LABELS[status].lower()}"


def decide(status, role, action, pending_proposer=None) -> Decision:
    """
    Validate (status, role, action) and return the transition to apply.

    pending_proposer is the role that authored the pending meetup proposal,
    if there is one.
    """
    status = RecoveryStatus(status)
    role = ActorRole(role)
    action = RecoveryAction(action)

    if role not in ALLOWED_ROLES[action]:
        raise InvalidRole(f"Only the {_roles_text(ALLOWED_ROLES[action])} can {action.value.replace('-', ' ')}")

    if (
        action in RESPONDS_TO_PROPOSAL
        and status == S.MEETUP_PROPOSED
        and pending_proposer is not None
        and ActorRole(pending_proposer) == role
    ):
        raise InvalidRole("You cannot respond to your own meetup proposal")

    next_status = TRANSITIONS.get((status, action))
    if next_status is None:
        raise InvalidTransition(_transition_message(status, action))

    effects = SIDE_EFFECTS[action]
    if action == A.PROPOSE_MEETUP and status == S.FOUND:
        effects = (SideEffect.CREATE_PROPOSAL,)

    return Decision(
        action=action,
        previous_status=status,
        next_status=next_status,
        timestamp_field=STATUS_TIMESTAMPS.get(next_status) if next_status != status else None,
        side_effects=effects,
    )


def permitted_actions(status, role, pending_proposer=None) -> list[RecoveryAction]:
    allowed = []

    for action in RecoveryAction:
        try:
            decide(status, role, action, pending_proposer)
        except (InvalidRole, InvalidTransition):
            continue
        allowed.append(action)

    return allowed


def _roles_text(roles) -> str:
    if roles == PARTICIPANTS:
        return "owner or finder"
    return " or ".join(sorted(role.value for role in roles))
