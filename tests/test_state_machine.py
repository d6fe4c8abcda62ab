import itertools

import pytest

from disc_recovery.core.errors import InvalidRole, InvalidTransition
from disc_recovery.core.state_machine import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
    ActorRole,
    RecoveryAction,
    RecoveryStatus,
    SideEffect,
    decide,
    is_terminal,
    permitted_actions,
)

S = RecoveryStatus
A = RecoveryAction
OWNER = ActorRole.OWNER
FINDER = ActorRole.FINDER
ADMIN = ActorRole.ADMIN

# (status, action) -> (next status, role allowed to take it)
EXPECTED = {
    (S.FOUND, A.PROPOSE_MEETUP): (S.MEETUP_PROPOSED, FINDER),
    (S.FOUND, A.DROP_OFF): (S.DROPPED_OFF, FINDER),
    (S.FOUND, A.SURRENDER_DISC): (S.SURRENDERED, OWNER),
    (S.MEETUP_PROPOSED, A.PROPOSE_MEETUP): (S.MEETUP_PROPOSED, OWNER),
    (S.MEETUP_PROPOSED, A.ACCEPT_MEETUP): (S.MEETUP_CONFIRMED, OWNER),
    (S.MEETUP_PROPOSED, A.DECLINE_MEETUP): (S.FOUND, OWNER),
    (S.MEETUP_PROPOSED, A.SURRENDER_DISC): (S.SURRENDERED, OWNER),
    (S.MEETUP_CONFIRMED, A.COMPLETE_RECOVERY): (S.RECOVERED, OWNER),
    (S.MEETUP_CONFIRMED, A.SURRENDER_DISC): (S.SURRENDERED, OWNER),
    (S.DROPPED_OFF, A.MARK_DISC_RETRIEVED): (S.RECOVERED, OWNER),
    (S.DROPPED_OFF, A.COMPLETE_RECOVERY): (S.RECOVERED, OWNER),
    (S.DROPPED_OFF, A.RELINQUISH_DISC): (S.SURRENDERED, OWNER),
    (S.DROPPED_OFF, A.ABANDON_DISC): (S.ABANDONED, OWNER),
    (S.RECOVERED, A.MARK_REWARD_PAID): (S.RECOVERED, FINDER),
    (S.RECOVERED, A.SEND_REWARD_PAYMENT): (S.RECOVERED, OWNER),
}
for _status in ACTIVE_STATUSES:
    EXPECTED[(_status, A.CANCEL_RECOVERY)] = (S.CANCELLED, ADMIN)


def test_transition_table_matches_expected():
    assert TRANSITIONS == {key: value[0] for key, value in EXPECTED.items()}


@pytest.mark.parametrize("status,action", list(itertools.product(RecoveryStatus, RecoveryAction)))
def test_every_status_action_pair(status, action):
    if (status, action) in EXPECTED:
        next_status, role = EXPECTED[(status, action)]
        decision = decide(status, role, action)
        assert decision.previous_status == status
        assert decision.next_status == next_status
        assert decision.action == action
    else:
        # Any role that may take the action still cannot take it from here
        for role in ActorRole:
            try:
                decide(status, role, action)
            except InvalidRole:
                continue
            except InvalidTransition:
                break
            pytest.fail(f"{action.value} from {status.value} should be rejected")


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES - {S.RECOVERED}))
def test_terminal_statuses_accept_nothing(status):
    for role in ActorRole:
        assert permitted_actions(status, role) == []


def test_recovered_only_allows_reward_actions():
    assert permitted_actions(S.RECOVERED, OWNER) == [A.SEND_REWARD_PAYMENT]
    assert permitted_actions(S.RECOVERED, FINDER) == [A.MARK_REWARD_PAID]


def test_terminal_rejection_names_the_status():
    with pytest.raises(InvalidTransition) as exc:
        decide(S.SURRENDERED, OWNER, A.COMPLETE_RECOVERY)

    assert exc.value.message == "This recovery is already surrendered"


def test_role_is_checked_before_status():
    # Finder surrendering a terminal recovery is a role problem first
    with pytest.raises(InvalidRole):
        decide(S.ABANDONED, FINDER, A.SURRENDER_DISC)


@pytest.mark.parametrize("action", [A.COMPLETE_RECOVERY, A.SURRENDER_DISC, A.MARK_DISC_RETRIEVED, A.RELINQUISH_DISC, A.ABANDON_DISC, A.SEND_REWARD_PAYMENT])
def test_finder_cannot_take_owner_actions(action):
    with pytest.raises(InvalidRole):
        decide(S.DROPPED_OFF, FINDER, action)


@pytest.mark.parametrize("action", [A.DROP_OFF, A.MARK_REWARD_PAID])
def test_owner_cannot_take_finder_actions(action):
    with pytest.raises(InvalidRole):
        decide(S.FOUND, OWNER, action)


@pytest.mark.parametrize("role", [OWNER, FINDER])
def test_participants_cannot_cancel(role):
    with pytest.raises(InvalidRole):
        decide(S.FOUND, role, A.CANCEL_RECOVERY)


def test_owner_may_propose_from_found():
    decision = decide(S.FOUND, OWNER, A.PROPOSE_MEETUP)
    assert decision.next_status == S.MEETUP_PROPOSED
    assert decision.side_effects == (SideEffect.CREATE_PROPOSAL,)


def test_proposer_cannot_accept_own_proposal():
    with pytest.raises(InvalidRole) as exc:
        decide(S.MEETUP_PROPOSED, FINDER, A.ACCEPT_MEETUP, pending_proposer=FINDER)

    assert exc.value.message == "You cannot respond to your own meetup proposal"


def test_proposer_cannot_counter_own_proposal():
    with pytest.raises(InvalidRole):
        decide(S.MEETUP_PROPOSED, OWNER, A.PROPOSE_MEETUP, pending_proposer=OWNER)


def test_counter_proposal_declines_pending():
    decision = decide(S.MEETUP_PROPOSED, FINDER, A.PROPOSE_MEETUP, pending_proposer=OWNER)

    assert decision.next_status == S.MEETUP_PROPOSED
    assert not decision.changes_status
    assert SideEffect.DECLINE_PENDING_PROPOSALS in decision.side_effects


def test_decline_reopens_recovery():
    decision = decide(S.MEETUP_PROPOSED, OWNER, A.DECLINE_MEETUP, pending_proposer=FINDER)

    assert decision.next_status == S.FOUND
    assert decision.side_effects == (SideEffect.DECLINE_PENDING_PROPOSALS,)


def test_proposer_cannot_decline_own_proposal():
    with pytest.raises(InvalidRole):
        decide(S.MEETUP_PROPOSED, FINDER, A.DECLINE_MEETUP, pending_proposer=FINDER)


def test_decline_after_confirmation():
    with pytest.raises(InvalidTransition) as exc:
        decide(S.MEETUP_CONFIRMED, OWNER, A.DECLINE_MEETUP)

    assert exc.value.message == "This meetup has already been responded to"


def test_cannot_propose_after_confirmation():
    with pytest.raises(InvalidTransition) as exc:
        decide(S.MEETUP_CONFIRMED, FINDER, A.PROPOSE_MEETUP)

    assert exc.value.message == "A meetup has already been confirmed"


def test_accept_without_pending_proposal():
    with pytest.raises(InvalidTransition) as exc:
        decide(S.MEETUP_CONFIRMED, OWNER, A.ACCEPT_MEETUP)

    assert exc.value.message == "This meetup has already been responded to"


def test_reward_actions_wait_for_recovery():
    with pytest.raises(InvalidTransition) as exc:
        decide(S.MEETUP_CONFIRMED, FINDER, A.MARK_REWARD_PAID)

    assert exc.value.message == "Rewards can only be paid once the disc is recovered"


@pytest.mark.parametrize("status,action,field", [
    (S.MEETUP_CONFIRMED, A.COMPLETE_RECOVERY, "recovered_at"),
    (S.DROPPED_OFF, A.MARK_DISC_RETRIEVED, "recovered_at"),
    (S.FOUND, A.SURRENDER_DISC, "surrendered_at"),
    (S.DROPPED_OFF, A.RELINQUISH_DISC, "surrendered_at"),
    (S.DROPPED_OFF, A.ABANDON_DISC, "abandoned_at"),
])
def test_terminal_transitions_stamp_their_timestamp(status, action, field):
    assert decide(status, OWNER, action).timestamp_field == field


def test_cancel_stamps_cancelled_at():
    assert decide(S.DROPPED_OFF, ADMIN, A.CANCEL_RECOVERY).timestamp_field == "cancelled_at"


def test_reward_actions_do_not_restamp_recovery():
    assert decide(S.RECOVERED, FINDER, A.MARK_REWARD_PAID).timestamp_field is None


def test_permitted_actions_for_found():
    assert set(permitted_actions(S.FOUND, OWNER)) == {A.PROPOSE_MEETUP, A.SURRENDER_DISC}
    assert set(permitted_actions(S.FOUND, FINDER)) == {A.PROPOSE_MEETUP, A.DROP_OFF}


def test_permitted_actions_hide_responses_from_proposer():
    assert set(permitted_actions(S.MEETUP_PROPOSED, FINDER, pending_proposer=FINDER)) == set()
    assert set(permitted_actions(S.MEETUP_PROPOSED, OWNER, pending_proposer=FINDER)) == {
        A.PROPOSE_MEETUP,
        A.ACCEPT_MEETUP,
        A.DECLINE_MEETUP,
        A.SURRENDER_DISC,
    }


def test_permitted_actions_agree_with_decide():
    for status, role in itertools.product(RecoveryStatus, ActorRole):
        allowed = set(permitted_actions(status, role))
        for action in RecoveryAction:
            if action in allowed:
                decide(status, role, action)
            else:
                with pytest.raises((InvalidRole, InvalidTransition)):
                    decide(status, role, action)


def test_is_terminal():
    assert is_terminal("recovered")
    assert is_terminal(S.CANCELLED)
    assert not is_terminal("dropped_off")


def test_accepts_raw_strings():
    decision = decide("found", "finder", "drop-off")
    assert decision.next_status == S.DROPPED_OFF
