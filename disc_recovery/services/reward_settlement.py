"""
Reward settlement on top of a recovered disc.

Two payout paths share one invariant: reward_paid_at is set at most once.
Venmo happens outside the system and the finder attests receipt with
mark-reward-paid; card payments go through a checkout session and are
confirmed by the payment provider's webhook. Repeat attempts are no-op
successes.
"""
import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import update
from sqlmodel import Session, select

from disc_recovery.core.errors import InvalidTransition, NotFound, PaymentProviderError
from disc_recovery.core.state_machine import RecoveryAction, RecoveryStatus
from disc_recovery.models.disc import Disc
from disc_recovery.models.recovery_event import RecoveryEvent
from disc_recovery.models.reward_payment import RewardPayment
from disc_recovery.models.user import User
from disc_recovery.services import recovery_actions
from disc_recovery.services.change_notifier import ChangeNotifier, RecoveryChanged
from disc_recovery.services.notifications import notify, notify_action
from disc_recovery.utils.payment_gateway import StripeCheckoutGateway
from disc_recovery.utils.stripe_fees import calculate_stripe_fee, calculate_total_with_fee, format_fee_preview, to_cents

log = structlog.get_logger(__name__)


def reward_amount(disc: Optional[Disc]) -> float:
    if not disc or not disc.reward_amount:
        return 0.0
    return float(disc.reward_amount)


def finder_accepts_card(finder: Optional[User]) -> bool:
    return bool(finder and finder.card_payments_enabled and finder.stripe_account_id)


def reward_summary(event: RecoveryEvent, disc: Optional[Disc], finder: Optional[User]) -> dict:
    amount = reward_amount(disc)

    return {
        "reward_amount": amount,
        "eligible": event.status == RecoveryStatus.RECOVERED.value and amount > 0,
        "paid": event.reward_paid_at is not None,
        "reward_paid_at": event.reward_paid_at,
        "finder_venmo_username": finder.venmo_username if finder else None,
        "finder_accepts_card": finder_accepts_card(finder),
        "card_fee": calculate_stripe_fee(amount),
        "card_total": calculate_total_with_fee(amount),
        "card_fee_preview": format_fee_preview(amount),
    }


def reward_action_available(action: RecoveryAction, event: RecoveryEvent, disc: Optional[Disc], finder: Optional[User]) -> bool:
    """Eligibility on top of the state machine's (status, role) answer."""
    if reward_amount(disc) <= 0 or event.reward_paid_at is not None:
        return False

    if action == RecoveryAction.SEND_REWARD_PAYMENT:
        return finder_accepts_card(finder)

    return True


def _require_reward(event: RecoveryEvent, disc: Optional[Disc]) -> float:
    amount = reward_amount(disc)
    if amount <= 0:
        log.info("transition_rejected", recovery_event_id=str(event.id), code=InvalidTransition.code, reason="no_reward")
        raise InvalidTransition("This disc has no reward")
    return amount


def _find_payment(session: Session, recovery_event_id: uuid.UUID) -> Optional[RewardPayment]:
    return session.exec(
        select(RewardPayment).where(RewardPayment.recovery_event_id == recovery_event_id)
    ).first()


def _upsert_payment(session: Session, recovery_event_id: uuid.UUID, **fields) -> RewardPayment:
    payment = _find_payment(session, recovery_event_id)

    if not payment:
        payment = RewardPayment(recovery_event_id=recovery_event_id, **fields)
    else:
        for field, value in fields.items():
            setattr(payment, field, value)

    session.add(payment)
    return payment


def mark_reward_paid(session: Session, notifier: ChangeNotifier, user: User, recovery_event_id: uuid.UUID) -> RecoveryEvent:
    """Finder confirms the reward arrived (Venmo or otherwise outside the app)."""
    event = recovery_actions.load_recovery(session, recovery_event_id)
    role = recovery_actions.resolve_role(event, user)

    decision = recovery_actions.evaluate(session, event, role, RecoveryAction.MARK_REWARD_PAID)
    disc = session.get(Disc, event.disc_id)
    amount = _require_reward(event, disc)

    if event.reward_paid_at is not None:
        log.info("reward_already_paid", recovery_event_id=str(event.id), reward_paid_at=str(event.reward_paid_at))
        return event

    now = recovery_actions.utcnow()
    written = recovery_actions.write_transition(
        session,
        event,
        decision,
        now,
        extra_values={"reward_paid_at": now},
        extra_where=(RecoveryEvent.reward_paid_at.is_(None),),
    )

    if not written:
        recovery_actions.reload(session, event)
        # Lost to another payment confirmation: same outcome, nothing to do
        if event.reward_paid_at is not None:
            return event
        recovery_actions.raise_conflict(session, event, role, RecoveryAction.MARK_REWARD_PAID)

    _upsert_payment(
        session,
        event.id,
        created_by=user.id,
        method="venmo",
        status="succeeded",
        reward_amount=amount,
        fee_amount=0,
        paid_at=now,
    )

    notify_action(
        session,
        RecoveryAction.MARK_REWARD_PAID,
        recipient_id=event.owner_id,
        actor_name=user.name,
        disc_name=disc.name,
        recovery_event_id=event.id,
    )

    recovery_actions.finish(session, notifier, event, decision, user)
    return event


def send_reward_payment(
    session: Session,
    notifier: ChangeNotifier,
    gateway: StripeCheckoutGateway,
    user: User,
    recovery_event_id: uuid.UUID,
    success_url: str,
    cancel_url: str,
) -> dict:
    """
    Owner starts a card payment. Returns the checkout url; reward_paid_at is
    only set once the provider confirms the payment.
    """
    event = recovery_actions.load_recovery(session, recovery_event_id)
    role = recovery_actions.resolve_role(event, user)

    recovery_actions.evaluate(session, event, role, RecoveryAction.SEND_REWARD_PAYMENT)
    disc = session.get(Disc, event.disc_id)
    amount = _require_reward(event, disc)

    if event.reward_paid_at is not None:
        return {
            "checkout_url": None,
            "already_paid": True,
            "reward_paid_at": event.reward_paid_at,
        }

    finder = session.get(User, event.finder_id)
    if not finder_accepts_card(finder):
        log.info("transition_rejected", recovery_event_id=str(event.id), code=InvalidTransition.code, reason="finder_cannot_accept_card")
        raise InvalidTransition("The finder has not set up card payments yet")

    fee = calculate_stripe_fee(amount)
    total = calculate_total_with_fee(amount)

    # A retry of a pending checkout returns the same session; a failed attempt
    # gets a fresh key so the provider does not replay its error
    payment = _find_payment(session, event.id)
    if payment and payment.status == "pending" and payment.idempotency_key:
        idempotency_key = payment.idempotency_key
    else:
        idempotency_key = f"reward-{event.id}-{uuid.uuid4().hex}"

    try:
        checkout = gateway.create_checkout_session(
            amount_cents=to_cents(total),
            product_name=f"Reward for returning {disc.name}",
            destination_account=finder.stripe_account_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"recovery_event_id": str(event.id)},
            idempotency_key=idempotency_key,
        )
    except PaymentProviderError:
        log.warning("reward_checkout_failed", recovery_event_id=str(event.id))
        if payment and payment.idempotency_key:
            payment.idempotency_key = None
            session.add(payment)
            session.commit()
        raise

    _upsert_payment(
        session,
        event.id,
        created_by=user.id,
        method="card",
        status="pending",
        reward_amount=amount,
        fee_amount=fee,
        checkout_session_id=checkout.id,
        idempotency_key=idempotency_key,
    )
    session.commit()

    log.info(
        "reward_checkout_created",
        recovery_event_id=str(event.id),
        checkout_session_id=checkout.id,
        total_amount=total,
    )
    notifier.publish(RecoveryChanged(event.id))

    return {
        "checkout_url": checkout.url,
        "checkout_session_id": checkout.id,
        "already_paid": False,
        "reward_amount": amount,
        "fee_amount": fee,
        "total_amount": total,
    }


def confirm_card_payment(
    session: Session,
    notifier: ChangeNotifier,
    recovery_event_id: uuid.UUID,
    checkout_session_id: Optional[str],
    paid_at: Optional[datetime] = None,
) -> RecoveryEvent:
    """
    Provider callback for a paid checkout. Sets reward_paid_at once; repeats
    and checkouts this recovery did not start are logged and ignored.
    """
    event = session.get(RecoveryEvent, recovery_event_id)
    if not event:
        raise NotFound("Recovery not found")

    if event.reward_paid_at is not None:
        log.info("reward_already_paid", recovery_event_id=str(event.id), checkout_session_id=checkout_session_id)
        return event

    if event.status != RecoveryStatus.RECOVERED.value:
        log.warning("card_payment_ignored", recovery_event_id=str(event.id), checkout_session_id=checkout_session_id, reason="not_recovered", status=event.status)
        return event

    # Only the checkout this recovery started can settle it
    payment = _find_payment(session, event.id)
    if not payment or payment.method != "card" or payment.status != "pending" or payment.checkout_session_id != checkout_session_id:
        log.warning("card_payment_ignored", recovery_event_id=str(event.id), checkout_session_id=checkout_session_id, reason="unknown_checkout")
        return event

    now = paid_at or recovery_actions.utcnow()
    result = session.connection().execute(
        update(RecoveryEvent)
        .where(RecoveryEvent.id == event.id)
        .where(RecoveryEvent.status == RecoveryStatus.RECOVERED.value)
        .where(RecoveryEvent.reward_paid_at.is_(None))
        .values(reward_paid_at=now, updated_at=now, version=RecoveryEvent.version + 1)
    )

    if result.rowcount != 1:
        recovery_actions.reload(session, event)
        return event

    disc = session.get(Disc, event.disc_id)
    amount = payment.reward_amount

    payment.status = "succeeded"
    payment.paid_at = now
    session.add(payment)

    notify(
        session,
        user_id=event.finder_id,
        type="reward_paid",
        title="Reward sent",
        message=f"You received a ${amount:.2f} reward for returning {disc.name if disc else 'the disc'}.",
        recovery_event_id=event.id,
    )

    session.commit()
    session.refresh(event)

    log.info("reward_card_payment_confirmed", recovery_event_id=str(event.id), checkout_session_id=checkout_session_id)
    notifier.publish(RecoveryChanged(event.id))

    return event
