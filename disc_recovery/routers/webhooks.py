import json
import os
import uuid
from fastapi import APIRouter, Depends, Request
import structlog
from sqlmodel import Session

from disc_recovery.core.errors import NotFound, ValidationFailed
from disc_recovery.db.db import get_session
from disc_recovery.services import reward_settlement
from disc_recovery.services.change_notifier import ChangeNotifier, get_change_notifier
from disc_recovery.utils.payment_gateway import verify_webhook_signature

log = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    payload = await request.body()

    if not verify_webhook_signature(
        payload,
        request.headers.get("Stripe-Signature"),
        os.getenv("STRIPE_WEBHOOK_SECRET"),
    ):
        log.warning("webhook_signature_invalid")
        raise ValidationFailed("Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationFailed("Invalid payload")

    if not isinstance(event, dict):
        log.warning("webhook_payload_not_object")
        raise ValidationFailed("Invalid payload")

    event_type = event.get("type")

    # Everything else is acknowledged so the provider stops retrying
    if event_type != "checkout.session.completed":
        log.debug("webhook_ignored", event_type=event_type)
        return {"received": True}

    checkout = (event.get("data") or {}).get("object") or {}
    metadata = checkout.get("metadata") or {}

    if checkout.get("payment_status") != "paid":
        log.info("webhook_checkout_unpaid", checkout_session_id=checkout.get("id"))
        return {"received": True}

    try:
        recovery_event_id = uuid.UUID(str(metadata.get("recovery_event_id")))
    except ValueError:
        log.warning("webhook_missing_recovery", checkout_session_id=checkout.get("id"))
        return {"received": True}

    try:
        reward_settlement.confirm_card_payment(session, notifier, recovery_event_id, checkout.get("id"))
    except NotFound:
        log.warning("webhook_unknown_recovery", recovery_event_id=str(recovery_event_id))

    return {"received": True}
