import os
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field
from sqlmodel import Session

from disc_recovery.core.errors import RecoveryError, ValidationFailed
from disc_recovery.core.state_machine import RecoveryAction
from disc_recovery.db.db import get_session
from disc_recovery.models.user import User
from disc_recovery.services import recovery_actions, recovery_messages, reward_settlement
from disc_recovery.services.change_notifier import ChangeNotifier, get_change_notifier
from disc_recovery.services.projection import build_projection, build_summary
from disc_recovery.utils import s3_service
from disc_recovery.utils.auth_helper import get_request_user
from disc_recovery.utils.form_validator import (
    parse_iso_datetime,
    require_future,
    validate_drop_off_form,
    validate_photo_size,
)
from disc_recovery.utils.payment_gateway import StripeCheckoutGateway, get_payment_gateway


router = APIRouter()

CHECKOUT_SUCCESS_URL = os.getenv("CHECKOUT_SUCCESS_URL", "http://localhost:3000/checkout/success")
CHECKOUT_CANCEL_URL = os.getenv("CHECKOUT_CANCEL_URL", "http://localhost:3000/checkout/cancel")


class RecoveryEventRequest(BaseModel):
    recovery_event_id: uuid.UUID


class ProposeMeetupRequest(BaseModel):
    recovery_event_id: uuid.UUID
    location_name: str = Field(min_length=1, max_length=200)
    proposed_datetime: str
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    message: Optional[str] = Field(default=None, max_length=500)


class AcceptMeetupRequest(BaseModel):
    proposal_id: uuid.UUID


class DeclineMeetupRequest(BaseModel):
    proposal_id: uuid.UUID
    reason: Optional[str] = Field(default=None, max_length=500)


class MessageRequest(BaseModel):
    content: str


@router.get("/get-recovery-details")
def get_recovery_details(
    id: uuid.UUID,
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.load_recovery(session, id)
    return build_projection(session, event, user)


@router.get("/active")
def get_active_recoveries(
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    events = recovery_actions.list_active_recoveries(session, user)
    return {"recoveries": [build_summary(session, event, user) for event in events]}


@router.post("/propose-meetup")
def propose_meetup(
    payload: ProposeMeetupRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    location_name = payload.location_name.strip()
    if not location_name:
        raise ValidationFailed("Please enter a meetup location.")

    proposed_datetime = require_future(parse_iso_datetime(payload.proposed_datetime))
    message = payload.message.strip() if payload.message else None

    event = recovery_actions.propose_meetup(
        session,
        notifier,
        user,
        payload.recovery_event_id,
        location_name=location_name,
        proposed_datetime=proposed_datetime,
        latitude=payload.latitude,
        longitude=payload.longitude,
        message=message or None,
    )

    return build_projection(session, event, user)


@router.post("/accept-meetup")
def accept_meetup(
    payload: AcceptMeetupRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.accept_meetup(session, notifier, user, payload.proposal_id)
    return build_projection(session, event, user)


@router.post("/decline-meetup")
def decline_meetup(
    payload: DeclineMeetupRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    reason = payload.reason.strip() if payload.reason else None
    event = recovery_actions.decline_meetup(session, notifier, user, payload.proposal_id, reason=reason or None)
    return build_projection(session, event, user)


@router.get("/{recovery_event_id}/messages")
def list_messages(
    recovery_event_id: uuid.UUID,
    session: Session = Depends(get_session),
    user: User = Depends(get_request_user),
):
    return {"messages": recovery_messages.list_messages(session, user, recovery_event_id)}


@router.post("/{recovery_event_id}/messages")
def send_message(
    recovery_event_id: uuid.UUID,
    payload: MessageRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    message = recovery_messages.send_message(session, notifier, user, recovery_event_id, payload.content)
    return recovery_messages.message_view(message, user, {user.id: user.public_id})


@router.post("/complete-recovery")
def complete_recovery(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.complete_recovery(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/surrender-disc")
def surrender_disc(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.surrender_disc(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/create-drop-off")
async def create_drop_off(
    recovery_event_id: str = Form(...),
    latitude: str = Form(...),
    longitude: str = Form(...),
    location_notes: Optional[str] = Form(None),
    photo: UploadFile = File(...),
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    form = validate_drop_off_form(recovery_event_id, latitude, longitude, location_notes)

    # Reject before paying for the upload
    recovery_actions.check_action(session, user, form.recovery_event_id, RecoveryAction.DROP_OFF)

    raw_bytes = await photo.read()
    validate_photo_size(raw_bytes)

    try:
        buffer, ext, content_type = s3_service.compress_photo(raw_bytes)
    except OSError:
        raise ValidationFailed("Photo could not be read")

    key = s3_service.upload_to_s3(buffer, ext, content_type, form.recovery_event_id)

    try:
        event = recovery_actions.create_drop_off(
            session,
            notifier,
            user,
            form.recovery_event_id,
            photo_url=key,
            latitude=form.latitude,
            longitude=form.longitude,
            location_notes=form.location_notes,
        )
    except RecoveryError:
        s3_service.delete_s3_object(key)
        raise

    return build_projection(session, event, user)


@router.post("/mark-disc-retrieved")
def mark_disc_retrieved(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.mark_disc_retrieved(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/relinquish-disc")
def relinquish_disc(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.relinquish_disc(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/abandon-disc")
def abandon_disc(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = recovery_actions.abandon_disc(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/mark-reward-paid")
def mark_reward_paid(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    user: User = Depends(get_request_user),
):
    event = reward_settlement.mark_reward_paid(session, notifier, user, payload.recovery_event_id)
    return build_projection(session, event, user)


@router.post("/send-reward-payment")
def send_reward_payment(
    payload: RecoveryEventRequest,
    session: Session = Depends(get_session),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    gateway: StripeCheckoutGateway = Depends(get_payment_gateway),
    user: User = Depends(get_request_user),
):
    return reward_settlement.send_reward_payment(
        session,
        notifier,
        gateway,
        user,
        payload.recovery_event_id,
        success_url=CHECKOUT_SUCCESS_URL,
        cancel_url=CHECKOUT_CANCEL_URL,
    )
