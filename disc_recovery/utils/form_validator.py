import uuid
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, ValidationError

from disc_recovery.core.errors import ValidationFailed


MAX_UPLOAD_SIZE_MB = 5
MAX_UPLOAD_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024


class ValidatedDropOff(BaseModel):
    recovery_event_id: uuid.UUID
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    location_notes: Optional[str] = Field(default=None, max_length=500)


def as_utc(value: datetime) -> datetime:
    # Naive datetimes from clients are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValidationFailed("Date not parseable")
    return as_utc(parsed)


def require_future(value: datetime, now: Optional[datetime] = None) -> datetime:
    value = as_utc(value)
    if value <= (now or datetime.now(timezone.utc)):
        raise ValidationFailed("Please select a date and time in the future.")
    return value


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    field = ".".join(str(part) for part in error["loc"])
    return f"{field}: {error['msg']}"


def validate_drop_off_form(
    recovery_event_id: str,
    latitude: str,
    longitude: str,
    location_notes: Optional[str],
) -> ValidatedDropOff:
    notes = location_notes.strip() if location_notes else None

    try:
        return ValidatedDropOff(
            recovery_event_id=recovery_event_id,
            latitude=latitude,
            longitude=longitude,
            location_notes=notes or None,
        )
    except ValidationError as e:
        raise ValidationFailed(_first_error(e))


def validate_photo_size(raw_bytes: bytes):
    if not raw_bytes:
        raise ValidationFailed("Please take a photo of the drop-off location.")

    if len(raw_bytes) > MAX_UPLOAD_BYTES:
        raise ValidationFailed(f"Image exceeds {MAX_UPLOAD_SIZE_MB}MB limit")
