import io

from PIL import Image
from sqlmodel import select

from disc_recovery.models.drop_off import DropOff
from disc_recovery.models.recovery_event import RecoveryEvent
from disc_recovery.utils.form_validator import MAX_UPLOAD_BYTES


def png_bytes(width=32, height=24) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(30, 120, 200)).save(buffer, format="PNG")
    return buffer.getvalue()


def drop_off(client, auth, user, event_id, photo=None, **fields):
    data = {
        "recovery_event_id": str(event_id),
        "latitude": "40.7812",
        "longitude": "-73.9665",
        "location_notes": "Under the bench by hole 3",
    }
    data.update(fields)

    return client.post(
        "/recovery/create-drop-off",
        data=data,
        files={"photo": ("spot.png", photo if photo is not None else png_bytes(), "image/png")},
        headers=auth(user),
    )


def test_finder_drops_off_disc(client, db, auth, finder, make_recovery, uploads, fresh):
    event = make_recovery()

    response = drop_off(client, auth, finder, event.id)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "dropped_off"
    assert body["drop_off"]["location_notes"] == "Under the bench by hole 3"
    assert body["drop_off"]["photo_url"] == f"https://signed.test/{uploads['uploaded'][0]}"
    assert uploads["deleted"] == []

    stored = db.exec(select(DropOff).where(DropOff.recovery_event_id == event.id)).all()
    assert len(stored) == 1
    assert fresh(RecoveryEvent, event.id).status == "dropped_off"


def test_owner_cannot_drop_off(client, auth, owner, make_recovery, uploads):
    event = make_recovery()

    response = drop_off(client, auth, owner, event.id)

    assert response.status_code == 403
    assert uploads["uploaded"] == []


def test_drop_off_after_meetup_proposed_is_rejected_before_upload(client, auth, finder, make_recovery, uploads):
    event = make_recovery(status="meetup_proposed")

    response = drop_off(client, auth, finder, event.id)

    assert response.status_code == 409
    assert uploads["uploaded"] == []


def test_drop_off_validates_coordinates(client, auth, finder, make_recovery, uploads):
    event = make_recovery()

    response = drop_off(client, auth, finder, event.id, latitude="91")

    assert response.status_code == 400
    assert response.json()["code"] == "validation_failed"
    assert uploads["uploaded"] == []


def test_drop_off_rejects_unreadable_photo(client, auth, finder, make_recovery, uploads):
    event = make_recovery()

    response = drop_off(client, auth, finder, event.id, photo=b"definitely not an image")

    assert response.status_code == 400
    assert response.json()["detail"] == "Photo could not be read"


def test_drop_off_rejects_large_photo(client, auth, finder, make_recovery, uploads):
    event = make_recovery()

    response = drop_off(client, auth, finder, event.id, photo=b"0" * (MAX_UPLOAD_BYTES + 1))

    assert response.status_code == 400
    assert uploads["uploaded"] == []


def test_upload_is_removed_when_transition_loses(client, auth, finder, make_recovery, uploads, monkeypatch):
    from disc_recovery.core.errors import InvalidTransition
    from disc_recovery.services import recovery_actions

    event = make_recovery()

    def lost_race(*args, **kwargs):
        raise InvalidTransition(recovery_actions.CONFLICT_MESSAGE)

    monkeypatch.setattr(recovery_actions, "create_drop_off", lost_race)

    response = drop_off(client, auth, finder, event.id)

    assert response.status_code == 409
    assert uploads["deleted"] == uploads["uploaded"]
    assert len(uploads["deleted"]) == 1


def test_compress_photo_limits_longest_side():
    from disc_recovery.utils.s3_service import compress_photo

    buffer, ext, content_type = compress_photo(png_bytes(width=3000, height=1000))

    img = Image.open(buffer)
    assert max(img.size) == 1400
    assert (ext, content_type) in {("webp", "image/webp"), ("jpg", "image/jpeg")}
