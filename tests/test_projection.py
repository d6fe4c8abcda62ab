from disc_recovery.services.projection import build_projection, participant_view


def details(client, auth, user, event_id):
    return client.get(f"/recovery/get-recovery-details?id={event_id}", headers=auth(user)).json()


def test_owner_sees_themself_as_you(client, auth, owner, finder, make_recovery):
    event = make_recovery()

    body = details(client, auth, owner, event.id)

    assert body["user_role"] == "owner"
    assert body["owner"] == {"id": owner.public_id, "display_name": "You", "avatar_url": None, "is_you": True}
    assert body["finder"]["display_name"] == "Finn"
    assert body["finder"]["is_you"] is False


def test_finder_sees_themself_as_you(client, auth, owner, finder, make_recovery):
    event = make_recovery()

    body = details(client, auth, finder, event.id)

    assert body["user_role"] == "finder"
    assert body["finder"]["display_name"] == "You"
    assert body["owner"]["display_name"] == "Olivia"


def test_emails_are_never_exposed(client, auth, owner, finder, make_recovery):
    event = make_recovery()

    raw = client.get(f"/recovery/get-recovery-details?id={event.id}", headers=auth(owner)).text

    assert owner.email not in raw
    assert finder.email not in raw


def test_projection_fields(client, auth, owner, make_recovery):
    event = make_recovery()

    body = details(client, auth, owner, event.id)

    assert body["id"] == str(event.id)
    assert body["status"] == "found"
    assert body["status_label"] == "Disc Found"
    assert body["finder_message"] == "Found it on hole 7"
    assert body["disc"]["name"] == "Destroyer"
    assert body["disc"]["photo_url"] == "https://signed.test/discs/destroyer.webp"
    assert "owner_id" not in body["disc"]
    assert body["meetup_proposals"] == []
    assert body["pending_proposal"] is None
    assert body["drop_off"] is None
    assert body["reward"]["eligible"] is False
    assert set(body["permitted_actions"]) == {"propose-meetup", "surrender-disc"}


def test_status_labels(client, auth, owner, make_recovery):
    labels = {
        "meetup_proposed": "Meetup Proposed",
        "meetup_confirmed": "Meetup Confirmed",
        "dropped_off": "Dropped Off",
        "recovered": "Recovered",
        "surrendered": "Surrendered",
        "abandoned": "Abandoned",
        "cancelled": "Cancelled",
    }

    for status, label in labels.items():
        event = make_recovery(status=status)
        assert details(client, auth, owner, event.id)["status_label"] == label


def test_permitted_actions_for_drop_off(client, auth, owner, finder, make_recovery):
    event = make_recovery(status="dropped_off")

    assert set(details(client, auth, owner, event.id)["permitted_actions"]) == {
        "mark-disc-retrieved",
        "complete-recovery",
        "relinquish-disc",
        "abandon-disc",
    }
    assert details(client, auth, finder, event.id)["permitted_actions"] == []


def test_build_projection_directly(db, owner, finder, make_recovery, uploads):
    event = make_recovery()

    projection = build_projection(db, event, finder)

    assert projection["user_role"] == "finder"
    assert set(projection["permitted_actions"]) == {"propose-meetup", "drop-off"}


def test_missing_participant_renders_unknown(owner):
    assert participant_view(None, owner) == {
        "id": None,
        "display_name": "Unknown",
        "avatar_url": None,
        "is_you": False,
    }
