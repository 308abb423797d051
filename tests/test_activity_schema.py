# tests/test_activity_schema.py
import json

import pytest

from lumen_federation.core.errors import MalformedActivityError
from lumen_federation.schemas.activity import (
    PUBLIC_COLLECTION,
    Activity,
    ActivityKind,
    object_type,
    reference_id,
)


def test_parse_body_keeps_unknown_fields() -> None:
    raw = {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": "https://remote.example/activities/1",
        "type": "Create",
        "actor": {"id": "https://remote.example/users/bob", "type": "Person"},
        "object": {"id": "https://remote.example/notes/1", "type": "Note"},
        "published": "2024-05-01T12:00:00Z",
    }
    activity = Activity.parse_body(json.dumps(raw).encode())

    assert activity.kind is ActivityKind.CREATE
    assert activity.first_actor_id == "https://remote.example/users/bob"
    assert activity.object_ids() == ["https://remote.example/notes/1"]
    assert activity.to_payload() == raw


@pytest.mark.parametrize(
    "value, kind",
    [
        ("Follow", ActivityKind.FOLLOW),
        (["Unknown", "Announce"], ActivityKind.ANNOUNCE),
        ("Unsupported", ActivityKind.UNSUPPORTED),
        ("EmojiReact", ActivityKind.UNSUPPORTED),
        (["Block"], ActivityKind.UNSUPPORTED),
    ],
)
def test_kind_from_type(value, kind: ActivityKind) -> None:
    assert ActivityKind.from_type(value) is kind


@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"{",
        b'"Follow"',
        b'{"id": "x", "type": "Follow"}',
        b'{"id": " ", "type": "Follow", "actor": "a"}',
    ],
)
def test_parse_body_rejects_malformed(body: bytes) -> None:
    with pytest.raises(MalformedActivityError):
        Activity.parse_body(body)


def test_recipients_skip_public_and_duplicates() -> None:
    activity = Activity.model_validate(
        {
            "id": "https://x/1",
            "type": "Create",
            "actor": "https://x/a",
            "to": [PUBLIC_COLLECTION, "https://x/b"],
            "cc": ["as:Public", {"id": "https://x/b"}, "https://x/c"],
        }
    )
    assert activity.recipients() == ["https://x/b", "https://x/c"]


def test_reference_helpers() -> None:
    assert reference_id("https://x/1") == "https://x/1"
    assert reference_id({"id": "https://x/1"}) == "https://x/1"
    assert reference_id({"type": "Note"}) is None
    assert reference_id(3) is None
    assert object_type({"type": ["Note", "Image"]}) == "Note"
    assert object_type("https://x/1") is None
