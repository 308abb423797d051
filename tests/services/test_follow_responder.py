# tests/services/test_follow_responder.py
from __future__ import annotations

import json

import pytest
from sqlalchemy.orm import Session

from lumen_federation.models import Actor
from lumen_federation.scripts.manage import create_local_actor
from lumen_federation.services.follow_responder import (
    FollowApprovalRequest,
    build_follow_response,
)
from lumen_federation.services.retry import OutcomeKind
from lumen_federation.services.runtime import FederationRuntime


def _request(alice: Actor, bob, **overrides) -> FollowApprovalRequest:
    values = {
        "requesting": bob.profile,
        "asked": alice.activity_pub_profile,
        "inbox": bob.inbox,
        "original_activity_id": f"{bob.profile}#follows/3",
        "follow_id": 12,
    }
    values.update(overrides)
    return FollowApprovalRequest(**values)


def test_accept_wraps_the_original_follow(alice: Actor, bob) -> None:
    response = build_follow_response(_request(alice, bob))

    assert response["type"] == "Accept"
    assert response["id"] == f"{alice.activity_pub_profile}#accept/follow/12"
    assert response["actor"] == alice.activity_pub_profile
    assert response["object"] == {
        "id": f"{bob.profile}#follows/3",
        "type": "Follow",
        "actor": bob.profile,
        "object": alice.activity_pub_profile,
    }


def test_reject_without_follow_id_uses_original_id(alice: Actor, bob) -> None:
    response = build_follow_response(_request(alice, bob, approved=False, follow_id=None))

    assert response["type"] == "Reject"
    assert response["id"] == f"{alice.activity_pub_profile}#reject/follow/{bob.profile}#follows/3"


@pytest.mark.asyncio
async def test_respond_delivers_signed_accept(
    runtime: FederationRuntime, remote, alice: Actor, bob
) -> None:
    outcome = await runtime.follow_responder.respond(_request(alice, bob))

    assert outcome.is_success
    (post,) = remote.posts_to(bob.inbox)
    assert json.loads(post.content)["type"] == "Accept"
    assert post.headers["signature"].startswith(f'keyId="{alice.key_id}"')


@pytest.mark.parametrize("missing", ["inbox", "original_activity_id"])
@pytest.mark.asyncio
async def test_respond_without_inbox_or_id_is_a_noop(
    runtime: FederationRuntime, remote, alice: Actor, bob, missing: str
) -> None:
    outcome = await runtime.follow_responder.respond(_request(alice, bob, **{missing: None}))

    assert outcome.is_success
    assert remote.requests == []


@pytest.mark.asyncio
async def test_respond_gives_up_after_retry_budget(
    runtime: FederationRuntime, remote, alice: Actor, bob
) -> None:
    remote.respond(bob.inbox, 500)

    outcome = await runtime.follow_responder.respond(_request(alice, bob))

    assert outcome.kind is OutcomeKind.PERMANENT
    assert len(remote.posts_to(bob.inbox)) == 3


def test_request_survives_json_round_trip(alice: Actor, bob) -> None:
    request = _request(alice, bob)

    payload = json.loads(json.dumps(request.model_dump(mode="json")))

    assert FollowApprovalRequest.model_validate(payload) == request


@pytest.mark.asyncio
async def test_respond_for_actor_without_private_key_is_permanent(
    runtime: FederationRuntime, db_session: Session, remote, bob
) -> None:
    keyless = create_local_actor(db_session, "keyless")
    keyless.private_key_pem = None
    db_session.commit()

    outcome = await runtime.follow_responder.respond(_request(keyless, bob))

    assert outcome.kind is OutcomeKind.PERMANENT
    assert "private key" in outcome.reason
    assert remote.requests == []


@pytest.mark.asyncio
async def test_respond_for_unknown_actor_is_permanent(
    runtime: FederationRuntime, remote, alice: Actor, bob
) -> None:
    request = _request(alice, bob, asked="https://lumen.test/actors/ghost")

    outcome = await runtime.follow_responder.respond(request)

    assert outcome.kind is OutcomeKind.PERMANENT
    assert remote.requests == []
