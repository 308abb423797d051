# tests/v1/test_actors.py
"""Tests for actor documents, follow collections and WebFinger."""

from __future__ import annotations

import pytest
from fastapi import status
from sqlalchemy.orm import Session

from lumen_federation.models import Actor
from lumen_federation.scripts.manage import create_local_actor
from lumen_federation.services.actors import extract_public_key


def _remote(db: Session, n: int) -> Actor:
    actor = Actor(
        activity_pub_profile=f"https://h{n}.example/users/u{n}",
        user_name=f"u{n}",
        domain=f"h{n}.example",
        inbox=f"https://h{n}.example/users/u{n}/inbox",
        is_local=False,
    )
    db.add(actor)
    db.commit()
    return actor


def test_actor_document_publishes_key_and_inboxes(client, alice: Actor) -> None:
    response = client.get("/actors/alice")

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("application/activity+json")
    document = response.json()
    profile = alice.activity_pub_profile
    assert document["id"] == profile
    assert document["type"] == "Person"
    assert document["preferredUsername"] == "alice"
    assert document["inbox"] == f"{profile}/inbox"
    assert document["outbox"] == f"{profile}/outbox"
    assert document["followers"] == f"{profile}/followers"
    assert document["following"] == f"{profile}/following"
    assert document["endpoints"] == {"sharedInbox": "https://lumen.test/shared/inbox"}
    assert document["manuallyApprovesFollowers"] is False
    assert document["publicKey"]["id"] == f"{profile}#main-key"
    assert extract_public_key(document, alice.key_id) == (profile, alice.public_key_pem)


@pytest.mark.parametrize("user_name", ["ghost", "bob"])
def test_unknown_or_remote_actor_is_not_found(
    client, db_session: Session, bob, user_name: str
) -> None:
    bob.store(db_session)

    assert client.get(f"/actors/{user_name}").status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"/actors/{user_name}/followers").status_code == 404


def test_followers_are_paged_by_ten(
    client, db_session: Session, alice: Actor, make_follow
) -> None:
    followers = [_remote(db_session, n) for n in range(12)]
    for follower in followers:
        make_follow(follower, alice)
    make_follow(_remote(db_session, 99), alice, approved=False)
    url = f"{alice.activity_pub_profile}/followers"

    collection = client.get("/actors/alice/followers").json()
    first = client.get("/actors/alice/followers", params={"page": 1}).json()
    second = client.get("/actors/alice/followers", params={"page": 2}).json()

    assert collection == {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": url,
        "type": "OrderedCollection",
        "totalItems": 12,
        "first": f"{url}?page=1",
    }
    assert first["type"] == "OrderedCollectionPage"
    assert first["partOf"] == url
    assert first["orderedItems"] == [f.activity_pub_profile for f in followers[:10]]
    assert first["next"] == f"{url}?page=2"
    assert "prev" not in first
    assert second["orderedItems"] == [f.activity_pub_profile for f in followers[10:]]
    assert second["prev"] == f"{url}?page=1"
    assert "next" not in second


def test_following_lists_approved_targets(
    client, db_session: Session, alice: Actor, make_follow
) -> None:
    followed = _remote(db_session, 1)
    make_follow(alice, followed)
    make_follow(alice, _remote(db_session, 2), approved=False)

    page = client.get("/actors/alice/following", params={"page": 1}).json()

    assert page["totalItems"] == 1
    assert page["orderedItems"] == [followed.activity_pub_profile]


def test_empty_collection_has_no_first_page(client, db_session: Session) -> None:
    create_local_actor(db_session, "carol")

    collection = client.get("/actors/carol/following").json()

    assert collection["totalItems"] == 0
    assert "first" not in collection


def test_page_numbers_start_at_one(client, alice: Actor) -> None:
    response = client.get("/actors/alice/followers", params={"page": 0})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.parametrize(
    "resource",
    ["acct:alice@lumen.test", "alice@LUMEN.test", "https://lumen.test/actors/alice"],
)
def test_webfinger_resolves_local_account(client, alice: Actor, resource: str) -> None:
    response = client.get("/.well-known/webfinger", params={"resource": resource})

    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"].startswith("application/jrd+json")
    assert response.json() == {
        "subject": "acct:alice@lumen.test",
        "aliases": [alice.activity_pub_profile],
        "links": [
            {
                "rel": "self",
                "type": "application/activity+json",
                "href": alice.activity_pub_profile,
            }
        ],
    }


@pytest.mark.parametrize(
    "params, expected",
    [
        ({}, status.HTTP_400_BAD_REQUEST),
        ({"resource": "alice"}, status.HTTP_400_BAD_REQUEST),
        ({"resource": "acct:ghost@lumen.test"}, status.HTTP_404_NOT_FOUND),
        ({"resource": "acct:alice@elsewhere.example"}, status.HTTP_404_NOT_FOUND),
        ({"resource": "https://remote.example/users/bob"}, status.HTTP_404_NOT_FOUND),
    ],
)
def test_webfinger_errors(
    client, db_session: Session, alice: Actor, bob, params: dict, expected: int
) -> None:
    bob.store(db_session)

    response = client.get("/.well-known/webfinger", params=params)

    assert response.status_code == expected
