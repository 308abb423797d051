"""Documents local actors publish: the Person, its follow collections and WebFinger."""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from lumen_federation.core.settings import settings
from lumen_federation.models import Actor, Follow
from lumen_federation.schemas.activity import ACTIVITY_STREAMS_CONTEXT
from lumen_federation.services.http_signatures import ACTIVITY_CONTENT_TYPE

SECURITY_CONTEXT = "https://w3id.org/security/v1"
COLLECTION_PAGE_SIZE = 10
JRD_CONTENT_TYPE = "application/jrd+json"


class FollowCollection(str, Enum):
    FOLLOWERS = "followers"
    FOLLOWING = "following"


def actor_document(actor: Actor) -> dict[str, Any]:
    """The Person document remote servers fetch to learn an actor's key and inboxes."""
    profile = actor.activity_pub_profile
    document: dict[str, Any] = {
        "@context": [ACTIVITY_STREAMS_CONTEXT, SECURITY_CONTEXT],
        "id": profile,
        "type": "Person",
        "preferredUsername": actor.user_name,
        "name": actor.user_name,
        "url": profile,
        "inbox": actor.inbox or f"{profile}/inbox",
        "outbox": f"{profile}/outbox",
        "followers": actor.followers_url,
        "following": actor.following_url,
        "manuallyApprovesFollowers": actor.manually_approves_followers,
        "publicKey": {
            "id": actor.key_id,
            "owner": profile,
            "publicKeyPem": actor.public_key_pem or "",
        },
    }
    if actor.shared_inbox:
        document["endpoints"] = {"sharedInbox": actor.shared_inbox}
    if actor.moved_to:
        document["movedTo"] = actor.moved_to
    return document


def _follow_query(db: Session, actor: Actor, collection: FollowCollection):
    if collection is FollowCollection.FOLLOWERS:
        return (
            db.query(Actor)
            .join(Follow, Follow.source_id == Actor.id)
            .filter(Follow.target_id == actor.id, Follow.approved.is_(True))
        )
    return (
        db.query(Actor)
        .join(Follow, Follow.target_id == Actor.id)
        .filter(Follow.source_id == actor.id, Follow.approved.is_(True))
    )


def follow_collection(
    db: Session,
    actor: Actor,
    collection: FollowCollection,
    *,
    page: int | None = None,
    size: int = COLLECTION_PAGE_SIZE,
) -> dict[str, Any]:
    """An OrderedCollection of approved follows, or one 1-based page of it.

    Raises:
        ValueError: If ``page`` is below 1.
    """
    url = f"{actor.activity_pub_profile}/{collection.value}"
    query = _follow_query(db, actor, collection)
    total = query.count()

    if page is None:
        document: dict[str, Any] = {
            "@context": ACTIVITY_STREAMS_CONTEXT,
            "id": url,
            "type": "OrderedCollection",
            "totalItems": total,
        }
        if total > 0:
            document["first"] = f"{url}?page=1"
        return document

    if page < 1:
        raise ValueError("page numbers start at 1")
    members = query.order_by(Follow.id).offset((page - 1) * size).limit(size).all()
    document = {
        "@context": ACTIVITY_STREAMS_CONTEXT,
        "id": f"{url}?page={page}",
        "type": "OrderedCollectionPage",
        "totalItems": total,
        "partOf": url,
        "orderedItems": [member.activity_pub_profile for member in members],
    }
    if page > 1:
        document["prev"] = f"{url}?page={page - 1}"
    if page * size < total:
        document["next"] = f"{url}?page={page + 1}"
    return document


def parse_account(resource: str) -> tuple[str, str] | None:
    """Split ``acct:name@host`` into its parts, or None if it is not one."""
    account = resource.removeprefix("acct:")
    name, separator, host = account.rpartition("@")
    if not separator or not name or not host:
        return None
    return name.lstrip("@"), host.lower()


def webfinger_document(actor: Actor) -> dict[str, Any]:
    profile = actor.activity_pub_profile
    return {
        "subject": f"acct:{actor.user_name}@{settings.instance_host}",
        "aliases": [profile],
        "links": [
            {"rel": "self", "type": ACTIVITY_CONTENT_TYPE, "href": profile},
        ],
    }
