"""Side effects of verified inbound activities.

Each handler applies one activity kind to local state and only flushes;
the caller commits once the handler returns. Handlers are idempotent:
they upsert by activity id or by natural key, so replaying an activity
leaves the database unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from lumen_federation.core.errors import PermanentProcessingError
from lumen_federation.models import Actor, Follow, Status, StatusFavourite
from lumen_federation.schemas.activity import (
    Activity,
    ActivityKind,
    object_type,
    reference_id,
)
from lumen_federation.services.actors import get_actor, upsert_remote_actor
from lumen_federation.services.follow_responder import FollowApprovalRequest
from lumen_federation.services.key_cache import PublicKeyResolver

logger = logging.getLogger(__name__)

NOTE_TYPES = frozenset({"Note", "Article", "Image", "Page", "Question"})
ACTOR_TYPES = frozenset({"Person", "Service", "Application", "Group", "Organization"})


@dataclass
class HandlerContext:
    """Everything a handler may touch while applying one activity."""

    db: Session
    activity: Activity
    actor: Actor | None
    resolver: PublicKeyResolver | None = None
    notes: list[str] = field(default_factory=list)
    # Accepts to send once the handler's changes are committed
    follow_responses: list[FollowApprovalRequest] = field(default_factory=list)

    def require_actor(self) -> Actor:
        if self.actor is None:
            raise PermanentProcessingError(f"actor of {self.activity.id} is unknown")
        return self.actor


Handler = Callable[[HandlerContext], None]


def _status_or_placeholder(db: Session, activity_pub_id: str) -> Status:
    status = db.query(Status).filter(Status.activity_pub_id == activity_pub_id).first()
    if status is None:
        status = Status(activity_pub_id=activity_pub_id, is_placeholder=True, is_local=False)
        db.add(status)
        db.flush()
    return status


def _is_followed_locally(db: Session, actor: Actor) -> bool:
    return (
        db.query(Follow.id)
        .join(Actor, Follow.source_id == Actor.id)
        .filter(Follow.target_id == actor.id, Follow.approved.is_(True), Actor.is_local.is_(True))
        .first()
        is not None
    )


def _follow_parties(ctx: HandlerContext, value: Any) -> tuple[str | None, str | None]:
    """Return (follower, followee) URIs of a Follow given inline or by id."""
    if isinstance(value, dict):
        if object_type(value) != "Follow":
            raise PermanentProcessingError(
                f"{ctx.activity.type} object must be a Follow, got {object_type(value)!r}"
            )
        return reference_id(value.get("actor")), reference_id(value.get("object"))
    follow_id = reference_id(value)
    if follow_id is None:
        return None, None
    follow = ctx.db.query(Follow).filter(Follow.activity_id == follow_id).first()
    if follow is None:
        return None, None
    return follow.source.activity_pub_profile, follow.target.activity_pub_profile


def handle_follow(ctx: HandlerContext) -> None:
    source = ctx.require_actor()
    for target_url in ctx.activity.object_ids():
        target = get_actor(ctx.db, target_url)
        if target is None or not target.is_local:
            raise PermanentProcessingError(f"follow target {target_url} is not a local actor")

        follow = (
            ctx.db.query(Follow)
            .filter(Follow.source_id == source.id, Follow.target_id == target.id)
            .first()
        )
        if follow is None:
            follow = Follow(
                source_id=source.id,
                target_id=target.id,
                approved=not target.manually_approves_followers,
            )
            ctx.db.add(follow)
        follow.activity_id = ctx.activity.id
        ctx.db.flush()
        logger.info(
            "%s follows %s (approved=%s)",
            source.activity_pub_profile,
            target.activity_pub_profile,
            follow.approved,
        )

        if follow.approved:
            ctx.follow_responses.append(
                FollowApprovalRequest(
                    requesting=source.activity_pub_profile,
                    asked=target.activity_pub_profile,
                    inbox=source.inbox or source.shared_inbox,
                    original_activity_id=ctx.activity.id,
                    approved=True,
                    follow_id=follow.id,
                )
            )


def _handle_follow_answer(ctx: HandlerContext, *, accepted: bool) -> None:
    answering = ctx.require_actor()
    for value in ctx.activity.objects():
        follower_url, followee_url = _follow_parties(ctx, value)
        if follower_url is None:
            ctx.notes.append(f"unknown follow {reference_id(value)}")
            continue
        if followee_url != answering.activity_pub_profile:
            raise PermanentProcessingError(
                f"{answering.activity_pub_profile} cannot answer a follow of {followee_url}"
            )
        follower = get_actor(ctx.db, follower_url)
        if follower is None or not follower.is_local:
            ctx.notes.append(f"follower {follower_url} is not local")
            continue
        follow = (
            ctx.db.query(Follow)
            .filter(Follow.source_id == follower.id, Follow.target_id == answering.id)
            .first()
        )
        if follow is None:
            continue
        if accepted:
            follow.approved = True
        else:
            ctx.db.delete(follow)
        ctx.db.flush()


def handle_accept(ctx: HandlerContext) -> None:
    _handle_follow_answer(ctx, accepted=True)


def handle_reject(ctx: HandlerContext) -> None:
    _handle_follow_answer(ctx, accepted=False)


def handle_create(ctx: HandlerContext) -> None:
    author = ctx.require_actor()
    for value in ctx.activity.objects():
        if not isinstance(value, dict):
            ctx.notes.append(f"create of bare reference {value!r} skipped")
            continue
        if object_type(value) not in NOTE_TYPES:
            ctx.notes.append(f"create of {object_type(value)!r} skipped")
            continue
        object_id = reference_id(value)
        if object_id is None:
            raise PermanentProcessingError("created object has no id")
        attributed = reference_id(value.get("attributedTo")) or author.activity_pub_profile
        if attributed != author.activity_pub_profile:
            raise PermanentProcessingError(
                f"{author.activity_pub_profile} cannot create an object of {attributed}"
            )

        in_reply_to = reference_id(value.get("inReplyTo"))
        replies_to_known = (
            in_reply_to is not None
            and ctx.db.query(Status.id).filter(Status.activity_pub_id == in_reply_to).first()
            is not None
        )
        if not (replies_to_known or _is_followed_locally(ctx.db, author)):
            ctx.notes.append(f"nobody here follows {author.activity_pub_profile}")
            continue

        status = ctx.db.query(Status).filter(Status.activity_pub_id == object_id).first()
        if status is None:
            status = Status(activity_pub_id=object_id, is_local=False)
            ctx.db.add(status)
        elif status.actor_id is not None and status.actor_id != author.id:
            raise PermanentProcessingError(f"status {object_id} belongs to another actor")
        status.actor_id = author.id
        status.content = value.get("content")
        status.in_reply_to = in_reply_to
        status.is_placeholder = False
        ctx.db.flush()


def handle_update(ctx: HandlerContext) -> None:
    actor = ctx.require_actor()
    for value in ctx.activity.objects():
        if not isinstance(value, dict):
            continue
        kind = object_type(value)
        object_id = reference_id(value)
        if kind in ACTOR_TYPES:
            if object_id != actor.activity_pub_profile:
                raise PermanentProcessingError(
                    f"{actor.activity_pub_profile} cannot update actor {object_id}"
                )
            upsert_remote_actor(ctx.db, value)
            ctx.db.flush()
            if ctx.resolver is not None:
                ctx.resolver.invalidate(actor.activity_pub_profile)
        elif kind in NOTE_TYPES and object_id:
            status = ctx.db.query(Status).filter(Status.activity_pub_id == object_id).first()
            if status is None or status.actor_id != actor.id:
                ctx.notes.append(f"update of unknown status {object_id}")
                continue
            status.content = value.get("content")
            ctx.db.flush()


def _delete_actor(db: Session, actor: Actor) -> None:
    status_ids = [row.id for row in db.query(Status.id).filter(Status.actor_id == actor.id)]
    db.query(StatusFavourite).filter(
        or_(StatusFavourite.actor_id == actor.id, StatusFavourite.status_id.in_(status_ids))
    ).delete(synchronize_session=False)
    if status_ids:
        db.query(Status).filter(Status.reblog_of_id.in_(status_ids)).delete(
            synchronize_session=False
        )
    db.query(Status).filter(Status.actor_id == actor.id).delete(synchronize_session=False)
    db.query(Follow).filter(
        or_(Follow.source_id == actor.id, Follow.target_id == actor.id)
    ).delete(synchronize_session=False)
    db.delete(actor)


def _delete_status(db: Session, status: Status) -> None:
    db.query(StatusFavourite).filter(StatusFavourite.status_id == status.id).delete(
        synchronize_session=False
    )
    db.query(Status).filter(Status.reblog_of_id == status.id).delete(synchronize_session=False)
    db.delete(status)


def handle_delete(ctx: HandlerContext) -> None:
    actor = ctx.actor
    for object_id in ctx.activity.object_ids():
        if actor is None:
            continue
        if object_id == actor.activity_pub_profile:
            if actor.is_local:
                raise PermanentProcessingError("local actors cannot be deleted remotely")
            _delete_actor(ctx.db, actor)
            ctx.db.flush()
            if ctx.resolver is not None:
                ctx.resolver.invalidate(object_id)
            logger.info("Deleted remote actor %s", object_id)
            return

        status = ctx.db.query(Status).filter(Status.activity_pub_id == object_id).first()
        if status is None:
            continue
        if status.is_local or status.actor_id != actor.id:
            raise PermanentProcessingError(
                f"{actor.activity_pub_profile} cannot delete status {object_id}"
            )
        _delete_status(ctx.db, status)
        ctx.db.flush()


def handle_like(ctx: HandlerContext) -> None:
    actor = ctx.require_actor()
    for object_id in ctx.activity.object_ids():
        status = _status_or_placeholder(ctx.db, object_id)
        favourite = (
            ctx.db.query(StatusFavourite)
            .filter(StatusFavourite.status_id == status.id, StatusFavourite.actor_id == actor.id)
            .first()
        )
        if favourite is None:
            ctx.db.add(
                StatusFavourite(
                    status_id=status.id, actor_id=actor.id, activity_id=ctx.activity.id
                )
            )
        ctx.db.flush()


def handle_announce(ctx: HandlerContext) -> None:
    actor = ctx.require_actor()
    for object_id in ctx.activity.object_ids():
        existing = (
            ctx.db.query(Status).filter(Status.activity_pub_id == ctx.activity.id).first()
        )
        if existing is not None:
            continue
        target = _status_or_placeholder(ctx.db, object_id)
        ctx.db.add(
            Status(
                activity_pub_id=ctx.activity.id,
                actor_id=actor.id,
                reblog_of_id=target.id,
                is_local=False,
            )
        )
        ctx.db.flush()


def _undo_follow(ctx: HandlerContext, actor: Actor, value: Any) -> bool:
    follow_query = ctx.db.query(Follow).filter(Follow.source_id == actor.id)
    if isinstance(value, dict):
        target = get_actor(ctx.db, reference_id(value.get("object")) or "")
        if target is None:
            return False
        follow_query = follow_query.filter(Follow.target_id == target.id)
    else:
        follow_id = reference_id(value)
        if follow_id is None:
            return False
        follow_query = follow_query.filter(Follow.activity_id == follow_id)
    deleted = follow_query.delete(synchronize_session=False)
    return deleted > 0


def _undo_like(ctx: HandlerContext, actor: Actor, value: Any) -> bool:
    favourite_query = ctx.db.query(StatusFavourite).filter(StatusFavourite.actor_id == actor.id)
    if isinstance(value, dict):
        status_id = reference_id(value.get("object"))
        status = ctx.db.query(Status).filter(Status.activity_pub_id == status_id).first()
        if status is None:
            return False
        favourite_query = favourite_query.filter(StatusFavourite.status_id == status.id)
    else:
        like_id = reference_id(value)
        if like_id is None:
            return False
        favourite_query = favourite_query.filter(StatusFavourite.activity_id == like_id)
    return favourite_query.delete(synchronize_session=False) > 0


def _undo_announce(ctx: HandlerContext, actor: Actor, value: Any) -> bool:
    reblog = (
        ctx.db.query(Status)
        .filter(
            Status.activity_pub_id == reference_id(value),
            Status.actor_id == actor.id,
            Status.reblog_of_id.is_not(None),
        )
        .first()
    )
    if reblog is None:
        return False
    ctx.db.delete(reblog)
    return True


_UNDO_BY_TYPE: dict[str, Callable[[HandlerContext, Actor, Any], bool]] = {
    "Follow": _undo_follow,
    "Like": _undo_like,
    "Announce": _undo_announce,
}


def handle_undo(ctx: HandlerContext) -> None:
    actor = ctx.require_actor()
    for value in ctx.activity.objects():
        kind = object_type(value)
        if kind is not None:
            undo = _UNDO_BY_TYPE.get(kind)
            if undo is None:
                ctx.notes.append(f"undo of {kind!r} is not supported")
                continue
            undone = undo(ctx, actor, value)
        else:
            # Bare id: the undone activity is whichever one we recorded under it
            undone = any(undo(ctx, actor, value) for undo in _UNDO_BY_TYPE.values())
        ctx.db.flush()
        if not undone:
            ctx.notes.append(f"nothing to undo for {reference_id(value)}")


def handle_move(ctx: HandlerContext) -> None:
    actor = ctx.require_actor()
    moved_from = reference_id(ctx.activity.object)
    if moved_from != actor.activity_pub_profile:
        raise PermanentProcessingError(f"{actor.activity_pub_profile} cannot move {moved_from}")
    target = reference_id(ctx.activity.target)
    if not target:
        raise PermanentProcessingError("move has no target")
    actor.moved_to = target
    ctx.db.flush()
    logger.info("Actor %s moved to %s", actor.activity_pub_profile, target)


HANDLERS: dict[ActivityKind, Handler] = {
    ActivityKind.FOLLOW: handle_follow,
    ActivityKind.ACCEPT: handle_accept,
    ActivityKind.REJECT: handle_reject,
    ActivityKind.CREATE: handle_create,
    ActivityKind.UPDATE: handle_update,
    ActivityKind.DELETE: handle_delete,
    ActivityKind.LIKE: handle_like,
    ActivityKind.ANNOUNCE: handle_announce,
    ActivityKind.UNDO: handle_undo,
    ActivityKind.MOVE: handle_move,
}
