"""Public ActivityPub documents of local actors and WebFinger discovery."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse

from lumen_federation.api.v1.dependencies import SessionDep
from lumen_federation.core.settings import settings
from lumen_federation.models import Actor
from lumen_federation.services.actor_documents import (
    JRD_CONTENT_TYPE,
    FollowCollection,
    actor_document,
    follow_collection,
    parse_account,
    webfinger_document,
)
from lumen_federation.services.actors import get_actor, get_local_actor
from lumen_federation.services.http_signatures import ACTIVITY_CONTENT_TYPE

router = APIRouter(tags=["actors"])


def _activity_json(document: dict[str, Any]) -> JSONResponse:
    return JSONResponse(document, media_type=ACTIVITY_CONTENT_TYPE)


def _local_actor_or_404(db: SessionDep, user_name: str) -> Actor:
    actor = get_local_actor(db, user_name)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Actor not found")
    return actor


@router.get("/actors/{user_name}")
async def read_actor(user_name: str, db: SessionDep) -> JSONResponse:
    """Person document with the actor's public key and inboxes."""
    return _activity_json(actor_document(_local_actor_or_404(db, user_name)))


async def _collection(
    db: SessionDep, user_name: str, collection: FollowCollection, page: int | None
) -> JSONResponse:
    actor = _local_actor_or_404(db, user_name)
    return _activity_json(follow_collection(db, actor, collection, page=page))


@router.get("/actors/{user_name}/followers")
async def read_followers(
    user_name: str, db: SessionDep, page: int | None = Query(None, ge=1)
) -> JSONResponse:
    """Approved followers, as a collection or one page of it."""
    return await _collection(db, user_name, FollowCollection.FOLLOWERS, page)


@router.get("/actors/{user_name}/following")
async def read_following(
    user_name: str, db: SessionDep, page: int | None = Query(None, ge=1)
) -> JSONResponse:
    """Actors this actor follows with approval, as a collection or one page of it."""
    return await _collection(db, user_name, FollowCollection.FOLLOWING, page)


@router.get("/.well-known/webfinger")
async def webfinger(db: SessionDep, resource: str | None = Query(None)) -> JSONResponse:
    """Resolve ``acct:name@host`` or an actor URL to the actor document link."""
    if not resource:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="resource is required")

    if resource.startswith(("https://", "http://")):
        actor = get_actor(db, resource)
    else:
        account = parse_account(resource)
        if account is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="resource is not an account"
            )
        user_name, host = account
        actor = get_local_actor(db, user_name) if host == settings.instance_host else None

    if actor is None or not actor.is_local:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Actor not found")
    return JSONResponse(webfinger_document(actor), media_type=JRD_CONTENT_TYPE)
