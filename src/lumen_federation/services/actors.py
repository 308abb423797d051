"""Lookup and caching of actor records."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from lumen_federation.models import Actor
from lumen_federation.schemas.activity import as_list, reference_id

logger = logging.getLogger(__name__)


def host_of(url: str) -> str | None:
    """Return the lower-cased host of a URI, without port or trailing dot."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.rstrip(".").lower()


def get_actor(db: Session, profile: str) -> Actor | None:
    return db.query(Actor).filter(Actor.activity_pub_profile == profile).first()


def get_local_actor(db: Session, user_name: str) -> Actor | None:
    return (
        db.query(Actor)
        .filter(Actor.is_local.is_(True), Actor.user_name == user_name)
        .first()
    )


def extract_public_key(
    document: dict[str, Any], key_id: str | None = None
) -> tuple[str, str] | None:
    """Return ``(owner, pem)`` of the key advertised by an actor document.

    When the document lists several keys the one matching ``key_id`` wins.
    Keys claiming an owner other than the document itself are ignored.
    """
    actor_id = document.get("id")
    candidates = [item for item in as_list(document.get("publicKey")) if isinstance(item, dict)]
    if key_id is not None:
        matching = [item for item in candidates if item.get("id") == key_id]
        candidates = matching or candidates
    for item in candidates:
        pem = item.get("publicKeyPem")
        if isinstance(pem, str) and pem.strip():
            owner = item.get("owner") or actor_id
            if isinstance(owner, str) and owner == actor_id:
                return owner, pem
    return None


def upsert_remote_actor(db: Session, document: dict[str, Any]) -> Actor:
    """Create or refresh a remote actor from its ActivityPub document.

    Raises:
        ValueError: If the document has no usable id.
    """
    profile = reference_id(document)
    if not profile:
        raise ValueError("actor document has no id")
    host = host_of(profile)
    if host is None:
        raise ValueError(f"actor id {profile!r} has no host")

    actor = get_actor(db, profile)
    if actor is None:
        actor = Actor(activity_pub_profile=profile, is_local=False, domain=host)
        db.add(actor)
    elif actor.is_local:
        # Never let a remote document overwrite a local account
        return actor

    endpoints = document.get("endpoints") if isinstance(document.get("endpoints"), dict) else {}
    key = extract_public_key(document)

    actor.user_name = str(document.get("preferredUsername") or actor.user_name or host)
    actor.domain = host
    actor.inbox = reference_id(document.get("inbox")) or actor.inbox
    actor.shared_inbox = reference_id(endpoints.get("sharedInbox")) or actor.shared_inbox
    actor.manually_approves_followers = bool(document.get("manuallyApprovesFollowers", False))
    if key is not None:
        actor.public_key_pem = key[1]
    moved_to = reference_id(document.get("movedTo"))
    if moved_to:
        actor.moved_to = moved_to
    db.flush()
    logger.debug("Stored remote actor %s", profile)
    return actor
