"""Resolution and caching of remote actors' public keys."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any

import httpx
import redis
from sqlalchemy.orm import Session

from lumen_federation.core.errors import KeyFetchError, UnknownActorKeyError
from lumen_federation.core.settings import settings
from lumen_federation.db.session import session_scope
from lumen_federation.services.actors import extract_public_key, get_actor, upsert_remote_actor

logger = logging.getLogger(__name__)

ACTIVITY_ACCEPT = (
    "application/activity+json, "
    'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
)

HTTP_BAD_REQUEST = 400
HTTP_REQUEST_TIMEOUT = 408
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500


@dataclass(frozen=True)
class ResolvedKey:
    """Public key of an actor and where it came from."""

    key_id: str
    owner: str
    public_key_pem: str
    from_cache: bool


class PublicKeyCache:
    """Key id to PEM cache backed by Redis, or a process-local map without it."""

    def __init__(self, redis_url: str | None = None, ttl_seconds: int | None = None) -> None:
        self._ttl = int(ttl_seconds or settings.public_key_cache_ttl_seconds)
        self._entries: dict[str, tuple[float, str, str]] = {}
        self._lock = Lock()
        self._redis: redis.Redis | None = None
        url = redis_url if redis_url is not None else settings.redis_url
        if url:
            try:
                self._redis = redis.from_url(url)
            except (ValueError, redis.RedisError):
                logger.warning("Redis unavailable for key cache, using in-process cache")
                self._redis = None

    @staticmethod
    def _redis_key(key_id: str) -> str:
        return f"pubkey:{key_id}"

    def get(self, key_id: str) -> tuple[str, str] | None:
        """Return ``(owner, pem)`` for a key id if cached and fresh."""
        if self._redis is not None:
            try:
                raw = self._redis.get(self._redis_key(key_id))
            except redis.RedisError:
                logger.warning("Redis read failed, falling back to in-process key cache")
                self._redis = None
            else:
                if raw is None:
                    return None
                entry = json.loads(raw)
                return entry["owner"], entry["pem"]

        with self._lock:
            entry = self._entries.get(key_id)
            if entry is None:
                return None
            expiry, owner, pem = entry
            if expiry < time.monotonic():
                self._entries.pop(key_id, None)
                return None
            return owner, pem

    def set(self, key_id: str, owner: str, pem: str) -> None:
        if self._redis is not None:
            try:
                self._redis.set(
                    self._redis_key(key_id), json.dumps({"owner": owner, "pem": pem}), ex=self._ttl
                )
                return
            except redis.RedisError:
                logger.warning("Redis write failed, falling back to in-process key cache")
                self._redis = None

        with self._lock:
            self._entries[key_id] = (time.monotonic() + self._ttl, owner, pem)

    def evict(self, key_id: str) -> None:
        if self._redis is not None:
            try:
                self._redis.delete(self._redis_key(key_id))
            except redis.RedisError:
                self._redis = None
        with self._lock:
            self._entries.pop(key_id, None)


class PublicKeyResolver:
    """Finds the public key for a ``keyId``: cache, then database, then the owner's server."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: PublicKeyCache | None = None,
        db_session: Session | None = None,
    ) -> None:
        self._client = http_client
        self.cache = cache or PublicKeyCache()
        self._db_session = db_session

    async def resolve(
        self,
        key_id: str,
        *,
        refresh: bool = False,
        allow_remote_fetch: bool = True,
    ) -> ResolvedKey:
        """Return the key for ``key_id``.

        Args:
            key_id: The ``keyId`` from the Signature header.
            refresh: Skip cache and stored copies and fetch the owner's document.
            allow_remote_fetch: When False only locally stored keys are used.

        Raises:
            KeyFetchError: The owner's server could not be reached.
            UnknownActorKeyError: No usable key exists for ``key_id``.
        """
        if not refresh:
            cached = self.cache.get(key_id)
            if cached is not None:
                return ResolvedKey(key_id, cached[0], cached[1], from_cache=True)
            stored = self._load_stored(key_id)
            if stored is not None:
                self.cache.set(key_id, stored.owner, stored.public_key_pem)
                return stored

        if not allow_remote_fetch:
            raise UnknownActorKeyError(f"no stored key for {key_id}")

        owner_url = key_id.split("#", 1)[0]
        document = await self.fetch_actor_document(owner_url)
        if document.get("id") != owner_url:
            raise UnknownActorKeyError(
                f"actor document {owner_url} identifies as {document.get('id')!r}"
            )
        key = extract_public_key(document, key_id)
        if key is None:
            raise UnknownActorKeyError(f"actor document {owner_url} has no public key")
        owner, pem = key
        if owner != owner_url:
            raise UnknownActorKeyError(f"key {key_id} is not owned by {owner_url}")

        with session_scope(self._db_session) as db:
            upsert_remote_actor(db, document)
            db.commit()

        self.cache.set(key_id, owner, pem)
        logger.debug("Fetched public key %s", key_id)
        return ResolvedKey(key_id, owner, pem, from_cache=False)

    def _load_stored(self, key_id: str) -> ResolvedKey | None:
        owner_url = key_id.split("#", 1)[0]
        with session_scope(self._db_session) as db:
            actor = get_actor(db, owner_url)
            if actor is None or not actor.public_key_pem:
                return None
            return ResolvedKey(key_id, actor.activity_pub_profile, actor.public_key_pem, True)

    async def fetch_actor_document(self, url: str) -> dict[str, Any]:
        """GET an actor document.

        Raises:
            KeyFetchError: On transport errors, timeouts and 5xx/408/429 responses.
            UnknownActorKeyError: On other 4xx responses or a non-JSON body.
        """
        try:
            response = await self._client.get(
                url,
                headers={"Accept": ACTIVITY_ACCEPT, "User-Agent": settings.user_agent},
                follow_redirects=True,
            )
        except httpx.HTTPError as err:
            raise KeyFetchError(f"fetching {url} failed: {err}") from err

        status_code = response.status_code
        if status_code >= HTTP_INTERNAL_SERVER_ERROR or status_code in (
            HTTP_REQUEST_TIMEOUT,
            HTTP_TOO_MANY_REQUESTS,
        ):
            raise KeyFetchError(f"fetching {url} returned {status_code}")
        if status_code >= HTTP_BAD_REQUEST:
            raise UnknownActorKeyError(f"fetching {url} returned {status_code}")

        try:
            document = response.json()
        except ValueError as err:
            raise UnknownActorKeyError(f"actor document {url} is not JSON") from err
        if not isinstance(document, dict):
            raise UnknownActorKeyError(f"actor document {url} is not an object")
        return document

    def invalidate(self, actor_url: str) -> None:
        """Forget cached keys of an actor, e.g. after an Update of its profile."""
        self.cache.evict(f"{actor_url}#main-key")
        self.cache.evict(actor_url)
