"""Inbox job processing: verify, dispatch to a handler, classify the outcome."""

from __future__ import annotations

import logging

import httpx
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from lumen_federation.core.errors import (
    FederationError,
    KeyFetchError,
    MalformedActivityError,
    PermanentProcessingError,
    SignatureError,
    TransientProcessingError,
)
from lumen_federation.db.session import session_scope
from lumen_federation.models import Actor
from lumen_federation.schemas.activity import Activity, ActivityKind
from lumen_federation.schemas.envelope import Envelope
from lumen_federation.services.actors import get_actor, upsert_remote_actor
from lumen_federation.services.handlers import HANDLERS, HandlerContext
from lumen_federation.services.key_cache import PublicKeyResolver
from lumen_federation.services.queues import FederationQueue, QueueName
from lumen_federation.services.retry import ProcessingOutcome
from lumen_federation.services.signature_verifier import SignatureVerifier

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    KeyFetchError,
    TransientProcessingError,
    httpx.HTTPError,
    OperationalError,
    OSError,
)
PERMANENT_ERRORS: tuple[type[BaseException], ...] = (
    SignatureError,
    PermanentProcessingError,
    MalformedActivityError,
    IntegrityError,
    ValueError,
    KeyError,
    TypeError,
    FederationError,
)


def classify_failure(err: BaseException) -> ProcessingOutcome | None:
    """Map an exception to a failure outcome, or None if it is unexpected."""
    reason = f"{type(err).__name__}: {err}"
    if isinstance(err, TRANSIENT_ERRORS):
        return ProcessingOutcome.transient(reason)
    if isinstance(err, PERMANENT_ERRORS):
        return ProcessingOutcome.permanent(reason)
    return None


def deletes_own_actor(activity: Activity) -> bool:
    """True for a Delete whose object is the sending actor itself."""
    return activity.kind is ActivityKind.DELETE and (
        activity.first_actor_id is not None
        and activity.first_actor_id in activity.object_ids()
    )


class ActivityProcessor:
    """Processes envelopes from the user-inbox and shared-inbox queues."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        resolver: PublicKeyResolver,
        *,
        queue: FederationQueue | None = None,
        db_session: Session | None = None,
    ) -> None:
        self._verifier = verifier
        self._resolver = resolver
        self._queue = queue
        self._db_session = db_session

    async def process(self, envelope: Envelope) -> ProcessingOutcome:
        """Verify and apply one received activity.

        Never raises for expected failures; the outcome tells the caller
        whether to retry.
        """
        try:
            activity = envelope.activity
        except MalformedActivityError as err:
            return ProcessingOutcome.permanent(str(err))

        kind = activity.kind
        if kind is ActivityKind.UNSUPPORTED:
            logger.info("Ignoring unsupported activity %s of type %s", activity.id, activity.type)
            return ProcessingOutcome.success()

        # A deleted account cannot be fetched any more, only its stored key can verify
        local_key_only = deletes_own_actor(activity)

        try:
            await self._verifier.verify(envelope, allow_remote_fetch=not local_key_only)
        except Exception as err:
            outcome = classify_failure(err)
            if outcome is None:
                raise
            logger.warning("Rejected %s %s: %s", kind.value, activity.id, outcome.reason)
            return outcome

        with session_scope(self._db_session) as db:
            try:
                actor = await self._load_actor(db, activity, fetch=not local_key_only)
                context = HandlerContext(
                    db=db,
                    activity=activity,
                    actor=actor,
                    resolver=self._resolver,
                )
                HANDLERS[kind](context)
                db.commit()
            except Exception as err:
                db.rollback()
                outcome = classify_failure(err)
                if outcome is None:
                    raise
                logger.warning(
                    "Processing %s %s failed (%s): %s",
                    kind.value,
                    activity.id,
                    outcome.kind.value,
                    outcome.reason,
                )
                return outcome

        for note in context.notes:
            logger.info("%s %s: %s", kind.value, activity.id, note)

        if self._queue is not None:
            for request in context.follow_responses:
                try:
                    await self._queue.submit(
                        QueueName.FOLLOW_RESPONDER, request.model_dump(mode="json")
                    )
                except (RedisError, OSError) as err:
                    # Replaying the activity queues the response again
                    logger.warning(
                        "Queueing response to %s failed: %s", request.original_activity_id, err
                    )
                    return ProcessingOutcome.transient(f"{type(err).__name__}: {err}")

        logger.debug("Processed %s %s", kind.value, activity.id)
        return ProcessingOutcome.success()

    async def _load_actor(self, db: Session, activity: Activity, *, fetch: bool) -> Actor | None:
        actor_url = activity.first_actor_id
        if actor_url is None:
            return None
        actor = get_actor(db, actor_url)
        if actor is not None or not fetch:
            return actor
        # Key came from cache without a stored actor row
        document = await self._resolver.fetch_actor_document(actor_url)
        actor = upsert_remote_actor(db, document)
        db.commit()
        return actor
