"""Publishing activities posted to a local actor's outbox."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from lumen_federation.core.errors import MalformedActivityError
from lumen_federation.db.session import session_scope
from lumen_federation.models import Actor, DeliveryEventType
from lumen_federation.schemas.activity import Activity, ActivityKind, object_type
from lumen_federation.schemas.envelope import Envelope
from lumen_federation.services.actors import get_local_actor
from lumen_federation.services.delivery import Addressing, OutboundDeliveryEngine
from lumen_federation.services.http_signatures import ActorSigner
from lumen_federation.services.processing import classify_failure
from lumen_federation.services.retry import ProcessingOutcome
from lumen_federation.services.signature_verifier import SignatureVerifier

logger = logging.getLogger(__name__)

_EVENT_TYPES: dict[ActivityKind, DeliveryEventType] = {
    ActivityKind.CREATE: DeliveryEventType.CREATE,
    ActivityKind.UPDATE: DeliveryEventType.UPDATE,
    ActivityKind.DELETE: DeliveryEventType.DELETE,
    ActivityKind.LIKE: DeliveryEventType.LIKE,
    ActivityKind.ANNOUNCE: DeliveryEventType.ANNOUNCE,
    ActivityKind.FOLLOW: DeliveryEventType.FOLLOW,
}

_UNDO_EVENT_TYPES: dict[str, DeliveryEventType] = {
    "Like": DeliveryEventType.UNLIKE,
    "Announce": DeliveryEventType.UNANNOUNCE,
    "Follow": DeliveryEventType.UNFOLLOW,
}


def event_type_for(activity: Activity) -> DeliveryEventType | None:
    """Audit event type of an outbound activity, None when not deliverable."""
    kind = activity.kind
    if kind is ActivityKind.UNDO:
        undone = next((object_type(item) for item in activity.objects()), None)
        return _UNDO_EVENT_TYPES.get(undone or "")
    return _EVENT_TYPES.get(kind)


def addressing_for(activity: Activity, actor: Actor) -> Addressing:
    """Translate ``to``/``cc`` into followers and explicit recipients."""
    recipients = activity.recipients()
    followers_url = actor.followers_url
    return Addressing(
        actor_urls=tuple(url for url in recipients if url != followers_url),
        followers_of=actor.id if followers_url in recipients else None,
    )


class OutboxPublisher:
    """Consumer of the user-outbox queue."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        engine: OutboundDeliveryEngine,
        *,
        db_session: Session | None = None,
    ) -> None:
        self._verifier = verifier
        self._engine = engine
        self._db_session = db_session

    async def process(self, envelope: Envelope) -> ProcessingOutcome:
        try:
            activity = envelope.activity
        except MalformedActivityError as err:
            return ProcessingOutcome.permanent(str(err))

        with session_scope(self._db_session) as db:
            actor = get_local_actor(db, envelope.user_name or "")
            if actor is None:
                return ProcessingOutcome.permanent(f"unknown local actor {envelope.user_name!r}")
            if activity.first_actor_id != actor.activity_pub_profile:
                return ProcessingOutcome.permanent(
                    f"{activity.first_actor_id} cannot post to the outbox of {actor.user_name}"
                )

            event_type = event_type_for(activity)
            if event_type is None:
                logger.info("Not delivering %s of type %s", activity.id, activity.type)
                return ProcessingOutcome.permanent(f"unsupported outbound type {activity.type}")

            try:
                await self._verifier.verify(
                    envelope,
                    expected_actor=actor.activity_pub_profile,
                    allow_remote_fetch=False,
                )
                signer = ActorSigner.for_actor(actor)
            except Exception as err:
                outcome = classify_failure(err)
                if outcome is None:
                    raise
                logger.warning("Rejected outbox post %s: %s", activity.id, outcome.reason)
                return outcome

            event = await self._engine.publish(
                activity.to_payload(),
                actor=actor,
                signer=signer,
                event_type=event_type,
                addressing=addressing_for(activity, actor),
            )
        logger.info("Outbox activity %s delivered as event %s", activity.id, event.id)
        return ProcessingOutcome.success()
