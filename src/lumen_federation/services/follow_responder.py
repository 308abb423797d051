"""Sending Accept or Reject responses to remote Follow requests."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from lumen_federation.core.errors import MissingPrivateKeyError
from lumen_federation.db.session import session_scope
from lumen_federation.schemas.activity import ACTIVITY_STREAMS_CONTEXT
from lumen_federation.services.actors import get_actor
from lumen_federation.services.delivery import DeliveryClient
from lumen_federation.services.http_signatures import ActorSigner
from lumen_federation.services.retry import ProcessingOutcome

logger = logging.getLogger(__name__)


class FollowApprovalRequest(BaseModel):
    """Payload of the follow-responder queue.

    Attributes:
        requesting: Remote actor that sent the Follow.
        asked: Local actor that was followed; its key signs the response.
        inbox: Inbox of the requesting actor.
        original_activity_id: Id of the Follow being answered.
        approved: Send Accept when True, Reject otherwise.
        follow_id: Local id of the follow edge.
    """

    model_config = ConfigDict(frozen=True)

    requesting: str
    asked: str
    inbox: str | None = None
    original_activity_id: str | None = None
    approved: bool = True
    follow_id: int | None = None


def build_follow_response(request: FollowApprovalRequest) -> dict[str, Any]:
    """Build the Accept or Reject activity wrapping the original Follow."""
    kind = "Accept" if request.approved else "Reject"
    suffix = request.follow_id if request.follow_id is not None else request.original_activity_id
    return {
        "@context": ACTIVITY_STREAMS_CONTEXT,
        "id": f"{request.asked}#{kind.lower()}/follow/{suffix}",
        "type": kind,
        "actor": request.asked,
        "object": {
            "id": request.original_activity_id,
            "type": "Follow",
            "actor": request.requesting,
            "object": request.asked,
        },
    }


class FollowApprovalResponder:
    """Delivers Follow responses with the engine's signing and retry primitives."""

    def __init__(self, client: DeliveryClient, *, db_session: Session | None = None) -> None:
        self._client = client
        self._db_session = db_session

    async def respond(self, request: FollowApprovalRequest) -> ProcessingOutcome:
        """Send the response; missing inbox or Follow id is a silent no-op."""
        if not request.inbox or not request.original_activity_id:
            return ProcessingOutcome.success()

        try:
            signer = self._signer_for(request.asked)
        except MissingPrivateKeyError as e:
            logger.warning("Cannot answer follow of %s: %s", request.asked, e)
            return ProcessingOutcome.permanent(str(e))

        activity = build_follow_response(request)
        result = await self._client.deliver_with_retry(request.inbox, activity, signer=signer)
        if result.is_success:
            logger.info(
                "Sent %s of %s to %s", activity["type"], request.original_activity_id, request.inbox
            )
            return ProcessingOutcome.success()
        logger.warning(
            "Sending %s to %s failed after %d attempts: %s",
            activity["type"],
            request.inbox,
            result.attempts,
            result.error_message,
        )
        return ProcessingOutcome.permanent(result.error_message or "delivery failed")

    def _signer_for(self, actor_url: str) -> ActorSigner:
        with session_scope(self._db_session) as db:
            actor = get_actor(db, actor_url)
            if actor is None or not actor.is_local:
                raise MissingPrivateKeyError(f"{actor_url} is not a local actor")
            return ActorSigner.for_actor(actor)
