"""Accepting raw requests from the ingress endpoints onto the job queues."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum

from redis.exceptions import RedisError

from lumen_federation.core.errors import MalformedActivityError
from lumen_federation.schemas.activity import Activity
from lumen_federation.schemas.envelope import Envelope, IngressPoint
from lumen_federation.services.domain_filter import DomainBlockFilter
from lumen_federation.services.http_signatures import compute_digest
from lumen_federation.services.queues import QUEUE_FOR_INGRESS, FederationQueue

logger = logging.getLogger(__name__)


class DispatchResult(str, Enum):
    ENQUEUED = "enqueued"
    MALFORMED = "malformed"
    BLOCKED = "blocked"
    UNAVAILABLE = "unavailable"


class InboundDispatcher:
    """Parses, filters and enqueues received activities.

    Nothing here verifies signatures or touches the database; that happens
    in the workers so that ingress stays cheap.
    """

    def __init__(self, queue: FederationQueue, domain_filter: DomainBlockFilter) -> None:
        self._queue = queue
        self._domain_filter = domain_filter

    async def accept(
        self,
        body: bytes,
        headers: Mapping[str, str],
        *,
        ingress: IngressPoint,
        path: str,
        user_name: str | None = None,
    ) -> DispatchResult:
        try:
            activity = Activity.parse_body(body)
        except MalformedActivityError as e:
            logger.warning("Dropping malformed activity on %s: %s", ingress.value, e)
            return DispatchResult.MALFORMED

        logger.info(
            "Received %s %s from %s on %s",
            activity.type,
            activity.id,
            activity.first_actor_id,
            ingress.value,
        )

        if self._domain_filter.is_blocked(activity):
            logger.info(
                "Dropping %s from blocked domain (%s)", activity.id, activity.first_actor_id
            )
            return DispatchResult.BLOCKED

        envelope = Envelope.build(
            ingress=ingress,
            headers=headers,
            body=body,
            digest=compute_digest(body),
            path=path,
            user_name=user_name,
        )
        try:
            await self._queue.submit(
                QUEUE_FOR_INGRESS[ingress], envelope.model_dump(mode="json")
            )
        except (RedisError, OSError) as e:
            logger.error("Cannot queue %s on %s: %s", activity.id, ingress.value, e)
            return DispatchResult.UNAVAILABLE
        return DispatchResult.ENQUEUED
