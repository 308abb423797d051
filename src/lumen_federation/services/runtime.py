"""Wiring of the federation services into one runtime owned by the application."""

from __future__ import annotations

import asyncio
import logging

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lumen_federation.core.settings import settings
from lumen_federation.schemas.envelope import Envelope
from lumen_federation.services.delivery import (
    DeliveryClient,
    OutboundDeliveryEngine,
    Sleeper,
)
from lumen_federation.services.domain_filter import BlockedDomainRegistry, DomainBlockFilter
from lumen_federation.services.follow_responder import (
    FollowApprovalRequest,
    FollowApprovalResponder,
)
from lumen_federation.services.inbound import InboundDispatcher
from lumen_federation.services.key_cache import PublicKeyCache, PublicKeyResolver
from lumen_federation.services.outbox import OutboxPublisher
from lumen_federation.services.processing import ActivityProcessor
from lumen_federation.services.queues import (
    ArqFederationQueue,
    FederationQueue,
    FederationWorkerPool,
    Payload,
    QueueName,
)
from lumen_federation.services.retry import ProcessingOutcome
from lumen_federation.services.signature_verifier import SignatureVerifier

logger = logging.getLogger(__name__)


class FederationRuntime:
    """Owns the queues, workers and shared clients of the federation engine."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        key_cache: PublicKeyCache | None = None,
        db_session: Session | None = None,
        queue: FederationQueue | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Build the runtime.

        Args:
            http_client: Client for key fetches and deliveries. Created and
                owned by the runtime when omitted.
            key_cache: Public key cache, Redis-backed per settings when omitted.
            db_session: Session shared by all services. Each unit of work opens
                its own session when omitted.
            queue: Where jobs are submitted. An arq queue on Redis per
                settings when omitted.
            sleep: Coroutine used to wait between delivery attempts.
        """
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            headers={"User-Agent": settings.user_agent},
        )
        self.queue: FederationQueue = queue or ArqFederationQueue()
        self.blocked_domains = BlockedDomainRegistry(db_session=db_session)
        self.domain_filter = DomainBlockFilter(self.blocked_domains)
        self.resolver = PublicKeyResolver(self.http_client, key_cache, db_session)
        self.verifier = SignatureVerifier(self.resolver)
        self.delivery_client = DeliveryClient(self.http_client, sleep=sleep)
        self.delivery_engine = OutboundDeliveryEngine(
            self.delivery_client, domain_filter=self.domain_filter, db_session=db_session
        )
        self.processor = ActivityProcessor(
            self.verifier, self.resolver, queue=self.queue, db_session=db_session
        )
        self.outbox = OutboxPublisher(self.verifier, self.delivery_engine, db_session=db_session)
        self.follow_responder = FollowApprovalResponder(
            self.delivery_client, db_session=db_session
        )
        self.dispatcher = InboundDispatcher(self.queue, self.domain_filter)
        self.workers = FederationWorkerPool(
            {
                QueueName.USER_INBOX: self._process_inbox,
                QueueName.SHARED_INBOX: self._process_inbox,
                QueueName.USER_OUTBOX: self._process_outbox,
                QueueName.FOLLOW_RESPONDER: self._respond_to_follow,
            },
        )

    async def start(self, *, run_workers: bool | None = None) -> None:
        """Load blocked domains and start background work."""
        try:
            self.blocked_domains.refresh()
        except SQLAlchemyError as e:
            logger.warning("Initial blocked domain load failed: %s", e)
        await self.blocked_domains.start()
        if settings.workers_enabled if run_workers is None else run_workers:
            await self.workers.start()

    async def stop(self) -> None:
        await self.workers.stop()
        await self.blocked_domains.stop()
        await self.queue.close()
        if self._owns_client:
            await self.http_client.aclose()

    async def _process_inbox(self, payload: Payload) -> ProcessingOutcome:
        return await self.processor.process(Envelope.model_validate(payload))

    async def _process_outbox(self, payload: Payload) -> ProcessingOutcome:
        return await self.outbox.process(Envelope.model_validate(payload))

    async def _respond_to_follow(self, payload: Payload) -> ProcessingOutcome:
        return await self.follow_responder.respond(FollowApprovalRequest.model_validate(payload))
