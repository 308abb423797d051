"""Outbound delivery of signed activities to remote inboxes.

The engine resolves recipients to distinct inbox URLs, records a
DeliveryEvent with one item per inbox, and delivers to every inbox
concurrently. Each destination runs through its own bounded RetryState.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lumen_federation.core.errors import DeliveryEventNotFoundError
from lumen_federation.core.settings import settings
from lumen_federation.db.session import session_scope
from lumen_federation.db.time import utcnow
from lumen_federation.models import (
    Actor,
    DeliveryEvent,
    DeliveryEventItem,
    DeliveryEventResult,
    DeliveryEventType,
    Follow,
)
from lumen_federation.services.domain_filter import DomainBlockFilter
from lumen_federation.services.http_signatures import ActorSigner
from lumen_federation.services.retry import RetryPolicy, RetryState, RetryStatus

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400
HTTP_REQUEST_TIMEOUT = 408
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500
RETRYABLE_CLIENT_ERRORS = frozenset({HTTP_REQUEST_TIMEOUT, HTTP_TOO_MANY_REQUESTS})
MAX_ERROR_LENGTH = 500

Sleeper = Callable[[float], Awaitable[None]]


def delivery_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.delivery_max_attempts,
        base_delay_seconds=settings.delivery_backoff_base_seconds,
        max_delay_seconds=settings.delivery_backoff_max_seconds,
    )


def compute_event_result(successes: Iterable[bool]) -> DeliveryEventResult:
    """Terminal result of an event from the outcomes of its items."""
    outcomes = list(successes)
    if all(outcomes):
        return DeliveryEventResult.FINISHED
    if not any(outcomes):
        return DeliveryEventResult.FAILED
    return DeliveryEventResult.FINISHED_WITH_ERRORS


@dataclass(frozen=True)
class AttemptResult:
    ok: bool
    retryable: bool
    status_code: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class DestinationResult:
    """Terminal outcome of delivering to one inbox."""

    url: str
    is_success: bool
    attempts: int
    error_message: str | None
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class Addressing:
    """Who an outbound activity is for.

    Attributes:
        actor_urls: Explicitly addressed actor URIs.
        followers_of: Local actor id whose approved followers are addressed.
    """

    actor_urls: tuple[str, ...] = ()
    followers_of: int | None = None


class DeliveryClient:
    """Signs and POSTs activities, retrying one destination within its budget."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = http_client
        self.policy = policy or delivery_retry_policy()
        self._sleep = sleep
        self._clock = clock

    async def post_once(self, url: str, body: bytes, signer: ActorSigner) -> AttemptResult:
        """Perform a single signed POST.

        Transport failures are retryable. Anything else that stops the request
        from being built or sent, such as an unparseable inbox URL, is not.
        """
        try:
            headers = signer.signed_headers(url, body, user_agent=settings.user_agent)
            response = await self._client.post(url, content=body, headers=headers)
        except httpx.HTTPError as err:
            return AttemptResult(ok=False, retryable=True, error=f"{type(err).__name__}: {err}")
        except Exception as err:
            logger.warning("Cannot deliver to %r: %s", url, err)
            return AttemptResult(ok=False, retryable=False, error=f"{type(err).__name__}: {err}")

        status_code = response.status_code
        if status_code < HTTP_BAD_REQUEST:
            return AttemptResult(ok=True, retryable=False, status_code=status_code)
        retryable = (
            status_code >= HTTP_INTERNAL_SERVER_ERROR or status_code in RETRYABLE_CLIENT_ERRORS
        )
        return AttemptResult(
            ok=False,
            retryable=retryable,
            status_code=status_code,
            error=f"HTTP {status_code}: {response.text[:MAX_ERROR_LENGTH]}".rstrip(": "),
        )

    async def deliver_with_retry(
        self, url: str, activity: dict[str, Any], *, signer: ActorSigner
    ) -> DestinationResult:
        """Deliver ``activity`` to ``url`` until success or the retry budget runs out.

        Every attempt is signed again so the Date header stays current.
        """
        body = json.dumps(activity).encode("utf-8")
        state = RetryState(self.policy)
        start_at = self._clock()

        while not state.is_terminal:
            wait = state.seconds_until_eligible(self._clock())
            if wait > 0:
                await self._sleep(wait)
            attempt = state.record_attempt()
            result = await self.post_once(url, body, signer)
            if result.ok:
                state.record_success()
                break
            logger.debug("Delivery to %s attempt %d failed: %s", url, attempt, result.error)
            state.record_failure(self._clock(), result.error or "", retryable=result.retryable)

        return DestinationResult(
            url=url,
            is_success=state.status is RetryStatus.SUCCEEDED,
            attempts=state.attempts,
            error_message=state.last_error,
            start_at=start_at,
            end_at=self._clock(),
        )


class OutboundDeliveryEngine:
    """Fans activities out to remote inboxes and records the audit trail."""

    def __init__(
        self,
        client: DeliveryClient,
        *,
        domain_filter: DomainBlockFilter | None = None,
        db_session: Session | None = None,
    ) -> None:
        self.client = client
        self._domain_filter = domain_filter
        self._db_session = db_session

    def resolve_inboxes(self, db: Session, addressing: Addressing) -> list[str]:
        """Map recipients to distinct inbox URLs, preferring shared inboxes."""
        recipients: list[Actor] = []
        if addressing.followers_of is not None:
            recipients.extend(
                db.query(Actor)
                .join(Follow, Follow.source_id == Actor.id)
                .filter(
                    Follow.target_id == addressing.followers_of,
                    Follow.approved.is_(True),
                    Actor.is_local.is_(False),
                )
                .order_by(Actor.id)
                .all()
            )
        if addressing.actor_urls:
            recipients.extend(
                db.query(Actor)
                .filter(
                    Actor.activity_pub_profile.in_(addressing.actor_urls),
                    Actor.is_local.is_(False),
                )
                .order_by(Actor.id)
                .all()
            )

        inboxes: dict[str, None] = {}
        for actor in recipients:
            inbox = actor.delivery_inbox
            if not inbox:
                logger.warning("Actor %s has no inbox, skipping", actor.activity_pub_profile)
                continue
            if self._domain_filter is not None and self._domain_filter.is_blocked_url(inbox):
                logger.info("Not delivering to blocked inbox %s", inbox)
                continue
            inboxes.setdefault(inbox, None)
        return list(inboxes)

    def create_event(
        self,
        activity: dict[str, Any],
        *,
        actor: Actor,
        event_type: DeliveryEventType,
        addressing: Addressing,
    ) -> tuple[int, bool]:
        """Persist a waiting event with one item per destination inbox.

        An activity id maps to at most one event. When ``activity`` already has
        one, its id is returned with ``created`` set to False.
        """
        activity_id = activity.get("id")
        with session_scope(self._db_session) as db:
            existing = self._find_event(db, activity_id)
            if existing is not None:
                return existing.id, False

            inboxes = self.resolve_inboxes(db, addressing)
            event = DeliveryEvent(
                type=event_type,
                result=DeliveryEventResult.WAITING,
                actor_id=actor.id,
                activity_id=activity_id,
                attempts=0,
            )
            event.items = [DeliveryEventItem(url=inbox, attempts=0) for inbox in inboxes]
            db.add(event)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._find_event(db, activity_id)
                if existing is None:
                    raise
                return existing.id, False
            logger.info(
                "Created delivery event %s (%s) with %d destinations",
                event.id,
                event_type.value,
                len(inboxes),
            )
            return event.id, True

    async def run(
        self, event_id: int, activity: dict[str, Any], *, signer: ActorSigner
    ) -> DeliveryEvent:
        """Deliver a waiting event and drive it to a terminal result."""
        with session_scope(self._db_session) as db:
            event = db.get(DeliveryEvent, event_id)
            if event is None:
                raise DeliveryEventNotFoundError(f"delivery event {event_id} does not exist")
            items = list(event.items)

            if not items:
                event.transition(DeliveryEventResult.FINISHED)
                event.start_at = event.end_at = utcnow()
                db.commit()
                db.refresh(event)
                return event

            event.transition(DeliveryEventResult.PROCESSING)
            event.start_at = utcnow()
            db.commit()

            async def _deliver(item: DeliveryEventItem) -> None:
                started = utcnow()
                try:
                    result = await self.client.deliver_with_retry(
                        item.url, activity, signer=signer
                    )
                except Exception as err:
                    logger.exception("Delivery to %s crashed", item.url)
                    result = DestinationResult(
                        url=item.url,
                        is_success=False,
                        attempts=max(item.attempts, 1),
                        error_message=f"{type(err).__name__}: {err}"[:MAX_ERROR_LENGTH],
                        start_at=started,
                        end_at=utcnow(),
                    )
                self._record_item(db, item, result)

            try:
                await asyncio.gather(*(_deliver(item) for item in items))
            finally:
                self._finish(db, event, items)
            db.refresh(event)
            return event

    async def publish(
        self,
        activity: dict[str, Any],
        *,
        actor: Actor,
        signer: ActorSigner,
        event_type: DeliveryEventType,
        addressing: Addressing,
    ) -> DeliveryEvent:
        """Create the audit event for ``activity`` and deliver it.

        Publishing an activity that already has a started or finished event
        returns that event without delivering again.
        """
        event_id, created = self.create_event(
            activity, actor=actor, event_type=event_type, addressing=addressing
        )
        if not created:
            with session_scope(self._db_session) as db:
                event = db.get(DeliveryEvent, event_id)
                if event is None:
                    raise DeliveryEventNotFoundError(f"delivery event {event_id} does not exist")
                if event.result is not DeliveryEventResult.WAITING:
                    logger.info(
                        "Activity %s already has delivery event %s (%s), not delivering again",
                        activity.get("id"),
                        event.id,
                        event.result.value,
                    )
                    return event
        return await self.run(event_id, activity, signer=signer)

    @staticmethod
    def _find_event(db: Session, activity_id: str | None) -> DeliveryEvent | None:
        if not activity_id:
            return None
        return db.query(DeliveryEvent).filter(DeliveryEvent.activity_id == activity_id).first()

    @staticmethod
    def _record_item(db: Session, item: DeliveryEventItem, result: DestinationResult) -> None:
        if item.is_terminal:
            return
        item.is_success = result.is_success
        item.attempts = result.attempts
        item.error_message = result.error_message
        item.start_at = result.start_at
        item.end_at = result.end_at
        db.commit()

    @staticmethod
    def _finish(db: Session, event: DeliveryEvent, items: list[DeliveryEventItem]) -> None:
        """Close ``event`` from its item rows, failing any item left open."""
        now = utcnow()
        for item in items:
            if not item.is_terminal:
                item.is_success = False
                item.error_message = item.error_message or "delivery interrupted"
                item.end_at = now
        failures = [item for item in items if not item.is_success]
        event.transition(compute_event_result(bool(item.is_success) for item in items))
        event.attempts = max(item.attempts for item in items)
        event.end_at = now
        if failures:
            event.error_message = (
                f"{len(failures)} of {len(items)} destinations failed: "
                + "; ".join(f"{item.url}: {item.error_message}" for item in failures)
            )[:MAX_ERROR_LENGTH * 2]
        db.commit()
        logger.info(
            "Delivery event %s finished as %s (%d/%d delivered)",
            event.id,
            event.result.value,
            len(items) - len(failures),
            len(items),
        )
