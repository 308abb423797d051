"""Federation job queues on Redis via arq, and the workers that run them.

Every queue is an arq job function of the same name. Payloads are plain JSON
documents so any worker process can pick a job up. Each delivery of a job
rebuilds its RetryState from arq's try counter, and a transient failure is
deferred with the policy's backoff until the budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from arq import Retry
from arq.connections import ArqRedis, RedisSettings, create_pool
from arq.worker import Function, Worker, func

from lumen_federation.core.settings import settings
from lumen_federation.db.time import utcnow
from lumen_federation.schemas.envelope import IngressPoint
from lumen_federation.services.retry import (
    OutcomeKind,
    ProcessingOutcome,
    RetryPolicy,
    RetryState,
)

logger = logging.getLogger(__name__)

# Key under which job functions find the pool that runs them
WORKERS_CTX_KEY = "federation_workers"


class QueueName(str, Enum):
    USER_INBOX = "user-inbox"
    SHARED_INBOX = "shared-inbox"
    USER_OUTBOX = "user-outbox"
    FOLLOW_RESPONDER = "follow-responder"


QUEUE_FOR_INGRESS: dict[IngressPoint, QueueName] = {
    IngressPoint.ACTOR_INBOX: QueueName.USER_INBOX,
    IngressPoint.SHARED_INBOX: QueueName.SHARED_INBOX,
    IngressPoint.OUTBOX: QueueName.USER_OUTBOX,
}

Payload = dict[str, Any]
JobHandler = Callable[[Payload], Awaitable[ProcessingOutcome]]


def inbound_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.inbox_max_attempts,
        base_delay_seconds=settings.inbox_backoff_base_seconds,
        max_delay_seconds=settings.inbox_backoff_max_seconds,
    )


class FederationQueue(Protocol):
    """Where the engine submits work."""

    async def connect(self) -> Any: ...

    async def close(self) -> None: ...

    async def submit(self, queue: QueueName, payload: Payload) -> str | None: ...


class ArqFederationQueue:
    """Submits federation jobs to an arq queue on Redis."""

    def __init__(self, redis_url: str | None = None, queue_name: str | None = None) -> None:
        self.redis_url = redis_url or settings.queue_redis_url
        self.queue_name = queue_name or settings.queue_name
        self._redis: ArqRedis | None = None

    @property
    def redis_settings(self) -> RedisSettings:
        return RedisSettings.from_dsn(self.redis_url)

    async def connect(self) -> ArqRedis:
        if self._redis is None:
            self._redis = await create_pool(self.redis_settings)
        return self._redis

    async def close(self) -> None:
        if self._redis is None:
            return
        redis, self._redis = self._redis, None
        await redis.aclose()

    async def submit(self, queue: QueueName, payload: Payload) -> str | None:
        """Enqueue ``payload`` for ``queue`` and return the arq job id.

        Raises:
            redis.RedisError: Redis refused or dropped the connection.
            OSError: Redis could not be reached.
        """
        redis = await self.connect()
        job = await redis.enqueue_job(queue.value, payload, _queue_name=self.queue_name)
        if job is None:
            return None
        logger.debug("Submitted job %s to %s", job.job_id, queue.value)
        return job.job_id


@dataclass(frozen=True)
class JobResult:
    """Outcome of one run of a job.

    Attributes:
        outcome: What the handler reported, escalated to permanent once the
            retry budget is spent.
        retry_in: Seconds until the next attempt, or None when the job is done.
    """

    outcome: ProcessingOutcome
    retry_in: float | None = None


def _job_function(queue: QueueName) -> Callable[..., Awaitable[str]]:
    async def run(ctx: dict[str, Any], payload: Payload) -> str:
        workers: FederationWorkerPool = ctx[WORKERS_CTX_KEY]
        result = await workers.run_job(queue, payload, attempt=ctx.get("job_try") or 1)
        if result.retry_in is not None:
            raise Retry(defer=result.retry_in)
        return result.outcome.kind.value

    return run


def job_functions(max_tries: int | None = None) -> list[Function]:
    """arq functions for every queue, named after the queue."""
    tries = max_tries or settings.inbox_max_attempts
    return [func(_job_function(queue), name=queue.value, max_tries=tries) for queue in QueueName]


class FederationWorkerPool:
    """Runs federation jobs and applies the retry policy.

    Transient failures are deferred with exponential backoff until the job's
    retry budget is spent; the job is then dropped as a permanent failure.
    """

    def __init__(
        self,
        handlers: Mapping[QueueName, JobHandler],
        *,
        policy: RetryPolicy | None = None,
        redis_url: str | None = None,
        queue_name: str | None = None,
        worker_count: int | None = None,
    ) -> None:
        self._handlers = dict(handlers)
        self.policy = policy or inbound_retry_policy()
        self._redis_url = redis_url or settings.queue_redis_url
        self._queue_name = queue_name or settings.queue_name
        self._max_jobs = max(1, worker_count or settings.worker_count)
        self._worker: Worker | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Consume the arq queue in this process."""
        if self._worker is not None:
            return
        self._worker = Worker(
            functions=job_functions(self.policy.max_attempts),
            redis_settings=RedisSettings.from_dsn(self._redis_url),
            queue_name=self._queue_name,
            max_jobs=self._max_jobs,
            max_tries=self.policy.max_attempts,
            ctx={WORKERS_CTX_KEY: self},
            handle_signals=False,
        )
        self._task = asyncio.create_task(self._worker.async_run(), name="federation-worker")
        logger.info(
            "Started federation worker on %s with %d concurrent jobs",
            self._queue_name,
            self._max_jobs,
        )

    async def stop(self) -> None:
        if self._worker is None:
            return
        worker, task = self._worker, self._task
        self._worker = self._task = None
        await worker.close()
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def run_job(self, queue: QueueName, payload: Payload, *, attempt: int = 1) -> JobResult:
        """Run one delivery of a job; ``attempt`` counts from 1."""
        state = RetryState(self.policy, attempts=attempt - 1)
        state.record_attempt()
        try:
            outcome = await self._handlers[queue](payload)
        except Exception as err:
            logger.exception("Job on %s crashed (attempt %d)", queue.value, attempt)
            outcome = ProcessingOutcome.transient(f"{type(err).__name__}: {err}")

        if outcome.kind is OutcomeKind.SUCCESS:
            state.record_success()
            return JobResult(outcome)

        retryable = outcome.kind is OutcomeKind.TRANSIENT
        now = utcnow()
        state.record_failure(now, outcome.reason or "", retryable=retryable)
        if not state.is_terminal:
            logger.info(
                "Job on %s failed transiently (attempt %d): %s",
                queue.value,
                attempt,
                outcome.reason,
            )
            return JobResult(outcome, retry_in=state.seconds_until_eligible(now))

        if retryable:
            logger.warning(
                "Job on %s gave up after %d attempts: %s", queue.value, attempt, outcome.reason
            )
            reason = outcome.reason or "retry budget exhausted"
            return JobResult(ProcessingOutcome.permanent(reason))
        logger.warning("Job on %s dropped: %s", queue.value, outcome.reason)
        return JobResult(outcome)
