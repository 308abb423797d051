"""Standalone federation worker.

Run with ``arq lumen_federation.worker.WorkerSettings`` to process the
federation queues outside the web process. Web processes then set
``FEDERATION_WORKERS_ENABLED=false`` and only submit jobs.
"""

from __future__ import annotations

import logging
from typing import Any

from arq.connections import RedisSettings

from lumen_federation.core.logging import configure_logging
from lumen_federation.core.settings import settings
from lumen_federation.services.queues import WORKERS_CTX_KEY, job_functions
from lumen_federation.services.runtime import FederationRuntime

logger = logging.getLogger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    configure_logging()
    runtime = FederationRuntime()
    await runtime.start(run_workers=False)
    ctx["runtime"] = runtime
    ctx[WORKERS_CTX_KEY] = runtime.workers
    logger.info("Federation worker ready on %s", settings.queue_name)


async def shutdown(ctx: dict[str, Any]) -> None:
    runtime: FederationRuntime | None = ctx.get("runtime")
    if runtime is not None:
        await runtime.stop()


class WorkerSettings:
    """arq settings for the federation worker."""

    redis_settings = RedisSettings.from_dsn(settings.queue_redis_url)
    queue_name = settings.queue_name
    functions = job_functions(settings.inbox_max_attempts)
    max_tries = settings.inbox_max_attempts
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = settings.worker_count
