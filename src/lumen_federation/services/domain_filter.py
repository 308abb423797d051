"""Instance-level domain blocking for received activities."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lumen_federation.core.settings import settings
from lumen_federation.db.session import session_scope
from lumen_federation.db.time import utcnow
from lumen_federation.models import InstanceBlockedDomain
from lumen_federation.schemas.activity import Activity
from lumen_federation.services.actors import host_of

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    return domain.strip().rstrip(".").lower()


@dataclass(frozen=True)
class BlockedDomainSnapshot:
    """Immutable view of the blocked domains at one point in time."""

    domains: frozenset[str] = frozenset()
    loaded_at: datetime = field(default_factory=utcnow)

    @classmethod
    def of(cls, domains: Iterable[str]) -> BlockedDomainSnapshot:
        return cls(frozenset(normalize_domain(domain) for domain in domains if domain.strip()))

    def __contains__(self, host: object) -> bool:
        return isinstance(host, str) and normalize_domain(host) in self.domains


class BlockedDomainRegistry:
    """Holds the current snapshot and reloads it from the database.

    Readers only ever see a complete snapshot; a refresh swaps the reference.
    """

    def __init__(
        self,
        snapshot: BlockedDomainSnapshot | None = None,
        db_session: Session | None = None,
    ) -> None:
        self._snapshot = snapshot or BlockedDomainSnapshot()
        self._db_session = db_session
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def snapshot(self) -> BlockedDomainSnapshot:
        return self._snapshot

    def refresh(self) -> BlockedDomainSnapshot:
        """Reload blocked domains from the database and publish a new snapshot."""
        with session_scope(self._db_session) as db:
            domains = [row.domain for row in db.query(InstanceBlockedDomain.domain).all()]
        self._snapshot = BlockedDomainSnapshot.of(domains)
        logger.debug("Loaded %d blocked domains", len(self._snapshot.domains))
        return self._snapshot

    async def start(self) -> None:
        """Start the periodic refresh loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(1.0, float(settings.blocked_domains_refresh_seconds))
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
                return
            except TimeoutError:
                pass
            try:
                await asyncio.to_thread(self.refresh)
            except SQLAlchemyError as e:
                # Keep serving the previous snapshot
                logger.warning("Refreshing blocked domains failed: %s", e)


class DomainBlockFilter:
    """Decides whether an activity comes from a blocked instance."""

    def __init__(self, registry: BlockedDomainRegistry) -> None:
        self._registry = registry

    def is_blocked(self, activity: Activity) -> bool:
        """Return True if any actor of the activity lives on a blocked domain.

        Activities without a parseable actor URI are let through.
        """
        hosts = [host for host in (host_of(url) for url in activity.actor_ids()) if host]
        if not hosts:
            logger.warning("Activity %s has no parseable actor, not filtering", activity.id)
            return False
        snapshot = self._registry.snapshot
        return any(host in snapshot for host in hosts)

    def is_blocked_url(self, url: str) -> bool:
        host = host_of(url)
        return host is not None and host in self._registry.snapshot
