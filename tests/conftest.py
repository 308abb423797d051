# tests/conftest.py
from __future__ import annotations

import json
import os
from collections.abc import Awaitable, Callable, Generator, Iterator
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FEDERATION_BASE_ADDRESS", "https://lumen.test")
os.environ.setdefault("FEDERATION_WORKERS_ENABLED", "false")

from lumen_federation.db.session import Base
from lumen_federation.db.session import get_db as app_get_session
from lumen_federation.main import app as fastapi_app
from lumen_federation.models import Actor, Follow
from lumen_federation.schemas.envelope import Envelope, IngressPoint
from lumen_federation.scripts.manage import (
    create_local_actor,
    create_moderator_token,
    generate_key_pair,
)
from lumen_federation.services.http_signatures import ActorSigner, compute_digest
from lumen_federation.services.key_cache import PublicKeyCache
from lumen_federation.services.queues import Payload, QueueName
from lumen_federation.services.retry import ProcessingOutcome
from lumen_federation.services.runtime import FederationRuntime

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite only honours SAVEPOINT when SQLAlchemy emits BEGIN itself
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection: Any, _: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    # Commits and rollbacks inside the code under test only touch savepoints
    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@lru_cache(maxsize=None)
def key_pair(name: str) -> tuple[str, str]:
    """Return a cached ``(private_pem, public_pem)`` pair per name."""
    return generate_key_pair()


@dataclass
class RemoteActor:
    """An actor living on a simulated remote server."""

    profile: str
    inbox: str
    shared_inbox: str | None = None
    key_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def private_pem(self) -> str:
        return key_pair(self.key_name or self.profile)[0]

    @property
    def public_pem(self) -> str:
        return key_pair(self.key_name or self.profile)[1]

    @property
    def signer(self) -> ActorSigner:
        return ActorSigner.from_pem(self.profile, self.private_pem)

    def document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": self.profile,
            "type": "Person",
            "preferredUsername": self.profile.rsplit("/", 1)[-1],
            "inbox": self.inbox,
            "publicKey": {
                "id": f"{self.profile}#main-key",
                "owner": self.profile,
                "publicKeyPem": self.public_pem,
            },
        }
        if self.shared_inbox:
            document["endpoints"] = {"sharedInbox": self.shared_inbox}
        document.update(self.extra)
        return document

    def store(self, db: Session) -> Actor:
        """Persist the actor as if its document had already been fetched."""
        actor = Actor(
            activity_pub_profile=self.profile,
            user_name=self.profile.rsplit("/", 1)[-1],
            domain=httpx.URL(self.profile).host,
            inbox=self.inbox,
            shared_inbox=self.shared_inbox,
            public_key_pem=self.public_pem,
            is_local=False,
        )
        db.add(actor)
        db.commit()
        return actor


class RemotePeers:
    """httpx transport handler standing in for every remote server."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.statuses: dict[str, list[int]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_fetches = False

    def add(self, actor: RemoteActor) -> RemoteActor:
        self.documents[actor.profile] = actor.document()
        return actor

    def respond(self, url: str, *statuses: int) -> None:
        """Answer POSTs to ``url`` with ``statuses`` in order, repeating the last."""
        self.statuses[url] = list(statuses)

    def posts_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST" and str(r.url) == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if request.method == "GET":
            if self.fail_fetches:
                raise httpx.ConnectError("connection refused", request=request)
            document = self.documents.get(url)
            if document is None:
                return httpx.Response(404)
            return httpx.Response(200, json=document)
        statuses = self.statuses.get(url, [202])
        code = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        return httpx.Response(code)


@pytest.fixture()
def remote() -> RemotePeers:
    return RemotePeers()


@pytest.fixture()
def http_client(remote: RemotePeers) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(remote.handler))


class MemoryQueue:
    """Queue double that keeps submitted jobs in a list."""

    def __init__(self) -> None:
        self.jobs: list[tuple[QueueName, Payload]] = []

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def submit(self, queue: QueueName, payload: Payload) -> str:
        # Payloads must survive the trip through Redis
        self.jobs.append((queue, json.loads(json.dumps(payload))))
        return f"job-{len(self.jobs)}"

    def qsize(self, queue: QueueName) -> int:
        return sum(1 for name, _ in self.jobs if name is queue)

    def take(self, queue: QueueName) -> list[Payload]:
        """Remove and return the payloads queued on ``queue``."""
        taken = [payload for name, payload in self.jobs if name is queue]
        self.jobs = [job for job in self.jobs if job[0] is not queue]
        return taken


async def _no_sleep(_: float) -> None:
    return None


@pytest.fixture()
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture()
def runtime(
    db_session: Session, http_client: httpx.AsyncClient, queue: MemoryQueue
) -> FederationRuntime:
    return FederationRuntime(
        http_client=http_client,
        key_cache=PublicKeyCache(redis_url=""),
        db_session=db_session,
        queue=queue,
        sleep=_no_sleep,
    )


@pytest.fixture()
def drain(
    runtime: FederationRuntime, queue: MemoryQueue
) -> Callable[[], Awaitable[list[ProcessingOutcome]]]:
    """Run queued jobs, including the ones they queue, until none are left."""

    async def _drain() -> list[ProcessingOutcome]:
        outcomes = []
        while queue.jobs:
            name, payload = queue.jobs.pop(0)
            result = await runtime.workers.run_job(name, payload)
            outcomes.append(result.outcome)
        return outcomes

    return _drain


@pytest.fixture()
def client(app: FastAPI, runtime: FederationRuntime) -> Iterator[TestClient]:
    app.state.runtime = runtime
    with TestClient(app, base_url="https://lumen.test") as test_client:
        yield test_client
    app.state.runtime = None


@pytest.fixture()
def alice(db_session: Session) -> Actor:
    """Local actor with a key pair."""
    return create_local_actor(db_session, "alice")


@pytest.fixture()
def bob(remote: RemotePeers) -> RemoteActor:
    """Remote actor on a server with a shared inbox."""
    return remote.add(
        RemoteActor(
            profile="https://remote.example/users/bob",
            inbox="https://remote.example/users/bob/inbox",
            shared_inbox="https://remote.example/inbox",
        )
    )


def _follow(db: Session, source: Actor, target: Actor, *, approved: bool = True) -> Follow:
    edge = Follow(source_id=source.id, target_id=target.id, approved=approved)
    db.add(edge)
    db.commit()
    return edge


@pytest.fixture()
def make_follow(db_session: Session) -> Callable[..., Follow]:
    """Factory storing a follow edge between two stored actors."""

    def _make(source: Actor, target: Actor, *, approved: bool = True) -> Follow:
        return _follow(db_session, source, target, approved=approved)

    return _make


@pytest.fixture()
def make_remote_actor(remote: RemotePeers) -> Callable[..., RemoteActor]:
    """Factory for remote actors published on the simulated remote servers."""

    def _make(
        name: str,
        host: str = "remote.example",
        *,
        shared: bool = True,
        inbox: str | None = None,
    ) -> RemoteActor:
        return remote.add(
            RemoteActor(
                profile=f"https://{host}/users/{name}",
                inbox=inbox or f"https://{host}/users/{name}/inbox",
                shared_inbox=f"https://{host}/inbox" if shared else None,
            )
        )

    return _make


def signed_envelope(
    activity: dict[str, Any],
    signer: ActorSigner,
    *,
    ingress: IngressPoint = IngressPoint.SHARED_INBOX,
    url: str = "https://lumen.test/shared/inbox",
    user_name: str | None = None,
    body: bytes | None = None,
) -> Envelope:
    """Build the envelope the dispatcher would queue for a signed POST.

    ``body`` replaces the signed body, which simulates tampering in transit.
    """
    signed_body = json.dumps(activity).encode("utf-8")
    headers = signer.signed_headers(url, signed_body)
    received = body if body is not None else signed_body
    return Envelope.build(
        ingress=ingress,
        headers=headers,
        body=received,
        digest=compute_digest(received),
        path=httpx.URL(url).raw_path.decode("ascii"),
        user_name=user_name,
    )


@pytest.fixture()
def make_envelope() -> Callable[..., Envelope]:
    return signed_envelope


@pytest.fixture()
def moderator_headers() -> dict[str, str]:
    token = create_moderator_token("mod-1", ("moderator",))
    return {"Authorization": f"Bearer {token}"}
