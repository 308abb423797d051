"""Queue payload wrapping a received activity with its transport metadata."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from lumen_federation.db.time import utcnow
from lumen_federation.schemas.activity import Activity


class IngressPoint(str, Enum):
    """Endpoint through which an activity entered the instance."""

    ACTOR_INBOX = "actor-inbox"
    SHARED_INBOX = "shared-inbox"
    OUTBOX = "outbox"


class Envelope(BaseModel):
    """A received activity plus everything needed to verify it later.

    The raw body is carried base64-encoded so the envelope stays JSON
    serializable whatever queue backend carries it. Header names are stored
    lower-cased.
    """

    model_config = ConfigDict(frozen=True)

    ingress: IngressPoint
    headers: dict[str, str]
    body_base64: str
    digest: str
    method: str = "POST"
    path: str
    user_name: str | None = None
    received_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def build(
        cls,
        *,
        ingress: IngressPoint,
        headers: Mapping[str, str],
        body: bytes,
        digest: str,
        path: str,
        method: str = "POST",
        user_name: str | None = None,
    ) -> Envelope:
        return cls(
            ingress=ingress,
            headers={name.lower(): value for name, value in headers.items()},
            body_base64=base64.b64encode(body).decode("ascii"),
            digest=digest,
            method=method.upper(),
            path=path,
            user_name=user_name,
        )

    @property
    def body(self) -> bytes:
        return base64.b64decode(self.body_base64)

    @property
    def activity(self) -> Activity:
        return Activity.parse_body(self.body)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())
