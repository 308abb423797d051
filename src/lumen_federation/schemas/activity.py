"""Pydantic schemas for ActivityStreams activities."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lumen_federation.core.errors import MalformedActivityError

ACTIVITY_STREAMS_CONTEXT = "https://www.w3.org/ns/activitystreams"
PUBLIC_COLLECTION = "https://www.w3.org/ns/activitystreams#Public"
PUBLIC_ALIASES = frozenset({PUBLIC_COLLECTION, "as:Public", "Public"})


class ActivityKind(str, Enum):
    """Closed set of activity types handled by the engine."""

    FOLLOW = "Follow"
    ACCEPT = "Accept"
    REJECT = "Reject"
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    LIKE = "Like"
    ANNOUNCE = "Announce"
    UNDO = "Undo"
    MOVE = "Move"
    UNSUPPORTED = "Unsupported"

    @classmethod
    def from_type(cls, value: Any) -> ActivityKind:
        """Map a raw ``type`` value (string or list) to a kind."""
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            try:
                kind = cls(candidate)
            except ValueError:
                continue
            if kind is not cls.UNSUPPORTED:
                return kind
        return cls.UNSUPPORTED


def as_list(value: Any) -> list[Any]:
    """Normalize a JSON-LD value that may be a single item or a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def reference_id(value: Any) -> str | None:
    """Return the id of an object reference given inline or as a bare URI."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        ref = value.get("id")
        return ref if isinstance(ref, str) else None
    return None


def object_type(value: Any) -> str | None:
    """Return the ``type`` of an inline object, if any."""
    if isinstance(value, dict):
        kind = value.get("type")
        if isinstance(kind, list):
            kind = next((item for item in kind if isinstance(item, str)), None)
        return kind if isinstance(kind, str) else None
    return None


class Activity(BaseModel):
    """An activity received from or sent to a remote server.

    Only the fields the engine reads are declared. Everything else is kept as
    extra data so that the activity can be re-serialized unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    context: Any = Field(default=None, alias="@context")
    id: str
    type: str | list[str]
    actor: Any
    object: Any = None
    target: Any = None
    to: Any = None
    cc: Any = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("activity id must not be empty")
        return value

    @classmethod
    def parse_body(cls, body: bytes | str) -> Activity:
        """Parse a raw request body.

        Raises:
            MalformedActivityError: If the body is not a JSON activity.
        """
        try:
            data = json.loads(body)
        except (TypeError, ValueError) as err:
            raise MalformedActivityError(f"body is not valid JSON: {err}") from err
        if not isinstance(data, dict):
            raise MalformedActivityError("activity must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as err:
            raise MalformedActivityError(str(err)) from err

    @property
    def kind(self) -> ActivityKind:
        return ActivityKind.from_type(self.type)

    def actor_ids(self) -> list[str]:
        """Return every actor URI referenced by the activity."""
        return [ref for ref in (reference_id(item) for item in as_list(self.actor)) if ref]

    @property
    def first_actor_id(self) -> str | None:
        ids = self.actor_ids()
        return ids[0] if ids else None

    def objects(self) -> list[Any]:
        return as_list(self.object)

    def object_ids(self) -> list[str]:
        return [ref for ref in (reference_id(item) for item in self.objects()) if ref]

    def recipients(self) -> list[str]:
        """Return addressed URIs from ``to`` and ``cc`` without duplicates."""
        seen: dict[str, None] = {}
        for value in as_list(self.to) + as_list(self.cc):
            ref = reference_id(value)
            if ref and ref not in PUBLIC_ALIASES:
                seen.setdefault(ref, None)
        return list(seen)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-LD document for outbound delivery."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
