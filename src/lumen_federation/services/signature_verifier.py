"""Authentication of received activities through HTTP Signatures."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from lumen_federation.core.errors import SignatureError
from lumen_federation.core.settings import settings
from lumen_federation.db.time import utcnow
from lumen_federation.schemas.envelope import Envelope
from lumen_federation.services.http_signatures import (
    REQUEST_TARGET,
    SUPPORTED_ALGORITHMS,
    SignatureParameters,
    build_signing_string,
    digest_matches,
    parse_http_date,
    parse_signature_header,
    verify_signature,
)
from lumen_federation.services.key_cache import PublicKeyResolver, ResolvedKey

logger = logging.getLogger(__name__)

# A signature must bind the request line and its freshness
REQUIRED_SIGNED_HEADERS = (REQUEST_TARGET, "date")


@dataclass(frozen=True)
class VerifiedSignature:
    """Result of a successful verification."""

    key_id: str
    owner: str
    refetched: bool = False


class SignatureVerifier:
    """Checks that an envelope was signed by the actor it claims to come from.

    A signature that fails against a cached or stored key is retried once
    against a freshly fetched key, which covers remote key rotation.
    """

    def __init__(
        self,
        resolver: PublicKeyResolver,
        *,
        time_window_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._resolver = resolver
        window = time_window_seconds or settings.signature_time_window_seconds
        self._window = timedelta(seconds=window)
        self._clock = clock

    async def verify(
        self,
        envelope: Envelope,
        *,
        expected_actor: str | None = None,
        allow_remote_fetch: bool = True,
    ) -> VerifiedSignature:
        """Verify the envelope's signature.

        Args:
            envelope: The queued request.
            expected_actor: Actor that must own the signing key. Defaults to the
                first actor of the activity.
            allow_remote_fetch: When False only locally stored keys are tried.

        Raises:
            SignatureError: The signature is missing, malformed or invalid.
            KeyFetchError: The signer's key could not be fetched right now.
        """
        header = envelope.header("signature")
        if not header:
            raise SignatureError("missing signature header")
        params = parse_signature_header(header)

        if params.algorithm is None:
            raise SignatureError("signature algorithm not specified")
        if params.algorithm not in SUPPORTED_ALGORITHMS:
            raise SignatureError(f"signature algorithm {params.algorithm!r} is not supported")

        self._check_covered(params)
        self._check_date(envelope)
        self._check_digest(envelope, params)
        signing_string = build_signing_string(
            params.headers, envelope.headers, method=envelope.method, path=envelope.path
        )

        actor = expected_actor or envelope.activity.first_actor_id
        if not actor:
            raise SignatureError("activity has no actor to verify against")

        key = await self._resolver.resolve(params.key_id, allow_remote_fetch=allow_remote_fetch)
        self._check_owner(key, actor)
        if verify_signature(key.public_key_pem, signing_string, params.signature):
            return VerifiedSignature(key.key_id, key.owner)

        if not (key.from_cache and allow_remote_fetch):
            raise SignatureError(f"signature of {actor} is not valid")

        logger.info("Signature of %s failed with cached key, refetching %s", actor, key.key_id)
        fresh = await self._resolver.resolve(params.key_id, refresh=True)
        self._check_owner(fresh, actor)
        if verify_signature(fresh.public_key_pem, signing_string, params.signature):
            return VerifiedSignature(fresh.key_id, fresh.owner, refetched=True)
        raise SignatureError(f"signature of {actor} is not valid")

    def _check_date(self, envelope: Envelope) -> None:
        value = envelope.header("date")
        if not value:
            raise SignatureError("missing date header")
        sent_at = parse_http_date(value)
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=UTC)
        skew = abs(self._clock() - sent_at)
        if skew > self._window:
            raise SignatureError(f"date {value!r} is outside the accepted time window")

    @staticmethod
    def _check_covered(params: SignatureParameters) -> None:
        for name in REQUIRED_SIGNED_HEADERS:
            if name not in params.headers:
                raise SignatureError(f"{name} is not covered by the signature")

    @staticmethod
    def _check_digest(envelope: Envelope, params: SignatureParameters) -> None:
        value = envelope.header("digest")
        if not value:
            raise SignatureError("missing digest header")
        if "digest" not in params.headers:
            raise SignatureError("digest header is not covered by the signature")
        if not digest_matches(value, envelope.body):
            raise SignatureError("digest does not match the request body")

    @staticmethod
    def _check_owner(key: ResolvedKey, actor: str) -> None:
        if key.owner != actor:
            raise SignatureError(f"key {key.key_id} is owned by {key.owner}, not {actor}")
