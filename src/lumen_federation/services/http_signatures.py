"""HTTP Signature primitives shared by inbound verification and outbound delivery.

Requests are signed with the draft-cavage HTTP Signatures scheme used across
the fediverse: RSA PKCS#1 v1.5 over SHA-256, a ``Digest`` header carrying the
SHA-256 of the body, and a ``Signature`` header naming the signed headers.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime, parsedate_to_datetime
from urllib.parse import urlsplit

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from lumen_federation.core.errors import MissingPrivateKeyError, SignatureError
from lumen_federation.db.time import utcnow
from lumen_federation.models import Actor

ALGORITHM_RSA_SHA256 = "rsa-sha256"
ALGORITHM_HS2019 = "hs2019"
SUPPORTED_ALGORITHMS = frozenset({ALGORITHM_RSA_SHA256, ALGORITHM_HS2019})

REQUEST_TARGET = "(request-target)"
DEFAULT_SIGNED_HEADERS: tuple[str, ...] = (
    REQUEST_TARGET,
    "host",
    "date",
    "digest",
    "content-type",
)
ACTIVITY_CONTENT_TYPE = "application/activity+json"

_SIGNATURE_PARAM = re.compile(r'(\w+)\s*=\s*"([^"]*)"')


def compute_digest(body: bytes) -> str:
    """Return the ``Digest`` header value for a body."""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def digest_matches(header_value: str, body: bytes) -> bool:
    """Return True if a ``Digest`` header carries the body's SHA-256."""
    expected = compute_digest(body).split("=", 1)[1]
    for part in header_value.split(","):
        algorithm, _, value = part.strip().partition("=")
        if algorithm.lower() == "sha-256" and value:
            return hmac.compare_digest(value, expected)
    return False


def http_date(moment: datetime | None = None) -> str:
    """Format a moment as an RFC 7231 HTTP date."""
    return format_datetime(moment or utcnow(), usegmt=True)


def parse_http_date(value: str) -> datetime:
    """Parse an HTTP ``Date`` header.

    Raises:
        SignatureError: If the value is not an HTTP date.
    """
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError) as err:
        raise SignatureError(f"incorrect date format: {value!r}") from err
    if parsed is None:
        raise SignatureError(f"incorrect date format: {value!r}")
    return parsed


@dataclass(frozen=True)
class SignatureParameters:
    """Parsed contents of a ``Signature`` header."""

    key_id: str
    algorithm: str | None
    headers: tuple[str, ...]
    signature: bytes

    @property
    def key_owner(self) -> str:
        """Actor URI implied by the key id (the key id without its fragment)."""
        return self.key_id.split("#", 1)[0]


def parse_signature_header(value: str) -> SignatureParameters:
    """Parse a ``Signature`` header value.

    Raises:
        SignatureError: If a required parameter is missing or undecodable.
    """
    params = {name.lower(): content for name, content in _SIGNATURE_PARAM.findall(value)}
    key_id = params.get("keyid")
    if not key_id:
        raise SignatureError("signature header does not contain keyId")
    encoded = params.get("signature")
    if not encoded:
        raise SignatureError("signature header does not contain signature")
    signed = params.get("headers")
    if signed is not None and not signed.strip():
        raise SignatureError("signature header contains an empty headers list")
    try:
        raw = base64.b64decode(encoded, validate=True)
    except ValueError as err:
        raise SignatureError("signature is not valid base64") from err
    algorithm = params.get("algorithm")
    return SignatureParameters(
        key_id=key_id,
        algorithm=algorithm.lower() if algorithm else None,
        headers=tuple((signed or "date").lower().split()),
        signature=raw,
    )


def build_signing_string(
    signed_headers: Sequence[str],
    headers: Mapping[str, str],
    *,
    method: str,
    path: str,
) -> str:
    """Assemble the string covered by the signature.

    ``headers`` must use lower-case names.

    Raises:
        SignatureError: If a signed header is absent from the request.
    """
    lines = []
    for name in signed_headers:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {path}")
            continue
        value = headers.get(name)
        if value is None:
            raise SignatureError(f"signed header {name!r} is missing from the request")
        lines.append(f"{name}: {value}")
    return "\n".join(lines)


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    """Load an RSA public key from PEM.

    Raises:
        SignatureError: If the PEM does not hold an RSA public key.
    """
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except ValueError as err:
        raise SignatureError("public key is not valid PEM") from err
    if not isinstance(key, rsa.RSAPublicKey):
        raise SignatureError("only RSA public keys are supported")
    return key


def verify_signature(public_key_pem: str, signing_string: str, signature: bytes) -> bool:
    """Return True if ``signature`` is a valid RSA-SHA256 signature."""
    key = load_public_key(public_key_pem)
    try:
        key.verify(signature, signing_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


class ActorSigner:
    """Signing capability of a local actor.

    Instances only exist for actors that hold a private key, so code that
    signs requests cannot be handed an actor it is unable to sign for.
    """

    def __init__(self, actor_url: str, private_key: rsa.RSAPrivateKey) -> None:
        self.actor_url = actor_url
        self.key_id = f"{actor_url}#main-key"
        self._private_key = private_key

    def __repr__(self) -> str:
        return f"ActorSigner(key_id={self.key_id!r})"

    @classmethod
    def from_pem(cls, actor_url: str, private_key_pem: str) -> ActorSigner:
        try:
            key = serialization.load_pem_private_key(
                private_key_pem.encode("utf-8"), password=None
            )
        except (TypeError, ValueError) as err:
            raise MissingPrivateKeyError(f"private key of {actor_url} cannot be loaded") from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise MissingPrivateKeyError(f"private key of {actor_url} is not an RSA key")
        return cls(actor_url, key)

    @classmethod
    def for_actor(cls, actor: Actor) -> ActorSigner:
        """Build the signer of a local actor.

        Raises:
            MissingPrivateKeyError: If the actor has no private key.
        """
        if not actor.private_key_pem:
            raise MissingPrivateKeyError(f"actor {actor.activity_pub_profile} has no private key")
        return cls.from_pem(actor.activity_pub_profile, actor.private_key_pem)

    def sign(self, signing_string: str) -> bytes:
        return self._private_key.sign(
            signing_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256()
        )

    def signed_headers(
        self,
        url: str,
        body: bytes,
        *,
        method: str = "POST",
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, str]:
        """Return the full header set for a signed request to ``url``.

        A fresh ``Date`` is used on every call, so retries re-sign.
        """
        parts = urlsplit(url)
        path = parts.path or "/"
        if parts.query:
            path = f"{path}?{parts.query}"
        headers = {
            "host": parts.netloc,
            "date": http_date(now),
            "digest": compute_digest(body),
            "content-type": ACTIVITY_CONTENT_TYPE,
        }
        signing_string = build_signing_string(
            DEFAULT_SIGNED_HEADERS, headers, method=method, path=path
        )
        signature = base64.b64encode(self.sign(signing_string)).decode("ascii")
        headers["signature"] = (
            f'keyId="{self.key_id}",'
            f'algorithm="{ALGORITHM_RSA_SHA256}",'
            f'headers="{" ".join(DEFAULT_SIGNED_HEADERS)}",'
            f'signature="{signature}"'
        )
        if user_agent:
            headers["user-agent"] = user_agent
        return {name.title(): value for name, value in headers.items()}
