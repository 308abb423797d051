# tests/services/test_signature_verifier.py
"""Tests for inbound HTTP Signature verification."""

from __future__ import annotations

import base64
import json
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from lumen_federation.core.errors import KeyFetchError, SignatureError, UnknownActorKeyError
from lumen_federation.db.time import utcnow
from lumen_federation.models import Actor
from lumen_federation.schemas.envelope import Envelope, IngressPoint
from lumen_federation.services.http_signatures import (
    build_signing_string,
    compute_digest,
    parse_signature_header,
)
from lumen_federation.services.runtime import FederationRuntime


def _follow_of(actor_url: str) -> dict:
    return {
        "id": f"{actor_url}#follows/1",
        "type": "Follow",
        "actor": actor_url,
        "object": "https://lumen.test/actors/alice",
    }


@pytest.mark.asyncio
async def test_valid_signature_fetches_key_and_stores_actor(
    runtime: FederationRuntime, db_session: Session, bob, make_envelope
) -> None:
    envelope = make_envelope(_follow_of(bob.profile), bob.signer)

    verified = await runtime.verifier.verify(envelope)

    assert verified.owner == bob.profile
    assert verified.key_id == f"{bob.profile}#main-key"
    assert not verified.refetched
    stored = db_session.query(Actor).filter_by(activity_pub_profile=bob.profile).one()
    assert stored.public_key_pem == bob.public_pem
    assert stored.shared_inbox == bob.shared_inbox


@pytest.mark.asyncio
async def test_second_verification_uses_cached_key(
    runtime: FederationRuntime, remote, bob, make_envelope
) -> None:
    await runtime.verifier.verify(make_envelope(_follow_of(bob.profile), bob.signer))
    fetches = len([r for r in remote.requests if r.method == "GET"])

    await runtime.verifier.verify(make_envelope(_follow_of(bob.profile), bob.signer))

    assert len([r for r in remote.requests if r.method == "GET"]) == fetches


@pytest.mark.asyncio
async def test_tampered_body_is_rejected(runtime: FederationRuntime, bob, make_envelope) -> None:
    activity = _follow_of(bob.profile)
    tampered = json.dumps({**activity, "object": "https://lumen.test/actors/mallory"}).encode()
    envelope = make_envelope(activity, bob.signer, body=tampered)

    with pytest.raises(SignatureError, match="digest"):
        await runtime.verifier.verify(envelope)


@pytest.mark.asyncio
async def test_signature_from_wrong_key_is_rejected(
    runtime: FederationRuntime, bob, make_remote_actor, make_envelope
) -> None:
    mallory = make_remote_actor("mallory", host="evil.example")
    envelope = make_envelope(_follow_of(bob.profile), mallory.signer)
    # Claim bob's key id while signing with mallory's private key
    forged = dict(envelope.headers)
    forged["signature"] = forged["signature"].replace(mallory.profile, bob.profile)
    forged_envelope = envelope.model_copy(update={"headers": forged})

    with pytest.raises(SignatureError):
        await runtime.verifier.verify(forged_envelope)


@pytest.mark.asyncio
async def test_key_owner_must_be_the_activity_actor(
    runtime: FederationRuntime, bob, make_remote_actor, make_envelope
) -> None:
    carol = make_remote_actor("carol")
    envelope = make_envelope(_follow_of(carol.profile), bob.signer)

    with pytest.raises(SignatureError, match="owned by"):
        await runtime.verifier.verify(envelope)


@pytest.mark.asyncio
async def test_rotated_key_is_refetched_once(
    runtime: FederationRuntime,
    db_session: Session,
    remote,
    alice: Actor,
    make_remote_actor,
    make_envelope,
) -> None:
    """A stale stored key triggers exactly one refetch of the actor document."""
    dave = make_remote_actor("dave")
    db_session.add(
        Actor(
            activity_pub_profile=dave.profile,
            user_name="dave",
            domain="remote.example",
            inbox=dave.inbox,
            public_key_pem=alice.public_key_pem,
            is_local=False,
        )
    )
    db_session.commit()

    verified = await runtime.verifier.verify(make_envelope(_follow_of(dave.profile), dave.signer))

    assert verified.refetched
    gets = [r for r in remote.requests if r.method == "GET"]
    assert [str(r.url) for r in gets] == [dave.profile]
    db_session.expire_all()
    stored = db_session.query(Actor).filter_by(activity_pub_profile=dave.profile).one()
    assert stored.public_key_pem == dave.public_pem


@pytest.mark.asyncio
async def test_unreachable_key_server_is_transient(
    runtime: FederationRuntime, remote, bob, make_envelope
) -> None:
    remote.fail_fetches = True
    with pytest.raises(KeyFetchError):
        await runtime.verifier.verify(make_envelope(_follow_of(bob.profile), bob.signer))


@pytest.mark.asyncio
async def test_unknown_actor_without_remote_fetch(
    runtime: FederationRuntime, bob, make_envelope
) -> None:
    with pytest.raises(UnknownActorKeyError):
        await runtime.verifier.verify(
            make_envelope(_follow_of(bob.profile), bob.signer), allow_remote_fetch=False
        )


@pytest.mark.asyncio
async def test_stale_date_is_rejected(runtime: FederationRuntime, bob) -> None:
    activity = _follow_of(bob.profile)
    body = json.dumps(activity).encode()
    headers = bob.signer.signed_headers(
        "https://lumen.test/shared/inbox", body, now=utcnow() - timedelta(hours=1)
    )
    envelope = Envelope.build(
        ingress=IngressPoint.SHARED_INBOX,
        headers=headers,
        body=body,
        digest=compute_digest(body),
        path="/shared/inbox",
    )

    with pytest.raises(SignatureError, match="time window"):
        await runtime.verifier.verify(envelope)


@pytest.mark.asyncio
async def test_unsupported_algorithm_is_rejected(
    runtime: FederationRuntime, bob, make_envelope
) -> None:
    envelope = make_envelope(_follow_of(bob.profile), bob.signer)
    headers = dict(envelope.headers)
    headers["signature"] = headers["signature"].replace("rsa-sha256", "ed25519")

    with pytest.raises(SignatureError, match="not supported"):
        await runtime.verifier.verify(envelope.model_copy(update={"headers": headers}))


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(
    runtime: FederationRuntime, bob, make_envelope
) -> None:
    envelope = make_envelope(_follow_of(bob.profile), bob.signer)
    headers = {k: v for k, v in envelope.headers.items() if k != "signature"}

    with pytest.raises(SignatureError, match="missing signature"):
        await runtime.verifier.verify(envelope.model_copy(update={"headers": headers}))


@pytest.mark.asyncio
async def test_key_claiming_another_owner_is_rejected(
    runtime: FederationRuntime,
    db_session: Session,
    remote,
    bob,
    make_remote_actor,
    make_envelope,
) -> None:
    mallory = make_remote_actor("mallory", host="evil.example")
    # Mallory's document advertises her key as belonging to bob
    remote.documents[mallory.profile]["publicKey"]["owner"] = bob.profile
    envelope = make_envelope(_follow_of(bob.profile), mallory.signer)

    with pytest.raises(UnknownActorKeyError):
        await runtime.verifier.verify(envelope)

    assert runtime.resolver.cache.get(f"{mallory.profile}#main-key") is None
    assert db_session.query(Actor).filter_by(activity_pub_profile=bob.profile).count() == 0


@pytest.mark.asyncio
async def test_document_served_under_another_id_is_rejected(
    runtime: FederationRuntime, remote, bob, make_remote_actor, make_envelope
) -> None:
    mallory = make_remote_actor("mallory", host="evil.example")
    impostor = bob.document()
    impostor["publicKey"] = {
        "id": f"{mallory.profile}#main-key",
        "owner": bob.profile,
        "publicKeyPem": mallory.public_pem,
    }
    remote.documents[mallory.profile] = impostor
    envelope = make_envelope(_follow_of(bob.profile), mallory.signer)

    with pytest.raises(UnknownActorKeyError, match="identifies as"):
        await runtime.verifier.verify(envelope)


def _resigned(envelope: Envelope, signer, covered: str) -> Envelope:
    """Sign ``envelope`` again over only the ``covered`` headers."""
    params = parse_signature_header(envelope.headers["signature"])
    signing_string = build_signing_string(
        covered.split(), envelope.headers, method=envelope.method, path=envelope.path
    )
    signature = base64.b64encode(signer.sign(signing_string)).decode("ascii")
    headers = dict(envelope.headers)
    headers["signature"] = (
        f'keyId="{params.key_id}",algorithm="rsa-sha256",'
        f'headers="{covered}",signature="{signature}"'
    )
    return envelope.model_copy(update={"headers": headers})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "covered, missing",
    [
        ("host digest", "(request-target)"),
        ("date digest", "(request-target)"),
        ("(request-target) host digest", "date"),
    ],
)
async def test_signature_must_cover_request_line_and_date(
    runtime: FederationRuntime, bob, make_envelope, covered: str, missing: str
) -> None:
    envelope = _resigned(make_envelope(_follow_of(bob.profile), bob.signer), bob.signer, covered)

    with pytest.raises(SignatureError, match=f"{missing} is not covered"):
        await runtime.verifier.verify(envelope)


@pytest.mark.asyncio
async def test_minimal_covered_headers_are_accepted(
    runtime: FederationRuntime, bob, make_envelope
) -> None:
    envelope = _resigned(
        make_envelope(_follow_of(bob.profile), bob.signer),
        bob.signer,
        "(request-target) date digest",
    )

    verified = await runtime.verifier.verify(envelope)

    assert verified.owner == bob.profile
