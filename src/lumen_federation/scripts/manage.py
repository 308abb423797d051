"""Operator utilities: create local actors, block domains, issue moderator tokens.

Usage:
    python -m lumen_federation.scripts.manage create-actor alice
    python -m lumen_federation.scripts.manage block-domain spam.example --reason "spam"
    python -m lumen_federation.scripts.manage moderator-token admin
"""

from __future__ import annotations

import argparse
from datetime import timedelta

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from sqlalchemy.orm import Session

from lumen_federation.core.settings import settings
from lumen_federation.db.session import SessionLocal
from lumen_federation.db.time import utcnow
from lumen_federation.models import Actor, InstanceBlockedDomain
from lumen_federation.services.domain_filter import normalize_domain

RSA_KEY_SIZE = 2048
TOKEN_TTL_HOURS = 12


def generate_key_pair() -> tuple[str, str]:
    """Return a new ``(private_pem, public_pem)`` RSA key pair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem


def create_local_actor(
    db: Session, user_name: str, *, manually_approves_followers: bool = False
) -> Actor:
    """Create a local actor with a fresh key pair, or return the existing one."""
    base = settings.base_address.rstrip("/")
    profile = f"{base}/actors/{user_name}"
    actor = db.query(Actor).filter(Actor.activity_pub_profile == profile).first()
    if actor is not None:
        return actor

    private_pem, public_pem = generate_key_pair()
    actor = Actor(
        activity_pub_profile=profile,
        user_name=user_name,
        domain=settings.instance_host,
        inbox=f"{profile}/inbox",
        shared_inbox=f"{base}/shared/inbox",
        public_key_pem=public_pem,
        private_key_pem=private_pem,
        is_local=True,
        manually_approves_followers=manually_approves_followers,
    )
    db.add(actor)
    db.commit()
    return actor


def block_domain(db: Session, domain: str, reason: str | None = None) -> InstanceBlockedDomain:
    normalized = normalize_domain(domain)
    blocked = (
        db.query(InstanceBlockedDomain).filter(InstanceBlockedDomain.domain == normalized).first()
    )
    if blocked is None:
        blocked = InstanceBlockedDomain(domain=normalized, reason=reason)
        db.add(blocked)
        db.commit()
    return blocked


def create_moderator_token(subject: str, roles: tuple[str, ...] = ("moderator",)) -> str:
    """Issue a short-lived bearer token accepted by the audit endpoints."""
    expires = utcnow() + timedelta(hours=TOKEN_TTL_HOURS)
    claims = {"sub": subject, "roles": list(roles), "exp": expires}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create-actor", help="create a local actor with a key pair")
    create.add_argument("user_name")
    create.add_argument("--manual-approval", action="store_true")

    block = commands.add_parser("block-domain", help="refuse activities from a domain")
    block.add_argument("domain")
    block.add_argument("--reason")

    token = commands.add_parser("moderator-token", help="print a moderator bearer token")
    token.add_argument("subject")
    token.add_argument("--admin", action="store_true")

    args = parser.parse_args(argv)

    if args.command == "moderator-token":
        roles = ("administrator",) if args.admin else ("moderator",)
        print(create_moderator_token(args.subject, roles))
        return

    db = SessionLocal()
    try:
        if args.command == "create-actor":
            actor = create_local_actor(
                db, args.user_name, manually_approves_followers=args.manual_approval
            )
            print(f"Actor ready: {actor.activity_pub_profile}")
        elif args.command == "block-domain":
            blocked = block_domain(db, args.domain, args.reason)
            print(f"Blocked {blocked.domain}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
