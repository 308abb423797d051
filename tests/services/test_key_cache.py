# tests/services/test_key_cache.py
"""Tests for the public key cache backends."""

from __future__ import annotations

import json

import redis

from lumen_federation.services.key_cache import PublicKeyCache

KEY_ID = "https://remote.example/users/bob#main-key"
OWNER = "https://remote.example/users/bob"


def test_redis_backend_round_trip(mocker) -> None:
    fake = mocker.MagicMock()
    mocker.patch("lumen_federation.services.key_cache.redis.from_url", return_value=fake)
    cache = PublicKeyCache(redis_url="redis://cache:6379/0", ttl_seconds=60)

    cache.set(KEY_ID, OWNER, "PEM")

    fake.set.assert_called_once_with(
        f"pubkey:{KEY_ID}", json.dumps({"owner": OWNER, "pem": "PEM"}), ex=60
    )
    fake.get.return_value = json.dumps({"owner": OWNER, "pem": "PEM"}).encode()
    assert cache.get(KEY_ID) == (OWNER, "PEM")


def test_redis_failure_falls_back_to_memory(mocker, caplog) -> None:
    fake = mocker.MagicMock()
    fake.get.side_effect = redis.ConnectionError("down")
    mocker.patch("lumen_federation.services.key_cache.redis.from_url", return_value=fake)
    cache = PublicKeyCache(redis_url="redis://cache:6379/0", ttl_seconds=60)

    assert cache.get(KEY_ID) is None
    assert "falling back" in caplog.text

    cache.set(KEY_ID, OWNER, "PEM")
    assert cache.get(KEY_ID) == (OWNER, "PEM")
    fake.set.assert_not_called()


def test_memory_entries_expire(mocker) -> None:
    clock = mocker.patch("lumen_federation.services.key_cache.time")
    clock.monotonic.return_value = 100.0
    cache = PublicKeyCache(redis_url="", ttl_seconds=30)

    cache.set(KEY_ID, OWNER, "PEM")
    clock.monotonic.return_value = 129.0
    assert cache.get(KEY_ID) == (OWNER, "PEM")

    clock.monotonic.return_value = 131.0
    assert cache.get(KEY_ID) is None


def test_evict_removes_entry() -> None:
    cache = PublicKeyCache(redis_url="", ttl_seconds=30)
    cache.set(KEY_ID, OWNER, "PEM")

    cache.evict(KEY_ID)

    assert cache.get(KEY_ID) is None
