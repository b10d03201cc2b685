"""RedisDealBackend against an in-process client double."""

import json

import pytest
from redis.exceptions import LockNotOwnedError

from dealflow.domain import DealStatus
from dealflow.errors import StoreUnavailable
from dealflow.stores import redis as redis_store
from dealflow.stores.redis import RedisDealBackend
from test_deal_store import make_deal


class FakeLock:
    def __init__(self, client: "FakeRedis", name: str, timeout: float, blocking_timeout: float) -> None:
        self.client = client
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    async def acquire(self) -> bool:
        self.client.events.append(("acquire", self.name))
        return self.client.lock_free

    async def release(self) -> None:
        self.client.events.append(("release", self.name))
        if self.client.lock_stolen:
            raise LockNotOwnedError("Cannot release a lock that's no longer owned")


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.events: list[tuple[str, str]] = []
        self.locks: list[FakeLock] = []
        self.lock_free = True
        self.lock_stolen = False

    def lock(self, name: str, timeout: float, blocking_timeout: float, sleep: float) -> FakeLock:
        lock = FakeLock(self, name, timeout, blocking_timeout)
        self.locks.append(lock)
        return lock

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    client = FakeRedis()
    monkeypatch.setattr(redis_store, "_redis", client)
    return client


async def seed(client: FakeRedis, status: DealStatus = DealStatus.ACCEPTED) -> None:
    deal = make_deal(status=status)
    client.data[f"{redis_store.PREFIX_DEAL}{deal.token}"] = json.dumps(deal.to_dict())


@pytest.mark.asyncio
async def test_compare_and_set_holds_owned_lock_around_update(fake_redis):
    await seed(fake_redis)
    backend = RedisDealBackend(ttl=600)

    updated = await backend.compare_and_set("tok-1", frozenset({DealStatus.ACCEPTED}), {"status": DealStatus.PAID})

    assert updated.status == DealStatus.PAID
    assert fake_redis.events == [("acquire", "lock:deal:tok-1"), ("release", "lock:deal:tok-1")]
    assert fake_redis.locks[0].timeout == redis_store.TTL_DEAL_LOCK
    stored = json.loads(fake_redis.data["deal:tok-1"])
    assert stored["status"] == "paid"


@pytest.mark.asyncio
async def test_compare_and_set_status_mismatch_releases_lock(fake_redis):
    await seed(fake_redis, status=DealStatus.PAID)
    backend = RedisDealBackend(ttl=600)

    result = await backend.compare_and_set("tok-1", frozenset({DealStatus.ACCEPTED}), {"status": DealStatus.PAID})

    assert result is None
    assert [e[0] for e in fake_redis.events] == ["acquire", "release"]


@pytest.mark.asyncio
async def test_busy_lock_is_store_unavailable(fake_redis):
    await seed(fake_redis)
    fake_redis.lock_free = False

    with pytest.raises(StoreUnavailable):
        await RedisDealBackend(ttl=600).compare_and_set(
            "tok-1", frozenset({DealStatus.ACCEPTED}), {"status": DealStatus.PAID}
        )
    assert [e[0] for e in fake_redis.events] == ["acquire"]


@pytest.mark.asyncio
async def test_expired_lock_is_not_deleted_from_under_next_holder(fake_redis):
    await seed(fake_redis)
    fake_redis.lock_stolen = True

    updated = await RedisDealBackend(ttl=600).compare_and_set(
        "tok-1", frozenset({DealStatus.ACCEPTED}), {"status": DealStatus.PAID}
    )

    assert updated.status == DealStatus.PAID
    assert fake_redis.events[-1] == ("release", "lock:deal:tok-1")
