import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dealflow.domain import Deal, DealStatus, PaymentIncident
from dealflow.errors import ConflictError, NotFound, StoreUnavailable
from dealflow.stores.deal_store import DealStore
from dealflow.stores.memory import MemoryDealBackend


def make_deal(token: str = "tok-1", **overrides) -> Deal:
    values = {
        "token": token,
        "product_ref": "prod-1",
        "product_name": "Philips Air Fryer 4.1L",
        "cost_basis": Decimal("1000.00"),
        "markup_fraction": Decimal("0.15"),
        "offer_price": Decimal("1150"),
        "quantity": 1,
        "shipping_fee": Decimal("0.00"),
        "expiry": datetime.now(timezone.utc) + timedelta(minutes=20),
    }
    values.update(overrides)
    return Deal(**values)


class DownBackend:
    """A tier that is unreachable for every operation."""

    name = "down"

    async def insert(self, deal):
        raise StoreUnavailable("connection refused")

    async def fetch(self, token):
        raise StoreUnavailable("connection refused")

    async def put(self, deal):
        raise StoreUnavailable("connection refused")

    async def compare_and_set(self, token, expected, changes):
        raise StoreUnavailable("connection refused")

    async def add_incident(self, incident):
        raise StoreUnavailable("connection refused")


@pytest.mark.asyncio
async def test_create_and_get_single_tier():
    store = DealStore(cache=MemoryDealBackend())
    deal = make_deal()
    await store.create(deal)

    fetched = await store.get("tok-1")
    assert fetched.token == "tok-1"
    assert fetched.offer_price == Decimal("1150")
    assert fetched is not deal


@pytest.mark.asyncio
async def test_create_duplicate_token_conflicts():
    store = DealStore(cache=MemoryDealBackend(), durable=MemoryDealBackend())
    await store.create(make_deal())
    with pytest.raises(ConflictError):
        await store.create(make_deal())


@pytest.mark.asyncio
async def test_get_unknown_token_raises_not_found():
    store = DealStore(cache=MemoryDealBackend(), durable=MemoryDealBackend())
    with pytest.raises(NotFound):
        await store.get("missing")


@pytest.mark.asyncio
async def test_get_prefers_newer_durable_copy_and_refreshes_cache():
    cache, durable = MemoryDealBackend(), MemoryDealBackend()
    store = DealStore(cache=cache, durable=durable)
    await store.create(make_deal())

    # Another instance moved the deal on in the durable tier only.
    stale = await durable.fetch("tok-1")
    await durable.put(stale.with_changes({"status": DealStatus.ACCEPTED}))

    fetched = await store.get("tok-1")
    assert fetched.status == DealStatus.ACCEPTED
    assert (await cache.fetch("tok-1")).status == DealStatus.ACCEPTED


@pytest.mark.asyncio
async def test_durable_only_deal_is_visible():
    durable = MemoryDealBackend()
    await durable.insert(make_deal())
    store = DealStore(cache=MemoryDealBackend(), durable=durable)
    assert (await store.get("tok-1")).token == "tok-1"


@pytest.mark.asyncio
async def test_update_writes_through_and_bumps_version():
    cache, durable = MemoryDealBackend(), MemoryDealBackend()
    store = DealStore(cache=cache, durable=durable)
    await store.create(make_deal())

    updated = await store.update("tok-1", {"downstream_order_ref": "OC-9"})
    assert updated.version == 2
    assert (await cache.fetch("tok-1")).downstream_order_ref == "OC-9"
    assert (await durable.fetch("tok-1")).downstream_order_ref == "OC-9"


@pytest.mark.asyncio
async def test_unavailable_durable_tier_degrades_to_cache():
    store = DealStore(cache=MemoryDealBackend(), durable=DownBackend())
    await store.create(make_deal())

    assert (await store.get("tok-1")).status == DealStatus.PENDING
    moved = await store.transition("tok-1", {DealStatus.PENDING}, {"status": DealStatus.ACCEPTED})
    assert moved is not None
    assert moved.status == DealStatus.ACCEPTED


@pytest.mark.asyncio
async def test_transition_applies_only_when_status_matches():
    store = DealStore(cache=MemoryDealBackend())
    await store.create(make_deal())

    assert await store.transition("tok-1", {DealStatus.ACCEPTED}, {"status": DealStatus.PAID}) is None
    assert (await store.get("tok-1")).status == DealStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_transitions_have_a_single_winner():
    store = DealStore(cache=MemoryDealBackend(), durable=MemoryDealBackend())
    await store.create(make_deal(status=DealStatus.ACCEPTED))

    results = await asyncio.gather(
        *[
            store.transition("tok-1", {DealStatus.ACCEPTED}, {"status": DealStatus.PAID, "external_payment_ref": str(i)})
            for i in range(5)
        ]
    )
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert (await store.get("tok-1")).external_payment_ref == winners[0].external_payment_ref


@pytest.mark.asyncio
async def test_transition_backfills_cache_only_deal_into_durable_tier():
    cache, durable = MemoryDealBackend(), MemoryDealBackend()
    await cache.insert(make_deal())
    store = DealStore(cache=cache, durable=durable)

    moved = await store.transition("tok-1", {DealStatus.PENDING}, {"status": DealStatus.CANCELLED})
    assert moved is not None
    assert (await durable.fetch("tok-1")).status == DealStatus.CANCELLED


@pytest.mark.asyncio
async def test_record_incident_goes_to_authoritative_tier():
    cache, durable = MemoryDealBackend(), MemoryDealBackend()
    store = DealStore(cache=cache, durable=durable)

    incident = await store.record_incident("SIGNATURE_MISMATCH", "Signature mismatch", token="tok-1")
    assert isinstance(incident, PaymentIncident)
    assert durable.incidents == [incident]
    assert cache.incidents == []


@pytest.mark.asyncio
async def test_record_incident_never_raises():
    store = DealStore(cache=MemoryDealBackend(), durable=DownBackend())
    incident = await store.record_incident("INTEGRATION_FAILURE", "boom")
    assert incident.kind == "INTEGRATION_FAILURE"


def test_deal_dict_round_trip_keeps_money_exact():
    deal = make_deal(shipping_fee=Decimal("150.00"), quantity=2)
    restored = Deal.from_dict(deal.to_dict())
    assert restored == replace(deal)
    assert restored.amount_due == Decimal("2450.00")
