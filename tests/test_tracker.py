"""Tests for the SatsTracker facade against fake remote services."""

import json
from decimal import Decimal

import pytest

from sats_tracker.core.exceptions import InvalidAddress, InvalidFormat
from sats_tracker.core.models import ConfirmedAt, Unknown
from sats_tracker.storage.persistence import ADDRESSES_KEY, PRIVACY_KEY, MemoryBackend
from sats_tracker.tracker import SatsTracker


@pytest.fixture
def tracker(config, backend, services, mock_client):
    return SatsTracker(config, backend=backend, client=mock_client(services))


@pytest.mark.asyncio
async def test_add_address(tracker, services, backend):
    services.balances["addr1"] = (600_000, 100_000, [])

    record = await tracker.add_address("  addr1 ", label="Cold", group="Savings")

    assert record.balance_sats == 500_000
    assert record.last_tx_time == Unknown()
    assert record.last_updated is not None
    assert tracker.store.snapshot() == [record]
    assert json.loads(backend.data[ADDRESSES_KEY])[0]["address"] == "addr1"


@pytest.mark.asyncio
async def test_add_address_defaults(tracker, services):
    services.balances["addr1"] = (1, 0, [{"status": {"confirmed": True, "block_time": 1700000000}}])

    record = await tracker.add_address("addr1")

    assert record.label == "My Wallet"
    assert record.group == "General"
    assert isinstance(record.last_tx_time, ConfirmedAt)


@pytest.mark.asyncio
async def test_rejected_address_creates_nothing(tracker, backend):
    with pytest.raises(InvalidAddress):
        await tracker.add_address("not-an-address")

    assert len(tracker.store) == 0
    assert ADDRESSES_KEY not in backend.data


@pytest.mark.asyncio
async def test_empty_address_is_rejected_without_a_request(tracker, services):
    with pytest.raises(InvalidAddress):
        await tracker.add_address("   ")

    assert services.requests == []


@pytest.mark.asyncio
async def test_refresh_then_breakdowns(tracker, services):
    services.balances["a"] = (30_000_000, 0, [])
    services.balances["b"] = (10_000_000, 0, [])
    await tracker.add_address("a", group="Savings")
    await tracker.add_address("b")
    services.balances["b"] = (20_000_000, 0, [])

    report = await tracker.refresh()

    assert report.price_updated
    assert report.fees_updated
    assert tracker.price == Decimal("50000")
    assert [(row.key, row.fiat_amount) for row in tracker.group_breakdown()] == [
        ("Savings", Decimal("15000.00")),
        ("General", Decimal("10000.00")),
    ]
    assert [row.sats for row in tracker.address_breakdown()] == [30_000_000, 20_000_000]
    totals = tracker.totals()
    assert totals.total_sats == 50_000_000
    assert totals.fiat_amount == Decimal("25000.00")


@pytest.mark.asyncio
async def test_failed_refresh_marks_record_stale(tracker, services):
    services.balances["a"] = (5_000, 0, [])
    await tracker.add_address("a")
    del services.balances["a"]

    report = await tracker.refresh()

    record = tracker.store.snapshot()[0]
    assert report.failed == [record.id]
    assert record.balance_sats == 5_000
    assert record.stale
    assert tracker.totals().stale_count == 1


@pytest.mark.asyncio
async def test_breakdowns_without_price(tracker, services):
    services.balances["a"] = (5_000, 0, [])
    await tracker.add_address("a")

    assert tracker.price is None
    assert tracker.group_breakdown()[0].fiat_amount is None


def test_privacy_is_persisted(config, backend, services, mock_client):
    tracker = SatsTracker(config, backend=backend, client=mock_client(services))
    assert tracker.privacy is False

    tracker.privacy = True

    assert backend.data[PRIVACY_KEY] == "true"
    assert SatsTracker(config, backend=backend, client=tracker.client).privacy is True


@pytest.mark.asyncio
async def test_rename_and_remove(tracker, services):
    services.balances["a"] = (1, 0, [])
    record = await tracker.add_address("a")

    renamed = tracker.rename(record.id, label="Hot", group="")

    assert (renamed.label, renamed.group) == ("Hot", "General")
    assert tracker.remove_address(record.id) is True
    assert tracker.remove_address(record.id) is False


@pytest.mark.asyncio
async def test_backup_between_trackers(tracker, services, config):
    services.balances["a"] = (1_000, 0, [])
    await tracker.add_address("a", label="One")
    document = tracker.export_backup()

    other = SatsTracker(config, backend=MemoryBackend(), client=tracker.client)
    other.import_backup(document)

    assert other.store.snapshot() == tracker.store.snapshot()
    with pytest.raises(InvalidFormat):
        other.import_backup("{}")
    assert len(other.store) == 1


@pytest.mark.asyncio
async def test_context_manager_keeps_borrowed_client_open(config, services, mock_client):
    client = mock_client(services)

    async with SatsTracker(config, backend=MemoryBackend(), client=client):
        pass

    assert not client.is_closed
    await client.aclose()
