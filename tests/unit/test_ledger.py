"""Unit tests for ledger transactions and the keyed store."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from marketplace.errors import PaymentFailed, ReentrancyError, TransferFailureError, ValidationError
from marketplace.events.models import Event
from marketplace.ledger.contracts import Contract
from marketplace.ledger.state import Ledger, non_reentrant
from marketplace.storage.in_memory import InMemoryStorage

ALICE = "0x" + "a" * 64
BOB = "0x" + "b" * 64


class Counter(Contract):
    kind = "counter"
    payable_methods = ("bump",)

    async def bump(self, ctx, fail: bool = False) -> int:
        value = await self._load_int(ctx, "value") + 1
        self._store_int(ctx, "value", value)
        self._emit(ctx, "Bumped", value=value)
        if fail:
            raise RuntimeError("boom")
        return value

    async def value(self, ctx) -> int:
        return await self._load_int(ctx, "value")

    async def guarded(self, ctx) -> None:
        async with non_reentrant(ctx, self.address):
            await self.guarded(ctx)

    async def pay(self, ctx, to: str, amount: int) -> None:
        await self._pay(ctx, to, amount)


class Vault(Contract):
    kind = "vault"

    async def on_native_received(self, ctx) -> None:
        self._store_int(ctx, "received", await self._load_int(ctx, "received") + ctx.value)


def _ledger(publisher=None) -> tuple[Ledger, InMemoryStorage]:
    storage = InMemoryStorage()
    return Ledger(storage, clock=lambda: 1000, publisher=publisher), storage


class TestTransactions:
    """All-or-nothing calls over the overlay."""

    @pytest.mark.asyncio
    async def test_commit_persists_writes_and_events(self):
        ledger, storage = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        assert await ledger.transact(ALICE, counter.bump) == 1
        assert await ledger.transact(ALICE, counter.bump) == 2
        assert await storage.get(counter.namespace, "value") == "2"
        events = await storage.list_events()
        assert [event["sequence"] for event in events] == [1, 2]
        assert events[0]["name"] == "Bumped"
        assert events[0]["timestamp"] == 1000

    @pytest.mark.asyncio
    async def test_exception_discards_everything(self):
        ledger, storage = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        await ledger.mint_native(ALICE, 100)
        with pytest.raises(RuntimeError):
            await ledger.transact(ALICE, counter.bump, True, value=40)
        assert await ledger.query(ALICE, counter.value) == 0
        assert await ledger.balance_of(ALICE) == 100
        assert await ledger.balance_of(counter.address) == 0
        assert await storage.list_events() == []

    @pytest.mark.asyncio
    async def test_publisher_sees_only_committed_events(self):
        publisher = AsyncMock()
        ledger, _ = _ledger(publisher)
        counter = ledger.deploy(Counter(ledger, "c"))
        with pytest.raises(RuntimeError):
            await ledger.transact(ALICE, counter.bump, True)
        publisher.publish.assert_not_called()
        await ledger.transact(ALICE, counter.bump)
        publisher.publish.assert_awaited_once()
        event = publisher.publish.await_args.args[0]
        assert isinstance(event, Event)
        assert event.sequence == 1

    @pytest.mark.asyncio
    async def test_read_only_call_cannot_write(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        with pytest.raises(RuntimeError):
            await ledger.query(ALICE, counter.bump)

    @pytest.mark.asyncio
    async def test_reentrancy_guard(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        with pytest.raises(ReentrancyError) as exc:
            await ledger.transact(ALICE, counter.guarded)
        assert exc.value.code == "Reentrancy"

    @pytest.mark.asyncio
    async def test_duplicate_deploy_rejected(self):
        ledger, _ = _ledger()
        ledger.deploy(Counter(ledger, "c"))
        with pytest.raises(ValueError):
            ledger.deploy(Counter(ledger, "c"))


class TestNativeValue:
    @pytest.mark.asyncio
    async def test_attached_value_moves_to_target(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        await ledger.mint_native(ALICE, 100)
        await ledger.transact(ALICE, counter.bump, value=30)
        assert await ledger.balance_of(ALICE) == 70
        assert await ledger.balance_of(counter.address) == 30

    @pytest.mark.asyncio
    async def test_value_rejected_by_non_payable_method(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        vault = ledger.deploy(Vault(ledger, "v"))
        await ledger.mint_native(ALICE, 100)
        with pytest.raises(ValidationError) as exc:
            await ledger.transact(ALICE, counter.pay, vault.address, 0, value=10)
        assert exc.value.code == "InvalidValue"
        assert await ledger.balance_of(ALICE) == 100
        assert await ledger.balance_of(counter.address) == 0

    @pytest.mark.asyncio
    async def test_insufficient_balance(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        with pytest.raises(TransferFailureError) as exc:
            await ledger.transact(ALICE, counter.bump, value=1)
        assert exc.value.code == "InsufficientBalance"

    @pytest.mark.asyncio
    async def test_contract_recipient_hook_runs(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        vault = ledger.deploy(Vault(ledger, "v"))
        await ledger.mint_native(ALICE, 100)
        await ledger.transact(ALICE, counter.bump, value=50)
        await ledger.transact(ALICE, counter.pay, vault.address, 20)
        assert await ledger.balance_of(vault.address) == 20
        assert await ledger.storage.get(vault.namespace, "received") == "20"

    @pytest.mark.asyncio
    async def test_contract_without_hook_refuses_payment(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        other = ledger.deploy(Counter(ledger, "d"))
        await ledger.mint_native(ALICE, 100)
        await ledger.transact(ALICE, counter.bump, value=50)
        with pytest.raises(PaymentFailed):
            await ledger.transact(ALICE, counter.pay, other.address, 20)
        assert await ledger.balance_of(counter.address) == 50

    @pytest.mark.asyncio
    async def test_payment_to_account(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        await ledger.mint_native(ALICE, 100)
        await ledger.transact(ALICE, counter.bump, value=50)
        await ledger.transact(ALICE, counter.pay, BOB, 20)
        assert await ledger.balance_of(BOB) == 20


class TestInMemoryStorage:
    @pytest.mark.asyncio
    async def test_commit_and_delete(self):
        storage = InMemoryStorage()
        await storage.commit({("ns", "a"): {"x": 1}, ("ns", "b"): "2"}, [])
        assert await storage.scan("ns") == {"a": {"x": 1}, "b": "2"}
        await storage.commit({("ns", "a"): None}, [{"name": "E", "sequence": 1}])
        assert await storage.get("ns", "a") is None
        assert await storage.scan("ns") == {"b": "2"}
        assert await storage.list_events() == [{"name": "E", "sequence": 1}]

    @pytest.mark.asyncio
    async def test_returned_values_are_copies(self):
        storage = InMemoryStorage()
        await storage.commit({("ns", "a"): {"x": 1}}, [])
        value = await storage.get("ns", "a")
        value["x"] = 2
        assert await storage.get("ns", "a") == {"x": 1}

    @pytest.mark.asyncio
    async def test_events_page_by_sequence(self):
        storage = InMemoryStorage()
        for sequence in range(1, 6):
            await storage.commit({}, [{"name": "E", "sequence": sequence}])
        page = await storage.list_events(since=1, limit=2)
        assert [event["sequence"] for event in page] == [2, 3]
        assert [event["sequence"] for event in await storage.list_events(since=3)] == [4, 5]
        assert await storage.list_events(since=5) == []
        assert len(await storage.list_events()) == 5

    @pytest.mark.asyncio
    async def test_ledger_tracks_last_sequence(self):
        ledger, _ = _ledger()
        counter = ledger.deploy(Counter(ledger, "c"))
        assert await ledger.event_sequence() == 0
        await ledger.transact(ALICE, counter.bump)
        await ledger.transact(ALICE, counter.bump)
        assert await ledger.event_sequence() == 2
