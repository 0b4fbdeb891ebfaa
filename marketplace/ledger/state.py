"""Ledger transactions: serialized, all-or-nothing calls over the keyed store.

Every mutating call runs inside one :class:`Transaction`. Reads see the
transaction's own writes first and fall back to storage; writes stay in the
overlay until the call returns normally, at which point they are flushed to
storage together with the buffered events in one batch. An exception anywhere
in the call, including inside a recipient hook, discards the overlay.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from ..errors import PaymentFailed, ReentrancyError, TransferFailureError, ValidationError
from ..events.models import Event
from ..storage import StateKey, StateStorage
from ..transport.timestamps import Clock, system_clock

if TYPE_CHECKING:  # pragma: no cover
    from ..events.publisher import EventPublisher
    from ..governance.gate import ActionWitness

logger = logging.getLogger(__name__)

NATIVE_NAMESPACE = "native"
LEDGER_NAMESPACE = "ledger"
_EVENT_SEQUENCE_KEY = "event_sequence"


def contract_address(label: str) -> str:
    return "0x" + hashlib.sha256(f"contract:{label}".encode("utf-8")).hexdigest()


class Transaction:
    def __init__(self, storage: StateStorage, *, read_only: bool = False) -> None:
        self._storage = storage
        self._writes: dict[StateKey, Any] = {}
        self._events: list[Event] = []
        self.read_only = read_only
        # Call-scoped scratch space; never persisted.
        self.transient: dict[str, Any] = {}

    async def get(self, namespace: str, key: str, default: Any = None) -> Any:
        state_key = (namespace, key)
        if state_key in self._writes:
            value = self._writes[state_key]
        else:
            value = await self._storage.get(namespace, key)
        if value is None:
            return default
        return deepcopy(value)

    async def get_int(self, namespace: str, key: str) -> int:
        value = await self.get(namespace, key)
        return int(value) if value is not None else 0

    async def scan(self, namespace: str) -> dict[str, Any]:
        merged = await self._storage.scan(namespace)
        for (write_ns, key), value in self._writes.items():
            if write_ns != namespace:
                continue
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = deepcopy(value)
        return merged

    def set(self, namespace: str, key: str, value: Any) -> None:
        if self.read_only:
            raise RuntimeError("read-only call cannot write ledger state")
        if value is None:
            raise ValueError("use delete() to remove a key")
        self._writes[(namespace, key)] = deepcopy(value)

    def set_int(self, namespace: str, key: str, value: int) -> None:
        if value < 0:
            raise ValueError(f"negative amount for {namespace}/{key}")
        if value == 0:
            self.delete(namespace, key)
        else:
            self.set(namespace, key, str(value))

    def delete(self, namespace: str, key: str) -> None:
        if self.read_only:
            raise RuntimeError("read-only call cannot write ledger state")
        self._writes[(namespace, key)] = None

    def emit(self, event: Event) -> None:
        if self.read_only:
            raise RuntimeError("read-only call cannot emit events")
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    async def commit(self) -> list[Event]:
        if self.read_only:
            return []
        events = self._events
        if events:
            sequence = await self.get_int(LEDGER_NAMESPACE, _EVENT_SEQUENCE_KEY)
            for event in events:
                sequence += 1
                event.sequence = sequence
            self.set(LEDGER_NAMESPACE, _EVENT_SEQUENCE_KEY, str(sequence))
        await self._storage.commit(self._writes, [event.to_dict() for event in events])
        return events


@dataclass(frozen=True)
class CallContext:
    """Explicit per-call context handed to every component entry point."""

    ledger: "Ledger"
    tx: Transaction
    sender: str
    target: str | None
    value: int
    timestamp: int
    witness: "ActionWitness | None" = None
    depth: int = 0

    def derive(
        self,
        *,
        sender: str,
        target: str | None,
        value: int = 0,
        witness: "ActionWitness | None" = None,
    ) -> "CallContext":
        return replace(
            self,
            sender=sender,
            target=target,
            value=value,
            witness=witness,
            depth=self.depth + 1,
        )


@asynccontextmanager
async def non_reentrant(ctx: CallContext, component: str) -> AsyncIterator[None]:
    key = f"entered:{component}"
    if ctx.tx.transient.get(key):
        raise ReentrancyError(message=f"re-entrant call into {component}")
    ctx.tx.transient[key] = True
    try:
        yield
    finally:
        ctx.tx.transient.pop(key, None)


class Ledger:
    def __init__(
        self,
        storage: StateStorage,
        *,
        clock: Clock = system_clock,
        chain_id: int = 1,
        publisher: "EventPublisher | None" = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self.chain_id = chain_id
        self._publisher = publisher
        self._contracts: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @property
    def storage(self) -> StateStorage:
        return self._storage

    def now(self) -> int:
        return self._clock()

    def deploy(self, contract: Any) -> Any:
        address = contract.address
        if address in self._contracts:
            raise ValueError(f"contract already deployed at {address}")
        self._contracts[address] = contract
        logger.info("deployed %s at %s", type(contract).__name__, address)
        return contract

    def contract_at(self, address: str | None) -> Any | None:
        if address is None:
            return None
        return self._contracts.get(address)

    def contracts(self) -> list[Any]:
        return list(self._contracts.values())

    async def event_sequence(self) -> int:
        """Sequence number of the last committed event, 0 before the first."""
        value = await self._storage.get(LEDGER_NAMESPACE, _EVENT_SEQUENCE_KEY)
        return int(value) if value is not None else 0

    @asynccontextmanager
    async def call(
        self,
        sender: str,
        *,
        target: str | None = None,
        value: int = 0,
        read_only: bool = False,
        witness: "ActionWitness | None" = None,
    ) -> AsyncIterator[CallContext]:
        if value < 0:
            raise ValidationError("InvalidValue", "attached value cannot be negative")
        if value and (target is None or read_only):
            raise ValidationError("InvalidValue", "value can only be attached to a mutating call")
        async with self._lock:
            tx = Transaction(self._storage, read_only=read_only)
            ctx = CallContext(
                ledger=self,
                tx=tx,
                sender=sender,
                target=target,
                value=value,
                timestamp=self._clock(),
                witness=witness,
            )
            if value:
                await self._move_native(tx, sender, target, value)
            yield ctx
            events = await tx.commit()
        for event in events:
            logger.info(
                "event %s #%d from %s", event.name, event.sequence, event.component
            )
            if self._publisher is not None:
                await self._publisher.publish(event)

    async def transact(
        self,
        sender: str,
        method: Callable[..., Awaitable[Any]],
        *args: Any,
        value: int = 0,
        **kwargs: Any,
    ) -> Any:
        owner = getattr(method, "__self__", None)
        target = getattr(owner, "address", None)
        if value and method.__name__ not in getattr(owner, "payable_methods", ()):
            raise ValidationError("InvalidValue", f"{method.__name__} does not accept attached value")
        async with self.call(sender, target=target, value=value) as ctx:
            result = await method(ctx, *args, **kwargs)
        return result

    async def query(
        self, sender: str, method: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any
    ) -> Any:
        target = getattr(getattr(method, "__self__", None), "address", None)
        async with self.call(sender, target=target, read_only=True) as ctx:
            return await method(ctx, *args, **kwargs)

    # Native value ------------------------------------------------------------

    async def balance_of(self, address: str) -> int:
        value = await self._storage.get(NATIVE_NAMESPACE, address)
        return int(value) if value is not None else 0

    async def native_balance(self, ctx: CallContext, address: str) -> int:
        return await ctx.tx.get_int(NATIVE_NAMESPACE, address)

    async def mint_native(self, address: str, amount: int) -> int:
        """Credit native value out of thin air; genesis and development use only."""
        if amount <= 0:
            raise ValidationError("InvalidValue", "mint amount must be positive")
        async with self.call(address) as ctx:
            balance = await ctx.tx.get_int(NATIVE_NAMESPACE, address) + amount
            ctx.tx.set_int(NATIVE_NAMESPACE, address, balance)
        return balance

    async def transfer_native(self, ctx: CallContext, src: str, dst: str, amount: int) -> None:
        """Move native value and notify the recipient if it is a contract."""
        if amount == 0:
            return
        await self._move_native(ctx.tx, src, dst, amount)
        contract = self.contract_at(dst)
        if contract is None:
            return
        hook = getattr(contract, "on_native_received", None)
        if hook is None:
            raise PaymentFailed(message=f"{dst} does not accept native value")
        await hook(ctx.derive(sender=src, target=dst, value=amount))

    async def _move_native(self, tx: Transaction, src: str, dst: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailureError("InvalidAmount", "negative transfer")
        balance = await tx.get_int(NATIVE_NAMESPACE, src)
        if balance < amount:
            raise TransferFailureError(
                "InsufficientBalance", f"{src} holds {balance}, needs {amount}"
            )
        tx.set_int(NATIVE_NAMESPACE, src, balance - amount)
        tx.set_int(NATIVE_NAMESPACE, dst, await tx.get_int(NATIVE_NAMESPACE, dst) + amount)
