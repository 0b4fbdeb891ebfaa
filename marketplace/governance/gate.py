"""Quorum-plus-delay authorization gate for privileged configuration.

Members propose a call ``(target, method, args)``; once ``quorum`` members
have approved it and ``delay_seconds`` have passed, any member may execute it.
While the call runs the gate hands the target an :class:`ActionWitness` on the
call context and keeps the executing action id in the transaction's transient
area; ``confirm_call`` checks both, so a witness is only honoured for the
exact invocation that is currently executing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from ..errors import AuthorizationError, StateConflictError, ValidationError
from ..events.models import CONFIGURATION_UPDATED
from ..ledger.billing import validate_fee_bps
from ..ledger.contracts import Contract
from ..ledger.state import CallContext
from ..transport.canonical_json import canonical_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionWitness:
    gate: str
    action_id: int
    call_digest: str


def _jsonable(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def encode_args(args: Iterable[Any]) -> list[list[Any]]:
    """Tag each argument with its type so large ints survive JSON storage."""
    encoded = []
    for value in args:
        if value is None:
            encoded.append(["null", None])
        elif isinstance(value, bool):
            encoded.append(["bool", value])
        elif isinstance(value, int):
            encoded.append(["int", str(value)])
        elif isinstance(value, str):
            encoded.append(["str", value])
        else:
            raise ValidationError("InvalidAction", f"unsupported argument type {type(value).__name__}")
    return encoded


_PLAIN_TAGS = {"bool": bool, "str": str, "null": type(None)}


def decode_args(encoded: Iterable[list[Any]]) -> list[Any]:
    decoded: list[Any] = []
    for item in encoded:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise ValidationError("InvalidAction", f"malformed argument {item!r}")
        kind, value = item
        if kind == "int":
            try:
                decoded.append(int(value))
            except (TypeError, ValueError) as exc:
                raise ValidationError("InvalidAction", f"int argument {value!r} is not an integer") from exc
        elif kind in _PLAIN_TAGS:
            if not isinstance(value, _PLAIN_TAGS[kind]):
                raise ValidationError("InvalidAction", f"{kind} argument has the wrong type")
            decoded.append(value)
        else:
            raise ValidationError("InvalidAction", f"unknown argument tag {kind}")
    return decoded


def call_digest(target: str, method: str, args: Iterable[Any]) -> str:
    return canonical_hash({"target": target, "method": method, "args": encode_args(args)})


class GovernanceGate(Contract):
    kind = "gate"

    async def initialize(
        self, ctx: CallContext, members: Iterable[str], quorum: int, delay_seconds: int
    ) -> None:
        if await self._load(ctx, "members") is not None:
            raise AuthorizationError("AlreadyInitialized", "gate already initialized")
        member_list = sorted(set(members))
        if not member_list:
            raise ValidationError("InvalidQuorum", "gate needs at least one member")
        if not 1 <= quorum <= len(member_list):
            raise ValidationError("InvalidQuorum", f"quorum {quorum} outside [1, {len(member_list)}]")
        if delay_seconds < 0:
            raise ValidationError("InvalidDelay", "delay cannot be negative")
        self._store(ctx, "members", member_list)
        self._store(ctx, "quorum", quorum)
        self._store(ctx, "delay", delay_seconds)

    async def _require_member(self, ctx: CallContext) -> None:
        members = await self._load(ctx, "members", [])
        if ctx.sender not in members:
            raise AuthorizationError("UnauthorizedCaller", f"{ctx.sender} is not a gate member")

    async def _action(self, ctx: CallContext, action_id: int) -> dict[str, Any]:
        action = await self._load(ctx, f"action:{action_id}")
        if action is None:
            raise ValidationError("ActionNotFound", f"action {action_id} does not exist")
        return action

    async def propose(self, ctx: CallContext, target: str, method: str, args: list[Any]) -> int:
        await self._require_member(ctx)
        contract = self.ledger.contract_at(target)
        if contract is None or method not in getattr(contract, "governed_methods", ()):
            raise ValidationError("InvalidAction", f"{method} is not governable on {target}")
        action_id = await self._load_int(ctx, "next_action") + 1
        self._store_int(ctx, "next_action", action_id)
        self._store(
            ctx,
            f"action:{action_id}",
            {
                "target": target,
                "method": method,
                "args": encode_args(args),
                "digest": call_digest(target, method, args),
                "approvals": [],
                "proposed_at": ctx.timestamp,
                "quorum_at": None,
                "executed": False,
            },
        )
        await self.approve(ctx, action_id)
        return action_id

    async def approve(self, ctx: CallContext, action_id: int) -> None:
        await self._require_member(ctx)
        action = await self._action(ctx, action_id)
        if action["executed"]:
            raise StateConflictError("ActionExecuted", f"action {action_id} already executed")
        if ctx.sender in action["approvals"]:
            raise StateConflictError("AlreadyApproved", f"{ctx.sender} already approved {action_id}")
        action["approvals"].append(ctx.sender)
        quorum = await self._load(ctx, "quorum")
        if action["quorum_at"] is None and len(action["approvals"]) >= quorum:
            action["quorum_at"] = ctx.timestamp
        self._store(ctx, f"action:{action_id}", action)

    async def execute(self, ctx: CallContext, action_id: int) -> Any:
        await self._require_member(ctx)
        action = await self._action(ctx, action_id)
        if action["executed"]:
            raise StateConflictError("ActionExecuted", f"action {action_id} already executed")
        if not await self._ready(ctx, action):
            raise AuthorizationError("CallNotApproved", f"action {action_id} is not executable yet")
        args = decode_args(action["args"])
        digest = action["digest"]
        target = self.ledger.contract_at(action["target"])
        method = getattr(target, action["method"])
        witness = ActionWitness(gate=self.address, action_id=action_id, call_digest=digest)
        marker = f"executing:{self.address}"
        ctx.tx.transient[marker] = action_id
        try:
            result = await method(
                ctx.derive(sender=self.address, target=target.address, witness=witness), *args
            )
        finally:
            ctx.tx.transient.pop(marker, None)
        action["executed"] = True
        self._store(ctx, f"action:{action_id}", action)
        logger.info("gate executed action %s: %s.%s", action_id, target.label, action["method"])
        return result

    async def _ready(self, ctx: CallContext, action: dict[str, Any]) -> bool:
        if action["quorum_at"] is None:
            return False
        delay = await self._load(ctx, "delay", 0)
        return ctx.timestamp >= action["quorum_at"] + delay

    async def confirm_call(self, ctx: CallContext, target: str, method: str, args: list[Any]) -> bool:
        witness = ctx.witness
        if witness is None or witness.gate != self.address:
            return False
        if ctx.tx.transient.get(f"executing:{self.address}") != witness.action_id:
            return False
        action = await self._load(ctx, f"action:{witness.action_id}")
        if action is None or action["executed"] or not await self._ready(ctx, action):
            return False
        digest = call_digest(target, method, args)
        return digest == witness.call_digest == action["digest"]

    async def action(self, ctx: CallContext, action_id: int) -> dict[str, Any]:
        return await self._action(ctx, action_id)


class GovernedContract(Contract):
    """Shared privileged configuration: activation, fee, fee receiver, registry, floor."""

    governed_methods: tuple[str, ...] = (
        "set_active",
        "set_fee",
        "set_fee_receiver",
        "set_registry",
        "set_floor_price",
    )

    async def _configure(
        self,
        ctx: CallContext,
        *,
        gate: str,
        registry: str,
        fee_bps: int,
        fee_receiver: str,
        floor_price: int,
    ) -> None:
        if await self._load(ctx, "gate"):
            raise AuthorizationError("AlreadyInitialized", f"{self.label} already initialized")
        validate_fee_bps(fee_bps)
        if floor_price < 0:
            raise ValidationError("IncorrectPrice", "floor price cannot be negative")
        self._store(ctx, "gate", gate)
        self._store(ctx, "registry", registry)
        self._store(ctx, "fee_bps", fee_bps)
        self._store(ctx, "fee_receiver", fee_receiver)
        self._store_int(ctx, "floor_price", floor_price)
        self._store(ctx, "active", True)

    async def _require_gate(self, ctx: CallContext, method: str, *args: Any) -> None:
        gate_address = await self._load(ctx, "gate")
        if gate_address is None or ctx.sender != gate_address:
            raise AuthorizationError("UnauthorizedCaller", f"{ctx.sender} is not the gate")
        gate = self.ledger.contract_at(gate_address)
        if gate is None or not await gate.confirm_call(ctx, self.address, method, list(args)):
            raise AuthorizationError("CallNotApproved", f"{method} is not an approved action")

    def _config_updated(self, ctx: CallContext, field: str, value: Any) -> None:
        self._emit(ctx, CONFIGURATION_UPDATED, field=field, value=_jsonable(value))

    async def set_active(self, ctx: CallContext, active: bool) -> None:
        await self._require_gate(ctx, "set_active", active)
        self._store(ctx, "active", bool(active))
        self._config_updated(ctx, "active", bool(active))

    async def set_fee(self, ctx: CallContext, fee_bps: int) -> None:
        await self._require_gate(ctx, "set_fee", fee_bps)
        self._store(ctx, "fee_bps", validate_fee_bps(fee_bps))
        self._config_updated(ctx, "fee_bps", fee_bps)

    async def set_fee_receiver(self, ctx: CallContext, receiver: str) -> None:
        await self._require_gate(ctx, "set_fee_receiver", receiver)
        if not receiver:
            raise ValidationError("InvalidCaller", "fee receiver cannot be empty")
        self._store(ctx, "fee_receiver", receiver)
        self._config_updated(ctx, "fee_receiver", receiver)

    async def set_registry(self, ctx: CallContext, registry: str) -> None:
        await self._require_gate(ctx, "set_registry", registry)
        if self.ledger.contract_at(registry) is None:
            raise ValidationError("InvalidRegistry", f"no contract at {registry}")
        self._store(ctx, "registry", registry)
        self._config_updated(ctx, "registry", registry)

    async def set_floor_price(self, ctx: CallContext, floor_price: int) -> None:
        await self._require_gate(ctx, "set_floor_price", floor_price)
        if floor_price < 0:
            raise ValidationError("IncorrectPrice", "floor price cannot be negative")
        self._store_int(ctx, "floor_price", floor_price)
        self._config_updated(ctx, "floor_price", floor_price)

    async def is_active(self, ctx: CallContext) -> bool:
        return bool(await self._load(ctx, "active", False))

    async def fee_config(self, ctx: CallContext) -> dict[str, Any]:
        return {
            "fee_bps": int(await self._load(ctx, "fee_bps", 0)),
            "fee_receiver": await self._load(ctx, "fee_receiver"),
            "floor_price": await self._load_int(ctx, "floor_price"),
            "registry": await self._load(ctx, "registry"),
            "gate": await self._load(ctx, "gate"),
        }
