"""
In-memory ledger implementing the slice of the Balances, Proxy, Multisig and
Utility pallets the proxy guard relies on.

Extrinsics are dispatched when a block is produced, so proxy authority is
checked at dispatch time exactly as on a real chain: a revocation included
before an announced proxy call makes that call fail.

Blocks are produced either explicitly with ``produce_block`` or through the
lockstep clock ``tick``: every participant (the caller plus one per task
submitted through ``executor()``) calls ``tick`` instead of sleeping, and a
block is produced once all of them are waiting. Every participant therefore
observes every block, which makes races between concurrent flows
reproducible.
"""
import copy
import hashlib
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from packages.hot_wallet.substrate.accounts import multisig_address, derived_address
from packages.hot_wallet.substrate.models import (
    Block, Event, Extrinsic, Timepoint, PrimitiveCall, WrapperCall, UnsignedCall,
    EXTRINSIC_FAILED, EXTRINSIC_SUCCESS, event_data
)
from packages.hot_wallet.substrate.node.abstract_node import Node
from packages.hot_wallet.substrate.simulation.simulated_constructor import decode_transaction, hash_call


class DispatchError(Exception):
    """A call was rejected by the runtime; the extrinsic fails and its state changes are reverted"""


@dataclass
class ProxyDefinition:
    delegate: str
    proxy_type: str
    delay: int


@dataclass
class Announcement:
    real: str
    call_hash: str
    height: int


@dataclass
class PendingMultisig:
    when: Timepoint
    depositor: str
    approvals: List[str] = field(default_factory=list)


@dataclass
class _LedgerState:
    balances: Dict[str, int] = field(default_factory=dict)
    proxies: Dict[str, List[ProxyDefinition]] = field(default_factory=dict)
    announcements: Dict[str, List[Announcement]] = field(default_factory=dict)
    multisigs: Dict[Tuple[str, str], PendingMultisig] = field(default_factory=dict)


@dataclass
class _PoolEntry:
    signer: str
    call: UnsignedCall
    earliest_height: int


class SimulatedLedger(Node):

    def __init__(self, ss58_format: int = 42, lockstep_timeout: float = 5.0):
        super().__init__()
        self.ss58_format = ss58_format
        self.lockstep_timeout = lockstep_timeout
        self._state = _LedgerState()
        self._pool: List[_PoolEntry] = []
        self._inclusion_delays: Dict[str, int] = {}
        self._blocks: List[Block] = [Block(0, (self._inherent(),))]

        self._cond = threading.Condition()
        self._participants = 1
        self._waiting = 0
        self._generation = 0

    # Chain client

    def get_latest_block(self) -> Block:
        with self._cond:
            return self._blocks[-1]

    def get_block_by_height(self, block_height: int) -> Optional[Block]:
        with self._cond:
            if 0 <= block_height < len(self._blocks):
                return self._blocks[block_height]
            return None

    def submit_transaction(self, signed_transaction: bytes) -> str:
        signer, call = decode_transaction(signed_transaction)
        with self._cond:
            head = self._blocks[-1].height
            earliest = head + 1 + self._inclusion_delays.get(signer, 0)
            self._pool.append(_PoolEntry(signer, call, earliest))
        tx_hash = "0x" + hashlib.blake2b(signed_transaction, digest_size=32).hexdigest()
        logger.debug(f"Pooled {call.pallet}.{call.method} from {signer}, includable at #{earliest}")
        return tx_hash

    # Test and demo controls

    def endow(self, address: str, amount: int):
        with self._cond:
            self._state.balances[address] = self._state.balances.get(address, 0) + amount

    def delay_inclusion(self, signer: str, blocks: int):
        """Hold transactions subsequently submitted by ``signer`` in the pool for ``blocks`` extra blocks"""
        with self._cond:
            if blocks:
                self._inclusion_delays[signer] = blocks
            else:
                self._inclusion_delays.pop(signer, None)

    def balance_of(self, address: str) -> int:
        with self._cond:
            return self._state.balances.get(address, 0)

    def proxies_of(self, real: str) -> List[ProxyDefinition]:
        with self._cond:
            return list(self._state.proxies.get(real, []))

    def announcements_of(self, delegate: str) -> List[Announcement]:
        with self._cond:
            return list(self._state.announcements.get(delegate, []))

    def produce_block(self) -> Block:
        with self._cond:
            return self._produce_locked()

    def tick(self, seconds: Optional[float] = None):
        """Lockstep replacement for ``time.sleep``: returns once the next block exists"""
        with self._cond:
            generation = self._generation
            self._waiting += 1
            if self._waiting >= self._participants:
                self._produce_locked()
                return
            released = self._cond.wait_for(lambda: self._generation != generation, timeout=self.lockstep_timeout)
            if not released:
                logger.warning(
                    "Lockstep participants did not all arrive, producing block anyway",
                    extra={"participants": self._participants, "waiting": self._waiting}
                )
                self._produce_locked()

    def join(self):
        with self._cond:
            self._participants += 1

    def leave(self):
        with self._cond:
            self._participants -= 1
            if self._waiting and self._waiting >= self._participants:
                self._produce_locked()

    def executor(self) -> 'LockstepExecutor':
        return LockstepExecutor(self)

    # Block production

    def _produce_locked(self) -> Block:
        height = self._blocks[-1].height + 1
        included = [entry for entry in self._pool if entry.earliest_height <= height]
        self._pool = [entry for entry in self._pool if entry.earliest_height > height]

        extrinsics = [self._inherent()]
        for index, entry in enumerate(included, start=1):
            extrinsics.append(self._apply_extrinsic(entry, Timepoint(height, index)))

        block = Block(height, tuple(extrinsics))
        self._blocks.append(block)
        self._waiting = 0
        self._generation += 1
        self._cond.notify_all()

        logger.debug(f"Produced block #{height} with {len(included)} signed extrinsics")
        return block

    @staticmethod
    def _inherent() -> Extrinsic:
        return Extrinsic(0, (Event("system", EXTRINSIC_SUCCESS),))

    def _apply_extrinsic(self, entry: _PoolEntry, timepoint: Timepoint) -> Extrinsic:
        state = copy.deepcopy(self._state)
        events: List[Event] = []
        try:
            self._dispatch(state, entry.signer, entry.call, timepoint, events)
        except DispatchError as e:
            logger.info(
                f"Extrinsic {timepoint} failed: {e}",
                extra={"signer": entry.signer, "call": f"{entry.call.pallet}.{entry.call.method}"}
            )
            return Extrinsic(timepoint.index, (Event("system", EXTRINSIC_FAILED, event_data(e)),))

        self._state = state
        events.append(Event("system", EXTRINSIC_SUCCESS))
        return Extrinsic(timepoint.index, tuple(events))

    # Runtime

    def _dispatch(self, state: _LedgerState, origin: str, call: UnsignedCall, timepoint: Timepoint, events: List[Event]):
        handler = getattr(self, f"_{call.pallet.lower()}_{call.method}", None)
        if handler is None:
            raise DispatchError(f"{call.pallet}.CallNotSupported({call.method})")
        handler(state, origin, call, timepoint, events)

    def _dispatch_nested(self, state: _LedgerState, origin: str, call: Optional[UnsignedCall],
                         timepoint: Timepoint, events: List[Event]) -> str:
        """Dispatch an inner call; its failure is reported as a result, not propagated"""
        if call is None:
            return "Err(NoCall)"
        inner_state = copy.deepcopy(state)
        inner_events: List[Event] = []
        try:
            self._dispatch(inner_state, origin, call, timepoint, inner_events)
        except DispatchError as e:
            return f"Err({e})"
        state.__dict__.update(inner_state.__dict__)
        events.extend(inner_events)
        return "Ok"

    def _balances_transfer_allow_death(self, state, origin, call: PrimitiveCall, timepoint, events):
        dest, value = call.args["dest"], int(call.args["value"])
        if state.balances.get(origin, 0) < value:
            raise DispatchError("Balances.InsufficientBalance")
        state.balances[origin] = state.balances.get(origin, 0) - value
        state.balances[dest] = state.balances.get(dest, 0) + value
        events.append(Event("balances", "Transfer", event_data(origin, dest, value)))

    _balances_transfer = _balances_transfer_allow_death
    _balances_transfer_keep_alive = _balances_transfer_allow_death

    def _utility_as_derivative(self, state, origin, call: WrapperCall, timepoint, events):
        if call.call is None:
            raise DispatchError("Utility.NoCall")
        pseudonym = derived_address(origin, int(call.args["index"]), self.ss58_format)
        self._dispatch(state, pseudonym, call.call, timepoint, events)

    def _proxy_add_proxy(self, state, origin, call: PrimitiveCall, timepoint, events):
        definition = ProxyDefinition(call.args["delegate"], call.args["proxy_type"], int(call.args["delay"]))
        definitions = state.proxies.setdefault(origin, [])
        if definition in definitions:
            raise DispatchError("Proxy.Duplicate")
        definitions.append(definition)
        events.append(Event("proxy", "ProxyAdded", event_data(
            origin, definition.delegate, definition.proxy_type, definition.delay
        )))

    def _proxy_remove_proxies(self, state, origin, call: PrimitiveCall, timepoint, events):
        # Like pallet_proxy, dropping every delegate at once emits no event
        state.proxies.pop(origin, None)

    def _proxy_announce(self, state, origin, call: PrimitiveCall, timepoint, events):
        real, call_hash = call.args["real"], call.args["call_hash"]
        if not any(d.delegate == origin for d in state.proxies.get(real, [])):
            raise DispatchError("Proxy.NotProxy")
        state.announcements.setdefault(origin, []).append(Announcement(real, call_hash, timepoint.height))
        events.append(Event("proxy", "Announced", event_data(real, origin, call_hash)))

    def _proxy_proxy_announced(self, state, origin, call: WrapperCall, timepoint, events):
        delegate, real = call.args["delegate"], call.args["real"]
        force_proxy_type = call.args.get("force_proxy_type")

        definition = next(
            (d for d in state.proxies.get(real, [])
             if d.delegate == delegate and (force_proxy_type is None or d.proxy_type == force_proxy_type)),
            None
        )
        if definition is None:
            raise DispatchError("Proxy.NotProxy")

        call_hash = hash_call(call.call) if call.call is not None else None
        announcements = state.announcements.get(delegate, [])
        announcement = next(
            (a for a in announcements
             if a.real == real and a.call_hash == call_hash and a.height + definition.delay <= timepoint.height),
            None
        )
        if announcement is None:
            raise DispatchError("Proxy.Unannounced")
        announcements.remove(announcement)

        result = self._dispatch_nested(state, real, call.call, timepoint, events)
        events.append(Event("proxy", "ProxyExecuted", event_data(result)))

    def _multisig_account(self, origin: str, call) -> str:
        others = list(call.args["other_signatories"])
        if origin in others:
            raise DispatchError("Multisig.SenderInSignatories")
        return multisig_address(others + [origin], int(call.args["threshold"]), self.ss58_format)

    @staticmethod
    def _maybe_timepoint(call) -> Optional[Timepoint]:
        raw = call.args.get("maybe_timepoint")
        return Timepoint(int(raw["height"]), int(raw["index"])) if raw is not None else None

    def _approve(self, state, origin, multisig: str, call_hash: str, maybe_timepoint, timepoint, events) -> PendingMultisig:
        key = (multisig, call_hash)
        pending = state.multisigs.get(key)
        if pending is None:
            if maybe_timepoint is not None:
                raise DispatchError("Multisig.UnexpectedTimepoint")
            pending = PendingMultisig(when=timepoint, depositor=origin, approvals=[origin])
            state.multisigs[key] = pending
            events.append(Event("multisig", "NewMultisig", event_data(origin, multisig, call_hash)))
            return pending

        if maybe_timepoint is None:
            raise DispatchError("Multisig.NoTimepoint")
        if maybe_timepoint != pending.when:
            raise DispatchError("Multisig.WrongTimepoint")
        if origin in pending.approvals:
            raise DispatchError("Multisig.AlreadyApproved")
        pending.approvals.append(origin)
        return pending

    def _multisig_approve_as_multi(self, state, origin, call: PrimitiveCall, timepoint, events):
        multisig = self._multisig_account(origin, call)
        call_hash = call.args["call_hash"]
        approved_before = (multisig, call_hash) in state.multisigs
        pending = self._approve(state, origin, multisig, call_hash, self._maybe_timepoint(call), timepoint, events)
        if approved_before:
            events.append(Event("multisig", "MultisigApproval", event_data(origin, pending.when, multisig, call_hash)))

    def _multisig_as_multi(self, state, origin, call: WrapperCall, timepoint, events):
        multisig = self._multisig_account(origin, call)
        if call.call is None:
            raise DispatchError("Multisig.NoCall")
        call_hash = hash_call(call.call)
        threshold = int(call.args["threshold"])
        key = (multisig, call_hash)
        approved_before = key in state.multisigs

        pending = self._approve(state, origin, multisig, call_hash, self._maybe_timepoint(call), timepoint, events)
        if len(pending.approvals) < threshold:
            if approved_before:
                events.append(Event("multisig", "MultisigApproval", event_data(origin, pending.when, multisig, call_hash)))
            return

        del state.multisigs[key]
        result = self._dispatch_nested(state, multisig, call.call, timepoint, events)
        events.append(Event("multisig", "MultisigExecuted", event_data(
            origin, pending.when, multisig, call_hash, result
        )))


class LockstepExecutor(ThreadPoolExecutor):
    """Runs each submitted task as an extra lockstep participant of ``ledger``"""

    def __init__(self, ledger: SimulatedLedger):
        super().__init__(max_workers=1, thread_name_prefix="lockstep")
        self.ledger = ledger

    def submit(self, fn, /, *args, **kwargs):
        self.ledger.join()

        def run():
            try:
                return fn(*args, **kwargs)
            finally:
                self.ledger.leave()

        return super().submit(run)
