from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from packages.hot_wallet.base import ErrorContextManager
from packages.hot_wallet.substrate.accounts import DemoKeys, derived_address, multisig_address, sort_addresses
from packages.hot_wallet.substrate.chain_sync import ChainSync
from packages.hot_wallet.substrate.errors import ExtrinsicFailure, MaliciousTransactionUndetected
from packages.hot_wallet.substrate.models import (
    Account, AttackOutcome, BuiltCall, SafetyVerdict, Timepoint, event_data
)
from packages.hot_wallet.substrate.node.abstract_node import Node
from packages.hot_wallet.substrate.proxy_guard.attacker import AttackerSimulation
from packages.hot_wallet.substrate.proxy_guard.observers import Phase, ProgressObserver, LoggingProgressObserver
from packages.hot_wallet.substrate.safety_worker import SafetyWorker
from packages.hot_wallet.substrate.transaction.abstract_constructor import TransactionConstructor
from packages.hot_wallet.substrate.transaction.calls import CallKind, PROXY_TYPE_ANY


TRANSFER_EVENT = ("balances", "Transfer")
NEW_MULTISIG_EVENT = ("multisig", "NewMultisig")
MULTISIG_APPROVAL_EVENT = ("multisig", "MultisigApproval")
MULTISIG_EXECUTED_EVENT = ("multisig", "MultisigExecuted")
ANNOUNCED_EVENT = ("proxy", "Announced")


@dataclass(frozen=True)
class SetupReport:
    multisig: str
    derived: Tuple[str, str]
    multisig_funded: Timepoint
    proxy_granted: Timepoint
    derived_funded: Tuple[Timepoint, Timepoint]


@dataclass(frozen=True)
class BenignReport:
    verdict: SafetyVerdict
    announced: Timepoint
    executed: Optional[Timepoint]


@dataclass(frozen=True)
class AdversarialReport:
    verdict: SafetyVerdict
    announced: Timepoint
    remediation: Timepoint
    attack: 'Future[AttackOutcome]'


@dataclass(frozen=True)
class RunReport:
    setup: SetupReport
    benign: BenignReport
    adversarial: AdversarialReport


class ProxyGuardOrchestrator:
    """
    Drives the hot wallet protocol: a 2-of-3 multisig holds the funds, a proxy
    may move them only after announcing and waiting ``delay_blocks``, and every
    announcement is checked against the cold storage allow-list. An announcement
    that fails the check triggers a multisig round removing all proxies, which
    must land before the announced call is dispatched.

    Phases run strictly in order and each waits for on-chain confirmation.
    Chain sync failures during setup are fatal and propagate to the caller.
    """

    def __init__(
            self,
            node: Node,
            constructor: TransactionConstructor,
            chain_sync: ChainSync,
            keys: DemoKeys,
            safety_worker: Optional[SafetyWorker] = None,
            observer: Optional[ProgressObserver] = None,
            executor: Optional[Executor] = None,
            delay_blocks: int = 6,
            threshold: int = 2,
            max_weight: int = 1000000000,
            transfer_value: int = 999999999999999,
            cold_transfer_value: int = 1,
            ss58_format: int = 42,
            service_name: str = "proxy-guard"
    ):
        if not 2 <= threshold <= len(keys.signatories):
            raise ValueError(f"Threshold must be between 2 and {len(keys.signatories)}, got {threshold}")

        self.node = node
        self.constructor = constructor
        self.chain_sync = chain_sync
        self.keys = keys
        self.safety_worker = safety_worker or SafetyWorker([keys.cold.address])
        self.observer = observer or LoggingProgressObserver()
        self.executor = executor
        self.delay_blocks = delay_blocks
        self.threshold = threshold
        self.max_weight = max_weight
        self.transfer_value = transfer_value
        self.cold_transfer_value = cold_transfer_value
        self.ss58_format = ss58_format
        self.error_ctx = ErrorContextManager(service_name)

        self.multisig = multisig_address([s.address for s in keys.signatories], threshold, ss58_format)
        self.derived = (
            derived_address(self.multisig, 0, ss58_format),
            derived_address(self.multisig, 1, ss58_format),
        )
        self.attacker = AttackerSimulation(
            node, constructor, chain_sync, keys.proxy, self.multisig, delay_blocks, self.observer
        )

        logger.info(
            "Proxy guard configured",
            extra={
                "multisig": self.multisig,
                "signatories": [s.address for s in keys.signatories],
                "threshold": threshold,
                "proxy": keys.proxy.address,
                "cold": keys.cold.address,
                "derived": list(self.derived),
                "delay_blocks": delay_blocks
            }
        )

    # Protocol

    def run(self) -> RunReport:
        with self.error_ctx.start_operation("proxy_guard_run", multisig=self.multisig):
            setup = self.run_setup()
            benign = self.run_benign_path()
            adversarial = self.run_adversarial_path()
        return RunReport(setup, benign, adversarial)

    def run_setup(self) -> SetupReport:
        funded = self.fund_multisig()
        granted = self.grant_proxy()
        derived_funded = self.fund_derived_accounts()
        return SetupReport(self.multisig, self.derived, funded, granted, derived_funded)

    def fund_multisig(self) -> Timepoint:
        self.observer.phase_entered(
            Phase.FUND_MULTISIG, f"Transferring {self.transfer_value} units to multisig account {self.multisig}"
        )
        transfer = self._build(CallKind.BALANCES_TRANSFER, dest=self.multisig, value=self.transfer_value)
        return self._submit_and_confirm(
            "transfer to multisig", transfer, self.keys.multisig0, TRANSFER_EVENT,
            expected_data=event_data(self.keys.multisig0.address, self.multisig, self.transfer_value)
        )

    def grant_proxy(self) -> Timepoint:
        self.observer.phase_entered(
            Phase.GRANT_PROXY, f"Adding {self.keys.proxy.name} as time-delay proxy for multisig account"
        )
        add_proxy = self._build(
            CallKind.PROXY_ADD_PROXY,
            delegate=self.keys.proxy.address,
            proxy_type=PROXY_TYPE_ANY,
            delay=self.delay_blocks
        )
        signers = self.keys.signatories[1:1 + self.threshold]
        if len(signers) < self.threshold:
            signers = self.keys.signatories[-self.threshold:]
        return self._multisig_round("add proxy", add_proxy, signers)

    def fund_derived_accounts(self) -> Tuple[Timepoint, Timepoint]:
        self.observer.phase_entered(
            Phase.FUND_DERIVED, "Funding two accounts derived from the multisig account"
        )
        first = self._submit_and_confirm(
            "transfer to first derived account",
            self._build(CallKind.BALANCES_TRANSFER, dest=self.derived[0], value=self.transfer_value),
            self.keys.bank,
            TRANSFER_EVENT,
            expected_data=event_data(self.keys.bank.address, self.derived[0], self.transfer_value)
        )
        # Both transfers emit balances.Transfer; the first one must not be matched again
        second = self._submit_and_confirm(
            "transfer to second derived account",
            self._build(CallKind.BALANCES_TRANSFER, dest=self.derived[1], value=self.transfer_value),
            self.keys.bank,
            TRANSFER_EVENT,
            exclude=first,
            expected_data=event_data(self.keys.bank.address, self.derived[1], self.transfer_value)
        )
        return first, second

    def run_benign_path(self, destination: Optional[str] = None, value: Optional[int] = None) -> BenignReport:
        destination = destination or self.keys.cold.address
        value = self.cold_transfer_value if value is None else value
        self.observer.phase_entered(
            Phase.BENIGN_SPEND, "Using the proxy to move funds from the first derived account"
        )

        spend, announced = self._announce(0, destination, value)
        verdict = self._verify("announced spend from first derived account", spend)
        if not verdict.safe:
            self.error_ctx.log_business_decision(
                "abort_announced_spend",
                "destination_not_in_allow_list",
                destination=verdict.destination,
                announced=str(announced)
            )
            return BenignReport(verdict, announced, None)

        self.chain_sync.await_height(announced.height + self.delay_blocks)
        executed = self._submit_and_confirm(
            "announced proxy execution",
            self._proxy_announced(spend),
            self.keys.proxy,
            TRANSFER_EVENT,
            expected_data=event_data(self.derived[0], destination, value)
        )
        return BenignReport(verdict, announced, executed)

    def run_adversarial_path(self, destination: Optional[str] = None, value: Optional[int] = None) -> AdversarialReport:
        destination = destination or self.keys.attacker.address
        value = self.transfer_value if value is None else value
        self.observer.phase_entered(
            Phase.ADVERSARIAL_SPEND, "Compromised proxy announces a transfer from the second derived account"
        )

        spend, announced = self._announce(1, destination, value)
        attack = self._executor().submit(
            self.attacker.run, spend, announced, event_data(self.derived[1], destination, value)
        )

        verdict = self._verify("announced spend from second derived account", spend)
        if verdict.safe:
            raise MaliciousTransactionUndetected(
                f"Announcement {announced} to {verdict.destination} passed the safety check"
            )

        remediation = self.remediate(f"announcement {announced} sends funds to {verdict.destination}")
        return AdversarialReport(verdict, announced, remediation, attack)

    def remediate(self, reason: str) -> Timepoint:
        self.observer.remediation_started(reason)
        self.observer.phase_entered(Phase.REMEDIATION, "Removing all proxies from the multisig account")
        self.error_ctx.log_business_decision("remove_all_proxies", reason, multisig=self.multisig)

        remove_proxies = self._build(CallKind.PROXY_REMOVE_PROXIES)
        signers = self.keys.signatories[:self.threshold]
        timepoint = self._multisig_round("remove proxies", remove_proxies, signers)

        self.observer.remediation_completed(timepoint)
        return timepoint

    # Steps

    def _announce(self, index: int, destination: str, value: int) -> Tuple[BuiltCall, Timepoint]:
        transfer = self._build(CallKind.BALANCES_TRANSFER, dest=destination, value=value)
        spend = self._build(CallKind.UTILITY_AS_DERIVATIVE, index=index, call=transfer.unsigned)
        announce = self._build(CallKind.PROXY_ANNOUNCE, real=self.multisig, call_hash=spend.call_hash)
        announced = self._submit_and_confirm(
            f"proxy announcement for derived account {index}", announce, self.keys.proxy, ANNOUNCED_EVENT
        )
        return spend, announced

    def _verify(self, label: str, spend: BuiltCall) -> SafetyVerdict:
        # Only the hash is on chain; the locally held plaintext is what gets checked
        verdict = self.safety_worker.verify(spend.unsigned)
        self.observer.verdict_computed(label, verdict)
        return verdict

    def _proxy_announced(self, spend: BuiltCall) -> BuiltCall:
        return self._build(
            CallKind.PROXY_PROXY_ANNOUNCED,
            delegate=self.keys.proxy.address,
            real=self.multisig,
            force_proxy_type=PROXY_TYPE_ANY,
            call=spend.unsigned
        )

    def _multisig_round(
            self,
            label: str,
            call: BuiltCall,
            signers: Sequence[Account]
    ) -> Timepoint:
        """
        First signer opens the multisig, the middle ones approve, the last executes the full call.

        Confirmed by multisig.MultisigExecuted; a nested call that dispatched with an
        error raises ExtrinsicFailure even though the extrinsic itself succeeded.
        """
        opener, approvers, executor = signers[0], signers[1:-1], signers[-1]

        when = self._submit_and_confirm(
            f"{label} approval by {opener.name}",
            self._build(
                CallKind.MULTISIG_APPROVE_AS_MULTI,
                threshold=self.threshold,
                other_signatories=self._other_signatories(opener),
                maybe_timepoint=None,
                call_hash=call.call_hash,
                max_weight=self.max_weight
            ),
            opener,
            NEW_MULTISIG_EVENT
        )

        previous = None
        for approver in approvers:
            previous = self._submit_and_confirm(
                f"{label} approval by {approver.name}",
                self._build(
                    CallKind.MULTISIG_APPROVE_AS_MULTI,
                    threshold=self.threshold,
                    other_signatories=self._other_signatories(approver),
                    maybe_timepoint=when,
                    call_hash=call.call_hash,
                    max_weight=self.max_weight
                ),
                approver,
                MULTISIG_APPROVAL_EVENT,
                exclude=previous
            )

        executed = self._submit_and_confirm(
            f"{label} execution by {executor.name}",
            self._build(
                CallKind.MULTISIG_AS_MULTI,
                threshold=self.threshold,
                other_signatories=self._other_signatories(executor),
                maybe_timepoint=when,
                call=call.unsigned,
                max_weight=self.max_weight
            ),
            executor,
            MULTISIG_EXECUTED_EVENT
        )
        self._check_dispatch_result(label, executed)
        return executed

    def _check_dispatch_result(self, label: str, timepoint: Timepoint):
        block = self.node.get_block_by_height(timepoint.height)
        extrinsic = next(e for e in block.extrinsics if e.index == timepoint.index)
        executed = next(
            event for event in extrinsic.events if (event.pallet, event.method) == MULTISIG_EXECUTED_EVENT
        )
        # The dispatch result is the last field of MultisigExecuted
        result = executed.data[-1] if executed.data else ""
        if "Err" in result:
            raise ExtrinsicFailure(timepoint.height, timepoint.index, f"{label} dispatched with {result}")

    def _submit_and_confirm(
            self,
            label: str,
            call: BuiltCall,
            signer: Account,
            event: Tuple[str, str],
            exclude: Optional[Timepoint] = None,
            expected_data: Optional[Sequence[str]] = None
    ) -> Timepoint:
        # The head at submission time cannot contain the new extrinsic
        first_height = self.chain_sync.current_height() + 1
        tx_hash = self.node.submit_transaction(self.constructor.sign_and_encode(call, signer))
        self.observer.transaction_submitted(label, tx_hash)

        pallet, method = event
        timepoint = self.chain_sync.await_event(
            pallet, method,
            exclude=exclude,
            expected_data=expected_data,
            from_height=first_height,
            skip_mismatched=expected_data is not None
        )
        self.observer.timepoint_obtained(label, timepoint)
        return timepoint

    def _build(self, kind: CallKind, **params: Any) -> BuiltCall:
        return self.constructor.build_call(kind, params)

    def _other_signatories(self, signer: Account) -> List[str]:
        return sort_addresses(
            [s.address for s in self.keys.signatories if s.address != signer.address],
            self.ss58_format
        )

    def _executor(self) -> Executor:
        if self.executor is None:
            self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="attacker")
        return self.executor

    def shutdown(self, wait: bool = True):
        if self.executor is not None:
            self.executor.shutdown(wait=wait)


def describe_keys(keys: DemoKeys) -> Dict[str, str]:
    return {account.role.value + ":" + account.name: account.address for account in (
        keys.cold, keys.multisig0, keys.multisig1, keys.multisig2, keys.proxy, keys.bank, keys.attacker
    )}
