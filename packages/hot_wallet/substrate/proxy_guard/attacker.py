from typing import Sequence

from loguru import logger

from packages.hot_wallet.substrate.chain_sync import ChainSync
from packages.hot_wallet.substrate.errors import ExtrinsicFailure
from packages.hot_wallet.substrate.models import Account, AttackOutcome, BuiltCall, Timepoint
from packages.hot_wallet.substrate.node.abstract_node import Node
from packages.hot_wallet.substrate.proxy_guard.observers import ProgressObserver
from packages.hot_wallet.substrate.transaction.abstract_constructor import TransactionConstructor
from packages.hot_wallet.substrate.transaction.calls import CallKind, PROXY_TYPE_ANY


class AttackerSimulation:
    """
    A compromised proxy key acting on its own schedule.

    Waits out the announcement delay, submits the announced call and reports
    whether the malicious transfer landed. Runs independently of the guard and
    never feeds back into its decisions.
    """

    def __init__(
            self,
            node: Node,
            constructor: TransactionConstructor,
            chain_sync: ChainSync,
            proxy: Account,
            real: str,
            delay_blocks: int,
            observer: ProgressObserver
    ):
        self.node = node
        self.constructor = constructor
        self.chain_sync = chain_sync
        self.proxy = proxy
        self.real = real
        self.delay_blocks = delay_blocks
        self.observer = observer

    def run(self, announced_call: BuiltCall, announced: Timepoint, expected_transfer: Sequence[str]) -> AttackOutcome:
        """``expected_transfer`` is the (from, to, value) data the malicious transfer emits"""
        height = self.chain_sync.await_height(announced.height + self.delay_blocks)

        logger.warning("Attacker is attempting to transfer funds", extra={"block_height": height})
        execute = self.constructor.build_call(CallKind.PROXY_PROXY_ANNOUNCED, {
            "delegate": self.proxy.address,
            "real": self.real,
            "force_proxy_type": PROXY_TYPE_ANY,
            "call": announced_call.unsigned,
        })
        tx_hash = self.node.submit_transaction(self.constructor.sign_and_encode(execute, self.proxy))
        self.observer.transaction_submitted("malicious proxy execution", tx_hash)

        try:
            # Other transfers may share the block; only our own counts
            timepoint = self.chain_sync.await_event(
                "balances", "Transfer",
                expected_data=expected_transfer,
                from_height=height + 1,
                skip_mismatched=True
            )
        except ExtrinsicFailure as e:
            outcome = AttackOutcome(succeeded=False, error=str(e))
        else:
            outcome = AttackOutcome(succeeded=True, timepoint=timepoint)

        self.observer.attack_outcome(outcome)
        return outcome
