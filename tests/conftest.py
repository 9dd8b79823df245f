import os
import sys

import pytest

# Add the project root to the Python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from packages.hot_wallet.substrate.accounts import create_demo_keys
from packages.hot_wallet.substrate.chain_sync import ChainSync
from packages.hot_wallet.substrate.proxy_guard.observers import ProgressObserver
from packages.hot_wallet.substrate.proxy_guard.orchestrator import ProxyGuardOrchestrator
from packages.hot_wallet.substrate.simulation.simulated_constructor import SimulatedTransactionConstructor
from packages.hot_wallet.substrate.simulation.simulated_ledger import SimulatedLedger


TRANSFER_VALUE = 999999999999999
DELAY_BLOCKS = 6


class RecordingObserver(ProgressObserver):
    """Keeps every notification in order so tests can assert on the protocol trace"""

    def __init__(self):
        self.events = []

    def phase_entered(self, phase, description):
        self.events.append(("phase", phase))

    def transaction_submitted(self, label, tx_hash):
        self.events.append(("submitted", label))

    def timepoint_obtained(self, label, timepoint):
        self.events.append(("timepoint", label, timepoint))

    def verdict_computed(self, label, verdict):
        self.events.append(("verdict", label, verdict))

    def remediation_started(self, reason):
        self.events.append(("remediation_started", reason))

    def remediation_completed(self, timepoint):
        self.events.append(("remediation_completed", timepoint))

    def attack_outcome(self, outcome):
        self.events.append(("attack_outcome", outcome))

    def of_kind(self, kind):
        return [event for event in self.events if event[0] == kind]


@pytest.fixture(scope="session")
def keys():
    return create_demo_keys(42)


@pytest.fixture
def ledger(keys):
    ledger = SimulatedLedger(ss58_format=42)
    ledger.endow(keys.multisig0.address, TRANSFER_VALUE * 2)
    ledger.endow(keys.bank.address, TRANSFER_VALUE * 3)
    return ledger


@pytest.fixture
def constructor():
    return SimulatedTransactionConstructor()


@pytest.fixture
def chain_sync(ledger):
    return ChainSync(ledger, poll_interval=1.0, settle_delay=0, max_attempts=200, sleep=ledger.tick)


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def orchestrator(ledger, constructor, chain_sync, keys, observer):
    orchestrator = ProxyGuardOrchestrator(
        ledger,
        constructor,
        chain_sync,
        keys,
        observer=observer,
        executor=ledger.executor(),
        delay_blocks=DELAY_BLOCKS,
        transfer_value=TRANSFER_VALUE,
        cold_transfer_value=1
    )
    yield orchestrator
    orchestrator.shutdown(wait=True)
