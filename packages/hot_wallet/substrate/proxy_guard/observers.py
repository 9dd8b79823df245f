from enum import Enum
from typing import Iterable

from loguru import logger

from packages.hot_wallet.base import GuardMetrics
from packages.hot_wallet.substrate.models import AttackOutcome, SafetyVerdict, Timepoint


class Phase(Enum):
    FUND_MULTISIG = "fund_multisig"
    GRANT_PROXY = "grant_proxy"
    FUND_DERIVED = "fund_derived"
    BENIGN_SPEND = "benign_spend"
    ADVERSARIAL_SPEND = "adversarial_spend"
    REMEDIATION = "remediation"


class ProgressObserver:
    """Receives protocol progress; every hook is a no-op by default"""

    def phase_entered(self, phase: Phase, description: str):
        pass

    def transaction_submitted(self, label: str, tx_hash: str):
        pass

    def timepoint_obtained(self, label: str, timepoint: Timepoint):
        pass

    def verdict_computed(self, label: str, verdict: SafetyVerdict):
        pass

    def remediation_started(self, reason: str):
        pass

    def remediation_completed(self, timepoint: Timepoint):
        pass

    def attack_outcome(self, outcome: AttackOutcome):
        pass


class LoggingProgressObserver(ProgressObserver):

    def phase_entered(self, phase, description):
        logger.info(f">>> {description}", extra={"phase": phase.value})

    def transaction_submitted(self, label, tx_hash):
        logger.info(f"Submitted {label}, waiting for inclusion", extra={"tx_hash": tx_hash})

    def timepoint_obtained(self, label, timepoint):
        logger.success(
            f"{label} included at block #{timepoint.height}, index {timepoint.index}",
            extra={"block_height": timepoint.height, "extrinsic_index": timepoint.index}
        )

    def verdict_computed(self, label, verdict):
        if verdict.safe:
            logger.info(f"{label}: transaction safety confirmed", extra={"destination": verdict.destination})
        else:
            logger.warning(f"{label}: transaction is not safe", extra={"destination": verdict.destination})

    def remediation_started(self, reason):
        logger.warning(f"Malicious proxy transfer detected, removing all proxies: {reason}")

    def remediation_completed(self, timepoint):
        logger.success(f"All proxies removed from the multisig account at block #{timepoint.height}")

    def attack_outcome(self, outcome):
        if outcome.succeeded:
            logger.error(
                f"Malicious transaction included at block #{outcome.timepoint.height}, index {outcome.timepoint.index}",
                extra={"outcome": "attack_succeeded"}
            )
        else:
            logger.success("Malicious transaction averted", extra={"outcome": "attack_averted", "error": outcome.error})


class MetricsProgressObserver(ProgressObserver):

    def __init__(self, metrics: GuardMetrics):
        self.metrics = metrics

    def phase_entered(self, phase, description):
        self.metrics.record_phase(phase.value)

    def verdict_computed(self, label, verdict):
        self.metrics.record_verdict(verdict.safe)

    def remediation_completed(self, timepoint):
        self.metrics.record_remediation()

    def attack_outcome(self, outcome):
        self.metrics.record_attack_outcome(outcome.succeeded)


class CompositeProgressObserver(ProgressObserver):

    def __init__(self, observers: Iterable[ProgressObserver]):
        self.observers = list(observers)

    def phase_entered(self, phase, description):
        for observer in self.observers:
            observer.phase_entered(phase, description)

    def transaction_submitted(self, label, tx_hash):
        for observer in self.observers:
            observer.transaction_submitted(label, tx_hash)

    def timepoint_obtained(self, label, timepoint):
        for observer in self.observers:
            observer.timepoint_obtained(label, timepoint)

    def verdict_computed(self, label, verdict):
        for observer in self.observers:
            observer.verdict_computed(label, verdict)

    def remediation_started(self, reason):
        for observer in self.observers:
            observer.remediation_started(reason)

    def remediation_completed(self, timepoint):
        for observer in self.observers:
            observer.remediation_completed(timepoint)

    def attack_outcome(self, outcome):
        for observer in self.observers:
            observer.attack_outcome(outcome)
