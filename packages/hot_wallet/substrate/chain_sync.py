import time
from typing import Callable, Iterator, Optional, Sequence

from loguru import logger

from packages.hot_wallet.base import GuardMetrics
from packages.hot_wallet.substrate.errors import (
    ExtrinsicFailure, UnexpectedEventData, ChainSyncTimeout, ChainSyncTerminated
)
from packages.hot_wallet.substrate.models import Block, Timepoint
from packages.hot_wallet.substrate.node.abstract_node import Node


class ChainSync:
    """
    Turns polling of the chain head into blocking "wait for this occurrence" calls.

    Every wait keeps its own cursor, so blocks produced between two polls are
    fetched by height and scanned in order instead of being skipped. Waits are
    bounded by ``max_attempts`` unsuccessful polls (``None`` waits forever).
    """

    def __init__(
            self,
            node: Node,
            poll_interval: float = 1.0,
            settle_delay: Optional[float] = None,
            max_attempts: Optional[int] = 600,
            terminate_event=None,
            metrics: Optional[GuardMetrics] = None,
            sleep: Callable[[float], None] = time.sleep
    ):
        self.node = node
        self.poll_interval = poll_interval
        self.settle_delay = poll_interval / 2 if settle_delay is None else settle_delay
        self.max_attempts = max_attempts
        self.terminate_event = terminate_event
        self.metrics = metrics
        self._sleep = sleep

    def current_height(self) -> int:
        return self.node.get_latest_block().height

    def await_event(
            self,
            pallet: str,
            method: str,
            exclude: Optional[Timepoint] = None,
            expected_data: Optional[Sequence[str]] = None,
            from_height: Optional[int] = None,
            skip_mismatched: bool = False
    ) -> Timepoint:
        """
        Block until an extrinsic emits ``pallet.method`` and return its Timepoint.

        Args:
            pallet: Event pallet, e.g. 'balances'
            method: Event method, e.g. 'Transfer'
            exclude: Extrinsic to skip entirely, typically the Timepoint an
                earlier wait for the same event already consumed
            expected_data: When given, the event data must equal it element-wise
            from_height: First block to scan; defaults to the head at the first poll
            skip_mismatched: Treat an event whose data differs from ``expected_data``
                as someone else's and keep scanning instead of raising

        Raises:
            ExtrinsicFailure: a scanned, non-excluded extrinsic failed
            UnexpectedEventData: the event matched but its data did not, unless
                ``skip_mismatched`` is set
            ChainSyncTimeout: no match within ``max_attempts`` polls
        """
        description = f"{pallet}.{method}"
        started = time.time()
        next_height = from_height
        attempts = 0

        while True:
            self._check_terminated(description)
            head = self.node.get_latest_block()
            self._record_poll("event", head.height)
            if next_height is None:
                next_height = head.height

            for block in self._blocks_since(next_height, head):
                timepoint = self._match_block(block, pallet, method, exclude, expected_data, skip_mismatched)
                if timepoint is not None:
                    logger.info(
                        f"Observed {description} at {timepoint}",
                        extra={"pallet": pallet, "method": method, "block_height": timepoint.height,
                               "extrinsic_index": timepoint.index}
                    )
                    if self.metrics:
                        self.metrics.record_event_matched(pallet, method)
                        self.metrics.record_wait_duration("event", time.time() - started)
                    if self.settle_delay:
                        self._sleep(self.settle_delay)
                    return timepoint
            next_height = max(next_height, head.height + 1)

            attempts += 1
            self._check_attempts(description, attempts, "event")
            self._sleep(self.poll_interval)

    def await_height(self, target: int) -> int:
        """Block until the head is at least ``target``; returns the observed height."""
        description = f"block height {target}"
        started = time.time()
        attempts = 0

        while True:
            self._check_terminated(description)
            height = self.node.get_latest_block().height
            self._record_poll("height", height)
            if height >= target:
                if self.metrics:
                    self.metrics.record_wait_duration("height", time.time() - started)
                return height

            attempts += 1
            self._check_attempts(description, attempts, "height")
            self._sleep(self.poll_interval)

    def _blocks_since(self, next_height: int, head: Block) -> Iterator[Block]:
        for height in range(next_height, head.height):
            block = self.node.get_block_by_height(height)
            if block is not None:
                yield block
        if head.height >= next_height:
            yield head

    def _match_block(
            self,
            block: Block,
            pallet: str,
            method: str,
            exclude: Optional[Timepoint],
            expected_data: Optional[Sequence[str]],
            skip_mismatched: bool = False
    ) -> Optional[Timepoint]:
        for extrinsic in block.extrinsics:
            if exclude is not None and block.height == exclude.height and extrinsic.index == exclude.index:
                continue

            # A failed extrinsic invalidates anything else it emitted
            if extrinsic.has_failed():
                if self.metrics:
                    self.metrics.record_extrinsic_failure()
                failure = next(event for event in extrinsic.events if event.is_failure)
                raise ExtrinsicFailure(
                    block.height,
                    extrinsic.index,
                    ", ".join(failure.data) or None
                )

            for event in extrinsic.events:
                if event.pallet == pallet and event.method == method:
                    if not self._compare_event_data(expected_data, event.data):
                        if skip_mismatched:
                            continue
                        raise UnexpectedEventData(block.height, expected_data, event.data)
                    return Timepoint(block.height, extrinsic.index)
        return None

    @staticmethod
    def _compare_event_data(expected: Optional[Sequence[str]], actual: Sequence[str]) -> bool:
        if expected is None:
            return True
        return len(expected) == len(actual) and all(e == a for e, a in zip(expected, actual))

    def _check_terminated(self, description: str):
        if self.terminate_event is not None and self.terminate_event.is_set():
            logger.info(f"Wait for {description} terminated")
            raise ChainSyncTerminated(f"Wait for {description} terminated")

    def _check_attempts(self, description: str, attempts: int, wait_kind: str):
        if self.max_attempts is not None and attempts >= self.max_attempts:
            if self.metrics:
                self.metrics.record_timeout(wait_kind)
            raise ChainSyncTimeout(description, attempts)

    def _record_poll(self, wait_kind: str, height: int):
        if self.metrics:
            self.metrics.record_poll(wait_kind, height)
