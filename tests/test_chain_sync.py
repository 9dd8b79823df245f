import threading

import pytest

from packages.hot_wallet.substrate.chain_sync import ChainSync
from packages.hot_wallet.substrate.errors import (
    ChainSyncTerminated, ChainSyncTimeout, ExtrinsicFailure, UnexpectedEventData
)
from packages.hot_wallet.substrate.models import (
    Block, Event, Extrinsic, Timepoint, EXTRINSIC_FAILED, EXTRINSIC_SUCCESS
)
from packages.hot_wallet.substrate.node.abstract_node import Node


def transfer(*data):
    return Event("balances", "Transfer", tuple(data))


def ok(index, *events):
    return Extrinsic(index, tuple(events) + (Event("system", EXTRINSIC_SUCCESS),))


def failed(index, reason="Proxy.NotProxy"):
    return Extrinsic(index, (Event("system", EXTRINSIC_FAILED, (reason,)),))


class ScriptedNode(Node):
    """Serves a fixed chain; the head advances by ``step`` blocks on every sleep"""

    def __init__(self, blocks, start=0, step=1):
        super().__init__()
        self.blocks = {block.height: block for block in blocks}
        self.head = start
        self.step = step
        self.sleeps = 0

    def advance(self, _seconds):
        self.sleeps += 1
        self.head = min(self.head + self.step, max(self.blocks))

    def get_latest_block(self):
        return self.blocks[self.head]

    def get_block_by_height(self, block_height):
        return self.blocks.get(block_height)

    def submit_transaction(self, signed_transaction):
        raise NotImplementedError


def chain(*extrinsic_lists):
    return [Block(height, tuple(extrinsics)) for height, extrinsics in enumerate(extrinsic_lists)]


def sync_for(node, **kwargs):
    kwargs.setdefault("settle_delay", 0)
    kwargs.setdefault("max_attempts", 20)
    return ChainSync(node, sleep=node.advance, **kwargs)


def test_returns_first_matching_extrinsic_in_index_order():
    node = ScriptedNode(chain(
        [],
        [ok(0), ok(1, Event("proxy", "Announced")), ok(2, transfer("a", "b", "1")), ok(3, transfer("c", "d", "2"))],
    ))
    sync = sync_for(node)

    assert sync.await_event("balances", "Transfer", from_height=0) == Timepoint(1, 2)


def test_excluded_extrinsic_is_skipped():
    node = ScriptedNode(chain(
        [ok(0), ok(1, transfer("a", "b", "1"))],
        [ok(0), ok(1, transfer("a", "c", "1"))],
    ))
    sync = sync_for(node)

    first = sync.await_event("balances", "Transfer", from_height=0)
    second = sync.await_event("balances", "Transfer", exclude=first, from_height=0)

    assert first == Timepoint(0, 1)
    assert second == Timepoint(1, 1)


def test_excluded_extrinsic_in_same_block_falls_through_to_next_index():
    node = ScriptedNode(chain(
        [ok(0), ok(1, transfer("a", "b", "1")), ok(2, transfer("a", "c", "1"))],
    ))
    sync = sync_for(node)

    first = sync.await_event("balances", "Transfer", from_height=0)
    second = sync.await_event("balances", "Transfer", exclude=first, from_height=0)

    assert first == Timepoint(0, 1)
    assert second == Timepoint(0, 2)


def test_failed_extrinsic_raises_before_later_match():
    node = ScriptedNode(chain(
        [ok(0), failed(1), ok(2, transfer("a", "b", "1"))],
    ))
    sync = sync_for(node)

    with pytest.raises(ExtrinsicFailure) as error:
        sync.await_event("balances", "Transfer", from_height=0)

    assert error.value.block_height == 0
    assert error.value.extrinsic_index == 1
    assert error.value.reason == "Proxy.NotProxy"


def test_excluded_failure_is_ignored():
    node = ScriptedNode(chain(
        [ok(0), failed(1), ok(2, transfer("a", "b", "1"))],
    ))
    sync = sync_for(node)

    assert sync.await_event("balances", "Transfer", exclude=Timepoint(0, 1), from_height=0) == Timepoint(0, 2)


def test_failure_marker_next_to_matching_event_counts_as_failure():
    node = ScriptedNode(chain(
        [Extrinsic(1, (transfer("a", "b", "1"), Event("system", EXTRINSIC_FAILED)))],
    ))
    sync = sync_for(node)

    with pytest.raises(ExtrinsicFailure):
        sync.await_event("balances", "Transfer", from_height=0)


def test_expected_data_must_match_exactly():
    node = ScriptedNode(chain(
        [ok(1, transfer("a", "b", "1"))],
    ))

    assert sync_for(node).await_event(
        "balances", "Transfer", expected_data=("a", "b", "1"), from_height=0
    ) == Timepoint(0, 1)

    with pytest.raises(UnexpectedEventData) as error:
        sync_for(node).await_event("balances", "Transfer", expected_data=("a", "b", "2"), from_height=0)
    assert error.value.actual == ["a", "b", "1"]

    with pytest.raises(UnexpectedEventData):
        sync_for(node).await_event("balances", "Transfer", expected_data=("a", "b"), from_height=0)


def test_skip_mismatched_passes_over_other_transfers():
    node = ScriptedNode(chain(
        [ok(0), ok(1, transfer("bank", "cold", "5")), ok(2, transfer("a", "b", "1"))],
    ))

    timepoint = sync_for(node).await_event(
        "balances", "Transfer", expected_data=("a", "b", "1"), from_height=0, skip_mismatched=True
    )

    assert timepoint == Timepoint(0, 2)


def test_skip_mismatched_still_fails_fast_on_failed_extrinsic():
    node = ScriptedNode(chain(
        [ok(0), ok(1, transfer("bank", "cold", "5")), failed(2), ok(3, transfer("a", "b", "1"))],
    ))

    with pytest.raises(ExtrinsicFailure) as error:
        sync_for(node).await_event(
            "balances", "Transfer", expected_data=("a", "b", "1"), from_height=0, skip_mismatched=True
        )

    assert error.value.extrinsic_index == 2


def test_blocks_produced_between_polls_are_not_skipped():
    node = ScriptedNode(chain(
        [ok(0)],
        [ok(0)],
        [ok(0), ok(1, Event("multisig", "NewMultisig"))],
        [ok(0)],
        [ok(0)],
    ), step=4)
    sync = sync_for(node)

    assert sync.await_event("multisig", "NewMultisig") == Timepoint(2, 1)
    assert node.sleeps == 1


def test_default_start_is_head_at_first_poll():
    node = ScriptedNode(chain(
        [ok(1, transfer("a", "b", "1"))],
        [ok(0)],
        [ok(1, transfer("c", "d", "1"))],
    ), start=1)
    sync = sync_for(node)

    assert sync.await_event("balances", "Transfer") == Timepoint(2, 1)


def test_gives_up_after_max_attempts():
    node = ScriptedNode(chain([ok(0)], [ok(0)]))
    sync = sync_for(node, max_attempts=3)

    with pytest.raises(ChainSyncTimeout) as error:
        sync.await_event("balances", "Transfer")

    assert error.value.attempts == 3
    assert node.sleeps == 2


def test_terminate_event_stops_wait():
    node = ScriptedNode(chain([ok(0)]))
    terminate = threading.Event()
    terminate.set()
    sync = sync_for(node, terminate_event=terminate)

    with pytest.raises(ChainSyncTerminated):
        sync.await_event("balances", "Transfer")
    with pytest.raises(ChainSyncTerminated):
        sync.await_height(5)


def test_settle_delay_defaults_to_half_poll_interval():
    node = ScriptedNode(chain([ok(1, transfer("a", "b", "1"))]))
    slept = []
    sync = ChainSync(node, poll_interval=4.0, sleep=slept.append)

    sync.await_event("balances", "Transfer", from_height=0)

    assert sync.settle_delay == 2.0
    assert slept == [2.0]


def test_await_height_polls_until_reached():
    node = ScriptedNode(chain(*([[ok(0)]] * 5)))
    sync = sync_for(node)

    assert sync.await_height(3) == 3
    assert node.sleeps == 3
    assert sync.await_height(1) == 3
    assert sync.current_height() == 3
