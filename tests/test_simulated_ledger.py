from packages.hot_wallet.substrate.accounts import derived_address, multisig_address, sort_addresses
from packages.hot_wallet.substrate.models import EXTRINSIC_FAILED
from packages.hot_wallet.substrate.transaction.calls import CallKind


def submit(ledger, constructor, signer, kind, **params):
    built = constructor.build_call(kind, params)
    ledger.submit_transaction(constructor.sign_and_encode(built, signer))
    return built


def events_of(block, index):
    return [(event.pallet, event.method) for event in block.extrinsics[index].events]


def grant_proxy_directly(ledger, constructor, real, delegate, delay):
    """Give ``real`` (an endowed plain account) a proxy without going through a multisig"""
    submit(ledger, constructor, real, CallKind.PROXY_ADD_PROXY, delegate=delegate.address, delay=delay)
    return ledger.produce_block()


def test_genesis_and_inherent_layout(ledger):
    genesis = ledger.get_latest_block()
    assert genesis.height == 0
    assert [extrinsic.index for extrinsic in genesis.extrinsics] == [0]

    block = ledger.produce_block()
    assert block.height == 1
    assert ledger.get_block_by_height(1) == block
    assert ledger.get_block_by_height(5) is None


def test_transfer_moves_balance_and_emits_event(ledger, constructor, keys):
    submit(ledger, constructor, keys.bank, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=10)
    block = ledger.produce_block()

    assert events_of(block, 1) == [("balances", "Transfer"), ("system", "ExtrinsicSuccess")]
    assert block.extrinsics[1].events[0].data == (keys.bank.address, keys.cold.address, "10")
    assert ledger.balance_of(keys.cold.address) == 10


def test_failed_extrinsic_reverts_state(ledger, constructor, keys):
    submit(ledger, constructor, keys.proxy, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=10)
    block = ledger.produce_block()

    assert block.extrinsics[1].has_failed()
    assert block.extrinsics[1].events[0].data == ("Balances.InsufficientBalance",)
    assert ledger.balance_of(keys.cold.address) == 0


def test_same_block_extrinsics_follow_submission_order(ledger, constructor, keys):
    submit(ledger, constructor, keys.bank, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=1)
    submit(ledger, constructor, keys.multisig0, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=2)
    block = ledger.produce_block()

    assert [e.events[0].data[0] for e in block.extrinsics[1:]] == [keys.bank.address, keys.multisig0.address]


def test_delay_inclusion_holds_signer_transactions(ledger, constructor, keys):
    ledger.delay_inclusion(keys.bank.address, 2)
    submit(ledger, constructor, keys.bank, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=1)

    assert len(ledger.produce_block().extrinsics) == 1
    assert len(ledger.produce_block().extrinsics) == 1
    assert len(ledger.produce_block().extrinsics) == 2

    ledger.delay_inclusion(keys.bank.address, 0)
    submit(ledger, constructor, keys.bank, CallKind.BALANCES_TRANSFER, dest=keys.cold.address, value=1)
    assert len(ledger.produce_block().extrinsics) == 2


def test_announced_call_waits_out_the_delay(ledger, constructor, keys):
    real = keys.bank
    grant_proxy_directly(ledger, constructor, real, keys.proxy, delay=2)
    assert ledger.proxies_of(real.address)[0].delegate == keys.proxy.address

    transfer = constructor.build_call(CallKind.BALANCES_TRANSFER, {"dest": keys.cold.address, "value": 5})
    submit(ledger, constructor, keys.proxy, CallKind.PROXY_ANNOUNCE, real=real.address, call_hash=transfer.call_hash)
    announced = ledger.produce_block()
    assert events_of(announced, 1)[0] == ("proxy", "Announced")

    # Included one block after the announcement: too early
    submit(ledger, constructor, keys.proxy, CallKind.PROXY_PROXY_ANNOUNCED,
           delegate=keys.proxy.address, real=real.address, call=transfer.unsigned)
    early = ledger.produce_block()
    assert early.extrinsics[1].events[0].data == ("Proxy.Unannounced",)

    submit(ledger, constructor, keys.proxy, CallKind.PROXY_PROXY_ANNOUNCED,
           delegate=keys.proxy.address, real=real.address, call=transfer.unsigned)
    executed = ledger.produce_block()
    assert events_of(executed, 1) == [
        ("balances", "Transfer"), ("proxy", "ProxyExecuted"), ("system", "ExtrinsicSuccess")
    ]
    assert ledger.balance_of(keys.cold.address) == 5
    assert ledger.announcements_of(keys.proxy.address) == []


def test_revocation_before_announced_call_makes_it_fail(ledger, constructor, keys):
    real = keys.bank
    grant_proxy_directly(ledger, constructor, real, keys.proxy, delay=0)
    transfer = constructor.build_call(CallKind.BALANCES_TRANSFER, {"dest": keys.attacker.address, "value": 5})
    submit(ledger, constructor, keys.proxy, CallKind.PROXY_ANNOUNCE, real=real.address, call_hash=transfer.call_hash)
    ledger.produce_block()

    # Revocation and attack race into the same block; submission order decides
    submit(ledger, constructor, real, CallKind.PROXY_REMOVE_PROXIES)
    submit(ledger, constructor, keys.proxy, CallKind.PROXY_PROXY_ANNOUNCED,
           delegate=keys.proxy.address, real=real.address, call=transfer.unsigned)
    block = ledger.produce_block()

    assert events_of(block, 1) == [("system", "ExtrinsicSuccess")]
    assert ledger.proxies_of(real.address) == []
    assert block.extrinsics[2].events[0].method == EXTRINSIC_FAILED
    assert block.extrinsics[2].events[0].data == ("Proxy.NotProxy",)
    assert ledger.balance_of(keys.attacker.address) == 0


def test_revocation_after_announced_call_is_too_late(ledger, constructor, keys):
    real = keys.bank
    grant_proxy_directly(ledger, constructor, real, keys.proxy, delay=0)
    transfer = constructor.build_call(CallKind.BALANCES_TRANSFER, {"dest": keys.attacker.address, "value": 5})
    submit(ledger, constructor, keys.proxy, CallKind.PROXY_ANNOUNCE, real=real.address, call_hash=transfer.call_hash)
    ledger.produce_block()

    submit(ledger, constructor, keys.proxy, CallKind.PROXY_PROXY_ANNOUNCED,
           delegate=keys.proxy.address, real=real.address, call=transfer.unsigned)
    submit(ledger, constructor, real, CallKind.PROXY_REMOVE_PROXIES)
    block = ledger.produce_block()

    assert not block.extrinsics[1].has_failed()
    assert events_of(block, 2) == [("system", "ExtrinsicSuccess")]
    assert ledger.proxies_of(real.address) == []
    assert ledger.balance_of(keys.attacker.address) == 5


def test_multisig_round_dispatches_from_multisig_account(ledger, constructor, keys):
    signatories = [s.address for s in keys.signatories]
    multisig = multisig_address(signatories, 2)
    ledger.endow(multisig, 100)
    transfer = constructor.build_call(CallKind.BALANCES_TRANSFER, {"dest": keys.cold.address, "value": 40})

    def others(signer):
        return sort_addresses([a for a in signatories if a != signer.address])

    submit(ledger, constructor, keys.multisig0, CallKind.MULTISIG_APPROVE_AS_MULTI, threshold=2,
           other_signatories=others(keys.multisig0), call_hash=transfer.call_hash, max_weight=1)
    opened = ledger.produce_block()
    assert events_of(opened, 1)[0] == ("multisig", "NewMultisig")

    submit(ledger, constructor, keys.multisig1, CallKind.MULTISIG_AS_MULTI, threshold=2,
           other_signatories=others(keys.multisig1), maybe_timepoint={"height": opened.height, "index": 1},
           call=transfer.unsigned, max_weight=1)
    executed = ledger.produce_block()

    assert events_of(executed, 1)[:2] == [("balances", "Transfer"), ("multisig", "MultisigExecuted")]
    assert executed.extrinsics[1].events[1].data[-1] == "Ok"
    assert ledger.balance_of(multisig) == 60
    assert ledger.balance_of(keys.cold.address) == 40


def test_as_derivative_spends_from_derived_account(ledger, constructor, keys):
    derived = derived_address(keys.bank.address, 3)
    ledger.endow(derived, 50)
    transfer = constructor.build_call(CallKind.BALANCES_TRANSFER, {"dest": keys.cold.address, "value": 20})
    submit(ledger, constructor, keys.bank, CallKind.UTILITY_AS_DERIVATIVE, index=3, call=transfer.unsigned)
    block = ledger.produce_block()

    assert block.extrinsics[1].events[0].data[0] == derived
    assert ledger.balance_of(derived) == 30


def test_lockstep_tick_waits_for_every_participant(ledger):
    executor = ledger.executor()
    seen = []

    def participant():
        for _ in range(3):
            ledger.tick()
            seen.append(ledger.get_latest_block().height)

    future = executor.submit(participant)
    while not future.done():
        ledger.tick()
    future.result()
    executor.shutdown(wait=True)

    assert seen == [1, 2, 3]
