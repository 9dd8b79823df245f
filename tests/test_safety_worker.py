from packages.hot_wallet.substrate.models import PrimitiveCall, WrapperCall
from packages.hot_wallet.substrate.safety_worker import SafetyWorker, verify
from packages.hot_wallet.substrate.transaction.calls import CallKind, build_call_tree


COLD = "5GNJqTPyNqANBkUVMN1LPPrxXnFouWXoe2wNSmmEoLctxiZY"
ATTACKER = "5HpG9w8EBLe5XCrbczpwq5TSXvedjrBGCwqxK1iQ7qUsSWFc"


def spend(dest, value=1, index=0):
    transfer = build_call_tree(CallKind.BALANCES_TRANSFER, {"dest": dest, "value": value})
    return build_call_tree(CallKind.UTILITY_AS_DERIVATIVE, {"index": index, "call": transfer})


def test_allow_listed_destination_is_safe():
    verdict = SafetyWorker([COLD]).verify(spend(COLD))

    assert verdict.safe
    assert verdict.destination == COLD


def test_other_destination_is_unsafe():
    verdict = verify(spend(ATTACKER), [COLD])

    assert not verdict.safe
    assert verdict.destination == ATTACKER


def test_allow_list_match_is_exact():
    near_miss = COLD[:-1] + ("Z" if COLD[-1] != "Z" else "Y")

    assert not verify(spend(near_miss), [COLD]).safe
    assert not verify(spend(COLD.lower()), [COLD]).safe


def test_destination_is_found_through_several_wrappers():
    announced = build_call_tree(CallKind.PROXY_PROXY_ANNOUNCED, {
        "delegate": ATTACKER, "real": COLD, "call": spend(COLD)
    })
    multisig = build_call_tree(CallKind.MULTISIG_AS_MULTI, {
        "threshold": 2, "other_signatories": [], "max_weight": 1, "call": announced
    })

    assert SafetyWorker([COLD]).verify(multisig).safe


def test_wrapper_without_nested_call_is_unsafe():
    call = WrapperCall("Utility", "as_derivative", {"index": 0}, None)

    verdict = verify(call, [COLD])
    assert not verdict.safe
    assert verdict.destination is None


def test_primitive_without_destination_is_unsafe():
    assert not verify(PrimitiveCall("Proxy", "remove_proxies", {}), [COLD]).safe
    assert not verify(PrimitiveCall("Balances", "transfer_allow_death", {"dest": "", "value": 1}), [COLD]).safe


def test_too_deep_call_tree_is_unsafe():
    call = spend(COLD)
    for index in range(20):
        call = WrapperCall("Utility", "as_derivative", {"index": index}, call)

    worker = SafetyWorker([COLD], max_depth=16)
    assert worker.resolve_destination(call) is None
    assert not worker.verify(call).safe
    assert SafetyWorker([COLD], max_depth=32).verify(call).safe


def test_cyclic_call_tree_is_unsafe():
    # Frozen dataclasses can still be tied into a loop
    outer = WrapperCall("Utility", "as_derivative", {"index": 0}, None)
    object.__setattr__(outer, "call", outer)

    assert SafetyWorker([COLD]).resolve_destination(outer) is None


def test_per_call_allow_list_overrides_default():
    worker = SafetyWorker([COLD])

    assert worker.verify(spend(ATTACKER), allow_list=[ATTACKER]).safe
    assert not worker.verify(spend(COLD), allow_list=[]).safe
