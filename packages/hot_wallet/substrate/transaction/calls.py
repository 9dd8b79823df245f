from enum import Enum
from typing import Any, Dict

from packages.hot_wallet.substrate.models import PrimitiveCall, Timepoint, UnsignedCall, WrapperCall


TRANSFER_CALL_FUNCTION = "transfer_allow_death"
PROXY_TYPE_ANY = "Any"


class CallKind(Enum):
    BALANCES_TRANSFER = "balances_transfer"
    PROXY_ADD_PROXY = "proxy_add_proxy"
    PROXY_ANNOUNCE = "proxy_announce"
    PROXY_PROXY_ANNOUNCED = "proxy_proxy_announced"
    PROXY_REMOVE_PROXIES = "proxy_remove_proxies"
    MULTISIG_APPROVE_AS_MULTI = "multisig_approve_as_multi"
    MULTISIG_AS_MULTI = "multisig_as_multi"
    UTILITY_AS_DERIVATIVE = "utility_as_derivative"


def _timepoint_arg(timepoint):
    if timepoint is None:
        return None
    if isinstance(timepoint, Timepoint):
        return timepoint.as_call_arg()
    return dict(timepoint)


def build_call_tree(kind: CallKind, params: Dict[str, Any]) -> UnsignedCall:
    """
    Build the structural form of a call from its semantic parameters.

    Raises:
        KeyError: a required parameter is missing
        ValueError: the call kind is not supported
    """
    kind = CallKind(kind)

    if kind == CallKind.BALANCES_TRANSFER:
        return PrimitiveCall("Balances", TRANSFER_CALL_FUNCTION, {
            "dest": params["dest"],
            "value": int(params["value"]),
        })
    elif kind == CallKind.PROXY_ADD_PROXY:
        return PrimitiveCall("Proxy", "add_proxy", {
            "delegate": params["delegate"],
            "proxy_type": params.get("proxy_type", PROXY_TYPE_ANY),
            "delay": int(params["delay"]),
        })
    elif kind == CallKind.PROXY_ANNOUNCE:
        return PrimitiveCall("Proxy", "announce", {
            "real": params["real"],
            "call_hash": params["call_hash"],
        })
    elif kind == CallKind.PROXY_PROXY_ANNOUNCED:
        return WrapperCall("Proxy", "proxy_announced", {
            "delegate": params["delegate"],
            "real": params["real"],
            "force_proxy_type": params.get("force_proxy_type", PROXY_TYPE_ANY),
        }, params["call"])
    elif kind == CallKind.PROXY_REMOVE_PROXIES:
        return PrimitiveCall("Proxy", "remove_proxies", {})
    elif kind == CallKind.MULTISIG_APPROVE_AS_MULTI:
        return PrimitiveCall("Multisig", "approve_as_multi", {
            "threshold": int(params["threshold"]),
            "other_signatories": list(params["other_signatories"]),
            "maybe_timepoint": _timepoint_arg(params.get("maybe_timepoint")),
            "call_hash": params["call_hash"],
            "max_weight": int(params["max_weight"]),
        })
    elif kind == CallKind.MULTISIG_AS_MULTI:
        return WrapperCall("Multisig", "as_multi", {
            "threshold": int(params["threshold"]),
            "other_signatories": list(params["other_signatories"]),
            "maybe_timepoint": _timepoint_arg(params.get("maybe_timepoint")),
            "max_weight": int(params["max_weight"]),
        }, params["call"])
    elif kind == CallKind.UTILITY_AS_DERIVATIVE:
        return WrapperCall("Utility", "as_derivative", {
            "index": int(params["index"]),
        }, params["call"])

    raise ValueError(f"Unsupported call kind: {kind}")
