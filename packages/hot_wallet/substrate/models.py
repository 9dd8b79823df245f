from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


# Failure marker emitted by the System pallet for a failed extrinsic
EXTRINSIC_FAILED = "ExtrinsicFailed"
EXTRINSIC_SUCCESS = "ExtrinsicSuccess"


@dataclass(frozen=True)
class Event:
    pallet: str
    method: str
    data: Tuple[str, ...] = ()

    @property
    def is_failure(self) -> bool:
        return self.method == EXTRINSIC_FAILED


@dataclass(frozen=True)
class Extrinsic:
    index: int
    events: Tuple[Event, ...] = ()

    def has_failed(self) -> bool:
        return any(event.is_failure for event in self.events)


@dataclass(frozen=True)
class Block:
    height: int
    extrinsics: Tuple[Extrinsic, ...] = ()


@dataclass(frozen=True, order=True)
class Timepoint:
    """(block height, extrinsic index) of an extrinsic that has been observed on chain"""
    height: int
    index: int

    def as_call_arg(self) -> Dict[str, int]:
        return {"height": self.height, "index": self.index}

    def __str__(self):
        return f"#{self.height}-{self.index}"


class AccountRole(Enum):
    COMPONENT_SIGNER = "component_signer"
    PROXY = "proxy"
    COLD_STORAGE = "cold_storage"
    FUNDING_SOURCE = "funding_source"
    ADVERSARY = "adversary"


@dataclass(frozen=True)
class Account:
    name: str
    address: str
    role: AccountRole
    # Signing material for the constructor; None for accounts we never sign with
    keypair: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PrimitiveCall:
    pallet: str
    method: str
    args: Dict[str, Any] = field(default_factory=dict)

    @property
    def destination(self) -> Optional[str]:
        return self.args.get("dest")

    @property
    def amount(self) -> Optional[int]:
        return self.args.get("value")


@dataclass(frozen=True)
class WrapperCall:
    """A call that dispatches exactly one nested call (as_multi, proxy_announced, as_derivative)"""
    pallet: str
    method: str
    args: Dict[str, Any] = field(default_factory=dict)
    call: Optional['UnsignedCall'] = None


UnsignedCall = Union[PrimitiveCall, WrapperCall]


def call_to_dict(call: UnsignedCall) -> Dict[str, Any]:
    """Plain-data form of a call tree, used for hashing and encoding by the simulated ledger"""
    result = {
        "call_module": call.pallet,
        "call_function": call.method,
        "call_args": dict(call.args),
    }
    if isinstance(call, WrapperCall):
        result["call_args"]["call"] = call_to_dict(call.call) if call.call is not None else None
    return result


def call_from_dict(data: Dict[str, Any]) -> UnsignedCall:
    args = dict(data["call_args"])
    if "call" in args:
        nested = args.pop("call")
        return WrapperCall(
            data["call_module"],
            data["call_function"],
            args,
            call_from_dict(nested) if nested is not None else None
        )
    return PrimitiveCall(data["call_module"], data["call_function"], args)


@dataclass(frozen=True)
class BuiltCall:
    unsigned: UnsignedCall
    call_hash: str
    # Constructor-specific material needed to sign (composed call, era, ...)
    signing_material: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SafetyVerdict:
    safe: bool
    destination: Optional[str]


@dataclass(frozen=True)
class AttackOutcome:
    succeeded: bool
    timepoint: Optional[Timepoint] = None
    error: Optional[str] = None


def event_data(*values) -> Tuple[str, ...]:
    return tuple(str(value) for value in values)
