import hashlib
import json
from typing import Any, Dict

from packages.hot_wallet.substrate.models import Account, BuiltCall, UnsignedCall, call_from_dict, call_to_dict
from packages.hot_wallet.substrate.transaction.abstract_constructor import TransactionConstructor
from packages.hot_wallet.substrate.transaction.calls import CallKind, build_call_tree


def hash_call(call: UnsignedCall) -> str:
    encoded = json.dumps(call_to_dict(call), sort_keys=True, separators=(",", ":"))
    return "0x" + hashlib.blake2b(encoded.encode("utf-8"), digest_size=32).hexdigest()


def encode_transaction(signer: str, call: UnsignedCall) -> bytes:
    return json.dumps({"signer": signer, "call": call_to_dict(call)}, sort_keys=True).encode("utf-8")


def decode_transaction(signed_transaction: bytes):
    payload = json.loads(signed_transaction.decode("utf-8"))
    return payload["signer"], call_from_dict(payload["call"])


class SimulatedTransactionConstructor(TransactionConstructor):
    """Constructor for SimulatedLedger: calls are hashed and "signed" as canonical JSON"""

    def build_call(self, kind: CallKind, params: Dict[str, Any]) -> BuiltCall:
        unsigned = build_call_tree(kind, params)
        return BuiltCall(unsigned=unsigned, call_hash=hash_call(unsigned))

    def sign_and_encode(self, call: BuiltCall, signer: Account) -> bytes:
        return encode_transaction(signer.address, call.unsigned)
