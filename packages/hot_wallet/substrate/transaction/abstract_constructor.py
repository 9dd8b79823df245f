from abc import ABC, abstractmethod
from typing import Any, Dict

from packages.hot_wallet.substrate.models import Account, BuiltCall
from packages.hot_wallet.substrate.transaction.calls import CallKind


class TransactionConstructor(ABC):
    """Builds calls from semantic parameters and signs them"""

    @abstractmethod
    def build_call(self, kind: CallKind, params: Dict[str, Any]) -> BuiltCall:
        """Build a call; the result carries the inspectable tree and its hash"""
        ...

    @abstractmethod
    def sign_and_encode(self, call: BuiltCall, signer: Account) -> bytes:
        """Sign ``call`` as ``signer`` and return the encoded extrinsic"""
        ...
