import hashlib
from typing import Any, Dict

from loguru import logger
from substrateinterface import SubstrateInterface

from packages.hot_wallet.base import ErrorContextManager, classify_error
from packages.hot_wallet.substrate.models import Account, BuiltCall, UnsignedCall, WrapperCall
from packages.hot_wallet.substrate.transaction.abstract_constructor import TransactionConstructor
from packages.hot_wallet.substrate.transaction.calls import CallKind, build_call_tree


class SubstrateTransactionConstructor(TransactionConstructor):
    """Composes calls against live runtime metadata and signs them with sr25519 keypairs"""

    _error_ctx = ErrorContextManager("substrate-transaction-constructor")

    def __init__(self, substrate: SubstrateInterface, era_period: int = 64, max_proof_size: int = 65536):
        self.substrate = substrate
        self.era_period = era_period
        self.max_proof_size = max_proof_size

    def build_call(self, kind: CallKind, params: Dict[str, Any]) -> BuiltCall:
        unsigned = build_call_tree(kind, params)
        composed = self._compose(unsigned)
        call_hash = "0x" + hashlib.blake2b(composed.data.data, digest_size=32).hexdigest()
        return BuiltCall(unsigned=unsigned, call_hash=call_hash, signing_material=composed)

    def sign_and_encode(self, call: BuiltCall, signer: Account) -> bytes:
        if signer.keypair is None:
            raise ValueError(f"No keypair available for {signer.name}")

        try:
            extrinsic = self.substrate.create_signed_extrinsic(
                call=call.signing_material,
                keypair=signer.keypair,
                era={'period': self.era_period}
            )
        except Exception as e:
            self._error_ctx.log_error(
                "Failed to sign extrinsic",
                e,
                signer=signer.address,
                call=f"{call.unsigned.pallet}.{call.unsigned.method}",
                error_category=classify_error(e)
            )
            raise

        logger.debug(f"Signed {call.unsigned.pallet}.{call.unsigned.method} as {signer.name}")
        return extrinsic.data.data

    def _compose(self, call: UnsignedCall):
        return self.substrate.compose_call(
            call_module=call.pallet,
            call_function=call.method,
            call_params=self._runtime_params(call)
        )

    def _runtime_params(self, call: UnsignedCall) -> Dict[str, Any]:
        params = dict(call.args)
        if isinstance(call, WrapperCall):
            params["call"] = self._compose(call.call).value
        if "max_weight" in params and isinstance(params["max_weight"], int):
            # Weights V2 runtimes take a two-dimensional weight
            params["max_weight"] = {"ref_time": params["max_weight"], "proof_size": self.max_proof_size}
        return params
