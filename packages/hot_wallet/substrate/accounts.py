import hashlib
from dataclasses import dataclass
from typing import Iterable, List

from scalecodec.base import RuntimeConfigurationObject
from scalecodec.type_registry import load_type_registry_preset
from substrateinterface import Keypair
from substrateinterface.utils.ss58 import ss58_decode, ss58_encode

from packages.hot_wallet.substrate.models import Account, AccountRole


# Entropy prefix of pallet_utility::derivative_account_id
SUB_ACCOUNT_PREFIX = b"modlpy/utilisuba"

_runtime_config = RuntimeConfigurationObject()
_runtime_config.update_type_registry(load_type_registry_preset("core"))


def _blake2_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _public_key(address: str) -> bytes:
    public_key = ss58_decode(address)
    return bytes.fromhex(public_key[2:] if public_key.startswith("0x") else public_key)


def sort_addresses(addresses: Iterable[str], ss58_format: int = 42) -> List[str]:
    """Order signatories by public key, as pallet_multisig requires for other_signatories"""
    keys = sorted(_public_key(address) for address in addresses)
    return [ss58_encode(key, ss58_format=ss58_format) for key in keys]


def multisig_address(signatories: Iterable[str], threshold: int, ss58_format: int = 42) -> str:
    multi_account_cls = _runtime_config.get_decoder_class("MultiAccountId")
    multi_account = multi_account_cls.create_from_account_list(list(signatories), threshold)
    return ss58_encode(multi_account.value.replace("0x", ""), ss58_format=ss58_format)


def derived_address(parent: str, index: int, ss58_format: int = 42) -> str:
    """Address that utility.as_derivative(index, ...) dispatches from for ``parent``"""
    entropy = SUB_ACCOUNT_PREFIX + _public_key(parent) + index.to_bytes(2, "little")
    return ss58_encode(_blake2_256(entropy), ss58_format=ss58_format)


@dataclass(frozen=True)
class DemoKeys:
    cold: Account
    multisig0: Account
    multisig1: Account
    multisig2: Account
    proxy: Account
    bank: Account
    attacker: Account

    @property
    def signatories(self) -> List[Account]:
        return [self.multisig0, self.multisig1, self.multisig2]


def _account(uri: str, name: str, role: AccountRole, ss58_format: int) -> Account:
    keypair = Keypair.create_from_uri(uri, ss58_format=ss58_format)
    return Account(name=name, address=keypair.ss58_address, role=role, keypair=keypair)


def create_demo_keys(ss58_format: int = 42) -> DemoKeys:
    """Well-known development keys, one per protocol role"""
    return DemoKeys(
        cold=_account("//Alice//stash", "Alice Stash", AccountRole.COLD_STORAGE, ss58_format),
        multisig0=_account("//Alice", "Alice", AccountRole.COMPONENT_SIGNER, ss58_format),
        multisig1=_account("//Bob", "Bob", AccountRole.COMPONENT_SIGNER, ss58_format),
        multisig2=_account("//Dave", "Dave", AccountRole.COMPONENT_SIGNER, ss58_format),
        proxy=_account("//Eve", "Eve", AccountRole.PROXY, ss58_format),
        bank=_account("//Charlie", "Charlie", AccountRole.FUNDING_SOURCE, ss58_format),
        attacker=_account("//Attacker", "Attacker", AccountRole.ADVERSARY, ss58_format),
    )
