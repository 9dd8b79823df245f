from abc import ABC, abstractmethod
from typing import Optional

from packages.hot_wallet.substrate.models import Block


class Node(ABC):
    """Chain client consumed by ChainSync and the proxy guard"""

    def __init__(self):
        pass

    @abstractmethod
    def get_latest_block(self) -> Block:
        """Get the chain head with its extrinsics and their events"""
        ...

    @abstractmethod
    def get_block_by_height(self, block_height: int) -> Optional[Block]:
        """Get block at specified height"""
        ...

    @abstractmethod
    def submit_transaction(self, signed_transaction: bytes) -> str:
        """Submit a signed transaction; acknowledgement only, inclusion is not guaranteed"""
        ...
