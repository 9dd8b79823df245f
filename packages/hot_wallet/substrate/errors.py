from typing import Optional, Sequence


class ChainSyncError(RuntimeError):
    """Base class for terminal chain synchronization failures"""


class ExtrinsicFailure(ChainSyncError):
    def __init__(self, block_height: int, extrinsic_index: Optional[int] = None, reason: Optional[str] = None):
        self.block_height = block_height
        self.extrinsic_index = extrinsic_index
        self.reason = reason
        super().__init__(f"Unexpected extrinsic failure at block number {block_height}"
                         + (f", index {extrinsic_index}" if extrinsic_index is not None else "")
                         + (f": {reason}" if reason else ""))


UnexpectedExtrinsicFailure = ExtrinsicFailure


class UnexpectedEventData(ChainSyncError):
    def __init__(self, block_height: int, expected: Sequence[str], actual: Sequence[str]):
        self.block_height = block_height
        self.expected = list(expected)
        self.actual = list(actual)
        super().__init__(f"Unexpected event data at block number {block_height}: "
                         f"expected {self.expected}, got {self.actual}")


class ChainSyncTimeout(ChainSyncError):
    def __init__(self, description: str, attempts: int):
        self.description = description
        self.attempts = attempts
        super().__init__(f"Gave up waiting for {description} after {attempts} polls")


class ChainSyncTerminated(ChainSyncError):
    pass


class MaliciousTransactionUndetected(RuntimeError):
    """The safety check passed a call that was built to move funds to an adversary"""
