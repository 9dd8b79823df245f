from typing import Iterable, Optional

from loguru import logger

from packages.hot_wallet.substrate.models import PrimitiveCall, SafetyVerdict, UnsignedCall, WrapperCall


MAX_CALL_DEPTH = 16


class SafetyWorker:
    """
    Checks where a call ultimately sends funds.

    Wrapper calls (as_multi, proxy_announced, as_derivative, ...) are unwrapped
    until a primitive transfer is reached; only its destination counts. A call
    tree that cannot be resolved to a destination is unsafe.
    """

    def __init__(self, allow_list: Iterable[str], max_depth: int = MAX_CALL_DEPTH):
        self.allow_list = frozenset(allow_list)
        self.max_depth = max_depth

    def verify(self, call: UnsignedCall, allow_list: Optional[Iterable[str]] = None) -> SafetyVerdict:
        allowed = self.allow_list if allow_list is None else frozenset(allow_list)
        destination = self.resolve_destination(call)
        verdict = SafetyVerdict(safe=destination is not None and destination in allowed, destination=destination)

        logger.info(
            "Safety verdict computed",
            extra={"safe": verdict.safe, "destination": destination, "call": _describe(call)}
        )
        return verdict

    def resolve_destination(self, call: UnsignedCall) -> Optional[str]:
        seen = set()
        current = call
        for _ in range(self.max_depth + 1):
            if id(current) in seen:
                logger.warning("Cyclic call tree, treating destination as unresolved")
                return None
            seen.add(id(current))

            if isinstance(current, WrapperCall):
                if current.call is None:
                    logger.warning(f"Wrapper call {_describe(current)} has no nested call")
                    return None
                current = current.call
            elif isinstance(current, PrimitiveCall):
                destination = current.destination
                if not isinstance(destination, str) or not destination:
                    logger.warning(f"Call {_describe(current)} has no destination")
                    return None
                return destination
            else:
                logger.warning(f"Unrecognised call node {type(current).__name__}")
                return None

        logger.warning(f"Call tree deeper than {self.max_depth}, treating destination as unresolved")
        return None


def verify(call: UnsignedCall, allow_list: Iterable[str]) -> SafetyVerdict:
    return SafetyWorker(allow_list).verify(call)


def _describe(call) -> str:
    pallet = getattr(call, 'pallet', '?')
    method = getattr(call, 'method', '?')
    return f"{pallet}.{method}"
