import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

from loguru import logger
from substrateinterface.exceptions import SubstrateRequestException

from packages.hot_wallet.base import (
    ErrorContextManager, classify_error, generate_correlation_id, set_correlation_id
)
from packages.hot_wallet.substrate.models import Block, Event, Extrinsic
from packages.hot_wallet.substrate.node.abstract_node import Node
from packages.hot_wallet.substrate.node.substrate_interface_factory import SubstrateInterfaceFactory


def _pallet_name(module_id: str) -> str:
    # Runtime module ids are PascalCase; events are matched on lowerCamel pallet names
    return module_id[:1].lower() + module_id[1:] if module_id else module_id


def _event_data(attributes: Any) -> tuple:
    if attributes is None:
        return ()
    if isinstance(attributes, dict):
        return tuple(str(value) for value in attributes.values())
    if isinstance(attributes, (list, tuple)):
        return tuple(str(value) for value in attributes)
    return (str(attributes),)


class SubstrateNode(Node):
    """Chain client backed by a node's JSON-RPC websocket"""

    def __init__(self, network: str, node_ws_url: str):
        super().__init__()
        self.network = network
        self.node_ws_url = node_ws_url
        self.error_ctx = ErrorContextManager(f"substrate-{network}-node")

        logger.info(
            "Substrate node initialized",
            extra={
                "network": network,
                "endpoint": node_ws_url
            }
        )

        self.substrate = None
        self._reinitialize_substrate_interface()

    def _test_connection(self):
        """Test connection to the Substrate node"""
        max_attempts = 2
        for attempt in range(1, max_attempts + 1):
            try:
                self.substrate.get_chain_head()
                if self.substrate.metadata is None:
                    self.substrate.init_runtime()
                    if self.substrate.metadata is None:
                        raise RuntimeError("Failed to initialize metadata for substrate instance")

                logger.info(
                    "Substrate connection established",
                    extra={
                        "endpoint": self.node_ws_url,
                        "network": self.network,
                        "chain": getattr(self.substrate, 'chain', 'unknown')
                    }
                )
                return
            except Exception as e:
                error_message = str(e)
                if "Broken pipe" in error_message or "Connection" in error_message or "WebSocket" in error_message:
                    if attempt < max_attempts:
                        time.sleep(2)
                        continue

                self.error_ctx.log_error(
                    f"Substrate connection test failed after {attempt} attempts",
                    e,
                    endpoint=self.node_ws_url,
                    network=self.network,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error_category=classify_error(e)
                )
                raise RuntimeError(f"Failed to connect to Substrate node: {e}")

    def _reinitialize_substrate_interface(self):
        """Recreate the SubstrateInterface to recover from connection or metadata issues"""
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)

        if self.substrate is not None:
            try:
                self.substrate.close()
            except Exception as e:
                if not any(err in str(e).lower() for err in ['closed', 'disconnected', 'none']):
                    self.error_ctx.log_error(
                        "Error closing substrate connection",
                        e,
                        endpoint=self.node_ws_url,
                        network=self.network,
                    )

        self.substrate = SubstrateInterfaceFactory.create_substrate_interface(self.network, self.node_ws_url)
        self._test_connection()

    def _build_block(self, block_hash: str, block_height: int) -> Block:
        try:
            raw_block = self.substrate.get_block(block_hash=block_hash)
            raw_events = self.substrate.get_events(block_hash=block_hash)
        except Exception as e:
            self.error_ctx.log_error(
                "Failed to fetch block via RPC",
                e,
                block_hash=block_hash,
                block_height=block_height,
                endpoint=self.node_ws_url,
                network=self.network,
                error_category=classify_error(e)
            )
            raise RuntimeError(f"Failed to fetch block {block_height}: {e}")

        events_by_extrinsic: Dict[int, List[Event]] = defaultdict(list)
        for raw_event in raw_events:
            value = raw_event.value
            extrinsic_idx = value.get('extrinsic_idx')
            if extrinsic_idx is None:
                # Initialization and finalization events belong to no extrinsic
                continue
            events_by_extrinsic[extrinsic_idx].append(Event(
                pallet=_pallet_name(str(value.get('module_id', ''))),
                method=str(value.get('event_id', '')),
                data=_event_data(value.get('attributes'))
            ))

        extrinsics = tuple(
            Extrinsic(index=idx, events=tuple(events_by_extrinsic.get(idx, ())))
            for idx in range(len(raw_block.get('extrinsics', [])))
        )
        return Block(height=block_height, extrinsics=extrinsics)

    def get_latest_block(self) -> Block:
        try:
            block_hash = self.substrate.get_chain_head()
            block_height = self.substrate.get_block_number(block_hash)
        except Exception as e:
            self.error_ctx.log_error(
                "Failed to fetch chain head",
                e,
                endpoint=self.node_ws_url,
                network=self.network,
                rpc_method="chain_getHead",
                error_category=classify_error(e)
            )
            raise RuntimeError(f"Failed to fetch chain head: {e}")

        return self._build_block(block_hash, block_height)

    def get_block_by_height(self, block_height: int) -> Optional[Block]:
        block_hash = self.substrate.get_block_hash(block_height)
        if not block_hash:
            return None
        return self._build_block(block_hash, block_height)

    def submit_transaction(self, signed_transaction: bytes) -> str:
        try:
            response = self.substrate.rpc_request("author_submitExtrinsic", ["0x" + signed_transaction.hex()])
        except Exception as e:
            self.error_ctx.log_error(
                "Failed to submit extrinsic",
                e,
                endpoint=self.node_ws_url,
                network=self.network,
                rpc_method="author_submitExtrinsic",
                error_category=classify_error(e)
            )
            raise

        if 'error' in response:
            raise SubstrateRequestException(response['error'])

        logger.info("Extrinsic submitted", extra={"extrinsic_hash": response.get('result'), "network": self.network})
        return response.get('result')
