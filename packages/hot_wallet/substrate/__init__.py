import os
from enum import Enum
from dotenv import load_dotenv


class Network(Enum):
    POLKADOT = "polkadot"
    KUSAMA = "kusama"
    WESTEND = "westend"
    DEVELOPMENT = "development"

    @classmethod
    def get_ss58_format(cls, network: str) -> int:
        """Get the SS58 address prefix for the specified network"""
        network = network.lower()
        if network == cls.POLKADOT.value:
            return 0
        elif network == cls.KUSAMA.value:
            return 2
        elif network == cls.WESTEND.value or network == cls.DEVELOPMENT.value:
            return 42
        raise ValueError(f"Unsupported network: {network}")


networks = [Network.POLKADOT.value, Network.KUSAMA.value, Network.WESTEND.value, Network.DEVELOPMENT.value]


load_dotenv()


def get_substrate_node_url(network):
    if network == Network.POLKADOT.value:
        node_ws_url = os.getenv("POLKADOT_NODE_WS_URL")
    elif network == Network.KUSAMA.value:
        node_ws_url = os.getenv("KUSAMA_NODE_WS_URL")
    elif network == Network.WESTEND.value:
        node_ws_url = os.getenv("WESTEND_NODE_WS_URL")
    elif network == Network.DEVELOPMENT.value:
        node_ws_url = os.getenv("DEVELOPMENT_NODE_WS_URL", "ws://127.0.0.1:9944")
    else:
        raise ValueError(f"Unsupported network: {network}")

    if not node_ws_url:
        raise ValueError(f"Node WebSocket URL not set for network: {network}. Please check your environment variables.")

    return node_ws_url


def get_chain_sync_config(network: str):
    poll_interval = float(os.getenv(f"{network.upper()}_POLL_INTERVAL", "1.0"))
    settle_delay = os.getenv(f"{network.upper()}_SETTLE_DELAY")

    return {
        "poll_interval": poll_interval,
        # Half the poll interval unless overridden; 0 disables the grace period
        "settle_delay": float(settle_delay) if settle_delay is not None else poll_interval / 2,
        "max_attempts": int(os.getenv(f"{network.upper()}_MAX_POLL_ATTEMPTS", "600")),
    }


def get_proxy_guard_config(network: str):
    return {
        "ss58_format": Network.get_ss58_format(network),
        "delay_blocks": int(os.getenv("PROXY_DELAY_BLOCKS", "6")),
        "threshold": int(os.getenv("MULTISIG_THRESHOLD", "2")),
        "max_weight": int(os.getenv("MULTISIG_MAX_WEIGHT", "1000000000")),
        "transfer_value": int(os.getenv("TRANSFER_VALUE", "999999999999999")),
        "cold_transfer_value": int(os.getenv("COLD_TRANSFER_VALUE", "1")),
    }
