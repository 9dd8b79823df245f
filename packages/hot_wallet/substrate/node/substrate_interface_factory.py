from packages.hot_wallet.base.enhanced_logging import (
    ErrorContextManager,
    classify_error
)
from packages.hot_wallet.substrate import Network, networks
from substrateinterface import SubstrateInterface


class SubstrateInterfaceFactory:
    """
    Factory class for creating SubstrateInterface instances based on network type.
    Each network may have different configuration requirements for the substrate interface.
    """

    _error_ctx = ErrorContextManager("substrate-interface-factory")

    @staticmethod
    def create_substrate_interface(network: str, node_ws_url: str) -> SubstrateInterface:
        """
        Create a SubstrateInterface instance based on the network type.

        Args:
            network: The network identifier (e.g., 'polkadot', 'westend', 'development')
            node_ws_url: The WebSocket URL for the node

        Returns:
            SubstrateInterface: Configured for the specified network

        Raises:
            ValueError: If the network is not supported
        """
        network = network.lower()

        try:
            if network == Network.DEVELOPMENT.value:
                return SubstrateInterfaceFactory._create_development_interface(node_ws_url)
            elif network in networks:
                return SubstrateInterfaceFactory._create_relay_chain_interface(network, node_ws_url)
            else:
                error = ValueError(f"Unsupported network: {network}")
                SubstrateInterfaceFactory._error_ctx.log_error(
                    "Unsupported network configuration",
                    error,
                    network=network,
                    endpoint=node_ws_url,
                    supported_networks=networks,
                    error_category="validation_error"
                )
                raise error
        except Exception as e:
            if not isinstance(e, ValueError):
                SubstrateInterfaceFactory._error_ctx.log_error(
                    "Substrate interface creation failed",
                    e,
                    network=network,
                    endpoint=node_ws_url,
                    error_category=classify_error(e)
                )
            raise

    @staticmethod
    def _create_relay_chain_interface(network: str, node_ws_url: str) -> SubstrateInterface:
        """Create a SubstrateInterface instance for a public relay chain"""
        try:
            return SubstrateInterface(
                url=node_ws_url,
                ss58_format=Network.get_ss58_format(network),
                use_remote_preset=True,
                cache_region=None
            )
        except Exception as e:
            SubstrateInterfaceFactory._error_ctx.log_error(
                f"Failed to create {network} SubstrateInterface",
                e,
                network=network,
                endpoint=node_ws_url,
                error_category=classify_error(e),
                interface_config={
                    "use_remote_preset": True,
                    "cache_region": None
                }
            )
            raise RuntimeError(f"Failed to create {network} SubstrateInterface: {e}")

    @staticmethod
    def _create_development_interface(node_ws_url: str) -> SubstrateInterface:
        """Create a SubstrateInterface instance for a local development node"""
        try:
            return SubstrateInterface(
                url=node_ws_url,
                ss58_format=Network.get_ss58_format(Network.DEVELOPMENT.value)
            )
        except Exception as e:
            SubstrateInterfaceFactory._error_ctx.log_error(
                "Failed to create development SubstrateInterface",
                e,
                network=Network.DEVELOPMENT.value,
                endpoint=node_ws_url,
                error_category=classify_error(e)
            )
            raise RuntimeError(f"Failed to create development SubstrateInterface: {e}")
