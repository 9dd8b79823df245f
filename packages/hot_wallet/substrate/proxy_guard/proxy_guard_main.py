import argparse
import sys

from loguru import logger

from packages.hot_wallet.base import (
    setup_enhanced_logger, setup_metrics, ErrorContextManager, GuardMetrics, classify_error,
    log_service_start, log_service_stop, install_signal_handlers, terminate_event, shutdown_metrics_servers
)
from packages.hot_wallet.substrate import (
    Network, networks, get_substrate_node_url, get_chain_sync_config, get_proxy_guard_config
)
from packages.hot_wallet.substrate.accounts import create_demo_keys
from packages.hot_wallet.substrate.chain_sync import ChainSync
from packages.hot_wallet.substrate.proxy_guard.observers import (
    CompositeProgressObserver, LoggingProgressObserver, MetricsProgressObserver
)
from packages.hot_wallet.substrate.proxy_guard.orchestrator import ProxyGuardOrchestrator, describe_keys


def build_simulation(keys, guard_config, chain_sync_config, metrics):
    from packages.hot_wallet.substrate.simulation.simulated_constructor import SimulatedTransactionConstructor
    from packages.hot_wallet.substrate.simulation.simulated_ledger import SimulatedLedger

    ledger = SimulatedLedger(ss58_format=guard_config["ss58_format"])
    ledger.endow(keys.multisig0.address, guard_config["transfer_value"] * 2)
    ledger.endow(keys.bank.address, guard_config["transfer_value"] * 3)

    chain_sync = ChainSync(
        ledger,
        poll_interval=chain_sync_config["poll_interval"],
        settle_delay=0,
        max_attempts=chain_sync_config["max_attempts"],
        terminate_event=terminate_event,
        metrics=metrics,
        sleep=ledger.tick
    )
    return ledger, SimulatedTransactionConstructor(), chain_sync, ledger.executor()


def build_live(network, keys, chain_sync_config, metrics):
    from packages.hot_wallet.substrate.node.substrate_node import SubstrateNode
    from packages.hot_wallet.substrate.transaction.substrate_constructor import SubstrateTransactionConstructor

    node = SubstrateNode(network, get_substrate_node_url(network))
    chain_sync = ChainSync(
        node,
        poll_interval=chain_sync_config["poll_interval"],
        settle_delay=chain_sync_config["settle_delay"],
        max_attempts=chain_sync_config["max_attempts"],
        terminate_event=terminate_event,
        metrics=metrics
    )
    return node, SubstrateTransactionConstructor(node.substrate), chain_sync, None


def report_fatal_error(error_ctx, metrics_registry, error):
    error_category = classify_error(error)
    error_ctx.log_error(
        "Fatal proxy guard error",
        error=error,
        operation="proxy_guard_main",
        error_category=error_category
    )
    metrics_registry.record_error(error_category, "proxy_guard_main")
    metrics_registry.set_health_status(False)
    return error_category


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Hot wallet proxy guard demonstration')
    parser.add_argument(
        '--network',
        type=str,
        default=Network.DEVELOPMENT.value,
        choices=networks,
        help='Network to run the protocol against'
    )
    parser.add_argument('--simulate', action='store_true', help='Run against an in-memory ledger instead of a node')
    parser.add_argument('--remediation-lag', type=int, default=0,
                        help='Simulation only: extra blocks before remediation approvals are included')
    parser.add_argument('--no-metrics-server', action='store_true', help='Do not expose a Prometheus endpoint')
    args = parser.parse_args()

    service_name = f'substrate-{args.network}-proxy-guard'
    setup_enhanced_logger(service_name)
    install_signal_handlers()
    error_ctx = ErrorContextManager(service_name)

    metrics_registry = setup_metrics(service_name, start_server=not args.no_metrics_server)
    metrics = GuardMetrics(metrics_registry, args.network)

    guard_config = get_proxy_guard_config(args.network)
    chain_sync_config = get_chain_sync_config(args.network)
    log_service_start(service_name, simulate=args.simulate, **guard_config, **chain_sync_config)

    exit_code = 0
    orchestrator = None
    try:
        keys = create_demo_keys(guard_config["ss58_format"])
        logger.info("Demo accounts", extra={"accounts": describe_keys(keys)})

        if args.simulate:
            node, constructor, chain_sync, executor = build_simulation(keys, guard_config, chain_sync_config, metrics)
        else:
            node, constructor, chain_sync, executor = build_live(args.network, keys, chain_sync_config, metrics)

        orchestrator = ProxyGuardOrchestrator(
            node,
            constructor,
            chain_sync,
            keys,
            observer=CompositeProgressObserver([LoggingProgressObserver(), MetricsProgressObserver(metrics)]),
            executor=executor,
            delay_blocks=guard_config["delay_blocks"],
            threshold=guard_config["threshold"],
            max_weight=guard_config["max_weight"],
            transfer_value=guard_config["transfer_value"],
            cold_transfer_value=guard_config["cold_transfer_value"],
            ss58_format=guard_config["ss58_format"],
            service_name=service_name
        )

        orchestrator.run_setup()
        orchestrator.run_benign_path()
        if args.simulate and args.remediation_lag:
            node.delay_inclusion(keys.multisig0.address, args.remediation_lag)
        adversarial = orchestrator.run_adversarial_path()

        # Keep the chain moving until the attacker's own wait resolves
        while args.simulate and not adversarial.attack.done():
            node.tick()
        outcome = adversarial.attack.result()

        error_ctx.log_business_decision(
            "attack_succeeded" if outcome.succeeded else "attack_averted",
            "attacker_task_completed",
            remediation=str(adversarial.remediation),
            attack_timepoint=str(outcome.timepoint) if outcome.timepoint else None
        )
        exit_code = 2 if outcome.succeeded else 0

    except KeyboardInterrupt:
        exit_code = 130
    except Exception as e:
        report_fatal_error(error_ctx, metrics_registry, e)
        exit_code = 1
    finally:
        if orchestrator is not None:
            orchestrator.shutdown(wait=False)
        shutdown_metrics_servers()
        log_service_stop(service_name, exit_code=exit_code)

    sys.exit(exit_code)
