import signal
import threading
from loguru import logger
from .enhanced_logging import (
    setup_enhanced_logger, ErrorContextManager, OperationContext, classify_error,
    generate_correlation_id, get_correlation_id, set_correlation_id,
    log_service_start, log_service_stop
)
from .metrics import (
    MetricsRegistry, GuardMetrics, setup_metrics, get_metrics_registry, shutdown_metrics_servers
)


terminate_event = threading.Event()


def shutdown_handler(signum, frame):
    logger.info("Shutdown signal received. Stopping chain waits...")
    terminate_event.set()


def install_signal_handlers():
    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)
