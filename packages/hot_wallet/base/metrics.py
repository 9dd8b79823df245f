import os
import threading
from typing import Dict, Optional, Any
from prometheus_client import (
    CollectorRegistry, Counter, Histogram, Gauge, Info,
    start_http_server, generate_latest
)
from loguru import logger
import socket

# Global metrics registry per service
_service_registries: Dict[str, CollectorRegistry] = {}
_metrics_servers: Dict[str, Any] = {}
_metrics_lock = threading.Lock()


class MetricsRegistry:
    """Centralized metrics registry for a service following logging conventions"""

    def __init__(self, service_name: str, port: Optional[int] = None):
        self.service_name = service_name
        self.registry = CollectorRegistry()
        self.port = port
        self.server = None
        self._common_labels = self._extract_labels_from_service_name(service_name)

        self._init_common_metrics()

    def _extract_labels_from_service_name(self, service_name: str) -> Dict[str, str]:
        """Extract common labels from service name following logging conventions"""
        labels = {"service": service_name}

        # Parse service name patterns like 'substrate-westend-proxy-guard'
        parts = service_name.split('-')
        if len(parts) >= 3 and parts[0] == 'substrate':
            labels["network"] = parts[1]
            labels["component"] = '-'.join(parts[2:])

        return labels

    def _init_common_metrics(self):
        """Initialize common metrics available to all services"""
        self.service_info = Info(
            'service_info',
            'Service information',
            registry=self.registry
        )
        self.service_info.info({
            'service_name': self.service_name,
            'version': '1.0.0',
            **self._common_labels
        })

        self.service_start_time = Gauge(
            'service_start_time_seconds',
            'Service start time in Unix timestamp',
            registry=self.registry
        )
        self.service_start_time.set_to_current_time()

        self.errors_total = Counter(
            'service_errors_total',
            'Total number of errors by type',
            ['error_type', 'component'],
            registry=self.registry
        )

        # Health status
        self.health_status = Gauge(
            'service_health_status',
            'Service health status (1=healthy, 0=unhealthy)',
            registry=self.registry
        )
        self.health_status.set(1)

    def create_counter(self, name: str, description: str, labelnames: list = None) -> Counter:
        """Create a counter metric with common labels"""
        return Counter(
            name, description,
            labelnames or [],
            registry=self.registry
        )

    def create_histogram(self, name: str, description: str, labelnames: list = None,
                         buckets: tuple = None) -> Histogram:
        """Create a histogram metric with common labels"""
        kwargs = {
            'name': name,
            'documentation': description,
            'labelnames': labelnames or [],
            'registry': self.registry
        }
        if buckets:
            kwargs['buckets'] = buckets
        return Histogram(**kwargs)

    def create_gauge(self, name: str, description: str, labelnames: list = None) -> Gauge:
        """Create a gauge metric with common labels"""
        return Gauge(
            name, description,
            labelnames or [],
            registry=self.registry
        )

    def start_metrics_server(self, port: Optional[int] = None) -> bool:
        """Start HTTP server for metrics endpoint"""
        if self.server is not None:
            logger.warning(f"Metrics server already running for {self.service_name}")
            return True

        target_port = port or self.port or self._get_default_port()

        try:
            if not self._is_port_available(target_port):
                logger.warning(f"Port {target_port} not available, trying next available port")
                target_port = self._find_available_port(target_port)

            self.server = start_http_server(target_port, registry=self.registry)
            self.port = target_port
            logger.info(f"Metrics server started for {self.service_name} on port {target_port}")
            logger.info(f"Metrics available at: http://localhost:{target_port}/metrics")
            return True

        except Exception as e:
            logger.error(f"Failed to start metrics server for {self.service_name}: {e}")
            return False

    def _get_default_port(self) -> int:
        """Get default port based on environment"""
        env_port = os.getenv('PROXY_GUARD_METRICS_PORT') or os.getenv('METRICS_PORT')
        if env_port:
            try:
                return int(env_port)
            except ValueError:
                logger.warning(f"Invalid metrics port value: {env_port}, using default")

        return 9110

    def _is_port_available(self, port: int) -> bool:
        """Check if port is available"""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('localhost', port))
                return True
        except OSError:
            return False

    def _find_available_port(self, start_port: int) -> int:
        """Find next available port starting from start_port"""
        for port in range(start_port, start_port + 100):
            if self._is_port_available(port):
                return port
        raise RuntimeError(f"No available ports found starting from {start_port}")

    def get_metrics_text(self) -> str:
        """Get metrics in Prometheus text format"""
        return generate_latest(self.registry).decode('utf-8')

    def record_error(self, error_type: str, component: str = "unknown"):
        """Record an error occurrence"""
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def set_health_status(self, healthy: bool):
        """Set service health status"""
        self.health_status.set(1 if healthy else 0)


def setup_metrics(service_name: str, port: Optional[int] = None,
                  start_server: bool = True) -> MetricsRegistry:
    """
    Setup metrics for a service following the same pattern as setup_enhanced_logger.

    Args:
        service_name: Name of the service (e.g., 'substrate-westend-proxy-guard')
        port: Optional port for metrics server
        start_server: Whether to start HTTP server immediately

    Returns:
        MetricsRegistry: Configured metrics registry for the service
    """
    with _metrics_lock:
        if service_name in _service_registries:
            logger.debug(f"Metrics already setup for {service_name}")
            return _service_registries[service_name]

        metrics_registry = MetricsRegistry(service_name, port)
        _service_registries[service_name] = metrics_registry

        if start_server:
            success = metrics_registry.start_metrics_server()
            if success:
                _metrics_servers[service_name] = metrics_registry.server

        logger.info(f"Metrics setup completed for service: {service_name}")
        return metrics_registry


def get_metrics_registry(service_name: str) -> Optional[MetricsRegistry]:
    """Get existing metrics registry for a service"""
    return _service_registries.get(service_name)


def shutdown_metrics_servers():
    """Shutdown all metrics servers"""
    with _metrics_lock:
        for service_name, server in _metrics_servers.items():
            try:
                if hasattr(server, 'shutdown'):
                    server.shutdown()
                logger.info(f"Shutdown metrics server for {service_name}")
            except Exception as e:
                logger.error(f"Error shutting down metrics server for {service_name}: {e}")

        _metrics_servers.clear()


DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0, 60.0, float('inf'))


class GuardMetrics:
    """Standard metrics for chain synchronization and the proxy guard protocol"""

    def __init__(self, registry: MetricsRegistry, network: str):
        self.registry = registry
        self.network = network

        # Chain synchronization metrics
        self.polls_total = registry.create_counter(
            'chain_sync_polls_total',
            'Total number of chain head polls',
            ['network', 'wait_kind']
        )

        self.events_matched_total = registry.create_counter(
            'chain_sync_events_matched_total',
            'Total number of awaited events matched',
            ['network', 'pallet', 'method']
        )

        self.extrinsic_failures_total = registry.create_counter(
            'chain_sync_extrinsic_failures_total',
            'Total extrinsic failures observed while matching',
            ['network']
        )

        self.timeouts_total = registry.create_counter(
            'chain_sync_timeouts_total',
            'Total waits abandoned after exhausting poll attempts',
            ['network', 'wait_kind']
        )

        self.current_block_height = registry.create_gauge(
            'chain_sync_current_block_height',
            'Latest observed block height',
            ['network']
        )

        self.wait_duration = registry.create_histogram(
            'chain_sync_wait_duration_seconds',
            'Time spent blocked waiting for a chain condition',
            ['network', 'wait_kind'],
            buckets=DURATION_BUCKETS
        )

        # Protocol metrics
        self.phases_total = registry.create_counter(
            'proxy_guard_phases_total',
            'Total protocol phases entered',
            ['network', 'phase']
        )

        self.safety_verdicts_total = registry.create_counter(
            'proxy_guard_safety_verdicts_total',
            'Total safety verdicts computed',
            ['network', 'verdict']
        )

        self.remediations_total = registry.create_counter(
            'proxy_guard_remediations_total',
            'Total proxy revocation rounds completed',
            ['network']
        )

        self.attack_outcomes_total = registry.create_counter(
            'proxy_guard_attack_outcomes_total',
            'Total observed attacker outcomes',
            ['network', 'outcome']
        )

    def record_poll(self, wait_kind: str, block_height: int):
        """Record a chain head poll"""
        self.polls_total.labels(network=self.network, wait_kind=wait_kind).inc()
        self.current_block_height.labels(network=self.network).set(block_height)

    def record_event_matched(self, pallet: str, method: str):
        """Record an awaited event match"""
        self.events_matched_total.labels(network=self.network, pallet=pallet, method=method).inc()

    def record_extrinsic_failure(self):
        """Record an observed extrinsic failure"""
        self.extrinsic_failures_total.labels(network=self.network).inc()

    def record_timeout(self, wait_kind: str):
        """Record an abandoned wait"""
        self.timeouts_total.labels(network=self.network, wait_kind=wait_kind).inc()

    def record_wait_duration(self, wait_kind: str, duration: float):
        """Record time spent in a wait"""
        self.wait_duration.labels(network=self.network, wait_kind=wait_kind).observe(duration)

    def record_phase(self, phase: str):
        """Record a protocol phase entry"""
        self.phases_total.labels(network=self.network, phase=phase).inc()

    def record_verdict(self, safe: bool):
        """Record a safety verdict"""
        self.safety_verdicts_total.labels(network=self.network, verdict='safe' if safe else 'unsafe').inc()

    def record_remediation(self):
        """Record a completed remediation round"""
        self.remediations_total.labels(network=self.network).inc()

    def record_attack_outcome(self, succeeded: bool):
        """Record the attacker task's terminal outcome"""
        self.attack_outcomes_total.labels(
            network=self.network,
            outcome='succeeded' if succeeded else 'averted'
        ).inc()
