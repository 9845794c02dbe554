"""
Metrics collector utility for tracking connection and message metrics.
Provides prometheus metrics for reconnects, message rates, processing times, and errors.
"""
import time
from prometheus_client import REGISTRY, Counter, Histogram
from ..config.config import config
from ..core.logger import get_logger

# Module logger
logger = get_logger(__name__)

class MetricsCollector:
    """
    Collects and exposes metrics related to the resilience layer.
    Uses prometheus_client primitives; every tracking call is a no-op when disabled.
    """

    def __init__(self, registry=None, enabled=None):
        """
        Initialize metrics collector with Prometheus metrics.

        Args:
            registry: Prometheus registry to register with (default: global registry)
            enabled: Whether metrics are recorded (default: from config)
        """
        self.enabled = config.ENABLE_METRICS if enabled is None else enabled
        registry = REGISTRY if registry is None else registry

        # Resource supervision
        self.connection_losses = Counter(
            'amqp_connection_losses_total',
            'Total number of broker-initiated connection closures',
            registry=registry
        )

        self.reconnects = Counter(
            'amqp_reconnects_total',
            'Total number of successful redials after a connection closure',
            registry=registry
        )

        self.channel_recreations = Counter(
            'amqp_channel_recreations_total',
            'Total number of channels recreated after a broker-initiated closure',
            registry=registry
        )

        self.consume_restarts = Counter(
            'amqp_consume_restarts_total',
            'Total number of times a delivery pump re-issued its consume call',
            ['queue'],
            registry=registry
        )

        # Message counts
        self.messages_published = Counter(
            'amqp_messages_published_total',
            'Total number of messages published',
            ['exchange', 'routing_key'],
            registry=registry
        )

        self.publish_errors = Counter(
            'amqp_publish_errors_total',
            'Total number of publish errors',
            ['exchange', 'error_type'],
            registry=registry
        )

        self.messages_consumed = Counter(
            'amqp_messages_consumed_total',
            'Total number of messages handed to a consumer',
            ['queue'],
            registry=registry
        )

        self.messages_acknowledged = Counter(
            'amqp_messages_acknowledged_total',
            'Total number of messages acknowledged',
            ['queue'],
            registry=registry
        )

        self.messages_rejected = Counter(
            'amqp_messages_rejected_total',
            'Total number of messages negatively acknowledged',
            ['queue', 'error_type'],
            registry=registry
        )

        # Processing durations
        self.consume_duration = Histogram(
            'amqp_consume_duration_seconds',
            'Time taken to process a consumed message',
            ['queue'],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry
        )

    def track_connection_lost(self):
        if self.enabled:
            self.connection_losses.inc()

    def track_reconnect(self):
        if self.enabled:
            self.reconnects.inc()

    def track_channel_recreated(self):
        if self.enabled:
            self.channel_recreations.inc()

    def track_consume_restart(self, queue):
        if self.enabled:
            self.consume_restarts.labels(queue=queue).inc()

    def track_publish(self, exchange, routing_key=''):
        """
        Track a published message.

        Args:
            exchange: The exchange the message was published to
            routing_key: The routing key used
        """
        if self.enabled:
            self.messages_published.labels(
                exchange=exchange,
                routing_key=routing_key
            ).inc()

    def track_publish_error(self, exchange, error_type):
        """
        Track a publish error.

        Args:
            exchange: The exchange the message was being published to
            error_type: The type of error
        """
        if self.enabled:
            self.publish_errors.labels(
                exchange=exchange,
                error_type=error_type
            ).inc()

    def observe_consume(self, queue):
        """
        Create a context manager to track message consumption metrics.

        Args:
            queue: The queue the message is being consumed from

        Returns:
            A context manager that tracks handler duration and outcome
        """
        return _ConsumeMetricContext(self, queue)

class _ConsumeMetricContext:
    """Context manager for tracking consume metrics."""

    def __init__(self, collector, queue):
        self.collector = collector
        self.queue = queue
        self.start_time = None

    def __enter__(self):
        """Start timing when entering the context."""
        self.start_time = time.time()
        if self.collector.enabled:
            self.collector.messages_consumed.labels(queue=self.queue).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Record metrics when exiting the context."""
        if not self.collector.enabled:
            return False

        duration = time.time() - self.start_time
        self.collector.consume_duration.labels(queue=self.queue).observe(duration)

        if exc_type is None:
            self.collector.messages_acknowledged.labels(queue=self.queue).inc()
        else:
            self.collector.messages_rejected.labels(
                queue=self.queue,
                error_type=exc_type.__name__
            ).inc()

        # Don't suppress exceptions
        return False

# Singleton instance
metrics_collector = MetricsCollector()
