#!/usr/bin/env python
"""
Script to run a consumer service.
Declares the exchange/queue pairs and logs every message it receives until
interrupted.
"""
import argparse
import signal
import sys
import threading

from prometheus_client import start_http_server

from ..config.config import config
from ..consumers.base_consumer import BaseConsumer
from ..core.connection_manager import dial
from ..core.exceptions import DialError
from ..core.logger import get_logger

# Module logger
logger = get_logger(__name__)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Consume messages with automatic reconnection and delayed retry.")
    parser.add_argument('--url', default=None, help='Broker URL (default: built from AMQP_* settings)')
    parser.add_argument('--exchange', required=True, help='Primary exchange name')
    parser.add_argument('--exchange-type', default='direct',
                        choices=['direct', 'topic', 'fanout', 'headers'], help='Type of exchange')
    parser.add_argument('--queue', required=True, help='Primary queue name')
    parser.add_argument('--routing-key', default='', help='Routing key binding the queue to the exchange')
    parser.add_argument('--queue-type', default=config.DEFAULT_QUEUE_TYPE, help='x-queue-type of the queues')
    parser.add_argument('--interval', type=int, default=config.DEFAULT_RETRY_INTERVAL_MS,
                        help='Retry delay in milliseconds')
    parser.add_argument('--metrics-port', type=int, default=None,
                        help='Expose Prometheus metrics on this port')
    return parser.parse_args(argv)

def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    stop = threading.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        stop.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    if args.metrics_port and config.ENABLE_METRICS:
        start_http_server(args.metrics_port)
        logger.info(f"Started Prometheus metrics server on port {args.metrics_port}")

    try:
        connection = dial(args.url)
    except DialError as e:
        logger.error(f"Could not start consumer: {e}")
        return 1

    consumer = BaseConsumer(
        connection,
        exchange_name=args.exchange,
        queue_name=args.queue,
        routing_key=args.routing_key,
        exchange_type=args.exchange_type,
        queue_type=args.queue_type,
        interval_ms=args.interval
    )

    try:
        consumer.start()
        stop.wait()
    finally:
        consumer.stop(timeout=5.0)
        connection.close()

    logger.info("Consumer service shutdown complete")
    return 0

if __name__ == '__main__':
    sys.exit(main())
