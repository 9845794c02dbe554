#!/usr/bin/env python
"""
Script to publish messages.
Declares the exchange pair and publishes the given body one or more times.
"""
import argparse
import sys
import time

from ..core.connection_manager import dial
from ..core.exceptions import DialError
from ..core.logger import get_logger

# Module logger
logger = get_logger(__name__)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Publish persistent messages.")
    parser.add_argument('--url', default=None, help='Broker URL (default: built from AMQP_* settings)')
    parser.add_argument('--exchange', required=True, help='Exchange to publish to')
    parser.add_argument('--exchange-type', default='direct',
                        choices=['direct', 'topic', 'fanout', 'headers'], help='Type of exchange')
    parser.add_argument('--routing-key', default='', help='Routing key of the messages')
    parser.add_argument('--content-type', default='application/json', help='Content type of the body')
    parser.add_argument('--count', type=int, default=1, help='Number of messages to publish')
    parser.add_argument('--rate', type=float, default=0, help='Messages per second (0 for no limit)')
    parser.add_argument('body', help='Message body')
    return parser.parse_args(argv)

def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    try:
        connection = dial(args.url)
    except DialError as e:
        logger.error(f"Could not start producer: {e}")
        return 1

    failures = 0
    with connection:
        with connection.channel() as channel:
            channel.declare_exchange(args.exchange, args.exchange_type)

            body = args.body.encode('utf-8')
            for i in range(args.count):
                try:
                    channel.publish_message(None, args.routing_key, args.content_type, args.exchange, body)
                except Exception as e:
                    failures += 1
                    logger.error(f"Message {i + 1}/{args.count} not published: {e}")
                if args.rate > 0:
                    time.sleep(1.0 / args.rate)

    logger.info(f"Published {args.count - failures}/{args.count} messages")
    return 0 if failures == 0 else 1

if __name__ == '__main__':
    sys.exit(main())
