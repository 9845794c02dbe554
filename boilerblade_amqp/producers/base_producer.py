"""
Base producer module for publishing messages.
Publishes persistent messages on whichever channel handle is current.
"""
import json
import time
import uuid
import pika
from ..core.channel_manager import get_channel
from ..core.logger import get_logger
from ..utils.metrics_collector import metrics_collector

# Module logger
logger = get_logger(__name__)

PERSISTENT_DELIVERY_MODE = 2

def publish_message(channel, queue_info, routing_key, content_type, exchange, body,
                    headers=None, message_id=None):
    """
    Publish a persistent message.

    The routing key is the queue's own name when queue_info is given,
    otherwise routing_key. Failures are logged and raised, never retried.

    Args:
        channel: Channel to publish on
        queue_info: Optional QueueInfo whose name is used as routing key
        routing_key: Routing key used when queue_info is None
        content_type: MIME type of the body
        exchange: Exchange to publish to ('' for the default exchange)
        body: Message body as bytes
        headers: Optional message headers
        message_id: Optional message id
    """
    key = routing_key or ''
    if queue_info is not None:
        key = queue_info.name

    properties = pika.BasicProperties(
        content_type=content_type,
        delivery_mode=PERSISTENT_DELIVERY_MODE,
        message_id=message_id,
        headers=headers
    )

    try:
        channel.basic_publish(
            exchange=exchange,
            routing_key=key,
            body=body,
            properties=properties
        )
    except Exception as e:
        logger.error(f"Publish failed (exchange='{exchange}', routing_key='{key}', "
                     f"content_type={content_type}, body_size={len(body)}): {e}")
        metrics_collector.track_publish_error(exchange, type(e).__name__)
        raise

    logger.debug(f"Message published (exchange='{exchange}', routing_key='{key}', "
                 f"content_type={content_type}, body_size={len(body)})")
    metrics_collector.track_publish(exchange, key)

class BaseProducer:
    """
    Base class for producers bound to one exchange and routing key.
    """

    def __init__(self, exchange_name='', routing_key='', content_type='application/json',
                 channel=None):
        """
        Initialize the producer.

        Args:
            exchange_name: Name of the exchange to publish to ('' for default exchange)
            routing_key: Default routing key for messages
            content_type: Content type of the messages
            channel: Optional channel to use, otherwise gets the default one
        """
        self.exchange_name = exchange_name
        self.routing_key = routing_key
        self.content_type = content_type
        self._channel = channel

    def get_channel(self):
        if self._channel is None or self._channel.is_closed():
            self._channel = get_channel()
        return self._channel

    def publish(self, message, routing_key=None, headers=None):
        """
        Publish a message.

        Args:
            message: Message to publish (dict is JSON serialized, str is UTF-8 encoded)
            routing_key: Routing key for the message (defaults to producer's routing_key)
            headers: Optional headers for the message

        Returns:
            The generated message id
        """
        if isinstance(message, dict):
            message = json.dumps(message)
        if isinstance(message, str):
            message = message.encode('utf-8')

        message_id = str(uuid.uuid4())
        headers = dict(headers or {})
        headers.setdefault('x-published-at', int(time.time()))

        publish_message(
            self.get_channel(),
            None,
            routing_key or self.routing_key,
            self.content_type,
            self.exchange_name,
            message,
            headers=headers,
            message_id=message_id
        )
        return message_id
