"""
Base consumer module for consuming messages.
Sets up the exchange and queue pairs, reads deliveries through the
recreation-proof stream and acknowledges or rejects each one.
"""
import json
import threading
from ..config.config import config
from ..core.exceptions import AlreadyClosedError, ConnectionClosedError, DeliveryAlreadySettledError
from ..core.logger import get_logger
from ..utils.metrics_collector import metrics_collector

# Module logger
logger = get_logger(__name__)

class BaseConsumer:
    """
    Base class for queue consumers.

    Subclasses override handle_message(). A handler that returns normally
    acknowledges the delivery; one that raises nacks it. With the default
    requeue_on_failure=False the broker dead-letters the message to the
    retry exchange, so it comes back after the retry interval. Pass
    requeue_on_failure=True to nack with requeue instead, which returns the
    message to the head of the primary queue and bypasses the retry queue.
    """

    def __init__(self, connection, exchange_name, queue_name, routing_key,
                 exchange_type='direct', queue_type=None, interval_ms=None,
                 requeue_on_failure=False):
        """
        Initialize the consumer.

        Args:
            connection: Connection to open the consumer channel on
            exchange_name: Name of the primary exchange
            queue_name: Name of the primary queue
            routing_key: Routing key binding the queue to the exchange
            exchange_type: Type of exchange ('direct', 'topic', 'fanout', 'headers')
            queue_type: x-queue-type of the queues (default: from config)
            interval_ms: Retry delay in milliseconds (default: from config)
            requeue_on_failure: Requeue failed deliveries instead of dead-lettering them
        """
        self.connection = connection
        self.exchange_name = exchange_name
        self.queue_name = queue_name
        self.routing_key = routing_key
        self.exchange_type = exchange_type
        self.queue_type = queue_type or config.DEFAULT_QUEUE_TYPE
        self.interval_ms = config.DEFAULT_RETRY_INTERVAL_MS if interval_ms is None else interval_ms
        self.requeue_on_failure = requeue_on_failure

        self.channel = None
        self.queue_info = None
        self._thread = None

    def setup(self):
        """
        Open the consumer channel and declare the exchange pair.

        Returns:
            The Channel
        """
        self.channel = self.connection.channel()
        try:
            self.channel.declare_exchange(self.exchange_name, self.exchange_type)
        except Exception:
            logger.error(f"Failed to declare exchange '{self.exchange_name}' for consumer "
                         f"of '{self.queue_name}'")
            self.channel.close()
            self.channel = None
            raise

        logger.info(f"Consumer for '{self.queue_name}' initialized with exchange "
                    f"'{self.exchange_name}' ({self.exchange_type})")
        return self.channel

    def decode(self, delivery):
        """Decode the delivery body, parsing JSON when the content type says so."""
        if delivery.content_type == 'application/json':
            return json.loads(delivery.body.decode('utf-8'))
        return delivery.body.decode('utf-8')

    def handle_message(self, delivery, content):
        """
        Handle a received message.
        This method should be overridden by subclasses; raise to reject.

        Args:
            delivery: The Delivery
            content: The decoded body
        """
        logger.info(f"Received message {delivery.message_id}: {content}")

    def process(self, delivery):
        """
        Run the handler for one delivery and settle it.

        Returns:
            True if the delivery was acknowledged
        """
        logger.debug(f"Processing message {delivery.message_id} (routing_key='{delivery.routing_key}')")
        try:
            with metrics_collector.observe_consume(self.queue_name):
                self.handle_message(delivery, self.decode(delivery))
        except Exception as e:
            logger.error(f"Failed to process message {delivery.message_id} from "
                         f"'{self.queue_name}': {e}")
            self._settle(delivery.nack, requeue=self.requeue_on_failure)
            return False

        self._settle(delivery.ack)
        return True

    def _settle(self, settle, **kwargs):
        try:
            settle(**kwargs)
        except DeliveryAlreadySettledError:
            logger.warning("Handler settled the delivery itself")
        except ConnectionClosedError as e:
            logger.warning(f"Could not settle delivery, the broker will redeliver it: {e}")

    def consume(self):
        """
        Declare the queue pair and process deliveries until the channel is closed.
        Blocks the calling thread.
        """
        if self.channel is None:
            self.setup()

        self.queue_info = self.channel.new_queue(
            self.exchange_name,
            self.queue_name,
            self.queue_type,
            self.routing_key,
            self.interval_ms
        )

        messages = self.channel.read_message(self.queue_info)
        logger.info(f"Started consuming from queue '{self.queue_name}'")

        for delivery in messages:
            self.process(delivery)

        logger.info(f"Stopped consuming from queue '{self.queue_name}'")

    def start(self):
        """Run consume() in a background thread."""
        if self.channel is None:
            self.setup()

        self._thread = threading.Thread(
            target=self._consume_in_thread,
            name=f"consumer-{self.queue_name}",
            daemon=True
        )
        self._thread.start()
        return self._thread

    def _consume_in_thread(self):
        try:
            self.consume()
        except Exception:
            logger.exception(f"Consumer for queue '{self.queue_name}' stopped with an error")

    def stop(self, timeout=None):
        """
        Close the consumer channel and wait for the consume loop to end.

        Args:
            timeout: Seconds to wait for the consumer thread
        """
        if self.channel is not None:
            try:
                self.channel.close()
            except AlreadyClosedError:
                logger.debug("Consumer channel already closed")
            except ConnectionClosedError as e:
                logger.warning(f"Error closing consumer channel: {e}")

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def close(self):
        """Close the consumer and its channel."""
        self.stop()

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager."""
        self.close()
