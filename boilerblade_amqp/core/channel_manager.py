"""
Channel manager module for handling AMQP channels.
Wraps a channel handle from the connection manager and transparently
recreates it when the broker closes it.
"""
import threading
from enum import Enum
from ..config.config import config
from .delivery_pump import DeliveryPump, DeliveryStream
from .exceptions import AlreadyClosedError, ConnectionClosedError
from .logger import get_logger
from .reconnect_policy import ReconnectPolicy
from ..utils.metrics_collector import metrics_collector

# Module logger
logger = get_logger(__name__)


class ChannelState(Enum):
    OPEN = 'open'
    CLOSING = 'closing'
    CLOSED = 'closed'


class Channel:
    """
    Auto-recreating channel on top of a Connection.

    The current handle is swapped in place by the watcher thread after a
    broker-initiated closure; an application close() is final.
    """

    def __init__(self, connection, handle, prefetch_count=None, reconnect_policy=None):
        """
        Initialize a channel wrapper and start its watcher.

        Args:
            connection: The owning Connection
            handle: Channel handle from the broker client adapter
            prefetch_count: QoS prefetch count reapplied on every recreation (default: from config)
            reconnect_policy: Delay policy between recreation attempts
        """
        self.connection = connection
        self.prefetch_count = config.PREFETCH_COUNT if prefetch_count is None else prefetch_count
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.recreate_count = 0

        self._handle = handle
        self._handle_lock = threading.RLock()
        self._state = ChannelState.OPEN
        self._state_lock = threading.Lock()
        self._closed_event = threading.Event()
        self._pumps = []
        self._watcher = None

    @property
    def handle(self):
        with self._handle_lock:
            return self._handle

    def _swap_handle(self, handle):
        with self._handle_lock:
            self._handle = handle

    @property
    def state(self):
        with self._state_lock:
            return self._state

    @property
    def closed_event(self):
        """Event set as soon as the application starts closing the channel."""
        return self._closed_event

    def _transition(self, expected, new):
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def is_closed(self):
        """True once the application has closed the channel; never reverts."""
        return self.state is not ChannelState.OPEN

    def apply_qos(self, handle=None):
        """
        Apply the prefetch setting to a channel handle.

        Returns:
            True if QoS was applied
        """
        handle = handle or self.handle
        try:
            handle.basic_qos(prefetch_count=self.prefetch_count, prefetch_size=0, global_qos=False)
            logger.debug(f"Set prefetch count to {self.prefetch_count}")
            return True
        except Exception as e:
            logger.error(f"Failed to set QoS (prefetch_count={self.prefetch_count}): {e}")
            return False

    def start(self):
        """Start the watcher thread."""
        self._watcher = threading.Thread(
            target=self._watch,
            name="amqp-channel-watcher",
            daemon=True
        )
        self._watcher.start()

    def close(self):
        """
        Close the channel.

        Raises:
            AlreadyClosedError: if the channel was already closed
        """
        if not self._transition(ChannelState.OPEN, ChannelState.CLOSING):
            raise AlreadyClosedError("channel already closed")

        self._closed_event.set()
        try:
            with self._handle_lock:
                handle = self._handle
            # Lost handle awaiting recreation; nothing left to close
            if handle.is_closed:
                logger.debug("Underlying channel already gone")
                return
            logger.debug("Closing channel")
            handle.close()
        finally:
            with self._state_lock:
                self._state = ChannelState.CLOSED

    def _close_quietly(self):
        try:
            self.close()
        except AlreadyClosedError:
            logger.debug("Channel already closed")
        except ConnectionClosedError as e:
            logger.debug(f"Channel handle already gone: {e}")

    def _watch(self):
        while True:
            reason = self.handle.notify_close().get()

            # Closed by the application, directly or through its connection
            if reason is None or self.is_closed():
                logger.info("Channel closed")
                self._close_quietly()
                return

            logger.error(f"Channel closed by broker: {reason}")
            if not self._recreate():
                self._close_quietly()
                return

    def _recreate(self):
        attempt = 0
        while True:
            attempt += 1
            if self._closed_event.wait(self.reconnect_policy.delay_for(attempt)):
                return False
            if self.connection.is_closed:
                logger.info("Connection closed, giving up channel recreation")
                return False

            try:
                handle = self.connection.handle.channel()
            except Exception as e:
                logger.error(f"Channel recreate attempt {attempt} failed: {e}")
                continue

            self.apply_qos(handle)

            # close() reads the handle under the same lock after setting the event
            with self._handle_lock:
                stopped = self._closed_event.is_set()
                if not stopped:
                    self._handle = handle

            if stopped:
                try:
                    handle.close()
                except Exception as e:
                    logger.debug(f"Error closing recreated channel: {e}")
                return False

            self.recreate_count += 1
            metrics_collector.track_channel_recreated()
            logger.info(f"Channel recreated after {attempt} attempt(s)")
            return True

    def consume(self, queue, consumer='', auto_ack=False, exclusive=False,
                no_local=False, no_wait=False, arguments=None):
        """
        Consume from a queue through a stream that survives channel recreation.

        Always returns immediately; consume failures are retried in the background.

        Returns:
            A DeliveryStream
        """
        stream = DeliveryStream()
        pump = DeliveryPump(
            self, stream, queue,
            consumer=consumer,
            auto_ack=auto_ack,
            exclusive=exclusive,
            no_local=no_local,
            no_wait=no_wait,
            arguments=arguments
        )
        self._pumps = [p for p in self._pumps if p.is_alive()]
        self._pumps.append(pump)
        pump.start()
        return stream

    # Operations on the current handle

    def basic_qos(self, prefetch_count=0, prefetch_size=0, global_qos=False):
        return self.handle.basic_qos(prefetch_count=prefetch_count,
                                     prefetch_size=prefetch_size,
                                     global_qos=global_qos)

    def exchange_declare(self, exchange, exchange_type='direct', durable=False,
                         auto_delete=False, internal=False, arguments=None):
        return self.handle.exchange_declare(
            exchange=exchange,
            exchange_type=exchange_type,
            durable=durable,
            auto_delete=auto_delete,
            internal=internal,
            arguments=arguments
        )

    def queue_declare(self, queue, durable=False, exclusive=False,
                      auto_delete=False, arguments=None):
        return self.handle.queue_declare(
            queue=queue,
            durable=durable,
            exclusive=exclusive,
            auto_delete=auto_delete,
            arguments=arguments
        )

    def queue_bind(self, queue, exchange, routing_key=None, arguments=None):
        return self.handle.queue_bind(
            queue=queue,
            exchange=exchange,
            routing_key=routing_key,
            arguments=arguments
        )

    def basic_publish(self, exchange, routing_key, body, properties=None, mandatory=False):
        return self.handle.basic_publish(
            exchange=exchange,
            routing_key=routing_key,
            body=body,
            properties=properties,
            mandatory=mandatory
        )

    # Topology and messaging conveniences

    def declare_exchange(self, exchange_name, exchange_type):
        """Declare exchange_name and its retry exchange."""
        from ..exchanges.exchange_manager import exchange_manager
        return exchange_manager.declare_exchange_with_retry(exchange_name, exchange_type, channel=self)

    def declare_queue(self, queue_name, queue_type, exchange_name, routing_key, interval_ms):
        """Declare queue_name and its retry queue."""
        from ..queues.queue_manager import queue_manager
        return queue_manager.declare_queue_with_retry(
            queue_name, queue_type, exchange_name, routing_key, interval_ms, channel=self)

    def bind_queue(self, queue_info, routing_key, exchange_name):
        """Bind a queue and its retry queue."""
        from ..bindings.binding_manager import binding_manager
        return binding_manager.bind_queue_with_retry(queue_info, routing_key, exchange_name, channel=self)

    def new_queue(self, exchange_name, queue_name, queue_type, routing_key, interval_ms):
        """Declare and bind a queue and its retry queue."""
        from ..queues.queue_manager import queue_manager
        return queue_manager.new_queue(
            exchange_name, queue_name, queue_type, routing_key, interval_ms, channel=self)

    def read_message(self, queue_info):
        """Consume a queue with manual acknowledgement."""
        return self.consume(
            queue_info.name,
            consumer='',
            auto_ack=False,
            exclusive=False,
            no_local=False,
            no_wait=False,
            arguments=None
        )

    def publish_message(self, queue_info, routing_key, content_type, exchange, body):
        """Publish a persistent message; see producers.base_producer.publish_message."""
        from ..producers.base_producer import publish_message
        return publish_message(self, queue_info, routing_key, content_type, exchange, body)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_closed():
            self.close()


_default_channel = None
_default_lock = threading.RLock()

def get_channel():
    """
    Get the process-wide default channel, opening one on the default
    connection if needed.

    Returns:
        A Channel
    """
    global _default_channel
    from .connection_manager import ensure_amqp

    with _default_lock:
        if _default_channel is None or _default_channel.is_closed():
            _default_channel = ensure_amqp().channel()
            logger.debug("Created default channel")
        return _default_channel

def close_channel():
    """
    Close the default channel if it is open.
    """
    global _default_channel
    with _default_lock:
        if _default_channel is not None and not _default_channel.is_closed():
            try:
                _default_channel.close()
            except ConnectionClosedError as e:
                logger.warning(f"Error closing channel: {e}")
        _default_channel = None
