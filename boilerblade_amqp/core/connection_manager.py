"""
Connection manager module for handling AMQP connections.
Provides resilient connection handling with automatic reconnection.
"""
import threading
from ..config.config import config
from . import transport
from .channel_manager import Channel
from .exceptions import AlreadyClosedError, AMQPNotInitializedError, DialError
from .logger import get_logger, mask_url
from .reconnect_policy import ReconnectPolicy
from ..utils.metrics_collector import metrics_collector

# Module logger
logger = get_logger(__name__)

class Connection:
    """
    Long-lived broker connection that redials on broker-initiated closure.

    The underlying handle is replaced in place by a single watcher thread;
    only close() stops it.
    """

    def __init__(self, url, handle, dialer, reconnect_policy=None, prefetch_count=None):
        """
        Initialize a connection wrapper. Use dial() rather than calling this directly.

        Args:
            url: Broker URL used for every redial
            handle: Connection handle from the broker client adapter
            dialer: Callable taking the URL and returning a new handle
            reconnect_policy: Delay policy between redial attempts
            prefetch_count: QoS prefetch count for channels (default: from config)
        """
        self._url = url
        self._handle = handle
        self._handle_lock = threading.RLock()
        self._dialer = dialer
        self.reconnect_policy = reconnect_policy or ReconnectPolicy()
        self.prefetch_count = config.PREFETCH_COUNT if prefetch_count is None else prefetch_count
        self.reconnect_count = 0

        self._closed = False
        self._close_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._watcher = None

    @property
    def url(self):
        return self._url

    @property
    def handle(self):
        with self._handle_lock:
            return self._handle

    @property
    def is_closed(self):
        return self._closed

    def start(self):
        """Start the watcher thread."""
        self._watcher = threading.Thread(
            target=self._watch,
            name=f"amqp-connection-watcher-{mask_url(self._url)}",
            daemon=True
        )
        self._watcher.start()

    def _watch(self):
        while True:
            reason = self.handle.notify_close().get()

            # Closed by the application
            if reason is None:
                logger.info(f"Connection to {mask_url(self._url)} closed by application")
                return

            logger.error(f"Connection to {mask_url(self._url)} closed: {reason}")
            metrics_collector.track_connection_lost()

            if not self._redial():
                return

    def _redial(self):
        attempt = 0
        while True:
            attempt += 1
            if self._stop_event.wait(self.reconnect_policy.delay_for(attempt)):
                logger.info("Reconnect loop stopped, connection closed by application")
                return False

            try:
                handle = self._dialer(self._url)
            except Exception as e:
                logger.error(f"Reconnect attempt {attempt} to {mask_url(self._url)} failed: {e}")
                continue

            # close() reads the handle under the same lock after setting the event
            with self._handle_lock:
                stopped = self._stop_event.is_set()
                if not stopped:
                    self._handle = handle

            if stopped:
                try:
                    handle.close()
                except Exception as e:
                    logger.debug(f"Error closing redialed connection: {e}")
                return False

            self.reconnect_count += 1
            metrics_collector.track_reconnect()
            logger.info(f"Reconnected to {mask_url(self._url)} after {attempt} attempt(s)")
            return True

    def channel(self):
        """
        Open an auto-recreating channel on the current connection handle.

        Returns:
            A Channel with the prefetch count applied

        Raises:
            AlreadyClosedError: if the connection was closed by the application
        """
        if self._closed:
            raise AlreadyClosedError("connection already closed")

        handle = self.handle.channel()
        channel = Channel(
            self, handle,
            prefetch_count=self.prefetch_count,
            reconnect_policy=self.reconnect_policy
        )
        channel.apply_qos(handle)
        channel.start()
        logger.debug("Created new channel")
        return channel

    def close(self):
        """
        Close the connection and stop its watcher.

        Raises:
            AlreadyClosedError: if the connection was already closed
        """
        with self._close_lock:
            if self._closed:
                raise AlreadyClosedError("connection already closed")
            self._closed = True

        self._stop_event.set()
        logger.info(f"Closing connection to {mask_url(self._url)}")

        with self._handle_lock:
            handle = self._handle
        # Closed while redialing; the lost handle has nothing left to close
        if handle.is_closed:
            logger.debug("Underlying connection already gone")
            return
        handle.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._closed:
            self.close()

def dial(url=None, reconnect_policy=None, prefetch_count=None, dialer=None):
    """
    Connect to the broker and start supervising the connection.

    The first attempt is not retried.

    Args:
        url: Broker URL (default: from config)
        reconnect_policy: Delay policy between redial attempts
        prefetch_count: QoS prefetch count for channels
        dialer: Callable taking the URL and returning a handle (default: pika adapter)

    Returns:
        A Connection

    Raises:
        DialError: if the broker cannot be reached
    """
    url = url or config.amqp_url()
    dialer = dialer or transport.dial

    logger.info(f"Dialing {mask_url(url)}")
    handle = dialer(url)

    connection = Connection(
        url, handle, dialer,
        reconnect_policy=reconnect_policy,
        prefetch_count=prefetch_count
    )
    connection.start()
    return connection

def init_amqp(settings=None, dialer=None):
    """
    Dial the broker described by the settings.

    Returns:
        A Connection, or None if the broker could not be reached
    """
    settings = settings or config
    url = settings.amqp_url()
    try:
        return dial(url, dialer=dialer)
    except DialError as e:
        logger.error(f"AMQP connection failed (host={settings.AMQP_HOST}, port={settings.AMQP_PORT}, "
                     f"user={settings.AMQP_USER}, url={mask_url(url)}): {e}")
        return None

_connection = None
_connection_lock = threading.RLock()

def ensure_amqp(settings=None, dialer=None):
    """
    Get the process-wide connection, initializing it if needed.
    Forces AMQP on when ENABLE_AMQP is false.

    Returns:
        A Connection

    Raises:
        AMQPNotInitializedError: if the broker could not be reached
    """
    global _connection
    settings = settings or config

    with _connection_lock:
        if _connection is None or _connection.is_closed:
            if not settings.ENABLE_AMQP:
                logger.info("ENABLE_AMQP was false, forcing AMQP initialization")
                settings.ENABLE_AMQP = True

            _connection = init_amqp(settings, dialer=dialer)
            if _connection is None:
                raise AMQPNotInitializedError()
            logger.info("AMQP connection initialized")

        return _connection

def get_connection():
    """
    Get a connection from the process-wide connection manager.

    Returns:
        A Connection
    """
    return ensure_amqp()

def close_connection():
    """
    Close the process-wide connection if it is open.
    """
    global _connection
    with _connection_lock:
        if _connection is not None and not _connection.is_closed:
            _connection.close()
        _connection = None
