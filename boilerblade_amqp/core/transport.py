"""
Broker client adapter over pika's BlockingConnection.

A BlockingConnection must only be used from one thread, so every handle owns
an I/O thread that runs queued work items and pumps process_data_events.
Calls from other threads are marshalled onto it and wait for the result.

Closure is reported through notify_close(): every returned queue receives
exactly one item, a CloseReason when the broker or the network closed the
resource, or None when the application closed it.
"""
import functools
import queue
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout

import pika
from pika.exceptions import (AMQPChannelError, AMQPConnectionError, AMQPError,
                             ChannelClosed, ConnectionClosed)

from ..config.config import config
from .exceptions import ConnectionClosedError, DialError
from .logger import get_logger, mask_url
from .models import CloseReason, Delivery, QueueInfo

# Module logger
logger = get_logger(__name__)

_END = object()


def _reason_from(exc):
    """Translate a pika exception into a CloseReason."""
    if isinstance(exc, (ConnectionClosed, ChannelClosed)):
        return CloseReason(code=exc.reply_code, text=exc.reply_text)
    return CloseReason(code=0, text=str(exc) or type(exc).__name__)


def _noop():
    pass


class RawDeliveryStream:
    """
    Deliveries of a single basic_consume call.
    Iteration ends when the broker cancels the consumer or the channel closes.
    """

    def __init__(self):
        self.consumer_tag = None
        self._queue = queue.Queue()
        self._ended = threading.Event()

    @property
    def ended(self):
        return self._ended.is_set()

    def push(self, delivery):
        self._queue.put(delivery)

    def end(self):
        if not self._ended.is_set():
            self._ended.set()
            self._queue.put(_END)

    def __iter__(self):
        while True:
            item = self._queue.get()
            if item is _END:
                return
            yield item


class _CloseNotifier:
    """Holds close listeners and hands each of them the final outcome exactly once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners = []
        self._done = False
        self._outcome = None

    @property
    def done(self):
        return self._done

    def register(self):
        listener = queue.Queue(maxsize=1)
        with self._lock:
            if self._done:
                listener.put(self._outcome)
            else:
                self._listeners.append(listener)
        return listener

    def fire(self, outcome):
        with self._lock:
            if self._done:
                return False
            self._done = True
            self._outcome = outcome
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.put(outcome)
        return True


class PikaConnectionHandle:
    """
    One broker connection plus the I/O thread that drives it.
    """

    def __init__(self, connection, url, rpc_timeout=None, poll_interval=None):
        self.url = url
        self._connection = connection
        self._rpc_timeout = config.RPC_TIMEOUT if rpc_timeout is None else rpc_timeout
        self._poll_interval = config.IO_POLL_INTERVAL if poll_interval is None else poll_interval

        self._work = queue.Queue()
        self._state_lock = threading.Lock()
        self._closing = False
        self._stopped = False
        self._channels = []
        self._notifier = _CloseNotifier()

        self._thread = threading.Thread(
            target=self._io_loop,
            name=f"amqp-io-{mask_url(url)}",
            daemon=True
        )
        self._thread.start()

    @property
    def is_closed(self):
        return self._stopped or self._closing

    def notify_close(self):
        """Register for the closure outcome of this connection."""
        return self._notifier.register()

    def channel(self):
        """
        Open a new channel on this connection.

        Returns:
            A PikaChannelHandle
        """
        def open_channel():
            handle = PikaChannelHandle(self, self._connection.channel())
            self._channels.append(handle)
            return handle

        return self.call(open_channel)

    def close(self):
        """Close the connection; listeners receive None."""
        def close_now():
            if self._closing:
                raise ConnectionClosedError("connection already closing")
            self._closing = True
            for handle in self._channels:
                handle.mark_closing()
            self._connection.close()

        self.call(close_now)

    def call(self, fn, *args, **kwargs):
        """
        Run fn on the I/O thread and wait for its result.

        Raises:
            ConnectionClosedError: if the connection is closed or the call timed out
        """
        if threading.current_thread() is self._thread:
            return fn(*args, **kwargs)

        future = self.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self._rpc_timeout)
        except FutureTimeout as e:
            future.cancel()
            raise ConnectionClosedError(
                f"no answer from the broker within {self._rpc_timeout}s", e) from e

    def submit(self, fn, *args, **kwargs):
        """Queue fn for the I/O thread without waiting for it."""
        future = Future()
        with self._state_lock:
            if self._stopped or self._closing:
                raise ConnectionClosedError("connection is closed")
            self._work.put((functools.partial(fn, *args, **kwargs), future))
        self._wakeup()
        return future

    def _wakeup(self):
        try:
            self._connection.add_callback_threadsafe(_noop)
        except AMQPConnectionError as e:
            # The I/O loop notices the closed connection on its next poll.
            logger.debug(f"Could not wake I/O thread: {e}")

    def _run_pending(self):
        while True:
            try:
                fn, future = self._work.get_nowait()
            except queue.Empty:
                return
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn())
            except Exception as e:
                future.set_exception(e)

    def _check_channels(self):
        for handle in list(self._channels):
            if handle.pika_channel.is_closed:
                handle.finalize(handle.last_reason or CloseReason(code=0, text='channel closed'))
                self._channels.remove(handle)

    def _io_loop(self):
        reason = None
        try:
            while not self._closing:
                self._run_pending()
                if self._closing:
                    break
                if self._connection.is_closed:
                    reason = CloseReason(code=0, text='connection closed')
                    break
                try:
                    self._connection.process_data_events(time_limit=self._poll_interval)
                except AMQPChannelError as e:
                    logger.warning(f"Channel error on {mask_url(self.url)}: {e}")
                self._check_channels()
        except AMQPError as e:
            reason = _reason_from(e)
        except Exception as e:
            logger.exception(f"I/O loop for {mask_url(self.url)} failed")
            reason = CloseReason(code=0, text=str(e) or type(e).__name__)
        finally:
            self._shutdown(None if self._closing else reason)

    def _shutdown(self, reason):
        with self._state_lock:
            self._stopped = True

        # Fail anything that was queued after the loop stopped
        while True:
            try:
                _, future = self._work.get_nowait()
            except queue.Empty:
                break
            if future.set_running_or_notify_cancel():
                future.set_exception(ConnectionClosedError("connection is closed"))

        for handle in self._channels:
            handle.finalize(None if handle.closing else reason)
        self._channels = []

        if reason is not None:
            logger.debug(f"Connection {mask_url(self.url)} lost: {reason}")
        self._notifier.fire(reason)


class PikaChannelHandle:
    """
    One pika channel. Every operation runs on the owning connection's I/O thread.
    """

    def __init__(self, connection_handle, pika_channel):
        self.connection_handle = connection_handle
        self.pika_channel = pika_channel
        self.channel_number = pika_channel.channel_number
        self.last_reason = None
        self._closing = False
        self._streams = {}
        self._notifier = _CloseNotifier()
        pika_channel.add_on_cancel_callback(self._on_consumer_cancelled)

    @property
    def closing(self):
        return self._closing

    @property
    def is_closed(self):
        return self._closing or self._notifier.done

    def mark_closing(self):
        self._closing = True

    def notify_close(self):
        """Register for the closure outcome of this channel."""
        return self._notifier.register()

    def _invoke(self, fn, *args, **kwargs):
        if self._notifier.done:
            raise ConnectionClosedError(f"channel {self.channel_number} is closed")

        def run():
            try:
                return fn(*args, **kwargs)
            except ChannelClosed as e:
                self.last_reason = _reason_from(e)
                raise

        return self.connection_handle.call(run)

    def basic_qos(self, prefetch_count=0, prefetch_size=0, global_qos=False):
        return self._invoke(
            self.pika_channel.basic_qos,
            prefetch_size=prefetch_size,
            prefetch_count=prefetch_count,
            global_qos=global_qos
        )

    def exchange_declare(self, exchange, exchange_type='direct', durable=False,
                         auto_delete=False, internal=False, arguments=None):
        return self._invoke(
            self.pika_channel.exchange_declare,
            exchange=exchange,
            exchange_type=exchange_type,
            durable=durable,
            auto_delete=auto_delete,
            internal=internal,
            arguments=arguments
        )

    def queue_declare(self, queue, durable=False, exclusive=False,
                      auto_delete=False, arguments=None, passive=False):
        frame = self._invoke(
            self.pika_channel.queue_declare,
            queue=queue,
            passive=passive,
            durable=durable,
            exclusive=exclusive,
            auto_delete=auto_delete,
            arguments=arguments
        )
        return QueueInfo(
            name=frame.method.queue,
            message_count=frame.method.message_count,
            consumer_count=frame.method.consumer_count
        )

    def queue_bind(self, queue, exchange, routing_key=None, arguments=None):
        return self._invoke(
            self.pika_channel.queue_bind,
            queue=queue,
            exchange=exchange,
            routing_key=routing_key,
            arguments=arguments
        )

    def basic_publish(self, exchange, routing_key, body, properties=None, mandatory=False):
        return self._invoke(
            self.pika_channel.basic_publish,
            exchange=exchange,
            routing_key=routing_key,
            body=body,
            properties=properties,
            mandatory=mandatory
        )

    def consume(self, queue, consumer_tag='', auto_ack=False, exclusive=False,
                no_local=False, no_wait=False, arguments=None):
        """
        Start a consumer and return its RawDeliveryStream.

        no_local and no_wait are accepted for interface parity; RabbitMQ
        ignores no-local and the blocking adapter always waits for ConsumeOk.
        """
        stream = RawDeliveryStream()

        def on_message(channel, method, properties, body):
            stream.push(Delivery(
                body=body,
                delivery_tag=method.delivery_tag,
                routing_key=method.routing_key,
                exchange=method.exchange,
                message_id=properties.message_id,
                content_type=properties.content_type,
                headers=properties.headers or {},
                redelivered=method.redelivered,
                acknowledger=self
            ))

        def start():
            tag = self.pika_channel.basic_consume(
                queue=queue,
                on_message_callback=on_message,
                auto_ack=auto_ack,
                exclusive=exclusive,
                consumer_tag=consumer_tag or None,
                arguments=arguments
            )
            stream.consumer_tag = tag
            self._streams[tag] = stream
            return stream

        return self._invoke(start)

    def ack(self, delivery_tag, multiple=False):
        self._settle(self.pika_channel.basic_ack, delivery_tag=delivery_tag, multiple=multiple)

    def nack(self, delivery_tag, multiple=False, requeue=True):
        self._settle(self.pika_channel.basic_nack, delivery_tag=delivery_tag,
                     multiple=multiple, requeue=requeue)

    def reject(self, delivery_tag, requeue=True):
        self._settle(self.pika_channel.basic_reject, delivery_tag=delivery_tag, requeue=requeue)

    def _settle(self, fn, **kwargs):
        if self._notifier.done:
            raise ConnectionClosedError(
                f"channel {self.channel_number} closed before delivery {kwargs['delivery_tag']} was settled")
        future = self.connection_handle.submit(fn, **kwargs)
        future.add_done_callback(functools.partial(self._log_settle_failure, kwargs['delivery_tag']))

    @staticmethod
    def _log_settle_failure(delivery_tag, future):
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Failed to settle delivery {delivery_tag}: {future.exception()}")

    def close(self):
        """Close the channel; listeners receive None."""
        if self.is_closed:
            raise ConnectionClosedError(f"channel {self.channel_number} is closed")

        def close_now():
            self._closing = True
            self.pika_channel.close()
            self.finalize(None)

        self.connection_handle.call(close_now)

    def _on_consumer_cancelled(self, method_frame):
        tag = method_frame.method.consumer_tag
        logger.warning(f"Consumer {tag} cancelled by broker")
        stream = self._streams.pop(tag, None)
        if stream is not None:
            stream.end()

    def finalize(self, outcome):
        """End every consumer stream and notify listeners (I/O thread only)."""
        for stream in self._streams.values():
            stream.end()
        self._streams = {}
        self._notifier.fire(outcome)


def dial(url, rpc_timeout=None, poll_interval=None):
    """
    Open a connection to the broker.

    Args:
        url: amqp:// URL of the broker
        rpc_timeout: Seconds to wait for an operation marshalled to the I/O thread
        poll_interval: Seconds the I/O thread blocks in process_data_events

    Returns:
        A PikaConnectionHandle

    Raises:
        DialError: if the connection cannot be opened
    """
    try:
        connection = pika.BlockingConnection(pika.URLParameters(url))
    except (AMQPError, OSError, ValueError) as e:
        raise DialError(f"could not connect to {mask_url(url)}", e) from e

    return PikaConnectionHandle(connection, url, rpc_timeout=rpc_timeout, poll_interval=poll_interval)
