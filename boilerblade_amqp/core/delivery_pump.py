"""
Delivery pump: relays one-shot consumer streams into a stream that survives
channel recreation.
"""
import queue
import threading
import time
from .logger import get_logger
from ..utils.metrics_collector import metrics_collector

# Module logger
logger = get_logger(__name__)

_EMPTY = object()


class DeliveryStream:
    """
    Unbuffered hand-off between a DeliveryPump and its reader.

    put() returns only once the reader has taken the delivery, so a reader
    that stops reading holds the pump (and, through prefetch, the broker).
    Iterating yields deliveries until the stream is closed.
    """

    def __init__(self, poll_interval=0.1):
        self._cond = threading.Condition()
        self._slot = _EMPTY
        self._closed = False
        self._poll_interval = poll_interval

    @property
    def closed(self):
        return self._closed

    def put(self, delivery, cancel_event=None):
        """
        Hand a delivery to the reader, blocking until it is taken.

        Args:
            delivery: The delivery to hand over
            cancel_event: Optional event that aborts the hand-off when set

        Returns:
            True if the reader took the delivery, False if the stream was
            closed or the hand-off was cancelled first
        """
        def cancelled():
            return self._closed or (cancel_event is not None and cancel_event.is_set())

        with self._cond:
            while self._slot is not _EMPTY:
                if cancelled():
                    return False
                self._cond.wait(self._poll_interval)
            if cancelled():
                return False

            self._slot = delivery
            self._cond.notify_all()

            while self._slot is delivery:
                if cancelled():
                    self._slot = _EMPTY
                    self._cond.notify_all()
                    return False
                self._cond.wait(self._poll_interval)
            return True

    def get(self, timeout=None):
        """
        Take the next delivery.

        Args:
            timeout: Seconds to wait, None to wait forever

        Returns:
            The next Delivery, or None once the stream is closed

        Raises:
            queue.Empty: if the timeout expires
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._slot is _EMPTY:
                if self._closed:
                    return None
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise queue.Empty
                    self._cond.wait(remaining)

            delivery = self._slot
            self._slot = _EMPTY
            self._cond.notify_all()
            return delivery

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __iter__(self):
        while True:
            delivery = self.get()
            if delivery is None:
                return
            yield delivery


class DeliveryPump:
    """
    Background task behind Channel.consume().

    Issues the one-shot consume against whichever channel handle is current,
    relays its deliveries in order, and starts over when the raw stream ends,
    until the channel is closed by the application.
    """

    def __init__(self, channel, stream, queue_name, consumer='', auto_ack=False,
                 exclusive=False, no_local=False, no_wait=False, arguments=None):
        self.channel = channel
        self.stream = stream
        self.queue_name = queue_name
        self.consumer = consumer
        self.auto_ack = auto_ack
        self.exclusive = exclusive
        self.no_local = no_local
        self.no_wait = no_wait
        self.arguments = arguments
        self.consume_count = 0
        self._thread = None

    def start(self):
        self._thread = threading.Thread(
            target=self._run,
            name=f"amqp-pump-{self.queue_name}",
            daemon=True
        )
        self._thread.start()

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def _wait(self, attempt):
        """Sleep the policy delay; returns True if the channel was closed meanwhile."""
        return self.channel.closed_event.wait(self.channel.reconnect_policy.delay_for(attempt))

    def _run(self):
        failures = 0
        try:
            while True:
                try:
                    raw = self.channel.handle.consume(
                        self.queue_name,
                        consumer_tag=self.consumer,
                        auto_ack=self.auto_ack,
                        exclusive=self.exclusive,
                        no_local=self.no_local,
                        no_wait=self.no_wait,
                        arguments=self.arguments
                    )
                except Exception as e:
                    failures += 1
                    logger.error(f"Consume on queue '{self.queue_name}' failed "
                                 f"(consumer='{self.consumer}', auto_ack={self.auto_ack}, "
                                 f"exclusive={self.exclusive}): {e}")
                    if self._wait(failures):
                        break
                    continue

                failures = 0
                self.consume_count += 1
                if self.consume_count > 1:
                    metrics_collector.track_consume_restart(self.queue_name)
                logger.debug(f"Consuming from queue '{self.queue_name}'")

                for delivery in raw:
                    if not self.stream.put(delivery, cancel_event=self.channel.closed_event):
                        break

                # The closed flag may not be set yet when the raw stream ends
                self._wait(1)

                if self.channel.is_closed():
                    break
        finally:
            self.stream.close()
            logger.debug(f"Delivery pump for queue '{self.queue_name}' stopped")
