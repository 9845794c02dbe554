"""
Value objects shared by the transport, the managers and their callers.
"""
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .exceptions import DeliveryAlreadySettledError


@dataclass(frozen=True)
class CloseReason:
    """Why the broker (or the network) closed a connection or channel."""

    code: int = 0
    text: str = ''

    def __str__(self):
        return f"({self.code}) {self.text}"


@dataclass(frozen=True)
class QueueInfo:
    """Result of a queue declaration."""

    name: str
    message_count: int = 0
    consumer_count: int = 0


@dataclass
class Delivery:
    """
    A message received from a queue.

    Exactly one of ack(), nack() or reject() must be called for every
    delivery received without auto-ack. The call is forwarded to the channel
    instance that received the message.
    """

    body: bytes
    delivery_tag: int
    routing_key: str = ''
    exchange: str = ''
    message_id: Optional[str] = None
    content_type: Optional[str] = None
    headers: Dict[str, Any] = field(default_factory=dict)
    redelivered: bool = False
    acknowledger: Any = field(default=None, repr=False, compare=False)
    _settled: bool = field(default=False, init=False, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False,
                                  repr=False, compare=False)

    @property
    def settled(self):
        return self._settled

    def _settle(self):
        with self._lock:
            if self._settled:
                raise DeliveryAlreadySettledError(
                    f"delivery {self.delivery_tag} already acknowledged or rejected")
            self._settled = True

    def ack(self, multiple=False):
        """Acknowledge the delivery (and every earlier one when multiple is set)."""
        self._settle()
        self.acknowledger.ack(self.delivery_tag, multiple=multiple)

    def nack(self, multiple=False, requeue=True):
        """Negatively acknowledge the delivery.

        With requeue=False the broker dead-letters the message, which sends it
        through the retry exchange when the queue was declared with one.
        """
        self._settle()
        self.acknowledger.nack(self.delivery_tag, multiple=multiple, requeue=requeue)

    def reject(self, requeue=True):
        self._settle()
        self.acknowledger.reject(self.delivery_tag, requeue=requeue)
