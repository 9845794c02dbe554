"""Exceptions raised by the AMQP resilience layer."""
from typing import Optional


class AMQPError(Exception):
    """Base exception for AMQP errors."""

    def __init__(self, message: str, original: Optional[Exception] = None):
        self.message = message
        self.original = original
        if original:
            super().__init__(f"{message}: {original}")
        else:
            super().__init__(message)


class DialError(AMQPError):
    """The initial connection to the broker could not be opened.

    Never retried by the connection manager; the caller decides whether
    to dial again.
    """


class ConnectionClosedError(AMQPError):
    """An operation was attempted on a connection or channel handle that is no longer open."""


class AlreadyClosedError(AMQPError):
    """close() was called on a connection or channel that was already closed by the application."""

    def __init__(self, message: str = "already closed"):
        super().__init__(message)


class AMQPNotInitializedError(AMQPError):
    """The process-wide AMQP connection could not be initialized."""

    def __init__(self, message: str = "AMQP connection not initialized",
                 original: Optional[Exception] = None):
        super().__init__(message, original)


class DeliveryAlreadySettledError(AMQPError):
    """ack, nack or reject was called more than once for the same delivery."""
