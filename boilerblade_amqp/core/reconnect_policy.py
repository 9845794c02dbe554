"""
Delay policy for the redial and channel recreation loops.
"""
import math
import random
from ..config.config import config


class ReconnectPolicy:
    """
    Computes the wait before each reconnect attempt.

    The default is a fixed delay repeated forever. Setting backoff_factor
    above 1.0 grows the delay exponentially up to max_delay, and jitter adds
    a random extra of up to that many seconds.
    """

    def __init__(self, delay=None, backoff_factor=None, max_delay=None, jitter=None):
        self.delay = config.RECONNECT_DELAY if delay is None else delay
        self.backoff_factor = config.RECONNECT_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        self.max_delay = config.RECONNECT_MAX_DELAY if max_delay is None else max_delay
        self.jitter = config.RECONNECT_JITTER if jitter is None else jitter

    def delay_for(self, attempt):
        """
        Delay in seconds before the given attempt.

        Args:
            attempt: 1 for the first attempt after a closure

        Returns:
            The number of seconds to wait
        """
        delay = self.delay
        if self.backoff_factor > 1.0 and self.delay > 0:
            # Stop growing the exponent once the cap is reached
            exponent = 0
            if self.max_delay > self.delay:
                exponent = min(attempt - 1,
                               math.ceil(math.log(self.max_delay / self.delay, self.backoff_factor)))
            delay = min(self.delay * (self.backoff_factor ** exponent), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    def __repr__(self):
        return (f"ReconnectPolicy(delay={self.delay}, backoff_factor={self.backoff_factor}, "
                f"max_delay={self.max_delay}, jitter={self.jitter})")
