"""Per-connection token bucket for inbound websocket messages."""

import time


class TokenBucket:
    """Token bucket rate limiter.

    The bucket refills at ``rate`` tokens per second up to ``burst``. Each
    accepted message costs one token; an empty bucket means the message is
    dropped with a rate_limited error.
    """

    def __init__(self, rate: float, burst: int, clock=time.monotonic) -> None:
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last_refill = clock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def consume(self) -> bool:
        """Take one token. Returns False when the caller is over the limit."""
        now = self._clock()
        self._tokens = min(self._burst, self._tokens + (now - self._last_refill) * self._rate)
        self._last_refill = now

        if self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        return True
