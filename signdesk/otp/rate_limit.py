# signdesk/otp/rate_limit.py

"""
Fixed-window request counter kept in Redis so every instance shares it.
A burst of up to twice the limit across a window edge is accepted.
"""

from typing import Optional

import redis

from signdesk.core.config import settings
from signdesk.core.exceptions import RateLimitedException
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


def rate_limit_key(purpose: str, identifier: str) -> str:
    return f"otp:{purpose}:{identifier}"


class RateLimiter:
    """
    INCR the key, start the window with EXPIRE on the first hit, and refuse
    once the count passes the limit.
    """

    def __init__(self, client: redis.Redis, limit: Optional[int] = None, window_seconds: Optional[int] = None):
        self.client = client
        self.limit = limit or settings.otp_rate_limit
        self.window_seconds = window_seconds or settings.otp_rate_window_seconds

    def hit(self, key: str) -> int:
        """
        Count one request.

        Returns:
            The number of requests in the current window

        Raises:
            RateLimitedException: if the limit was already reached
        """
        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, self.window_seconds)

        if count > self.limit:
            reset_in = self.client.ttl(key)
            if reset_in is None or reset_in < 0:
                # A key left without expiry would block forever
                self.client.expire(key, self.window_seconds)
                reset_in = self.window_seconds
            logger.warning("Rate limit exceeded", key=key, count=count, limit=self.limit)
            raise RateLimitedException(self.limit, int(reset_in))
        return count
