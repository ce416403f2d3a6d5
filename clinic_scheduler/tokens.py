"""
tokens.py
=========
Token Sequence Allocator.

One global counter per calendar day hands out T001..T999. Each number is
checked against the day's active bookings before use; a collision retries
with a short linear backoff. This is the only code that writes counters.
"""

import datetime
import logging
import time

from . import config
from .errors import TokenAllocationError, TokenRangeExhaustedError
from .repository import BookingRepository, CounterStore

logger = logging.getLogger(__name__)


def format_token(number: int) -> str:
    return f"{config.TOKEN_PREFIX}{number:03d}"


class TokenAllocator:
    def __init__(
        self,
        counters: CounterStore,
        bookings: BookingRepository,
        max_per_day: int = None,
        max_attempts: int = None,
        backoff: float = None,
        sleep=time.sleep,
    ):
        self.counters = counters
        self.bookings = bookings
        self.max_per_day = max_per_day or config.TOKEN_MAX_PER_DAY
        self.max_attempts = max_attempts or config.TOKEN_MAX_ATTEMPTS
        self.backoff = config.TOKEN_RETRY_BACKOFF if backoff is None else backoff
        self.sleep = sleep

    def allocate(self, day: datetime.date) -> str:
        """
        Issue the next token for a day.
        Raises TokenRangeExhaustedError past the daily maximum (no retry) and
        TokenAllocationError when every attempt collided.
        """
        key = self.counters.key_for(day)

        for attempt in range(1, self.max_attempts + 1):
            number = self.counters.increment(key)
            if number > self.max_per_day:
                logger.warning(f"🚫 Token range exhausted for {day}: counter at {number}")
                raise TokenRangeExhaustedError(
                    f"No more tokens available for {day.isoformat()}. "
                    f"Maximum {self.max_per_day} tokens per day."
                )

            token = format_token(number)
            if self.bookings.active_with_token(day, token) is None:
                logger.info(f"🎟️ Allocated token {token} for {day} (attempt {attempt})")
                return token

            logger.warning(f"⚠️ Token {token} already in use on {day}, retrying...")
            if attempt < self.max_attempts:
                self.sleep(self.backoff * attempt)

        raise TokenAllocationError(
            f"Failed to generate unique token number after {self.max_attempts} attempts. Please try again."
        )

    def issued(self, day: datetime.date) -> int:
        """How many numbers the day's counter has handed out so far."""
        return self.counters.peek(self.counters.key_for(day))
