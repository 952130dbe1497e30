"""Snowflake time-ordered unique id generator.

Id Layout (default widths)
==========================
::
    ┌───────────────────────┬────────────┬──────────┬──────────────┐
    │ 41 bits: ms since     │ 5 bits:    │ 5 bits:  │ 12 bits:     │
    │ epoch (2021-01-01)    │ datacenter │ worker   │ sequence     │
    └───────────────────────┴────────────┴──────────┴──────────────┘

Key Behaviours
===============
- Ids from one generator are strictly increasing.
- When the sequence wraps inside one millisecond the generator spins until
  the clock advances.
- A clock that moves backwards fails the call with ClockRegression instead
  of risking a duplicate id.
"""

import threading
import time
from collections.abc import Callable

from shorturl.exceptions import ClockRegression, ConfigurationError

__all__ = ["DEFAULT_EPOCH_MS", "SnowflakeGenerator", "current_millis"]

DEFAULT_EPOCH_MS = 1_609_459_200_000


def current_millis() -> int:
    return time.time_ns() // 1_000_000


class SnowflakeGenerator:
    def __init__(
        self,
        datacenter_id: int = 1,
        worker_id: int = 1,
        epoch_ms: int = DEFAULT_EPOCH_MS,
        clock: Callable[[], int] = current_millis,
        datacenter_bits: int = 5,
        worker_bits: int = 5,
        sequence_bits: int = 12,
    ):
        self.max_datacenter_id = (1 << datacenter_bits) - 1
        self.max_worker_id = (1 << worker_bits) - 1
        self.max_sequence = (1 << sequence_bits) - 1

        if not 0 <= datacenter_id <= self.max_datacenter_id:
            raise ConfigurationError(
                f"datacenter_id must be between 0 and {self.max_datacenter_id}, got {datacenter_id}"
            )
        if not 0 <= worker_id <= self.max_worker_id:
            raise ConfigurationError(
                f"worker_id must be between 0 and {self.max_worker_id}, got {worker_id}"
            )

        self.datacenter_id = datacenter_id
        self.worker_id = worker_id
        self.epoch_ms = epoch_ms
        self._clock = clock

        self._worker_shift = sequence_bits
        self._datacenter_shift = sequence_bits + worker_bits
        self._timestamp_shift = sequence_bits + worker_bits + datacenter_bits

        self._sequence = 0
        self._last_timestamp = -1
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            timestamp = self._clock()

            if timestamp < self._last_timestamp:
                raise ClockRegression(self._last_timestamp, timestamp)
            if timestamp < self.epoch_ms:
                raise ClockRegression(self.epoch_ms, timestamp)

            if timestamp == self._last_timestamp:
                self._sequence = (self._sequence + 1) & self.max_sequence
                if self._sequence == 0:
                    timestamp = self._wait_for_next_millis(self._last_timestamp)
            else:
                self._sequence = 0

            self._last_timestamp = timestamp

            return (
                ((timestamp - self.epoch_ms) << self._timestamp_shift)
                | (self.datacenter_id << self._datacenter_shift)
                | (self.worker_id << self._worker_shift)
                | self._sequence
            )

    def decompose(self, snowflake_id: int) -> tuple[int, int, int, int]:
        """Split an id into ``(timestamp_ms, datacenter_id, worker_id, sequence)``."""
        timestamp = (snowflake_id >> self._timestamp_shift) + self.epoch_ms
        datacenter_id = (snowflake_id >> self._datacenter_shift) & self.max_datacenter_id
        worker_id = (snowflake_id >> self._worker_shift) & self.max_worker_id
        sequence = snowflake_id & self.max_sequence
        return timestamp, datacenter_id, worker_id, sequence

    def _wait_for_next_millis(self, last_timestamp: int) -> int:
        # busy-wait under the lock; bounded by one millisecond of wall clock
        timestamp = self._clock()
        while timestamp <= last_timestamp:
            timestamp = self._clock()
        return timestamp
