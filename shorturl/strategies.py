"""Short code generation strategies.

Every strategy produces one raw candidate per call; uniqueness against the
store is the CollisionResolver's job. Only the counter and snowflake
strategies keep state between calls.

Strategy Overview
=================
::
    ┌──────────────┬──────────────────────────────────────────────┐
    │ random       │ L independent CSPRNG draws (nanoid)          │
    │ md5          │ md5(url+salt+ms) hex, random window of nibbles│
    │ murmur3      │ murmur3_32(url+salt+ms, random seed), base-N │
    │ base64       │ base64url(url|uuid4|ms), random window       │
    │ counter      │ Redis INCRBY lease → base-N, left-pad / tail │
    │ snowflake    │ time-ordered 64-bit id → base-N, head        │
    └──────────────┴──────────────────────────────────────────────┘

How to Use
===========
**Step 1 — Build once at startup**::
    strategy = build_strategy(settings, redis_client)

**Step 2 — Wrap in a resolver**::
    resolver = CollisionResolver(strategy, settings.MAX_COLLISION_ATTEMPTS)
    code = await resolver.generate(url, store.exists)

Key Behaviours
===============
- Every candidate has exactly ``length`` symbols, all from the configured alphabet.
- A missing hash implementation raises ConfigurationError at construction.
- Snowflake codes keep the high-order digits, so build_strategy refuses a
  ``length`` shorter than the whole encoded id (11 base62 symbols).
"""

import base64
import hashlib
import secrets
import time
import uuid
from abc import ABC, abstractmethod

import redis.asyncio as redis
from nanoid import generate

from shorturl.allocator import CounterAllocator
from shorturl.config import Settings
from shorturl.encoding import Alphabet
from shorturl.enums import StrategyType
from shorturl.exceptions import ConfigurationError
from shorturl.snowflake import SnowflakeGenerator

__all__ = [
    "Base64CompositeStrategy",
    "CounterStrategy",
    "Md5HashStrategy",
    "Murmur3HashStrategy",
    "RandomStrategy",
    "ShortCodeStrategy",
    "SnowflakeStrategy",
    "build_strategy",
]

MD5_HEX_LENGTH = 32
SALT_BOUND = 10_000
SNOWFLAKE_MAX_ID = (1 << 63) - 1


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


class ShortCodeStrategy(ABC):
    """Base class for short code candidate producers."""

    strategy_type: StrategyType

    def __init__(self, alphabet: Alphabet, length: int):
        if length < 1:
            raise ConfigurationError(f"Short code length must be positive, got {length}")
        self.alphabet = alphabet
        self.length = length

    @property
    def name(self) -> str:
        return self.strategy_type.value

    @abstractmethod
    async def candidate(self, url: str) -> str:
        """Produce one raw candidate code for ``url``."""

    def _fit(self, encoded: str) -> str:
        """Right-pad with random symbols, or keep the leading ``length`` symbols."""
        if len(encoded) < self.length:
            return encoded + self.alphabet.random_symbols(self.length - len(encoded))
        return encoded[: self.length]

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(length={self.length}, base={self.alphabet.base})>"


class RandomStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.RANDOM

    async def candidate(self, url: str) -> str:
        return generate(self.alphabet.symbols, self.length)


class Md5HashStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.MD5

    def __init__(self, alphabet: Alphabet, length: int):
        super().__init__(alphabet, length)
        if length >= MD5_HEX_LENGTH:
            raise ConfigurationError(f"md5 strategy supports lengths below {MD5_HEX_LENGTH}")
        try:
            hashlib.md5(b"", usedforsecurity=False)
        except ValueError as exc:
            raise ConfigurationError("MD5 is not available in this interpreter") from exc

    async def candidate(self, url: str) -> str:
        salt = secrets.randbelow(SALT_BOUND)
        digest = hashlib.md5(
            f"{url}{salt}{_epoch_millis()}".encode(), usedforsecurity=False
        ).hexdigest()
        offset = secrets.randbelow(MD5_HEX_LENGTH - self.length)
        window = digest[offset : offset + self.length]
        return "".join(self.alphabet.symbol_for(int(nibble, 16) * 4) for nibble in window)


class Murmur3HashStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.MURMUR3

    def __init__(self, alphabet: Alphabet, length: int):
        super().__init__(alphabet, length)
        try:
            import mmh3
        except ImportError as exc:
            raise ConfigurationError("murmur3 strategy requires the mmh3 package") from exc
        self._mmh3 = mmh3

    async def candidate(self, url: str) -> str:
        salt = secrets.randbelow(SALT_BOUND)
        seed = secrets.randbits(32)
        value = self._mmh3.hash(f"{url}{salt}{_epoch_millis()}", seed, signed=False)

        # least significant digit first
        digits = []
        while value > 0:
            value, remainder = divmod(value, self.alphabet.base)
            digits.append(self.alphabet.symbols[remainder])
        return self._fit("".join(digits))


class Base64CompositeStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.BASE64

    async def candidate(self, url: str) -> str:
        raw = f"{url}|{uuid.uuid4()}|{_epoch_millis()}"
        encoded = base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")
        encoded = "".join(
            char if self.alphabet.contains(char) else self.alphabet.symbol_for(ord(char))
            for char in encoded
        )
        if len(encoded) <= self.length:
            return self._fit(encoded)
        start = secrets.randbelow(len(encoded) - self.length + 1)
        return encoded[start : start + self.length]


class CounterStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.COUNTER

    def __init__(self, alphabet: Alphabet, length: int, allocator: CounterAllocator):
        super().__init__(alphabet, length)
        self.allocator = allocator

    async def candidate(self, url: str) -> str:
        encoded = self.alphabet.encode(await self.allocator.next_id())
        if len(encoded) < self.length:
            return encoded.rjust(self.length, self.alphabet.zero)
        return encoded[-self.length:]


class SnowflakeStrategy(ShortCodeStrategy):
    strategy_type = StrategyType.SNOWFLAKE

    def __init__(self, alphabet: Alphabet, length: int, generator: SnowflakeGenerator):
        super().__init__(alphabet, length)
        self.generator = generator

    async def candidate(self, url: str) -> str:
        return self._fit(self.alphabet.encode(self.generator.next_id()))


_STATELESS_STRATEGIES: dict[StrategyType, type[ShortCodeStrategy]] = {
    StrategyType.RANDOM: RandomStrategy,
    StrategyType.MD5: Md5HashStrategy,
    StrategyType.MURMUR3: Murmur3HashStrategy,
    StrategyType.BASE64: Base64CompositeStrategy,
}


def build_strategy(settings: Settings, client: redis.Redis | None = None) -> ShortCodeStrategy:
    """Select and construct the configured strategy.

    Args:
        settings: Application settings
        client: Redis client, required by the counter strategy

    Returns:
        ShortCodeStrategy: Ready-to-use strategy instance

    Raises:
        ConfigurationError: Unknown strategy or alphabet, or an unusable hash
    """
    try:
        strategy_type = StrategyType.from_str(settings.SHORT_CODE_STRATEGY)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown short code strategy: {settings.SHORT_CODE_STRATEGY!r}") from exc
    try:
        alphabet = Alphabet.from_name(settings.SHORT_CODE_ALPHABET)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid short code alphabet: {exc}") from exc

    length = settings.SHORT_CODE_LENGTH

    if strategy_type is StrategyType.COUNTER:
        if client is None:
            raise ConfigurationError("counter strategy requires a Redis client")
        allocator = CounterAllocator(client, settings.COUNTER_KEY, settings.COUNTER_BATCH_SIZE)
        return CounterStrategy(alphabet, length, allocator)

    if strategy_type is StrategyType.SNOWFLAKE:
        full_length = len(alphabet.encode(SNOWFLAKE_MAX_ID))
        if length < full_length:
            raise ConfigurationError(
                f"snowflake strategy needs SHORT_CODE_LENGTH >= {full_length} "
                f"for a base-{alphabet.base} alphabet, got {length}"
            )
        generator = SnowflakeGenerator(
            datacenter_id=settings.SNOWFLAKE_DATACENTER_ID,
            worker_id=settings.SNOWFLAKE_WORKER_ID,
            epoch_ms=settings.SNOWFLAKE_EPOCH_MS,
        )
        return SnowflakeStrategy(alphabet, length, generator)

    return _STATELESS_STRATEGIES[strategy_type](alphabet, length)
