"""Bounded collision avoidance around a short code strategy."""

import logging
from collections.abc import Awaitable, Callable

from prometheus_client import Counter

from shorturl.exceptions import CodeSpaceExhausted, ConfigurationError
from shorturl.strategies import ShortCodeStrategy

__all__ = ["CollisionResolver", "ExistsPredicate"]

logger = logging.getLogger(__name__)

ExistsPredicate = Callable[[str], Awaitable[bool]]

CODE_COLLISIONS_TOTAL = Counter(
    "shorturl_code_collisions_total",
    "Candidate short codes rejected because they were already taken",
    ["strategy"],
)


class CollisionResolver:
    """Retry a strategy until it yields a code the store does not know.

    Example:
        >>> resolver = CollisionResolver(RandomStrategy(alphabet, 6), max_attempts=10)
        >>> code = await resolver.generate("https://example.com", store.exists)
    """

    def __init__(self, strategy: ShortCodeStrategy, max_attempts: int = 10):
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        self.strategy = strategy
        self.max_attempts = max_attempts

    async def generate(self, url: str, exists: ExistsPredicate) -> str:
        """Return the first candidate for which ``exists`` is false.

        Args:
            url: Original URL the code is generated for
            exists: Async predicate over the durable store

        Returns:
            str: Unused short code

        Raises:
            CodeSpaceExhausted: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = await self.strategy.candidate(url)
            if not await exists(candidate):
                return candidate
            CODE_COLLISIONS_TOTAL.labels(strategy=self.strategy.name).inc()
            logger.debug(f"Short code collision on {candidate} (attempt {attempt}/{self.max_attempts})")

        raise CodeSpaceExhausted(self.max_attempts)
