"""Exception hierarchy for the short URL core.

Callers catch the narrowest class they can act on: ``CodeSpaceExhausted`` is a
capacity problem, ``StoreUnavailable`` means "can't tell right now" and is never
folded into a not-found result.
"""

__all__ = [
    "AllocatorUnavailable",
    "ClockRegression",
    "CodeGenerationError",
    "CodeSpaceExhausted",
    "ConfigurationError",
    "DuplicateShortCode",
    "SharedCacheUnavailable",
    "ShortUrlError",
    "StoreUnavailable",
]


class ShortUrlError(Exception):
    """Base exception for all core errors."""


class ConfigurationError(ShortUrlError):
    """Invalid settings or a missing hash implementation; fatal at startup."""


class CodeGenerationError(ShortUrlError):
    """Base exception for short code generation failures."""


class CodeSpaceExhausted(CodeGenerationError):
    """No unused candidate was found within the allowed attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique short code after {attempts} attempts")
        self.attempts = attempts


class ClockRegression(CodeGenerationError):
    """The system clock moved backwards relative to the last issued id."""

    def __init__(self, last_timestamp: int, current_timestamp: int):
        super().__init__(
            f"Clock moved backwards by {last_timestamp - current_timestamp}ms; refusing to generate id"
        )
        self.last_timestamp = last_timestamp
        self.current_timestamp = current_timestamp


class AllocatorUnavailable(CodeGenerationError):
    """The shared counter could not be leased."""


class StoreUnavailable(ShortUrlError):
    """The durable store could not be reached or failed the query."""


class DuplicateShortCode(ShortUrlError):
    """An insert lost a uniqueness race on short_code."""

    def __init__(self, short_code: str):
        super().__init__(f"Short code {short_code!r} is already taken")
        self.short_code = short_code


class SharedCacheUnavailable(ShortUrlError):
    """The shared cache tier failed; callers degrade instead of failing."""
