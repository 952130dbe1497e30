"""Shared enums for the short URL core.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "LookupOutcome", "RequestStatus", "StrategyType"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class StrategyType(StrEnum):
    """Short code generation algorithms, selected once at startup."""

    RANDOM = "random"
    MD5 = "md5"
    MURMUR3 = "murmur3"
    BASE64 = "base64"
    COUNTER = "counter"
    SNOWFLAKE = "snowflake"

    @classmethod
    def from_str(cls, value: str) -> "StrategyType":
        """Parse case-insensitively; unknown names raise ValueError."""
        return cls(value.strip().lower())


class LookupOutcome(StrEnum):
    """Terminal states of the tiered lookup state machine."""

    L1_HIT = "l1_hit"
    L2_HIT = "l2_hit"
    L3_HIT = "l3_hit"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"

    @property
    def found(self) -> bool:
        return self in (LookupOutcome.L1_HIT, LookupOutcome.L2_HIT, LookupOutcome.L3_HIT)


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    EXHAUSTED = "exhausted"
    ERROR = "error"
