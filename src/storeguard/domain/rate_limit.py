"""ABOUTME: Rate limiting value objects
ABOUTME: Result of a sliding window admission check and the read-only status projection"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


def rate_limit_key(client_ip: str, endpoint: str) -> str:
    # "|" never appears in an address, so an IPv6 prefix cannot match another client
    return f"{client_keys_prefix(client_ip)}{endpoint.lower()}"


def client_keys_prefix(client_ip: str) -> str:
    return f"ratelimit:{client_ip}|"


def violations_key(window_key: str) -> str:
    return f"{window_key}:violations"


@dataclass(slots=True, kw_only=True, frozen=True)
class WindowHit:
    """Outcome of one admission check against a sliding window.

    `count` is the number of admitted requests in the window after the check and
    `rejected` the number of rejected attempts in the same window.
    """

    allowed: bool
    count: int
    rejected: int

    @property
    def attempts(self) -> int:
        return self.count + self.rejected


@dataclass(slots=True, kw_only=True)
class RateLimitStatus:
    remaining: int
    limit: int
    reset_time: datetime
    is_limited: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_time": self.reset_time.isoformat(),
            "is_limited": self.is_limited,
        }
