"""
Request admission control: a fixed window counter per client.

The first request from a client opens a window of ``window_seconds``. Requests
inside the window are counted, and anything past ``max_requests`` is refused
with RateLimited until the window's reset time has passed. Expired entries are
dropped lazily on later requests, with no background sweep.

The default store lives in process memory, so every worker process enforces
its own quota. Behind more than one process, pass a store backed by a shared
service instead.
"""
from __future__ import annotations

import logging
import math
import os
import threading
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Protocol

from .clock import Clock, SystemClock
from .errors import RateLimited
from .log import get_structured_logger, log_scheduling_event
from .models import RateWindowEntry

logger = get_structured_logger("clinic_scheduler.ratelimit")

UNKNOWN_CLIENT = "unknown"
# first header present wins
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


class RateLimitStore(Protocol):
    def get(self, key: str) -> RateWindowEntry | None:
        ...

    def set(self, key: str, entry: RateWindowEntry) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def items(self) -> Iterable[tuple[str, RateWindowEntry]]:
        ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._entries: dict[str, RateWindowEntry] = {}

    def get(self, key: str) -> RateWindowEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: RateWindowEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def items(self) -> list[tuple[str, RateWindowEntry]]:
        return list(self._entries.items())

    def __len__(self) -> int:
        return len(self._entries)


class RateDecision:
    """Quota state after an admitted request."""

    def __init__(self, limit: int, remaining: int, reset_at: datetime):
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


class AdmissionController:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        store: RateLimitStore | None = None,
        clock: Clock | None = None,
        message: str = "Too many requests, please try again later.",
    ):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_seconds)
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock or SystemClock()
        self.message = message
        self._lock = threading.Lock()

    def hit(self, client_id: str) -> RateDecision:
        """Count one request from ``client_id``; raise RateLimited when over quota."""
        with self._lock:
            now = self.clock.now()
            self._purge_expired(now)

            entry = self.store.get(client_id)
            if entry is None or entry.expired(now):
                entry = RateWindowEntry(count=1, reset_at=now + self.window)
            else:
                entry = RateWindowEntry(count=entry.count + 1, reset_at=entry.reset_at)
            self.store.set(client_id, entry)

        if entry.count > self.max_requests:
            retry_after = max(1, math.ceil((entry.reset_at - now).total_seconds()))
            log_scheduling_event(
                logger,
                "rate_limited",
                f"{entry.count} requests in window",
                level=logging.WARNING,
                client_id=client_id,
                error_code=RateLimited.code,
            )
            raise RateLimited(retry_after, self.max_requests, entry.reset_at, self.message)

        return RateDecision(self.max_requests, self.max_requests - entry.count, entry.reset_at)

    def _purge_expired(self, now: datetime) -> None:
        for key, entry in self.store.items():
            if entry.expired(now):
                self.store.delete(key)


def client_identifier(headers: Mapping[str, str]) -> str:
    """Client identity from proxy headers, or the shared "unknown" bucket."""
    ip = ""
    for name in CLIENT_IP_HEADERS:
        value = headers.get(name)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                break
    if not ip:
        return UNKNOWN_CLIENT
    if ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip


def rejection_headers(exc: RateLimited) -> dict[str, str]:
    return {
        "Retry-After": str(exc.retry_after_seconds),
        "X-RateLimit-Limit": str(exc.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": exc.reset_at.isoformat(),
    }


api_limiter = AdmissionController(
    max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100")),
    window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60))),
    message="Too many API requests from this IP, please try again later.",
)

create_limiter = AdmissionController(
    max_requests=int(os.getenv("CREATE_RATE_LIMIT_MAX_REQUESTS", "10")),
    window_seconds=float(os.getenv("CREATE_RATE_LIMIT_WINDOW_SECONDS", "60")),
    message="Too many create requests from this IP, please slow down.",
)
